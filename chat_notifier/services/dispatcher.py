from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from opentelemetry import trace

from chat_notifier.schemas.messages import ChatMessage, Conversation
from chat_notifier.schemas.policy import NotificationPolicy
from chat_notifier.services.delayed_jobs import DelayedJob, DelayedJobStore
from chat_notifier.services.policy_store import PolicyStore, load_policy_or_disabled
from chat_notifier.services.presence import PresenceOracle
from chat_notifier.services.repository import NotificationContext
from chat_notifier.services.sender import TEMPLATE_CHAT_NEW_MESSAGE, MessageSender
from chat_notifier.services.throttle import ThrottleGate

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


class MessageStore(Protocol):
    async def count_messages(self, conversation_id: str) -> int: ...

    async def count_unread(self, conversation_id: str, recipient_id: str) -> int: ...

    async def get_notification_context(
        self,
        conversation_id: str,
        recipient_id: str,
    ) -> NotificationContext | None: ...


@dataclass(slots=True)
class DispatchOutcome:
    skipped_reason: str | None = None
    recipient_online: bool = False
    throttled: bool = False
    send_scheduled: bool = False
    job_enqueued: bool = False


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def snippet(text: str | None, max_length: int = 140) -> str:
    collapsed = _WHITESPACE_RE.sub(" ", text or "").strip()
    if len(collapsed) > max_length:
        return collapsed[: max_length - 1] + "…"
    return collapsed


def template_params(context: NotificationContext, message_snippet: str) -> dict[str, Any]:
    return {
        "username": context.recipient_username or "there",
        "employer_name": context.employer_name or "Employer",
        "job_title": context.job_title or "Job",
        "message_snippet": message_snippet,
    }


async def check_online(presence: PresenceOracle, user_id: str) -> bool:
    # An unknown presence counts as online: suppressing a send is the safe side.
    try:
        return await presence.is_online(user_id)
    except Exception:
        logger.exception("presence lookup failed for user=%s; assuming online", user_id)
        return True


class NotificationDispatcher:
    """Decides, for each new chat message, whether to notify the recipient now,
    later, or not at all.

    The decision itself is a handful of store round trips. The outbound send
    runs as a detached task so the message-creation path never waits on the
    mailer; errors from those tasks are logged and dropped.
    """

    def __init__(
        self,
        *,
        policy_store: PolicyStore,
        presence: PresenceOracle,
        throttle: ThrottleGate,
        jobs: DelayedJobStore,
        messages: MessageStore,
        sender: MessageSender,
        snippet_max_length: int = 140,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._policy_store = policy_store
        self._presence = presence
        self._throttle = throttle
        self._jobs = jobs
        self._messages = messages
        self._sender = sender
        self._snippet_max_length = snippet_max_length
        self._clock = clock
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def pending_tasks(self) -> int:
        return len(self._background)

    def dispatch_in_background(self, message: ChatMessage, conversation: Conversation) -> asyncio.Task[Any]:
        return self._spawn(self.on_new_message(message, conversation), name=f"dispatch:{message.id}")

    async def on_new_message(self, message: ChatMessage, conversation: Conversation) -> DispatchOutcome:
        with tracer.start_as_current_span("notifier.dispatch") as span:
            span.set_attribute("chat.conversation_id", message.conversation_id)
            span.set_attribute("chat.message_id", message.id)
            try:
                outcome = await self._dispatch(message, conversation)
            except Exception:
                logger.exception("dispatch failed for message=%s", message.id)
                return DispatchOutcome(skipped_reason="error")
            if outcome.skipped_reason:
                span.set_attribute("notifier.skipped_reason", outcome.skipped_reason)
            return outcome

    async def drain(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _dispatch(self, message: ChatMessage, conversation: Conversation) -> DispatchOutcome:
        policy = await load_policy_or_disabled(self._policy_store)
        if not policy.enabled:
            return DispatchOutcome(skipped_reason="disabled")

        if message.sender_id != conversation.employer_id or message.recipient_id != conversation.seeker_id:
            return DispatchOutcome(skipped_reason="direction")

        if (
            policy.immediate.enabled
            and policy.immediate.only_first_message_in_thread
            and not policy.delayed.enabled
            and not await self._is_first_message(message)
        ):
            return DispatchOutcome(skipped_reason="not_first_message")

        outcome = DispatchOutcome()
        if policy.immediate.enabled:
            await self._try_immediate(message, policy, outcome)

        if policy.delayed.enabled:
            now = self._clock()
            outcome.job_enqueued = await self._jobs.enqueue_if_absent(
                DelayedJob(
                    conversation_id=message.conversation_id,
                    recipient_id=message.recipient_id,
                    message_id=message.id,
                    created_at=message.created_at.isoformat(),
                ),
                now + timedelta(minutes=policy.delayed.delay_minutes),
                now=now,
            )
        return outcome

    async def _try_immediate(self, message: ChatMessage, policy: NotificationPolicy, outcome: DispatchOutcome) -> None:
        if await check_online(self._presence, message.recipient_id):
            outcome.recipient_online = True
            return

        allowed = await self._throttle.try_consume(
            message.conversation_id,
            message.recipient_id,
            max_per_window=policy.throttle.max_per_window,
            window_minutes=policy.throttle.window_minutes,
        )
        if not allowed:
            outcome.throttled = True
            return

        self._spawn(self._send_new_message(message), name=f"notify:{message.id}")
        outcome.send_scheduled = True

    async def _is_first_message(self, message: ChatMessage) -> bool:
        try:
            return await self._messages.count_messages(message.conversation_id) <= 1
        except Exception:
            logger.exception("thread message count failed conversation=%s", message.conversation_id)
            return False

    async def _send_new_message(self, message: ChatMessage) -> None:
        context = await self._messages.get_notification_context(message.conversation_id, message.recipient_id)
        if context is None or not context.recipient_email:
            logger.info(
                "no notification contact for recipient=%s conversation=%s",
                message.recipient_id,
                message.conversation_id,
            )
            return

        sent = await self._sender.send(
            context.recipient_email,
            TEMPLATE_CHAT_NEW_MESSAGE,
            template_params(context, snippet(message.content, self._snippet_max_length)),
        )
        if not sent:
            logger.warning(
                "chat notification not delivered recipient=%s conversation=%s message=%s",
                message.recipient_id,
                message.conversation_id,
                message.id,
            )

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background task %s failed", task.get_name(), exc_info=exc)
