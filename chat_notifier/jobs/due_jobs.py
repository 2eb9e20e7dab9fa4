from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Literal

from opentelemetry import trace

from chat_notifier.services.delayed_jobs import DelayedJob, DelayedJobStore
from chat_notifier.services.dispatcher import MessageStore, check_online, template_params, utc_now
from chat_notifier.services.policy_store import PolicyStore, load_policy_or_disabled
from chat_notifier.services.presence import PresenceOracle
from chat_notifier.services.sender import TEMPLATE_CHAT_UNREAD_REMINDER, MessageSender
from chat_notifier.services.throttle import ThrottleGate

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

UNREAD_SNIPPET = "You have unread messages in the chat."

JobStatus = Literal["sent", "send_failed", "read", "disabled", "online", "no_contact", "throttled"]


@dataclass(slots=True)
class TickResult:
    claimed: int = 0
    failed: int = 0
    requeued: int = 0
    statuses: Counter[str] = field(default_factory=Counter)


class DueJobProcessor:
    """One poll tick: claim due reminder jobs and send the ones still warranted.

    Jobs are claimed (removed from the index) before processing. A crash
    between claim and send loses that reminder; with ``requeue_failed`` a job
    that raised is put back with a short delay instead, trading a possible
    duplicate (still throttled) for the lost one.
    """

    def __init__(
        self,
        *,
        jobs: DelayedJobStore,
        policy_store: PolicyStore,
        presence: PresenceOracle,
        throttle: ThrottleGate,
        messages: MessageStore,
        sender: MessageSender,
        batch_size: int = 100,
        requeue_failed: bool = False,
        requeue_delay_seconds: int = 60,
        requeue_max_attempts: int = 3,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._jobs = jobs
        self._policy_store = policy_store
        self._presence = presence
        self._throttle = throttle
        self._messages = messages
        self._sender = sender
        self._batch_size = max(1, batch_size)
        self._requeue_failed = requeue_failed
        self._requeue_delay = timedelta(seconds=max(1, requeue_delay_seconds))
        self._requeue_max_attempts = max(1, requeue_max_attempts)
        self._clock = clock

    async def run_once(self) -> TickResult:
        due = await self._jobs.pop_due(self._clock(), self._batch_size)
        result = TickResult(claimed=len(due))
        for job in due:
            with tracer.start_as_current_span("notifier.process_due_job") as span:
                span.set_attribute("chat.conversation_id", job.conversation_id)
                span.set_attribute("chat.message_id", job.message_id)
                try:
                    status = await self.process_job(job)
                except Exception:
                    logger.exception(
                        "due job failed conversation=%s recipient=%s message=%s",
                        job.conversation_id,
                        job.recipient_id,
                        job.message_id,
                    )
                    result.failed += 1
                    if await self._requeue(job):
                        result.requeued += 1
                    continue
                span.set_attribute("notifier.job_status", status)
                result.statuses[status] += 1
        return result

    async def process_job(self, job: DelayedJob) -> JobStatus:
        # Released first so a newer message can schedule its own check while this one runs.
        await self._jobs.release_dedup(job)

        unread = await self._messages.count_unread(job.conversation_id, job.recipient_id)
        if unread <= 0:
            return "read"

        policy = await load_policy_or_disabled(self._policy_store)
        if not policy.enabled or not policy.delayed.enabled:
            return "disabled"

        if await check_online(self._presence, job.recipient_id):
            return "online"

        context = await self._messages.get_notification_context(job.conversation_id, job.recipient_id)
        if context is None or not context.recipient_email:
            logger.info("no notification contact for recipient=%s conversation=%s", job.recipient_id, job.conversation_id)
            return "no_contact"

        allowed = await self._throttle.try_consume(
            job.conversation_id,
            job.recipient_id,
            max_per_window=policy.throttle.max_per_window,
            window_minutes=policy.throttle.window_minutes,
        )
        if not allowed:
            return "throttled"

        params = template_params(context, UNREAD_SNIPPET)
        params["unread_count"] = unread
        if not await self._sender.send(context.recipient_email, TEMPLATE_CHAT_UNREAD_REMINDER, params):
            logger.warning(
                "unread reminder not delivered recipient=%s conversation=%s",
                job.recipient_id,
                job.conversation_id,
            )
            return "send_failed"
        return "sent"

    async def _requeue(self, job: DelayedJob) -> bool:
        if not self._requeue_failed:
            return False
        attempts = job.attempts + 1
        if attempts >= self._requeue_max_attempts:
            logger.warning("due job dropped after %s attempts message=%s", attempts, job.message_id)
            return False
        now = self._clock()
        return await self._jobs.enqueue_if_absent(replace(job, attempts=attempts), now + self._requeue_delay, now=now)
