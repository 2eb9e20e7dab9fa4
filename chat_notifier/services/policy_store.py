from __future__ import annotations

import json
import logging
from typing import Protocol

from pydantic import ValidationError

from chat_notifier.schemas.policy import DISABLED_POLICY, NotificationPolicy
from chat_notifier.services.repository import POLICY_SETTING_KEY, PostgresRepository, RepositoryError

logger = logging.getLogger(__name__)


class PolicyUnavailableError(Exception):
    """Raised when the notification policy cannot be read or is invalid."""


class PolicyStore(Protocol):
    async def get_notification_policy(self) -> NotificationPolicy: ...


class RepositoryPolicyStore:
    """Policy kept as a JSON document in the ``settings`` table.

    Every call reads the row again; operators change behaviour by writing the
    row, with no process restart.
    """

    def __init__(self, repository: PostgresRepository, *, setting_key: str = POLICY_SETTING_KEY) -> None:
        self._repository = repository
        self._setting_key = setting_key

    async def get_notification_policy(self) -> NotificationPolicy:
        try:
            raw = await self._repository.get_setting(self._setting_key)
        except RepositoryError as exc:
            raise PolicyUnavailableError(str(exc)) from exc

        if raw is None:
            return DISABLED_POLICY
        return parse_policy(raw)

    async def save_notification_policy(self, policy: NotificationPolicy) -> NotificationPolicy:
        await self._repository.upsert_setting(
            self._setting_key,
            json.dumps(policy.model_dump(by_alias=True), sort_keys=True),
        )
        return policy


async def load_policy_or_disabled(store: PolicyStore) -> NotificationPolicy:
    """Read the policy, falling back to the disabled policy on any failure."""
    try:
        return await store.get_notification_policy()
    except PolicyUnavailableError as exc:
        logger.warning("notification policy unavailable, notifications disabled for this call: %s", exc)
    except Exception:
        logger.exception("notification policy read failed, notifications disabled for this call")
    return DISABLED_POLICY


def parse_policy(raw: str) -> NotificationPolicy:
    try:
        return NotificationPolicy.model_validate_json(raw)
    except ValidationError as exc:
        raise PolicyUnavailableError(f"invalid notification policy: {exc.error_count()} error(s)") from exc
