from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DedupKey:
    conversation_id: str
    recipient_id: str


@dataclass(slots=True)
class DelayedJob:
    conversation_id: str
    recipient_id: str
    message_id: str
    created_at: str
    attempts: int = 0

    @property
    def dedup_key(self) -> DedupKey:
        return DedupKey(self.conversation_id, self.recipient_id)

    def to_json(self) -> str:
        payload = asdict(self)
        return json.dumps(
            {
                "conversationId": payload["conversation_id"],
                "recipientId": payload["recipient_id"],
                "messageId": payload["message_id"],
                "createdAt": payload["created_at"],
                "attempts": payload["attempts"],
            },
            sort_keys=True,
        )

    @classmethod
    def from_json(cls, raw: str) -> DelayedJob:
        data: dict[str, Any] = json.loads(raw)
        return cls(
            conversation_id=str(data["conversationId"]),
            recipient_id=str(data["recipientId"]),
            message_id=str(data["messageId"]),
            created_at=str(data.get("createdAt") or ""),
            attempts=int(data.get("attempts") or 0),
        )


def to_epoch_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


class DelayedJobStore:
    """Due-time ordered "check again later" jobs, at most one per dedup key.

    Layout: a sorted set ``{prefix}:zset`` scored by due time in epoch
    milliseconds whose members are the JSON payloads, plus one marker key
    ``{prefix}:pending:{conversation}:{recipient}`` per outstanding job.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        key_prefix: str,
        dedup_grace_seconds: int = 300,
        dedup_min_ttl_seconds: int = 60,
    ) -> None:
        self._redis = redis
        self._key_prefix = key_prefix
        self._dedup_grace_ms = dedup_grace_seconds * 1000
        self._dedup_min_ttl_ms = dedup_min_ttl_seconds * 1000

    @property
    def index_key(self) -> str:
        return f"{self._key_prefix}:zset"

    def dedup_key_for(self, key: DedupKey) -> str:
        return f"{self._key_prefix}:pending:{key.conversation_id}:{key.recipient_id}"

    async def enqueue_if_absent(self, job: DelayedJob, due_at: datetime, *, now: datetime) -> bool:
        due_ms = to_epoch_ms(due_at)
        # The marker outlives the due time so a lost index entry only blocks the pair until it lapses.
        ttl_ms = max(due_ms - to_epoch_ms(now), self._dedup_min_ttl_ms) + self._dedup_grace_ms
        marker = self.dedup_key_for(job.dedup_key)
        try:
            created = await self._redis.set(marker, job.message_id, nx=True, px=ttl_ms)
            if not created:
                logger.debug(
                    "delayed job already pending conversation=%s recipient=%s",
                    job.conversation_id,
                    job.recipient_id,
                )
                return False
            await self._redis.zadd(self.index_key, {job.to_json(): due_ms})
        except RedisError:
            logger.exception(
                "delayed job enqueue failed conversation=%s recipient=%s",
                job.conversation_id,
                job.recipient_id,
            )
            return False
        return True

    async def pop_due(self, now: datetime, max_batch: int) -> list[DelayedJob]:
        """Claim up to ``max_batch`` due jobs in ascending due order.

        An entry belongs to the caller whose ZREM removed it, so concurrent
        pollers never process the same entry twice.
        """
        members = await self._redis.zrangebyscore(
            self.index_key,
            "-inf",
            to_epoch_ms(now),
            start=0,
            num=max_batch,
        )
        claimed: list[DelayedJob] = []
        for member in members:
            removed = await self._redis.zrem(self.index_key, member)
            if not removed:
                continue
            try:
                claimed.append(DelayedJob.from_json(member))
            except (ValueError, KeyError, TypeError):
                logger.warning("dropping malformed delayed job payload: %r", member)
        return claimed

    async def release_dedup(self, job: DelayedJob) -> bool:
        """Delete the pair's marker if it still belongs to ``job``.

        Once a marker lapses, a newer message may own the pair; its marker
        stays so that job remains the only outstanding one.
        """
        marker = self.dedup_key_for(job.dedup_key)
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(marker)
                owner = await pipe.get(marker)
                if owner != job.message_id:
                    return False
                pipe.multi()
                pipe.delete(marker)
                await pipe.execute()
            except WatchError:
                return False
        return True

    async def pending_count(self) -> int:
        return int(await self._redis.zcard(self.index_key))
