from __future__ import annotations

import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class ThrottleGate:
    """Fixed-window send counter per (conversation, recipient).

    The counter is incremented on every attempt, allowed or not, so an
    over-limit burst keeps the window full instead of resetting it.
    """

    def __init__(self, redis: Redis, *, key_prefix: str) -> None:
        self._redis = redis
        self._key_prefix = key_prefix

    def key_for(self, conversation_id: str, recipient_id: str) -> str:
        return f"{self._key_prefix}:throttle:{conversation_id}:{recipient_id}"

    async def try_consume(
        self,
        conversation_id: str,
        recipient_id: str,
        *,
        max_per_window: int,
        window_minutes: int,
    ) -> bool:
        key = self.key_for(conversation_id, recipient_id)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.ttl(key)
                count, ttl = await pipe.execute()
            # -1 means no expiry: the counter INCR just created, or one whose EXPIRE never landed.
            if int(ttl) == -1:
                await self._redis.expire(key, window_minutes * 60)
        except RedisError:
            logger.exception(
                "throttle check failed conversation=%s recipient=%s; treating as not allowed",
                conversation_id,
                recipient_id,
            )
            return False

        allowed = int(count) <= max_per_window
        if not allowed:
            logger.info(
                "notification throttled conversation=%s recipient=%s count=%s max=%s",
                conversation_id,
                recipient_id,
                count,
                max_per_window,
            )
        return allowed
