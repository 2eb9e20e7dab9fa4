from __future__ import annotations

from typing import Protocol

from redis.asyncio import Redis


class PresenceOracle(Protocol):
    async def is_online(self, user_id: str) -> bool: ...


class RedisPresenceOracle:
    """Reads the socket registry the real-time gateway keeps in Redis.

    The gateway writes ``socket:{user_id}`` with a TTL on connect and deletes it
    on disconnect; this side only reads.
    """

    def __init__(self, redis: Redis, *, key_prefix: str = "socket") -> None:
        self._redis = redis
        self._key_prefix = key_prefix

    async def is_online(self, user_id: str) -> bool:
        socket_id = await self._redis.get(f"{self._key_prefix}:{user_id}")
        return bool(socket_id)
