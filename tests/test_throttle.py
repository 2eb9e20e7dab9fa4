from __future__ import annotations

import asyncio

from fakeredis import FakeAsyncRedis, FakeServer

from chat_notifier.services.throttle import ThrottleGate


def test_throttle_refuses_call_beyond_window_limit(throttle: ThrottleGate) -> None:
    async def scenario() -> list[bool]:
        return [
            await throttle.try_consume("application-1", "seeker-1", max_per_window=3, window_minutes=60)
            for _ in range(4)
        ]

    assert asyncio.run(scenario()) == [True, True, True, False]


def test_throttle_sets_window_ttl_on_first_increment_only(throttle: ThrottleGate, redis: FakeAsyncRedis) -> None:
    key = throttle.key_for("application-1", "seeker-1")

    async def scenario() -> tuple[int, int, str | None]:
        await throttle.try_consume("application-1", "seeker-1", max_per_window=3, window_minutes=60)
        first_ttl = await redis.ttl(key)
        await redis.expire(key, 100)
        await throttle.try_consume("application-1", "seeker-1", max_per_window=3, window_minutes=60)
        return first_ttl, await redis.ttl(key), await redis.get(key)

    first_ttl, second_ttl, count = asyncio.run(scenario())
    assert 3590 <= first_ttl <= 3600
    assert second_ttl <= 100
    assert count == "2"


def test_throttle_gives_counter_without_expiry_a_window(throttle: ThrottleGate, redis: FakeAsyncRedis) -> None:
    key = throttle.key_for("application-1", "seeker-1")

    async def scenario() -> tuple[bool, int, str | None]:
        await redis.set(key, "1")
        allowed = await throttle.try_consume("application-1", "seeker-1", max_per_window=3, window_minutes=10)
        return allowed, await redis.ttl(key), await redis.get(key)

    allowed, ttl, count = asyncio.run(scenario())
    assert allowed is True
    assert 590 <= ttl <= 600
    assert count == "2"


def test_throttle_keeps_counting_refused_attempts(throttle: ThrottleGate, redis: FakeAsyncRedis) -> None:
    async def scenario() -> str | None:
        for _ in range(5):
            await throttle.try_consume("application-1", "seeker-1", max_per_window=1, window_minutes=5)
        return await redis.get(throttle.key_for("application-1", "seeker-1"))

    assert asyncio.run(scenario()) == "5"


def test_throttle_allows_again_after_window_lapses(throttle: ThrottleGate, redis: FakeAsyncRedis) -> None:
    key = throttle.key_for("application-1", "seeker-1")

    async def scenario() -> tuple[bool, bool]:
        for _ in range(3):
            await throttle.try_consume("application-1", "seeker-1", max_per_window=3, window_minutes=60)
        refused = await throttle.try_consume("application-1", "seeker-1", max_per_window=3, window_minutes=60)
        await redis.pexpire(key, 1)
        await asyncio.sleep(0.01)
        allowed = await throttle.try_consume("application-1", "seeker-1", max_per_window=3, window_minutes=60)
        return refused, allowed

    refused, allowed = asyncio.run(scenario())
    assert refused is False
    assert allowed is True


def test_throttle_keys_are_scoped_per_conversation_and_recipient(throttle: ThrottleGate) -> None:
    async def scenario() -> tuple[bool, bool, bool]:
        await throttle.try_consume("application-1", "seeker-1", max_per_window=1, window_minutes=60)
        same = await throttle.try_consume("application-1", "seeker-1", max_per_window=1, window_minutes=60)
        other_conversation = await throttle.try_consume("application-2", "seeker-1", max_per_window=1, window_minutes=60)
        other_recipient = await throttle.try_consume("application-1", "seeker-2", max_per_window=1, window_minutes=60)
        return same, other_conversation, other_recipient

    assert asyncio.run(scenario()) == (False, True, True)


def test_throttle_treats_store_outage_as_not_allowed() -> None:
    server = FakeServer()
    server.connected = False
    gate = ThrottleGate(FakeAsyncRedis(server=server, decode_responses=True), key_prefix="chat:notif")

    allowed = asyncio.run(gate.try_consume("application-1", "seeker-1", max_per_window=3, window_minutes=60))

    assert allowed is False
