from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fakeredis import FakeAsyncRedis, FakeServer
from fakes import (
    CONVERSATION_ID,
    KEY_PREFIX,
    SEEKER_ID,
    FakeMessageStore,
    FakePresence,
    FixedClock,
    RecordingSender,
)

from chat_notifier.services.delayed_jobs import DelayedJobStore
from chat_notifier.services.throttle import ThrottleGate


@pytest.fixture
def redis_server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def redis(redis_server: FakeServer) -> FakeAsyncRedis:
    return FakeAsyncRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def throttle(redis: FakeAsyncRedis) -> ThrottleGate:
    return ThrottleGate(redis, key_prefix=KEY_PREFIX)


@pytest.fixture
def job_store(redis: FakeAsyncRedis) -> DelayedJobStore:
    return DelayedJobStore(redis, key_prefix=KEY_PREFIX)


@pytest.fixture
def presence() -> FakePresence:
    return FakePresence()


@pytest.fixture
def messages() -> FakeMessageStore:
    store = FakeMessageStore()
    store.add_recipient(CONVERSATION_ID, SEEKER_ID)
    return store


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()
