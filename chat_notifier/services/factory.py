from __future__ import annotations

from functools import lru_cache

from chat_notifier.core.config import Settings, get_settings
from chat_notifier.jobs.due_jobs import DueJobProcessor
from chat_notifier.services.delayed_jobs import DelayedJobStore
from chat_notifier.services.dispatcher import NotificationDispatcher
from chat_notifier.services.policy_store import RepositoryPolicyStore
from chat_notifier.services.presence import RedisPresenceOracle
from chat_notifier.services.redis_client import get_redis
from chat_notifier.services.repository import get_repository
from chat_notifier.services.sender import HttpMessageSender
from chat_notifier.services.throttle import ThrottleGate


def build_components(settings: Settings) -> tuple[NotificationDispatcher, DueJobProcessor]:
    redis = get_redis()
    repository = get_repository()
    policy_store = RepositoryPolicyStore(repository)
    presence = RedisPresenceOracle(redis, key_prefix=settings.presence_key_prefix)
    throttle = ThrottleGate(redis, key_prefix=settings.redis_key_prefix)
    jobs = DelayedJobStore(
        redis,
        key_prefix=settings.redis_key_prefix,
        dedup_grace_seconds=settings.dedup_grace_seconds,
        dedup_min_ttl_seconds=settings.dedup_min_ttl_seconds,
    )
    sender = HttpMessageSender(
        settings.mailer_base_url,
        api_key=settings.mailer_api_key,
        timeout_seconds=settings.mailer_timeout_seconds,
    )
    dispatcher = NotificationDispatcher(
        policy_store=policy_store,
        presence=presence,
        throttle=throttle,
        jobs=jobs,
        messages=repository,
        sender=sender,
        snippet_max_length=settings.snippet_max_length,
    )
    processor = DueJobProcessor(
        jobs=jobs,
        policy_store=policy_store,
        presence=presence,
        throttle=throttle,
        messages=repository,
        sender=sender,
        batch_size=settings.poll_batch_size,
        requeue_failed=settings.requeue_failed_jobs,
        requeue_delay_seconds=settings.requeue_delay_seconds,
        requeue_max_attempts=settings.requeue_max_attempts,
    )
    return dispatcher, processor


@lru_cache
def get_dispatcher() -> NotificationDispatcher:
    dispatcher, _ = build_components(get_settings())
    return dispatcher


@lru_cache
def get_policy_store() -> RepositoryPolicyStore:
    return RepositoryPolicyStore(get_repository())
