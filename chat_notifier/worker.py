from __future__ import annotations

import asyncio
import logging
import random

from opentelemetry import trace

from chat_notifier.core.config import get_settings
from chat_notifier.core.telemetry import (
    configure_logging,
    setup_worker_telemetry,
    shutdown_worker_telemetry,
)
from chat_notifier.jobs.due_jobs import DueJobProcessor
from chat_notifier.services.factory import build_components
from chat_notifier.services.redis_client import close_redis
from chat_notifier.services.repository import get_repository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def poll_due_jobs(
    processor: DueJobProcessor,
    *,
    poll_interval_seconds: float,
    max_backoff_seconds: float,
) -> None:
    """Run poll ticks until cancelled."""
    backoff = poll_interval_seconds
    while True:
        try:
            with tracer.start_as_current_span("notifier.poll_cycle"):
                result = await processor.run_once()
            if result.claimed:
                logger.info(
                    "processed due jobs claimed=%s failed=%s requeued=%s statuses=%s",
                    result.claimed,
                    result.failed,
                    result.requeued,
                    dict(result.statuses),
                )
            backoff = poll_interval_seconds
            await asyncio.sleep(poll_interval_seconds)
        except Exception as exc:
            jitter = random.uniform(0.0, 0.5)
            sleep_for = min(backoff * (2.0 + jitter), max_backoff_seconds)
            logger.exception("poll iteration failed: %s; retry in %.1fs", exc, sleep_for)
            await asyncio.sleep(sleep_for)
            backoff = sleep_for


async def run_worker() -> None:
    settings = get_settings()
    configure_logging()
    telemetry_runtime = setup_worker_telemetry(settings)
    _, processor = build_components(settings)

    try:
        await poll_due_jobs(
            processor,
            poll_interval_seconds=settings.poll_interval_seconds,
            max_backoff_seconds=settings.max_backoff_seconds,
        )
    finally:
        await close_redis()
        await get_repository().close()
        shutdown_worker_telemetry(telemetry_runtime)


if __name__ == "__main__":
    asyncio.run(run_worker())
