from contextlib import asynccontextmanager, suppress
import asyncio
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from chat_notifier.api.router import api_router
from chat_notifier.core.config import get_settings
from chat_notifier.core.telemetry import (
    TelemetryRuntime,
    configure_logging,
    setup_api_telemetry,
    shutdown_api_telemetry,
)
from chat_notifier.services.factory import build_components, get_dispatcher, get_policy_store
from chat_notifier.services.redis_client import close_redis
from chat_notifier.services.repository import get_repository
from chat_notifier.worker import poll_due_jobs

settings = get_settings()
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    poller_task: asyncio.Task | None = None
    if settings.run_poller_in_api:
        _, processor = build_components(settings)
        poller_task = asyncio.create_task(
            poll_due_jobs(
                processor,
                poll_interval_seconds=settings.poll_interval_seconds,
                max_backoff_seconds=settings.max_backoff_seconds,
            ),
            name="due-job-poller",
        )
        logger.info("due-job poller started interval=%.1fs", settings.poll_interval_seconds)
    try:
        yield
    finally:
        if poller_task is not None:
            poller_task.cancel()
            with suppress(asyncio.CancelledError):
                await poller_task
        if get_dispatcher.cache_info().currsize:
            await get_dispatcher().drain()
        get_dispatcher.cache_clear()
        get_policy_store.cache_clear()
        if _telemetry_runtime is not None:
            shutdown_api_telemetry(app, _telemetry_runtime)
        await close_redis()
        await get_repository().close()
        get_repository.cache_clear()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
_telemetry_runtime = setup_api_telemetry(app, settings)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)
