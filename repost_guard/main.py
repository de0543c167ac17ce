from contextlib import asynccontextmanager
import asyncio
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from repost_guard.api.router import api_router
from repost_guard.core.config import Settings, get_settings
from repost_guard.core.telemetry import configure_logging, instrument_api, setup_telemetry, shutdown_telemetry
from repost_guard.jobs.retention_sweeper import run_retention_sweeper
from repost_guard.services.dispatch import Dispatcher, LoggingNotifier, Notifier, WebhookNotifier
from repost_guard.services.tracker import RepostTracker

logger = logging.getLogger(__name__)


def build_dispatcher(settings: Settings) -> Dispatcher:
    notifier: Notifier
    if settings.notification_webhook_url:
        notifier = WebhookNotifier(
            settings.notification_webhook_url,
            timeout_seconds=settings.notification_timeout_seconds,
        )
    else:
        notifier = LoggingNotifier()
    return Dispatcher(notifier, message_link_template=settings.message_link_template)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging()
    telemetry_runtime = setup_telemetry(app, settings)
    logger.info("telemetry enabled=%s exporting=%s", telemetry_runtime.enabled, telemetry_runtime.exporting)

    tracker: RepostTracker | None = None
    sweeper: asyncio.Task[None] | None = None
    stop_event = asyncio.Event()
    try:
        # The store must be loaded before any message is ingested.
        tracker = RepostTracker.from_settings(settings)
        await tracker.init()
        app.state.tracker = tracker
        app.state.dispatcher = build_dispatcher(settings)
        sweeper = asyncio.create_task(
            run_retention_sweeper(
                tracker.sweep,
                interval_seconds=settings.sweep_interval_seconds,
                max_backoff_seconds=settings.sweep_max_backoff_seconds,
                stop_event=stop_event,
            )
        )
        yield
    finally:
        stop_event.set()
        if sweeper is not None:
            await sweeper
        if tracker is not None:
            await tracker.close()
        app.state.tracker = None
        app.state.dispatcher = None
        shutdown_telemetry(app, telemetry_runtime)


app = FastAPI(title="repost-guard", lifespan=lifespan)
instrument_api(app)


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
