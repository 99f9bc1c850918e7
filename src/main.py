"""
TicketBridge - integration gateway for the logistics ticketing system.

Partners push issues in over /api/v1/integrations/issues; ticket events go back
out as signed webhooks. This module wires the HTTP app and owns the lifetime of
the retry worker and the fire-and-forget delivery tasks.
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from src.api.router import api_router
from src.config import Settings, get_settings
from src.utils.logging import CORRELATION_HEADER, configure_structured_logging, ensure_correlation_id

logger = logging.getLogger("ticketbridge")

APP_TITLE = "TicketBridge"
SHUTDOWN_DRAIN_SECONDS = 10.0


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds the request's correlation ID to the log context and echoes it back."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = ensure_correlation_id(request.headers.get(CORRELATION_HEADER))
        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = cid
        return response


def _warn_on_insecure_config(settings: Settings) -> None:
    if not settings.admin_jwt_secret:
        logger.warning("ADMIN_JWT_SECRET not set - admin tokens are verified with APP_SECRET_KEY")
    if not settings.encryption_key:
        logger.warning("ENCRYPTION_KEY not set - new webhook secrets are stored unencrypted")
    if settings.allow_internal_ingestion:
        logger.warning(
            "ALLOW_INTERNAL_INGESTION enabled - requests without an API key are accepted as %s",
            settings.internal_client_name,
        )


def _init_sentry(settings: Settings) -> None:
    if not settings.sentry_dsn:
        return
    import sentry_sdk
    try:
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.app_env, traces_sample_rate=0.1)
    except Exception as e:
        logger.warning("Sentry disabled, init failed: %s", str(e))
    else:
        logger.info("Sentry enabled")


async def _stop_background_work(worker_tasks: list[asyncio.Task]) -> None:
    for task in worker_tasks:
        task.cancel()
    await asyncio.gather(*worker_tasks, return_exceptions=True)

    # Deliveries cut off here stay PENDING; the retry worker resumes them after restart
    from src.utils import background
    still_running = await background.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
    if still_running:
        logger.warning("Cancelling %d background tasks at shutdown", still_running)
        await background.cancel_all()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("%s starting (env=%s)", APP_TITLE, settings.app_env)
    _warn_on_insecure_config(settings)
    _init_sentry(settings)

    from src.workers.webhook_retry import run_webhook_retry_worker
    worker_tasks = [asyncio.create_task(run_webhook_retry_worker(), name="webhook_retry_worker")]

    yield

    logger.info("%s stopping", APP_TITLE)
    await _stop_background_work(worker_tasks)

    from src.database import dispose_engine
    from src.utils.heartbeat import close_redis
    await dispose_engine()
    await close_redis()
    logger.info("%s stopped", APP_TITLE)


def _allowed_origins(settings: Settings) -> list[str]:
    extra = [o.strip() for o in settings.cors_allowed_origins.split(",") if o.strip()]
    return [settings.app_base_url, *extra]


def create_app() -> FastAPI:
    settings = get_settings()
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title=APP_TITLE,
        description="Idempotent issue ingestion and signed webhook delivery",
        version="1.0.0",
        lifespan=lifespan,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", CORRELATION_HEADER],
        expose_headers=[CORRELATION_HEADER],
    )
    # Added last so it wraps CORS and tags preflight responses too
    application.add_middleware(CorrelationIdMiddleware)
    application.include_router(api_router)
    return application


app = create_app()
