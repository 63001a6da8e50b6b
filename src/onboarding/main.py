from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from src.onboarding.api.middlewares import setup_middlewares
from src.onboarding.api.v1.router import api_router
from src.onboarding.core.background import get_background_runner
from src.onboarding.core.config import get_settings
from src.onboarding.core.db import dispose_engine
from src.onboarding.core.exceptions import setup_exception_handlers
from src.onboarding.core.health import setup_health_endpoint, setup_metrics
from src.onboarding.core.logging import get_logger, setup_logging
from src.onboarding.core.redis import close_redis
from src.onboarding.core.shutdown import request_tracker
from src.onboarding.crm import close_crm_client

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan - startup and shutdown."""
    settings = get_settings()
    setup_logging(settings.debug)
    logger.info("Starting application", app_name=settings.app_name, env=settings.app_env)
    if settings.is_production and not settings.crm_webhook_public_key:
        logger.error("CRM_WEBHOOK_PUBLIC_KEY not set - all CRM webhooks will be rejected")

    yield

    grace_period = settings.shutdown_grace_period
    request_tracker.start_shutdown()
    await request_tracker.wait_for_drain(timeout=grace_period)

    # Best-effort work scheduled by the drained requests
    runner = get_background_runner()
    if runner.pending_count:
        logger.info("Waiting for background tasks", count=runner.pending_count)
        await runner.drain(timeout=grace_period)

    logger.info("Closing connections...")
    await close_crm_client()
    await close_redis()
    await dispose_engine()
    logger.info("Shutdown complete")


OPENAPI_TAGS = [
    {"name": "users", "description": "Admin invitations and account management"},
    {"name": "invitations", "description": "Invitation acceptance and admin management"},
    {"name": "webhooks", "description": "Signed CRM webhooks"},
    {"name": "audit", "description": "Audit trail for reconciliation"},
]


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="User onboarding with invitation emails and CRM synchronization",
        version="0.1.0",
        openapi_tags=OPENAPI_TAGS,
        lifespan=lifespan,
        docs_url="/docs" if settings.enable_openapi else None,
        redoc_url="/redoc" if settings.enable_openapi else None,
        openapi_url="/openapi.json" if settings.enable_openapi else None,
    )

    setup_exception_handlers(app)
    setup_middlewares(app, settings)
    app.include_router(api_router)
    setup_metrics(app)
    setup_health_endpoint(app)

    return app


app = create_app()
