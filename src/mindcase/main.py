"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from mindcase.ads.router import router as ads_router
from mindcase.auth.router import router as auth_router
from mindcase.config import get_settings
from mindcase.database import close_db, init_db
from mindcase.health.router import router as health_router
from mindcase.middleware import setup_middleware
from mindcase.payments.router import router as payments_router
from mindcase.progress.router import router as progress_router
from mindcase.redis_client import close_redis, init_redis

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url, settings.redis_timeout_seconds)
    logger.info("app_started", environment=settings.environment, version=settings.app_version)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Raises RuntimeError when no usable token signing secret is configured.
    """
    settings = get_settings()
    settings.require_jwt_secret()

    app = FastAPI(
        title="MindCase API",
        description="Accounts, token wallet, minigame sessions and entitlements for MindCase",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(auth_router)
    app.include_router(progress_router)
    app.include_router(ads_router)
    app.include_router(payments_router)

    return app


app = create_app()
