"""FastAPI application entry point for the freelance engagement escrow service.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, create tables (dev mode).
    2. Running: Serve the REST API at /api/v1/*.
    3. Shutdown: Close database and Redis connections gracefully.

Run with:
    uvicorn freelance_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from redis.exceptions import RedisError

from freelance_escrow.api.middleware import setup_middleware
from freelance_escrow.api.routes.engagements import router as engagements_router
from freelance_escrow.api.routes.health import router as health_router
from freelance_escrow.config import get_settings
from freelance_escrow.infrastructure.database.engine import close_db, init_db
from freelance_escrow.infrastructure.redis_client import close_redis, init_redis
from freelance_escrow.logging_config import get_logger, setup_logging
from freelance_escrow.services.payment_service import build_payment_gateway

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from freelance_escrow.domain.gateway_protocol import PaymentGateway


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    await init_db()

    try:
        await init_redis()
    except (RedisError, OSError) as exc:
        if settings.payment_ledger == "redis":
            raise
        logger.warning("app.redis_unavailable", error=str(exc))

    logger.info(
        "app.started",
        host=settings.app_host,
        port=settings.app_port,
        payment_provider=settings.payment_provider,
    )

    yield

    logger.info("app.shutting_down")
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app(gateway: PaymentGateway | None = None) -> FastAPI:
    """Application factory: creates and configures the FastAPI app.

    Args:
        gateway: Payment gateway to use; defaults to the one PAYMENT_PROVIDER selects.
    """
    settings = get_settings()

    app = FastAPI(
        title="Freelance Escrow",
        description=(
            "Milestone-based engagement workflow with escrowed payments "
            "for freelance marketplaces."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.payment_gateway = gateway or build_payment_gateway(settings)

    setup_middleware(app)

    app.include_router(health_router)
    app.include_router(engagements_router)

    return app


# The app instance used by Uvicorn
app = create_app()
