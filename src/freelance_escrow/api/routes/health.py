"""Health check endpoint.

Verifies connectivity to the database and, when the payment ledger lives
there, to Redis. Used by container healthchecks and load balancers.
"""

from __future__ import annotations

from fastapi import APIRouter
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from freelance_escrow.config import get_settings
from freelance_escrow.infrastructure.database.engine import get_engine
from freelance_escrow.infrastructure.redis_client import get_redis, is_redis_initialized
from freelance_escrow.logging_config import get_logger
from freelance_escrow.schemas.engagement import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check() -> HealthResponse:
    settings = get_settings()
    db_status = "unknown"
    redis_status = "unknown"

    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except (SQLAlchemyError, OSError) as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    redis_required = settings.payment_ledger == "redis"
    if is_redis_initialized():
        try:
            await get_redis().ping()
            redis_status = "healthy"
        except (RedisError, OSError) as exc:
            redis_status = f"unhealthy: {exc}"
            logger.error("health.redis_check_failed", error=str(exc))
    elif redis_required:
        redis_status = "unhealthy: not connected"
    else:
        redis_status = "not_required"

    redis_ok = redis_status in ("healthy", "not_required")
    overall = "ok" if db_status == "healthy" and redis_ok else "degraded"

    return HealthResponse(status=overall, database=db_status, redis=redis_status)
