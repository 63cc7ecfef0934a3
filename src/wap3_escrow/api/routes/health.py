"""Health check endpoint.

Verifies connectivity to the ledger, the audit database and Redis, returns
structured status. Used by Docker healthchecks, load balancers, and
monitoring systems.
"""

from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import text

from wap3_escrow.infrastructure.database.engine import _get_engine
from wap3_escrow.infrastructure.ledger import get_ledger
from wap3_escrow.infrastructure.redis_client import get_redis
from wap3_escrow.logging_config import get_logger
from wap3_escrow.schemas.escrow import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check() -> HealthResponse:
    """Check connectivity to the ledger, the database and Redis."""
    ledger_status = "unknown"
    db_status = "unknown"
    redis_status = "unknown"

    # Ledger
    try:
        ledger_status = "healthy" if await get_ledger().ping() else "unreachable"
    except Exception as exc:
        ledger_status = f"unhealthy: {exc}"
        logger.error("health.ledger_check_failed", error=str(exc))

    # Audit database
    try:
        async with _get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    # Redis
    try:
        await get_redis().ping()
        redis_status = "healthy"
    except Exception as exc:
        redis_status = f"unhealthy: {exc}"
        logger.error("health.redis_check_failed", error=str(exc))

    healthy = (ledger_status, db_status, redis_status) == ("healthy",) * 3
    return HealthResponse(
        status="ok" if healthy else "degraded",
        version="0.1.0",
        ledger=ledger_status,
        database=db_status,
        redis=redis_status,
    )
