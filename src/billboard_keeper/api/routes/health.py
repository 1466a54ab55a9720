"""Health check endpoint.

Verifies connectivity to the database and (when the redis queue is in use)
Redis, and returns structured status for load balancers and monitoring.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text

from billboard_keeper.api.deps import get_runtime
from billboard_keeper.infrastructure.redis_client import get_redis
from billboard_keeper.logging_config import get_logger
from billboard_keeper.runtime import Runtime  # noqa: TC001
from billboard_keeper.schemas.agreement import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)

VERSION = "0.1.0"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(runtime: Runtime = Depends(get_runtime)) -> HealthResponse:
    """Check connectivity to the database and Redis."""
    db_status = "unknown"
    redis_status = "not_used"
    backend = runtime.settings.job_queue_backend

    try:
        async with runtime.session_factory() as session:
            await session.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    if backend == "redis":
        try:
            await get_redis().ping()
            redis_status = "healthy"
        except Exception as exc:
            redis_status = f"unhealthy: {exc}"
            logger.error("health.redis_check_failed", error=str(exc))

    healthy = db_status == "healthy" and redis_status in ("healthy", "not_used")

    return HealthResponse(
        status="ok" if healthy else "degraded",
        version=VERSION,
        database=db_status,
        redis=redis_status,
        queue_backend=backend,
    )
