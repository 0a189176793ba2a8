"""Health check endpoints for monitoring system status."""
import time
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import text

from pdp_coach.api.routes.dependencies import RunRegistry, get_run_registry
from pdp_coach.config.settings import get_settings
from pdp_coach.core.logging import get_logger
from pdp_coach.db.database import get_engine

router = APIRouter(prefix="/health", tags=["health"])
logger = get_logger(__name__)

_started_at = time.time()


class DatabaseHealthStatus(BaseModel):
    """Health status of the database connection."""

    status: str = Field(..., description="healthy or unhealthy")
    response_time_ms: float = Field(..., description="Database query response time in milliseconds")


class HealthCheckResponse(BaseModel):
    status: str = Field(..., description="Overall system status")
    app: str
    timestamp: str = Field(..., description="ISO 8601 timestamp of check")
    uptime_seconds: float
    active_runs: int = Field(..., description="Session runs held in memory")


async def check_database_health() -> tuple[bool, float]:
    try:
        start_time = time.time()
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True, (time.time() - start_time) * 1000
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return False, 0.0


@router.get("", response_model=HealthCheckResponse)
async def health_check(registry: RunRegistry = Depends(get_run_registry)):
    """Liveness check; does not touch the database."""
    return HealthCheckResponse(
        status="healthy",
        app=get_settings().app_name,
        timestamp=datetime.utcnow().isoformat() + "Z",
        uptime_seconds=round(time.time() - _started_at, 2),
        active_runs=len(registry),
    )


@router.get("/db", response_model=DatabaseHealthStatus)
async def database_health_check():
    healthy, response_time = await check_database_health()
    return DatabaseHealthStatus(
        status="healthy" if healthy else "unhealthy",
        response_time_ms=round(response_time, 2),
    )
