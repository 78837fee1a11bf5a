"""
Health Check Endpoints

Liveness and readiness probes. Readiness requires PostgreSQL; Redis is
reported but optional because the state store and slot lock degrade
without it.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.config import settings
from app.infra.database import check_db_health
from app.infra.redis import check_redis_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

# Track application start time for uptime calculation
_start_time: Optional[datetime] = None


def set_start_time() -> None:
    """Set application start time. Called once on startup."""
    global _start_time
    _start_time = datetime.now(timezone.utc)


def get_uptime_seconds() -> Optional[float]:
    """Get application uptime in seconds."""
    if _start_time is None:
        return None
    return (datetime.now(timezone.utc) - _start_time).total_seconds()


class HealthResponse(BaseModel):
    """Basic health check response."""
    status: str
    timestamp: datetime
    environment: str


class ReadyResponse(BaseModel):
    """Readiness check response with dependency status."""
    status: str
    timestamp: datetime
    checks: dict[str, str]


class LiveResponse(BaseModel):
    """Liveness check response."""
    status: str
    timestamp: datetime
    uptime_seconds: Optional[float] = None


async def _probe(name: str, check: Callable[[], Awaitable[bool]]) -> str:
    try:
        return "ok" if await check() else "failed"
    except Exception as e:
        logger.error(f"Readiness check {name} raised: {e}")
        return "error"


@router.get("", response_model=HealthResponse, summary="Basic health check")
async def health() -> HealthResponse:
    """Returns 200 while the process is running; no dependency checks."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        environment=settings.app_env,
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness probe",
    responses={503: {"description": "Database unavailable"}},
)
async def ready() -> ReadyResponse:
    """
    Readiness probe.

    Checks:
    - database (required)
    - redis (degraded mode when down)
    - calendar OAuth client configured
    """
    checks = {
        "database": await _probe("database", check_db_health),
        "redis": await _probe("redis", check_redis_health),
        "calendar_oauth": "ok" if settings.google_client_id and settings.google_client_secret else "missing",
    }

    if checks["database"] != "ok":
        logger.warning(f"Readiness check failed: {checks}")
        response = ReadyResponse(status="not_ready", timestamp=datetime.now(timezone.utc), checks=checks)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )

    degraded = any(v != "ok" for v in checks.values())
    return ReadyResponse(
        status="degraded" if degraded else "ready",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )


@router.get("/live", response_model=LiveResponse, summary="Liveness probe")
async def live() -> LiveResponse:
    """Returns 200 while the process is alive."""
    return LiveResponse(
        status="alive",
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=get_uptime_seconds(),
    )
