"""Health check endpoints."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Request

from index_engine.core.config import settings
from index_engine.core.logging import get_logger
from index_engine.schemas.common import HealthResponse


router = APIRouter(prefix="/health")

logger = get_logger("health")


@router.get(
    "",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health status of the API and its dependencies.",
)
async def health_check(request: Request) -> HealthResponse:
    database = getattr(request.app.state, "database", None)
    cache = getattr(request.app.state, "cache", None)
    checks = {
        "database": await database.healthcheck() if database is not None else False,
        "cache": await cache.healthcheck() if cache is not None else False,
    }

    if all(checks.values()):
        status = "healthy"
    elif checks["database"]:
        status = "degraded"  # DB ok but cache down
    else:
        status = "unhealthy"

    return HealthResponse(
        status=status,
        version=settings.app_version,
        timestamp=datetime.now(UTC),
        checks=checks,
    )
