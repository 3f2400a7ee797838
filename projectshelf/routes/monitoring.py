"""
Monitoring Routes

Liveness and readiness checks plus the Prometheus scrape endpoint.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from projectshelf.config import settings
from projectshelf.database import get_db
from projectshelf.services.aggregate_counter import UPSERT_DIALECTS
from projectshelf.services.container import AnalyticsServices, get_analytics_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Monitoring"])

APP_START_TIME = time.time()


class HealthStatus(BaseModel):
    status: str
    timestamp: str
    version: str
    uptime_seconds: float


class ReadinessStatus(BaseModel):
    status: str
    timestamp: str
    checks: dict[str, dict[str, Any]]


@router.get("/health", response_model=HealthStatus)
async def health_check() -> HealthStatus:
    """Liveness check. Does not touch the database."""
    return HealthStatus(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=settings.app_version,
        uptime_seconds=round(time.time() - APP_START_TIME, 2),
    )


async def _check_database(db: AsyncSession) -> dict[str, Any]:
    start = time.perf_counter()
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database readiness check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy", "latency_ms": round((time.perf_counter() - start) * 1000, 2)}


def _check_aggregates(db: AsyncSession, services: AnalyticsServices) -> dict[str, Any]:
    """Daily rollups need a backend with INSERT ... ON CONFLICT."""
    dialect_name = db.get_bind().dialect.name
    check = {"dialect": dialect_name, "timezone": services.aggregate_counter.timezone.key}
    if dialect_name not in UPSERT_DIALECTS:
        return {"status": "unhealthy", "error": "atomic increment unsupported", **check}
    return {"status": "healthy", **check}


@router.get("/ready", response_model=ReadinessStatus)
async def readiness_check(
    response: Response,
    db: AsyncSession = Depends(get_db),
    services: AnalyticsServices = Depends(get_analytics_services),
) -> ReadinessStatus:
    """Readiness check. Answers 503 until the database can take recordings."""
    checks = {
        "database": await _check_database(db),
        "aggregates": _check_aggregates(db, services),
    }
    ready = all(check["status"] == "healthy" for check in checks.values())
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return ReadinessStatus(
        status="ready" if ready else "not_ready",
        timestamp=datetime.now(timezone.utc).isoformat(),
        checks=checks,
    )


@router.get("/metrics")
async def prometheus_metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
