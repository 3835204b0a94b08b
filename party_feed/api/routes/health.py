"""
Health check endpoint.
"""

import time

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from party_feed import __version__
from party_feed.api.dependencies import get_database
from party_feed.api.models import ComponentHealth, HealthResponse
from party_feed.storage.database import Database

router = APIRouter()
logger = structlog.get_logger(__name__)


async def _check_database(db: Database) -> ComponentHealth:
    """Check database connectivity and measure latency."""
    start = time.perf_counter()
    try:
        healthy = await db.health_check()
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status="healthy" if healthy else "unhealthy",
            latency_ms=round(latency_ms, 2),
        )
    except Exception as e:
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status="unhealthy",
            latency_ms=round(latency_ms, 2),
            details={"error": str(e)},
        )


@router.get("/health", response_model=HealthResponse, summary="Service health")
async def health(db: Database = Depends(get_database)) -> JSONResponse:
    database = await _check_database(db)
    status = "healthy" if database.status == "healthy" else "unhealthy"
    if status != "healthy":
        logger.warning("health_check_failed", database=database.details)
    response = HealthResponse(status=status, version=__version__, components={"database": database})
    return JSONResponse(
        status_code=200 if status == "healthy" else 503,
        content=response.model_dump(),
    )
