"""Scrape trigger endpoint."""

import structlog
from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from party_feed.api.dependencies import get_orchestrator
from party_feed.api.models import ErrorResponse, ScrapeRequest
from party_feed.services.scrape_orchestrator import ScrapeOrchestrator

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post(
    "/api/scrape",
    responses={500: {"model": ErrorResponse}},
    summary="Run a scrape run synchronously",
)
async def trigger_scrape(
    body: ScrapeRequest | None = Body(default=None),
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """
    Run news, events, sns or all categories and return the run result.

    Responds 200 when at least one category succeeded, 500 otherwise; the
    body carries the full result either way.
    """
    run_type = body.type if body else None
    result = await orchestrator.run(run_type)
    status_code = 200 if result.success else 500
    if not result.success:
        logger.warning("scrape_run_failed", run_type=result.run_type, message=result.message)
    return JSONResponse(status_code=status_code, content=result.to_response())
