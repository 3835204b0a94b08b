"""Admin endpoints: source configuration CRUD and feed URL checks."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from party_feed.api.dependencies import get_registry
from party_feed.api.models import (
    CreateSourceRequest,
    ErrorResponse,
    FeedCheckRequest,
    FeedCheckResponse,
    SourceItem,
    SourcesListResponse,
    UpdateSourceRequest,
)
from party_feed.ingestion.http_client import FetchError, SourceError
from party_feed.ingestion.schemas import Platform, Scope
from party_feed.ingestion.validator import InvalidFormat
from party_feed.sources.schemas import SourceConfig
from party_feed.sources.service import Conflict, SourceConfigRegistry, SourceNotFound

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/admin")


def _parse_scope(value: str) -> Scope:
    try:
        return Scope(value.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown scope: {value!r}",
        ) from None


def _bad_request(e: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@router.post(
    "/rss-check",
    response_model=FeedCheckResponse,
    responses={502: {"model": ErrorResponse}},
    summary="Fetch a candidate feed URL and validate it",
)
async def rss_check(
    body: FeedCheckRequest,
    registry: SourceConfigRegistry = Depends(get_registry),
) -> JSONResponse:
    try:
        platform = Platform.parse(body.platform) if body.platform else None
    except ValueError as e:
        raise _bad_request(e)

    try:
        validation = await registry.validate_feed_url(body.url, platform)
    except InvalidFormat as e:
        response = FeedCheckResponse(
            is_valid=False,
            platform=platform.value if platform else None,
            error=str(e),
        )
        return JSONResponse(content=response.model_dump(by_alias=True))
    except FetchError as e:
        logger.warning("rss_check_fetch_failed", url=body.url, error=str(e))
        detail = str(e)
        if isinstance(e, SourceError):
            detail = f"Feed returned HTTP {e.status_code}"
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)

    response = FeedCheckResponse(
        is_valid=validation.is_valid,
        format=validation.format,
        item_count=validation.item_count,
        platform=validation.platform.value if validation.platform else None,
        flags=validation.flags,
        warnings=validation.warnings,
    )
    return JSONResponse(content=response.model_dump(by_alias=True))


@router.get(
    "/sources",
    response_model=SourcesListResponse,
    summary="List source configurations",
)
async def list_sources(
    scope: str | None = Query(default=None, description="Filter by scope"),
    owner_ref: str | None = Query(default=None, description="Politician id or prefecture code"),
    active_only: bool = Query(default=False, description="Only active sources"),
    registry: SourceConfigRegistry = Depends(get_registry),
) -> SourcesListResponse:
    resolved = _parse_scope(scope) if scope else None
    sources = await registry.list_sources(scope=resolved, owner_ref=owner_ref, active_only=active_only)
    items = [SourceItem.from_source(s) for s in sources]
    return SourcesListResponse(sources=items, total=len(items))


@router.post(
    "/sources",
    response_model=SourceItem,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Register a source",
)
async def create_source(
    body: CreateSourceRequest,
    registry: SourceConfigRegistry = Depends(get_registry),
) -> SourceItem:
    scope = _parse_scope(body.scope)
    try:
        source = SourceConfig(
            scope=scope,
            platform=Platform.parse(body.platform),
            account_url=body.account_url,
            owner_ref=body.owner_ref,
            account_name=body.account_name or "",
            rss_url=body.rss_url,
            scraping_url=body.scraping_url,
            rss_feed_id=body.rss_feed_id,
            prefecture=body.prefecture,
            is_active=body.is_active,
        )
        created = await registry.create(source, channel_id=body.channel_id)
    except Conflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise _bad_request(e)

    logger.info("source_created", source_id=created.id, label=created.label)
    return SourceItem.from_source(created)


@router.patch(
    "/sources/{source_id}",
    response_model=SourceItem,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Partially update a source",
)
async def update_source(
    source_id: int,
    body: UpdateSourceRequest,
    registry: SourceConfigRegistry = Depends(get_registry),
) -> SourceItem:
    changes = body.model_dump(exclude_unset=True)
    channel_id = changes.pop("channel_id", None)
    try:
        updated = await registry.update(source_id, channel_id=channel_id, **changes)
    except SourceNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Conflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise _bad_request(e)

    logger.info("source_updated", source_id=source_id, fields=sorted(changes))
    return SourceItem.from_source(updated)


@router.delete(
    "/sources/{source_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Remove a source (soft by default)",
)
async def delete_source(
    source_id: int,
    purge: bool = Query(default=False, description="Delete the row instead of soft removal"),
    registry: SourceConfigRegistry = Depends(get_registry),
) -> None:
    try:
        await registry.delete(source_id, purge=purge)
    except SourceNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Conflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    logger.info("source_removed", source_id=source_id, purge=purge)
