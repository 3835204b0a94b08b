"""
Pydantic request and response models for the HTTP API.
"""

from pydantic import BaseModel, ConfigDict, Field

from party_feed.sources.schemas import SourceConfig


class ErrorResponse(BaseModel):
    """Response model for errors."""

    detail: str = Field(..., description="Error message")
    error_type: str = Field(default="error", description="Error type")


class ComponentHealth(BaseModel):
    status: str
    latency_ms: float | None = None
    details: dict = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(..., description="Overall service status: healthy or unhealthy")
    version: str
    components: dict[str, ComponentHealth] = Field(default_factory=dict)


# Scrape trigger


class ScrapeRequest(BaseModel):
    """Body of POST /api/scrape. Unknown or missing types run everything."""

    type: str | None = Field(default=None, description="news, events, sns or all")


# Feed check


class FeedCheckRequest(BaseModel):
    url: str = Field(..., min_length=1, description="Candidate feed URL")
    platform: str | None = Field(default=None, description="Expected platform")


class FeedCheckResponse(BaseModel):
    """Validation outcome; field names follow the admin UI contract."""

    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(serialization_alias="isValid")
    format: str | None = None
    item_count: int = Field(default=0, serialization_alias="itemCount")
    platform: str | None = None
    flags: dict[str, bool] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None


# Source admin


class CreateSourceRequest(BaseModel):
    """Request model for registering a source."""

    scope: str = Field(..., description="party_hq, prefecture or politician")
    platform: str = Field(..., description="Platform name or alias (x, yt, ...)")
    account_url: str = Field(..., min_length=1)
    owner_ref: str | None = Field(
        default=None,
        description="Politician id or prefecture code; omitted for party_hq",
    )
    account_name: str | None = None
    rss_url: str | None = None
    scraping_url: str | None = None
    rss_feed_id: str | None = None
    prefecture: str | None = None
    is_active: bool = True
    channel_id: str | None = Field(
        default=None,
        description="YouTube channel id used to derive the feed URL",
    )


class UpdateSourceRequest(BaseModel):
    """Partial update; only fields that are set are applied."""

    platform: str | None = None
    account_url: str | None = None
    account_name: str | None = None
    rss_url: str | None = None
    scraping_url: str | None = None
    rss_feed_id: str | None = None
    prefecture: str | None = None
    is_active: bool | None = None
    channel_id: str | None = None


class SourceItem(BaseModel):
    id: int
    scope: str
    platform: str
    owner_ref: str | None = None
    account_name: str
    account_url: str
    rss_url: str | None = None
    scraping_url: str | None = None
    rss_feed_id: str | None = None
    prefecture: str | None = None
    is_active: bool
    removed_at: str | None = None
    last_scraped_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_source(cls, s: SourceConfig) -> "SourceItem":
        return cls(
            id=s.id,
            scope=s.scope.value,
            platform=s.platform.value,
            owner_ref=s.owner_ref,
            account_name=s.account_name,
            account_url=s.account_url,
            rss_url=s.rss_url,
            scraping_url=s.scraping_url,
            rss_feed_id=s.rss_feed_id,
            prefecture=s.prefecture,
            is_active=s.is_active,
            removed_at=s.removed_at.isoformat() if s.removed_at else None,
            last_scraped_at=s.last_scraped_at.isoformat() if s.last_scraped_at else None,
            created_at=s.created_at.isoformat() if s.created_at else None,
            updated_at=s.updated_at.isoformat() if s.updated_at else None,
        )


class SourcesListResponse(BaseModel):
    sources: list[SourceItem]
    total: int
