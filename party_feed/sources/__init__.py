"""Sources: registry of scrape targets for party, politician and prefectural accounts."""

from party_feed.sources.repository import SourceConfigRepository
from party_feed.sources.resolver import resolve_fetch_target
from party_feed.sources.schemas import (
    InvalidSourceConfig,
    SourceConfig,
    derive_feed_url,
    prepare_source,
    youtube_feed_url,
)
from party_feed.sources.service import (
    Conflict,
    SourceConfigRegistry,
    SourceNotFound,
    validate_feed_url,
)

__all__ = [
    "Conflict",
    "InvalidSourceConfig",
    "SourceConfig",
    "SourceConfigRegistry",
    "SourceConfigRepository",
    "SourceNotFound",
    "derive_feed_url",
    "prepare_source",
    "resolve_fetch_target",
    "validate_feed_url",
    "youtube_feed_url",
]
