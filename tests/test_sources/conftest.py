"""Shared fixtures for sources tests."""

from datetime import datetime, timezone

import pytest

from party_feed.ingestion.schemas import Platform, Scope
from party_feed.sources.schemas import SourceConfig


@pytest.fixture
def sample_source() -> SourceConfig:
    """A prefectural-branch X account served through the RSS bridge."""
    return SourceConfig(
        scope=Scope.PREFECTURE,
        owner_ref="13",
        platform=Platform.TWITTER,
        account_url="https://x.com/dpfp_tokyo",
        rss_feed_id="tokyo123",
    )


@pytest.fixture
def sample_db_row() -> dict:
    """A dict mimicking an asyncpg Record for a source."""
    return {
        "id": 7,
        "scope": "prefecture",
        "owner_ref": "13",
        "platform": "twitter",
        "account_name": "dpfp_tokyo",
        "account_url": "https://x.com/dpfp_tokyo",
        "rss_url": None,
        "scraping_url": None,
        "rss_feed_id": "tokyo123",
        "prefecture": None,
        "is_active": True,
        "removed_at": None,
        "last_scraped_at": None,
        "created_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
        "updated_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
    }


@pytest.fixture
def youtube_db_row(sample_db_row) -> dict:
    return {
        **sample_db_row,
        "id": 8,
        "scope": "party_hq",
        "owner_ref": None,
        "platform": "youtube",
        "account_name": "UCold",
        "account_url": "https://www.youtube.com/channel/UCold",
        "rss_url": "https://www.youtube.com/feeds/videos.xml?channel_id=UCold",
        "rss_feed_id": None,
    }
