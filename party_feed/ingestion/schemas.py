"""
Canonical data shapes for the ingestion pipeline.

Every feed entry, whatever the platform, is normalized into a NormalizedPost
before it reaches the dedup store or the timeline fan-out.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Reserved prefecture code meaning "applies nationwide"
NATIONWIDE_PREFECTURE = "48"

# JIS X 0401 prefecture codes, plus the nationwide wildcard
PREFECTURE_CODES = frozenset(f"{i:02d}" for i in range(1, 49))


class Platform(str, Enum):
    """Source platforms the pipeline knows how to normalize."""

    TWITTER = "twitter"
    TWITTER2 = "twitter2"  # second account served through the RSS bridge
    YOUTUBE = "youtube"
    ICEAGE = "iceage"  # YouTube-backed channel
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    NOTE = "note"
    NICONICO = "niconico"
    ELECTION = "election"
    WEBSITE = "website"

    @classmethod
    def parse(cls, value: "str | Platform") -> "Platform":
        """
        Resolve a platform name, accepting the aliases used by admins.

        Raises:
            ValueError: If the name is not a known platform
        """
        if isinstance(value, Platform):
            return value
        key = (value or "").strip().lower()
        key = _PLATFORM_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown platform: {value!r}") from None

    @property
    def is_twitter(self) -> bool:
        return self in (Platform.TWITTER, Platform.TWITTER2)

    @property
    def is_youtube(self) -> bool:
        return self in (Platform.YOUTUBE, Platform.ICEAGE)


_PLATFORM_ALIASES = {
    "x": "twitter",
    "x2": "twitter2",
    "nicovideo": "niconico",
    "yt": "youtube",
}


class Scope(str, Enum):
    """Organizational level a source belongs to."""

    PARTY_HQ = "party_hq"
    POLITICIAN = "politician"
    PREFECTURE = "prefecture"


class PostDomain(str, Enum):
    """Which family of timelines an item belongs to."""

    NEWS = "news"
    EVENT = "event"
    SNS = "sns"


@dataclass
class RawEntry:
    """
    One platform-native record from a single fetch.

    ``data`` is the feedparser entry (or the dict produced by the website
    scraper). Raw entries are never persisted.
    """

    platform: Platform
    data: dict[str, Any]
    source_url: str | None = None
    fetched_at: datetime | None = None
    extras: dict[str, Any] = field(default_factory=dict)


class NormalizedPost(BaseModel):
    """
    Canonical post record shared by every platform.

    Immutable: once stored, timeline entries reference it by id and never
    change it.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    dedup_key: str = Field(..., min_length=1, description="Deterministic identity used for dedup")
    dedup_basis: str = Field(default="url", description="url, native_id or fingerprint")
    domain: PostDomain = Field(default=PostDomain.SNS)
    platform: Platform
    scope: Scope
    source_id: int | None = Field(default=None, description="Originating SourceConfig id")
    owner_ref: str | None = Field(
        default=None,
        description="Politician id or prefecture code; None for party_hq",
    )
    title: str = Field(default="", max_length=500)
    content: str = Field(default="")
    media_urls: tuple[str, ...] = Field(default=())
    thumbnail_url: str | None = None
    post_url: str
    published_at: datetime
    engagement_count: int = Field(default=0, ge=0)
    hashtags: frozenset[str] = Field(default_factory=frozenset)
    mentions: frozenset[str] = Field(default_factory=frozenset)
    category: str | None = None
    prefecture: str | None = None
    native_id: str | None = None
    attributes: dict[str, Any] = Field(
        default_factory=dict,
        description="Domain-specific extras (event date, location, ...)",
    )

    # Assigned by the store after insertion
    id: int | None = None

    @field_validator("post_url")
    @classmethod
    def validate_post_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"post_url must be absolute http(s): {v!r}")
        return v

    @field_validator("prefecture")
    @classmethod
    def validate_prefecture(cls, v: str | None) -> str | None:
        if v is not None and v not in PREFECTURE_CODES:
            raise ValueError(f"Unknown prefecture code: {v!r}")
        return v
