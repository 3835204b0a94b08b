"""Data models and field rules for scrape-target configuration."""

import re
from dataclasses import dataclass, fields, replace
from datetime import datetime
from urllib.parse import urlsplit

from party_feed.ingestion.schemas import PREFECTURE_CODES, Platform, Scope

YOUTUBE_FEED_URL = "https://www.youtube.com/feeds/videos.xml?channel_id={channel_id}"
RSS_APP_FEED_URL = "https://rss.app/feeds/{feed_id}.xml"
NICONICO_USER_FEED_URL = "https://www.nicovideo.jp/user/{user_id}/video?rss=2.0"

_CHANNEL_ID_QUERY = re.compile(r"[?&]channel_id=([^&#]+)")
_CHANNEL_ID_PATH = re.compile(r"/channel/([^/?#]+)")
_NICONICO_USER = re.compile(r"nicovideo\.jp/user/(\d+)")

# Fields an update may change; identity and bookkeeping fields are excluded
UPDATABLE_FIELDS = frozenset({
    "platform",
    "account_name",
    "account_url",
    "rss_url",
    "scraping_url",
    "rss_feed_id",
    "prefecture",
    "is_active",
})


class InvalidSourceConfig(ValueError):
    """A source configuration is missing required fields or is malformed."""


@dataclass
class SourceConfig:
    """
    A scrape target: one account on one platform, owned by one scope.

    ``owner_ref`` is the politician id for politician sources and the
    prefecture code for prefectural-branch sources; it is None for party
    headquarters accounts.
    """

    scope: Scope
    platform: Platform
    account_url: str
    owner_ref: str | None = None
    account_name: str = ""
    rss_url: str | None = None
    scraping_url: str | None = None
    rss_feed_id: str | None = None
    prefecture: str | None = None
    is_active: bool = True
    id: int | None = None
    removed_at: datetime | None = None
    last_scraped_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_removed(self) -> bool:
        return self.removed_at is not None

    @property
    def label(self) -> str:
        """Short human-readable name for logs and run messages."""
        return f"{self.scope.value}:{self.platform.value}:{self.account_name or self.account_url}"

    def with_changes(self, **changes) -> "SourceConfig":
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidSourceConfig(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        return replace(self, **changes)


SOURCE_FIELDS = tuple(f.name for f in fields(SourceConfig))


def extract_channel_id(*urls: str | None) -> str | None:
    """Find a YouTube channel id in ``?channel_id=`` or ``/channel/<id>`` form."""
    for url in urls:
        if not url:
            continue
        match = _CHANNEL_ID_QUERY.search(url) or _CHANNEL_ID_PATH.search(url)
        if match:
            return match.group(1)
    return None


def youtube_feed_url(channel_id: str) -> str:
    return YOUTUBE_FEED_URL.format(channel_id=channel_id)


def derive_account_name(account_url: str) -> str:
    """Last path segment of the account URL, or its host when there is none."""
    parts = urlsplit(account_url)
    segments = [s for s in parts.path.split("/") if s]
    if segments:
        return segments[-1].lstrip("@")
    return parts.hostname or account_url


def derive_feed_url(source: SourceConfig) -> str | None:
    """
    Feed URL for a source, explicit or derived from its account details.

    Derivation rules: YouTube-backed platforms use the channel id found in
    any of the source URLs; RSS-bridge twitter accounts use their bridge
    feed id; note accounts expose ``/rss``; niconico users have a video feed.
    """
    if source.rss_url:
        return source.rss_url
    platform = source.platform
    if platform.is_youtube:
        channel_id = extract_channel_id(source.scraping_url, source.account_url)
        return youtube_feed_url(channel_id) if channel_id else None
    if platform.is_twitter and source.rss_feed_id:
        return RSS_APP_FEED_URL.format(feed_id=source.rss_feed_id)
    if platform is Platform.NOTE and "note.com" in (urlsplit(source.account_url).hostname or ""):
        return source.account_url.rstrip("/") + "/rss"
    if platform is Platform.NICONICO:
        match = _NICONICO_USER.search(source.account_url)
        if match:
            return NICONICO_USER_FEED_URL.format(user_id=match.group(1))
    return None


def _is_http_url(value: str | None) -> bool:
    if not value:
        return False
    parts = urlsplit(value)
    return parts.scheme in ("http", "https") and bool(parts.hostname)


def validate_source(source: SourceConfig) -> None:
    """
    Check required fields and scope rules.

    Raises:
        InvalidSourceConfig: Describing the first problem found
    """
    if not isinstance(source.platform, Platform):
        raise InvalidSourceConfig("platform is required")
    if not _is_http_url(source.account_url):
        raise InvalidSourceConfig("account_url must be an http(s) URL")
    for name in ("rss_url", "scraping_url"):
        value = getattr(source, name)
        if value is not None and not _is_http_url(value):
            raise InvalidSourceConfig(f"{name} must be an http(s) URL")

    if source.scope is Scope.PARTY_HQ:
        if source.owner_ref is not None:
            raise InvalidSourceConfig("party_hq sources have no owner")
    elif not source.owner_ref:
        raise InvalidSourceConfig(f"{source.scope.value} sources require owner_ref")

    if source.scope is Scope.PREFECTURE and source.owner_ref not in PREFECTURE_CODES:
        raise InvalidSourceConfig(f"Unknown prefecture code: {source.owner_ref!r}")
    if source.prefecture is not None and source.prefecture not in PREFECTURE_CODES:
        raise InvalidSourceConfig(f"Unknown prefecture code: {source.prefecture!r}")

    if not derive_feed_url(source) and not source.scraping_url:
        raise InvalidSourceConfig(
            "No feed can be resolved: set rss_url or scraping_url"
            + (" or a channel URL" if source.platform.is_youtube else "")
        )


def prepare_source(source: SourceConfig, channel_id: str | None = None) -> SourceConfig:
    """
    Fill derived fields, then validate.

    Applies the YouTube rule (explicit channel id or one found in the source
    URLs becomes the rss_url) and derives a missing account name.
    """
    if not isinstance(source.platform, Platform):
        raise InvalidSourceConfig("platform is required")
    if source.platform.is_youtube and not source.rss_url:
        channel_id = channel_id or extract_channel_id(source.scraping_url, source.account_url)
        if channel_id:
            source = replace(source, rss_url=youtube_feed_url(channel_id))
    if not source.account_name and source.account_url:
        source = replace(source, account_name=derive_account_name(source.account_url))
    validate_source(source)
    return source

