"""Turn a SourceConfig into something the fetcher can retrieve."""

import re

from bs4 import BeautifulSoup

from party_feed.ingestion.http_client import FetchKind, FetchTarget
from party_feed.sources.schemas import (
    InvalidSourceConfig,
    SourceConfig,
    derive_feed_url,
    extract_channel_id,
    youtube_feed_url,
)

_CHANNEL_ID_JSON = re.compile(r'"(?:channelId|externalId)"\s*:\s*"(UC[\w-]{10,})"')


def resolve_fetch_target(source: SourceConfig) -> FetchTarget:
    """
    Pick the URL to fetch for a source.

    A resolvable feed URL always wins. Otherwise the scraping URL is used:
    as a page to discover the channel feed for YouTube-backed platforms, and
    as a feed for everything else.

    Raises:
        InvalidSourceConfig: Neither a feed nor a scraping URL is resolvable
    """
    feed_url = derive_feed_url(source)
    if feed_url:
        return FetchTarget(feed_url, source.platform, FetchKind.FEED)
    if source.scraping_url:
        kind = FetchKind.PAGE if source.platform.is_youtube else FetchKind.FEED
        return FetchTarget(source.scraping_url, source.platform, kind)
    raise InvalidSourceConfig(f"No resolvable feed for source {source.id} ({source.label})")


def discover_youtube_feed(html: str) -> str | None:
    """
    Find a channel feed URL on a YouTube channel page.

    Looks for the page's RSS alternate link first, then for the channel id
    in meta tags, the canonical URL or the embedded page data.
    """
    soup = BeautifulSoup(html, "html.parser")

    alternate = soup.find("link", attrs={"rel": "alternate", "type": "application/rss+xml"})
    if alternate is not None and alternate.get("href"):
        return alternate["href"]

    meta = soup.find("meta", attrs={"itemprop": "channelId"}) or soup.find(
        "meta", attrs={"itemprop": "identifier"}
    )
    if meta is not None and meta.get("content"):
        return youtube_feed_url(meta["content"])

    canonical = soup.find("link", attrs={"rel": "canonical"})
    channel_id = extract_channel_id(canonical.get("href") if canonical is not None else None)
    if channel_id:
        return youtube_feed_url(channel_id)

    match = _CHANNEL_ID_JSON.search(html)
    return youtube_feed_url(match.group(1)) if match else None
