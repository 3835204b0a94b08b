"""Parse fetched RSS/Atom payloads into RawEntry records with feedparser."""

import logging
from datetime import datetime, timezone

import feedparser

from party_feed.ingestion.schemas import Platform, RawEntry
from party_feed.ingestion.validator import InvalidFormat

logger = logging.getLogger(__name__)


def parse_feed(
    payload: str | bytes,
    platform: Platform,
    source_url: str | None = None,
    limit: int | None = None,
) -> list[RawEntry]:
    """
    Parse a feed body into raw entries, newest first as the feed lists them.

    Args:
        payload: Feed body as fetched
        platform: Platform of the source the feed belongs to
        source_url: Feed URL, kept on each entry for diagnostics
        limit: Maximum number of entries to return

    Raises:
        InvalidFormat: If feedparser finds neither a feed version nor entries
    """
    parsed = feedparser.parse(payload)

    if not parsed.entries and parsed.bozo and not parsed.get("version"):
        reason = parsed.get("bozo_exception")
        raise InvalidFormat(f"Unparseable feed from {source_url}: {reason}")

    if parsed.bozo:
        logger.debug(f"Feed {source_url} parsed with warnings: {parsed.get('bozo_exception')}")

    entries = parsed.entries[:limit] if limit else parsed.entries
    fetched_at = datetime.now(timezone.utc)
    feed_meta = dict(parsed.get("feed", {}))

    return [
        RawEntry(
            platform=platform,
            data=dict(entry),
            source_url=source_url,
            fetched_at=fetched_at,
            extras={"feed_link": feed_meta.get("link")},
        )
        for entry in entries
    ]
