"""
Tweet text recovery and cleanup.

RSS bridges truncate tweet text in the item title, so when enabled the full
text is looked up on the public syndication endpoint.
"""

import html
import logging
import re

from party_feed.config.settings import get_settings
from party_feed.ingestion.http_client import FeedFetcher, FetchError

logger = logging.getLogger(__name__)

_TWEET_ID = re.compile(r"status(?:es)?/(\d+)")
_TRAILING_PIC = re.compile(r"https?://pic\.twitter\.com/\S+$", re.MULTILINE)
_TRAILING_TCO = re.compile(r"\s*https?://t\.co/\S+$", re.MULTILINE)
_LINE_END_SPACE = re.compile(r"[\t ]+$", re.MULTILINE)
_SPACE_RUN = re.compile(r"[\t ]{2,}")
_NEWLINE_RUN = re.compile(r"\n{3,}")


def extract_tweet_id(url: str | None) -> str | None:
    """Return the numeric status id from a tweet URL, if any."""
    if not url:
        return None
    match = _TWEET_ID.search(url)
    return match.group(1) if match else None


def normalize_tweet_text(text: str | None) -> str:
    """
    Clean tweet text for display.

    Unescapes HTML entities, drops trailing media / t.co short links, trims
    whitespace runs and keeps at most one blank line between paragraphs.
    """
    if not text:
        return ""
    out = html.unescape(text)
    out = _TRAILING_PIC.sub("", out)
    out = _TRAILING_TCO.sub("", out)
    out = _LINE_END_SPACE.sub("", out)
    out = _SPACE_RUN.sub(" ", out)
    out = _NEWLINE_RUN.sub("\n\n", out)
    return out.strip()


async def fetch_full_text(fetcher: FeedFetcher, tweet_id: str) -> str | None:
    """
    Look up a tweet's untruncated text.

    Returns None when the lookup fails or the tweet has no text; the
    truncated bridge text is still usable in that case.
    """
    settings = get_settings()
    try:
        data = await fetcher.fetch_json(
            settings.tweet_syndication_url,
            params={"id": tweet_id, "lang": "ja"},
        )
    except FetchError as e:
        logger.debug(f"Full text lookup failed for tweet {tweet_id}: {e}")
        return None

    if not isinstance(data, dict):
        return None
    raw = data.get("full_text") or data.get("text")
    if not raw:
        return None
    return normalize_tweet_text(str(raw))
