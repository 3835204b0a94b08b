"""
Heuristic RSS/Atom validation used when admins register a feed.

The checks are textual: the validator looks for the document markers and
counts entry tags without parsing the XML.
"""

import re
from dataclasses import dataclass, field

from party_feed.config.settings import get_settings
from party_feed.ingestion.schemas import Platform

_RSS_MARKERS = ("<rss", "<channel>")
_ATOM_MARKERS = ("<feed", "<entry>")

# Opening <item> / <entry> tags, attributes allowed, self-closing excluded
_ITEM_TAG = re.compile(r"<(?:item|entry)(?:\s[^<>]*)?(?<!/)>")


class InvalidFormat(Exception):
    """Payload is not recognizable as RSS or Atom."""


@dataclass(frozen=True)
class PlausibilityCheck:
    """Advisory marker check for one platform."""

    flag: str
    markers: tuple[str, ...]
    warning: str


@dataclass
class FeedValidation:
    """Result of validating one feed payload."""

    format: str  # "rss" or "atom"
    item_count: int
    platform: Platform | None = None
    flags: dict[str, bool] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return True

    def to_dict(self) -> dict:
        return {
            "isValid": self.is_valid,
            "format": self.format,
            "itemCount": self.item_count,
            "platform": self.platform.value if self.platform else None,
            "flags": dict(self.flags),
            "warnings": list(self.warnings),
        }


def _checks_for(platform: Platform) -> list[PlausibilityCheck]:
    if platform.is_twitter:
        bridges = tuple(get_settings().twitter_bridge_domains)
        return [
            PlausibilityCheck(
                flag="hasTwitterContent",
                markers=("twitter.com", "x.com", *bridges),
                warning="Feed does not reference twitter.com, x.com or a known RSS bridge",
            )
        ]
    if platform.is_youtube:
        return [
            PlausibilityCheck(
                flag="hasYouTubeContent",
                markers=("youtube.com", "yt:videoId", "media:group"),
                warning="Feed has no YouTube video ids or media namespace",
            )
        ]
    if platform is Platform.NOTE:
        return [PlausibilityCheck("hasNoteContent", ("note.com",), "Feed does not reference note.com")]
    if platform is Platform.NICONICO:
        return [
            PlausibilityCheck(
                "hasNiconicoContent", ("nicovideo.jp", "nico.ms"), "Feed does not reference nicovideo.jp"
            )
        ]
    if platform is Platform.INSTAGRAM:
        return [PlausibilityCheck("hasInstagramContent", ("instagram.com",), "Feed does not reference instagram.com")]
    if platform is Platform.FACEBOOK:
        return [PlausibilityCheck("hasFacebookContent", ("facebook.com",), "Feed does not reference facebook.com")]
    return []


def detect_format(text: str) -> str:
    """
    Classify a payload as "rss" or "atom".

    Raises:
        InvalidFormat: If neither RSS nor Atom markers are present
    """
    if "<rss" in text:
        return "rss"
    if "<feed" in text:
        return "atom"
    if "<channel>" in text:
        return "rss"
    if "<entry>" in text:
        return "atom"
    raise InvalidFormat("Content is not a valid RSS or Atom feed")


def count_items(text: str) -> int:
    """Number of <item> plus <entry> opening tags."""
    return len(_ITEM_TAG.findall(text))


class FeedValidator:
    """Validates feed payloads and reports platform advisory flags."""

    def validate(self, text: str, platform: Platform | str | None = None) -> FeedValidation:
        """
        Validate a raw feed payload.

        Args:
            text: Feed body
            platform: Declared platform of the source, enables advisory checks

        Returns:
            FeedValidation with format, item count and advisory flags

        Raises:
            InvalidFormat: If the payload is neither RSS nor Atom
        """
        feed_format = detect_format(text)
        result = FeedValidation(format=feed_format, item_count=count_items(text))

        if platform is not None:
            result.platform = Platform.parse(platform)
            lowered = text.lower()
            for check in _checks_for(result.platform):
                ok = any(marker.lower() in lowered for marker in check.markers)
                result.flags[check.flag] = ok
                if not ok:
                    result.warnings.append(check.warning)

        if result.item_count == 0:
            result.warnings.append("Feed contains no entries")

        return result
