"""
Platform-specific field mapping into NormalizedPost.

Each platform is described by one PlatformExtractor row in
PLATFORM_EXTRACTORS. The row says how to pull content, media, thumbnail,
native id and engagement out of that platform's entry shape; everything
else (timestamps, URL checks, hashtags, dedup keys) is shared. Supporting a
new platform means adding a Platform member and a row here.
"""

import html
import logging
import re
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import parse_qs, urlsplit

from bs4 import BeautifulSoup
from pydantic import ValidationError

from party_feed.ingestion.deduplication import compute_dedup_key
from party_feed.ingestion.schemas import (
    NATIONWIDE_PREFECTURE,
    NormalizedPost,
    Platform,
    PostDomain,
    RawEntry,
    Scope,
)
from party_feed.ingestion.tweet_text import extract_tweet_id, normalize_tweet_text

logger = logging.getLogger(__name__)

_HASHTAG = re.compile(r"(?<![\w&])[#＃](\w+)")
_MENTION = re.compile(r"(?<![\w@])@(\w{1,30})")
_URL = re.compile(r"https?://\S+")
_IMAGE_TYPE = re.compile(r"^image/(?:jpeg|jpg|png|gif|webp)$", re.IGNORECASE)

YOUTUBE_THUMBNAIL = "https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"
YOUTUBE_WATCH = "https://www.youtube.com/watch?v={video_id}"

MAX_TITLE_LENGTH = 200


class NormalizationSkip(Exception):
    """An entry is structurally unusable and is dropped on purpose."""

    def __init__(self, reason: str, platform: Platform | None = None):
        super().__init__(reason)
        self.reason = reason
        self.platform = platform


# ── Shared extractors ────────────────────────────────────────


def html_to_text(fragment: str | None) -> str:
    """Strip markup from an HTML fragment and collapse whitespace."""
    if not fragment:
        return ""
    soup = BeautifulSoup(fragment, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    text = html.unescape(soup.get_text())
    lines = [" ".join(line.split()) for line in text.splitlines()]
    return "\n".join(line for line in lines if line).strip()


def _body_html(entry: Mapping[str, Any]) -> str:
    content = entry.get("content")
    if content and isinstance(content, list):
        value = content[0].get("value", "")
        if value:
            return value
    return entry.get("summary", "") or ""


def _title(entry: Mapping[str, Any]) -> str:
    return html_to_text(entry.get("title", ""))


def _images_in_html(fragment: str) -> list[str]:
    if not fragment or "<img" not in fragment:
        return []
    soup = BeautifulSoup(fragment, "html.parser")
    urls = []
    for img in soup.find_all("img"):
        src = img.get("src") or img.get("data-src")
        if not src and img.get("srcset"):
            src = img["srcset"].split(",")[0].strip().split(" ")[0]
        if src and src.startswith(("http://", "https://")):
            urls.append(src)
    return urls


def generic_media(entry: Mapping[str, Any]) -> list[str]:
    """
    Image URLs in feed order of preference.

    media:content / media:thumbnail first, then image enclosures, then
    images embedded in the description.
    """
    urls: list[str] = []
    for key in ("media_content", "media_thumbnail"):
        for media in entry.get(key) or []:
            url = media.get("url")
            medium = media.get("medium") or ""
            mtype = media.get("type") or ""
            is_image = medium == "image" or mtype.startswith("image") or not (medium or mtype)
            if url and (key == "media_thumbnail" or is_image):
                urls.append(url)
    for enclosure in entry.get("enclosures") or []:
        if _IMAGE_TYPE.match(enclosure.get("type") or "") and enclosure.get("href"):
            urls.append(enclosure["href"])
    for link in entry.get("links") or []:
        if link.get("rel") == "enclosure" and _IMAGE_TYPE.match(link.get("type") or "") and link.get("href"):
            urls.append(link["href"])
    urls.extend(_images_in_html(_body_html(entry)))
    return list(dict.fromkeys(urls))


def first_media(entry: Mapping[str, Any], media: list[str]) -> str | None:
    return media[0] if media else None


def _link(entry: Mapping[str, Any]) -> str | None:
    link = entry.get("link")
    if link:
        return link.strip()
    for candidate in entry.get("links") or []:
        if candidate.get("rel", "alternate") == "alternate" and candidate.get("href"):
            return candidate["href"].strip()
    return None


def _published_at(entry: Mapping[str, Any]) -> datetime | None:
    value = entry.get("published_at")
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    for key in ("published_parsed", "updated_parsed", "created_parsed"):
        parsed = entry.get(key)
        if isinstance(parsed, time.struct_time):
            return datetime(*parsed[:6], tzinfo=timezone.utc)
    return None


def _no_id(entry: Mapping[str, Any]) -> str | None:
    return None


def _no_engagement(entry: Mapping[str, Any]) -> int:
    return 0


def _pattern_id(pattern: str) -> Callable[[Mapping[str, Any]], str | None]:
    regex = re.compile(pattern)

    def extract(entry: Mapping[str, Any]) -> str | None:
        match = regex.search(_link(entry) or "")
        return match.group(1) if match else None

    return extract


def extract_hashtags(text: str) -> frozenset[str]:
    return frozenset(_HASHTAG.findall(_URL.sub(" ", text)))


def extract_mentions(text: str) -> frozenset[str]:
    return frozenset(_MENTION.findall(_URL.sub(" ", text)))


# ── Platform-specific extractors ─────────────────────────────


def _twitter_content(entry: Mapping[str, Any]) -> str:
    full_text = entry.get("full_text")
    if full_text:
        return normalize_tweet_text(full_text)
    return normalize_tweet_text(_title(entry) or html_to_text(_body_html(entry)))


def _twitter_id(entry: Mapping[str, Any]) -> str | None:
    return extract_tweet_id(_link(entry))


def _youtube_id(entry: Mapping[str, Any]) -> str | None:
    video_id = entry.get("yt_videoid")
    if video_id:
        return video_id
    link = _link(entry) or ""
    query = parse_qs(urlsplit(link).query)
    if query.get("v"):
        return query["v"][0]
    entry_id = entry.get("id") or ""
    if entry_id.startswith("yt:video:"):
        return entry_id.removeprefix("yt:video:")
    return None


def _youtube_media(entry: Mapping[str, Any]) -> list[str]:
    video_id = _youtube_id(entry)
    if video_id:
        return [YOUTUBE_THUMBNAIL.format(video_id=video_id)]
    return generic_media(entry)


def _youtube_engagement(entry: Mapping[str, Any]) -> int:
    stats = entry.get("media_statistics") or {}
    try:
        return int(stats.get("views", 0))
    except (TypeError, ValueError):
        return 0


def _youtube_link(entry: Mapping[str, Any]) -> str | None:
    link = _link(entry)
    if link:
        return link
    video_id = _youtube_id(entry)
    return YOUTUBE_WATCH.format(video_id=video_id) if video_id else None


def _article_content(entry: Mapping[str, Any]) -> str:
    return html_to_text(_body_html(entry)) or _title(entry)


def _caption_content(entry: Mapping[str, Any]) -> str:
    """Photo/status platforms: the caption lives in the description."""
    caption = html_to_text(_body_html(entry))
    title = _title(entry)
    if caption and title and caption.startswith(title.rstrip(".… ")):
        return caption
    return caption or title


def _website_content(entry: Mapping[str, Any]) -> str:
    return entry.get("summary") or entry.get("title") or ""


def _website_media(entry: Mapping[str, Any]) -> list[str]:
    thumbnail = entry.get("thumbnail")
    return [thumbnail] if thumbnail else []


@dataclass(frozen=True)
class PlatformExtractor:
    """Field mapping for one platform's entry shape."""

    content: Callable[[Mapping[str, Any]], str]
    media_urls: Callable[[Mapping[str, Any]], list[str]] = generic_media
    thumbnail: Callable[[Mapping[str, Any], list[str]], str | None] = first_media
    native_id: Callable[[Mapping[str, Any]], str | None] = _no_id
    engagement: Callable[[Mapping[str, Any]], int] = _no_engagement
    post_url: Callable[[Mapping[str, Any]], str | None] = _link


_TWITTER = PlatformExtractor(content=_twitter_content, native_id=_twitter_id)
_YOUTUBE = PlatformExtractor(
    content=_title,
    media_urls=_youtube_media,
    native_id=_youtube_id,
    engagement=_youtube_engagement,
    post_url=_youtube_link,
)

PLATFORM_EXTRACTORS: dict[Platform, PlatformExtractor] = {
    Platform.TWITTER: _TWITTER,
    Platform.TWITTER2: _TWITTER,
    Platform.YOUTUBE: _YOUTUBE,
    Platform.ICEAGE: _YOUTUBE,
    Platform.INSTAGRAM: PlatformExtractor(
        content=_caption_content,
        native_id=_pattern_id(r"instagram\.com/(?:p|reel)/([\w-]+)"),
    ),
    Platform.FACEBOOK: PlatformExtractor(
        content=_caption_content,
        native_id=_pattern_id(r"(?:posts|videos|story_fbid=)/?([\w]+)"),
    ),
    Platform.NOTE: PlatformExtractor(
        content=_article_content,
        native_id=_pattern_id(r"/n/([a-zA-Z0-9_-]+)"),
    ),
    Platform.NICONICO: PlatformExtractor(
        content=_title,
        native_id=_pattern_id(r"/watch/([a-zA-Z0-9_\-]+)"),
    ),
    Platform.ELECTION: PlatformExtractor(content=_article_content),
    Platform.WEBSITE: PlatformExtractor(content=_website_content, media_urls=_website_media),
}


class PlatformNormalizer:
    """
    Maps RawEntry records into NormalizedPost.

    Stateless; the per-platform behaviour lives entirely in ``extractors``.

    Example:
        normalizer = PlatformNormalizer()
        post = normalizer.normalize(entry, Scope.PARTY_HQ, source_id=3)
    """

    def __init__(self, extractors: Mapping[Platform, PlatformExtractor] | None = None):
        self._extractors = dict(extractors or PLATFORM_EXTRACTORS)

    def normalize(
        self,
        entry: RawEntry,
        scope: Scope,
        source_id: int | None = None,
        owner_ref: str | None = None,
        prefecture: str | None = None,
    ) -> NormalizedPost:
        """
        Normalize one raw entry.

        Args:
            entry: Platform-native record
            scope: Scope of the originating source
            source_id: Originating SourceConfig id
            owner_ref: Politician id / prefecture code of the source owner
            prefecture: Prefecture the source is associated with, if any

        Raises:
            NormalizationSkip: Entry lacks a usable post URL or timestamp
        """
        platform = entry.platform
        extractor = self._extractors.get(platform)
        if extractor is None:
            raise NormalizationSkip(f"no field mapping for platform {platform.value}", platform)

        data = entry.data
        post_url = extractor.post_url(data)
        if not post_url or not post_url.startswith(("http://", "https://")):
            raise NormalizationSkip("missing post url", platform)

        published_at = _published_at(data)
        if published_at is None:
            raise NormalizationSkip("missing published timestamp", platform)

        content = extractor.content(data)
        title = (data.get("title") if platform is Platform.WEBSITE else _title(data)) or ""
        media_urls = extractor.media_urls(data)
        native_id = extractor.native_id(data)
        text_for_tags = f"{title}\n{content}"
        key = compute_dedup_key(platform, post_url, native_id=native_id, content=content or title)

        domain = PostDomain(data.get("domain", PostDomain.SNS.value))

        try:
            return NormalizedPost(
                dedup_key=key.value,
                dedup_basis=key.basis,
                domain=domain,
                platform=platform,
                scope=scope,
                source_id=source_id,
                owner_ref=owner_ref,
                title=title[:MAX_TITLE_LENGTH],
                content=content,
                media_urls=tuple(media_urls),
                thumbnail_url=extractor.thumbnail(data, media_urls),
                post_url=post_url,
                published_at=published_at,
                engagement_count=max(extractor.engagement(data), 0),
                hashtags=extract_hashtags(text_for_tags) | _tag_terms(data),
                mentions=extract_mentions(text_for_tags),
                category=data.get("category") or scope.value,
                prefecture=_resolve_prefecture(data, scope, owner_ref, prefecture),
                native_id=native_id,
                attributes=dict(data.get("attributes") or {}),
            )
        except ValidationError as e:
            raise NormalizationSkip(f"invalid fields: {e.error_count()} errors", platform) from e

    def normalize_many(
        self,
        entries: list[RawEntry],
        scope: Scope,
        source_id: int | None = None,
        owner_ref: str | None = None,
        prefecture: str | None = None,
    ) -> tuple[list[NormalizedPost], list[NormalizationSkip]]:
        """Normalize a batch, collecting skips instead of raising."""
        posts: list[NormalizedPost] = []
        skips: list[NormalizationSkip] = []
        for entry in entries:
            try:
                posts.append(
                    self.normalize(entry, scope, source_id, owner_ref, prefecture)
                )
            except NormalizationSkip as skip:
                logger.debug(f"Skipped {entry.platform.value} entry: {skip.reason}")
                skips.append(skip)
        return posts, skips


def _tag_terms(data: Mapping[str, Any]) -> frozenset[str]:
    terms = set()
    for tag in data.get("tags") or []:
        term = (tag.get("term") or "").strip().lstrip("#＃")
        if term:
            terms.add(term)
    return frozenset(terms)


def _resolve_prefecture(
    data: Mapping[str, Any],
    scope: Scope,
    owner_ref: str | None,
    prefecture: str | None,
) -> str | None:
    """
    Prefecture an item is associated with.

    Items that carry their own prefecture (scraped events) keep it. Otherwise
    party headquarters content is nationwide, prefectural branch content
    belongs to the branch, and politician content follows the account's
    configured prefecture.
    """
    if data.get("prefecture"):
        return data["prefecture"]
    if scope is Scope.PARTY_HQ:
        return NATIONWIDE_PREFECTURE
    if scope is Scope.PREFECTURE:
        return prefecture or owner_ref
    return prefecture


def replace_content(post: NormalizedPost, content: str) -> NormalizedPost:
    """Copy of a post with new body text and the tags derived from it."""
    text = f"{post.title}\n{content}"
    return post.model_copy(
        update={
            "content": content,
            "hashtags": post.hashtags | extract_hashtags(text),
            "mentions": extract_mentions(text),
        }
    )
