"""
Source configuration registry.

All reads go straight to the store; nothing is cached between calls so a
scrape run always sees the latest admin edits.
"""

import logging

from party_feed.ingestion.http_client import FeedFetcher, FetchKind, FetchTarget
from party_feed.ingestion.schemas import Platform, Scope
from party_feed.ingestion.validator import FeedValidation, FeedValidator
from party_feed.sources.repository import SourceConfigRepository
from party_feed.sources.schemas import (
    YOUTUBE_FEED_URL,
    InvalidSourceConfig,
    SourceConfig,
    extract_channel_id,
    prepare_source,
    youtube_feed_url,
)
from party_feed.storage.database import Database, StoreFailure

logger = logging.getLogger(__name__)

_UNIQUE_VIOLATION = "23505"
_FOREIGN_KEY_VIOLATION = "23503"


def _is_derived_youtube_feed(url: str | None) -> bool:
    return bool(url) and url.startswith(YOUTUBE_FEED_URL.split("?")[0])


class SourceNotFound(LookupError):
    """No live source with the given id."""


class Conflict(Exception):
    """A registry mutation would break referential safety."""


class SourceConfigRegistry:
    """
    Create, update, delete and list scrape targets for all three scopes.

    Example:
        registry = SourceConfigRegistry(db)
        source = await registry.create(
            SourceConfig(scope=Scope.PARTY_HQ, platform=Platform.YOUTUBE,
                         account_url="https://www.youtube.com/@party"),
            channel_id="UCxxxx",
        )
    """

    def __init__(self, database: Database) -> None:
        self._repo = SourceConfigRepository(database)

    @property
    def repository(self) -> SourceConfigRepository:
        """Access the underlying repository for direct DB operations."""
        return self._repo

    async def create(self, source: SourceConfig, channel_id: str | None = None) -> SourceConfig:
        """
        Validate and persist a new source.

        Raises:
            InvalidSourceConfig: Required fields missing or malformed
            Conflict: The same account is already registered for the owner
        """
        prepared = prepare_source(source, channel_id=channel_id)
        try:
            created = await self._repo.insert(prepared)
        except StoreFailure as e:
            if e.sqlstate == _UNIQUE_VIOLATION:
                raise Conflict(f"Source already registered: {prepared.label}") from e
            raise
        logger.info(f"Created source {created.id} ({created.label})")
        return created

    async def update(
        self,
        source_id: int,
        channel_id: str | None = None,
        **changes,
    ) -> SourceConfig:
        """
        Apply a partial update, re-validating the merged record.

        Raises:
            SourceNotFound: Unknown or removed source
            InvalidSourceConfig: The merged record is invalid
            Conflict: The change collides with another registered account
        """
        current = await self.get(source_id)
        if "platform" in changes:
            if changes["platform"] is None:
                raise InvalidSourceConfig("platform is required")
            changes["platform"] = Platform.parse(changes["platform"])
        merged = current.with_changes(**changes)
        if "rss_url" not in changes and _is_derived_youtube_feed(merged.rss_url):
            new_channel = channel_id or extract_channel_id(merged.scraping_url, merged.account_url)
            if new_channel:
                merged = merged.with_changes(rss_url=youtube_feed_url(new_channel))
        prepared = prepare_source(merged, channel_id=channel_id)

        try:
            updated = await self._repo.update(prepared)
        except StoreFailure as e:
            if e.sqlstate == _UNIQUE_VIOLATION:
                raise Conflict(f"Source already registered: {prepared.label}") from e
            raise
        if updated is None:
            raise SourceNotFound(f"Source {source_id} not found")
        logger.info(f"Updated source {source_id}: {', '.join(sorted(changes)) or 'no fields'}")
        return updated

    async def delete(self, source_id: int, purge: bool = False) -> None:
        """
        Remove a source.

        By default the source is soft-removed: it stops being scraped but its
        historical posts keep their reference. With ``purge`` the row is
        deleted outright, which is only allowed when no post references it.

        Raises:
            SourceNotFound: Unknown source
            Conflict: Purge requested while posts still reference the source
        """
        if not purge:
            if not await self._repo.mark_removed(source_id):
                if await self._repo.get(source_id, include_removed=True) is None:
                    raise SourceNotFound(f"Source {source_id} not found")
                logger.debug(f"Source {source_id} already removed")
                return
            logger.info(f"Removed source {source_id}")
            return

        if await self._repo.get(source_id, include_removed=True) is None:
            raise SourceNotFound(f"Source {source_id} not found")

        referenced = await self._repo.count_posts(source_id)
        if referenced:
            raise Conflict(
                f"Source {source_id} is referenced by {referenced} stored posts; "
                "remove it instead of purging"
            )
        try:
            await self._repo.purge(source_id)
        except StoreFailure as e:
            if e.sqlstate == _FOREIGN_KEY_VIOLATION:
                raise Conflict(f"Source {source_id} is still referenced") from e
            raise
        logger.info(f"Purged source {source_id}")

    async def get(self, source_id: int) -> SourceConfig:
        source = await self._repo.get(source_id)
        if source is None:
            raise SourceNotFound(f"Source {source_id} not found")
        return source

    async def list_sources(
        self,
        scope: Scope | None = None,
        owner_ref: str | None = None,
        active_only: bool = False,
    ) -> list[SourceConfig]:
        return await self._repo.list_sources(
            scope=scope, owner_ref=owner_ref, active_only=active_only
        )

    async def active_sources(
        self,
        scope: Scope | None = None,
        owner_ref: str | None = None,
    ) -> list[SourceConfig]:
        """Live, active sources that a scrape run should visit."""
        return await self._repo.list_sources(
            scope=scope, owner_ref=owner_ref, active_only=True
        )

    async def mark_scraped(self, source_id: int) -> None:
        await self._repo.touch_scraped(source_id)

    async def validate_feed_url(
        self,
        url: str,
        platform: Platform | str | None = None,
        fetcher: FeedFetcher | None = None,
    ) -> FeedValidation:
        """
        Fetch a candidate feed URL and validate it.

        Raises:
            FetchError: The URL could not be fetched
            InvalidFormat: The payload is not RSS or Atom
        """
        return await validate_feed_url(url, platform, fetcher)


async def validate_feed_url(
    url: str,
    platform: Platform | str | None = None,
    fetcher: FeedFetcher | None = None,
) -> FeedValidation:
    """Run FeedFetcher and FeedValidator against one URL."""
    resolved = Platform.parse(platform) if platform else None
    target = FetchTarget(url, resolved, FetchKind.FEED)
    if fetcher is not None:
        result = await fetcher.fetch(target)
    else:
        async with FeedFetcher() as own_fetcher:
            result = await own_fetcher.fetch(target)
    return FeedValidator().validate(result.text, resolved)
