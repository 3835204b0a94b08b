"""Database repository for the source_configs table."""

import logging

from party_feed.ingestion.schemas import Platform, Scope
from party_feed.sources.schemas import SourceConfig
from party_feed.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS source_configs (
    id               BIGSERIAL PRIMARY KEY,
    scope            TEXT NOT NULL CHECK (scope IN ('party_hq', 'politician', 'prefecture')),
    owner_ref        TEXT,
    platform         TEXT NOT NULL,
    account_name     TEXT NOT NULL DEFAULT '',
    account_url      TEXT NOT NULL,
    rss_url          TEXT,
    scraping_url     TEXT,
    rss_feed_id      TEXT,
    prefecture       TEXT,
    is_active        BOOLEAN NOT NULL DEFAULT TRUE,
    removed_at       TIMESTAMPTZ,
    last_scraped_at  TIMESTAMPTZ,
    created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at       TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_source_configs_account
    ON source_configs(scope, COALESCE(owner_ref, ''), platform, account_url)
    WHERE removed_at IS NULL;
CREATE INDEX IF NOT EXISTS idx_source_configs_scope_active
    ON source_configs(scope, is_active) WHERE removed_at IS NULL;
"""

_INSERT_SQL = """
INSERT INTO source_configs (
    scope, owner_ref, platform, account_name, account_url,
    rss_url, scraping_url, rss_feed_id, prefecture, is_active
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
RETURNING *
"""


def _record_to_source(record) -> SourceConfig:
    """Convert an asyncpg Record to a SourceConfig dataclass."""
    return SourceConfig(
        id=record["id"],
        scope=Scope(record["scope"]),
        owner_ref=record["owner_ref"],
        platform=Platform.parse(record["platform"]),
        account_name=record["account_name"],
        account_url=record["account_url"],
        rss_url=record["rss_url"],
        scraping_url=record["scraping_url"],
        rss_feed_id=record["rss_feed_id"],
        prefecture=record["prefecture"],
        is_active=record["is_active"],
        removed_at=record["removed_at"],
        last_scraped_at=record["last_scraped_at"],
        created_at=record["created_at"],
        updated_at=record["updated_at"],
    )


class SourceConfigRepository:
    """CRUD operations for the source_configs table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the source_configs table and indexes (idempotent)."""
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Source configs table ensured")

    async def insert(self, source: SourceConfig) -> SourceConfig:
        row = await self._db.fetchrow(
            _INSERT_SQL,
            source.scope.value,
            source.owner_ref,
            source.platform.value,
            source.account_name,
            source.account_url,
            source.rss_url,
            source.scraping_url,
            source.rss_feed_id,
            source.prefecture,
            source.is_active,
        )
        return _record_to_source(row)

    async def get(self, source_id: int, include_removed: bool = False) -> SourceConfig | None:
        sql = "SELECT * FROM source_configs WHERE id = $1"
        if not include_removed:
            sql += " AND removed_at IS NULL"
        row = await self._db.fetchrow(sql, source_id)
        return _record_to_source(row) if row else None

    async def list_sources(
        self,
        scope: Scope | None = None,
        owner_ref: str | None = None,
        platform: Platform | None = None,
        active_only: bool = False,
        include_removed: bool = False,
    ) -> list[SourceConfig]:
        """List sources matching all given filters."""
        conditions: list[str] = []
        params: list = []
        idx = 1

        if not include_removed:
            conditions.append("removed_at IS NULL")

        if active_only:
            conditions.append("is_active = TRUE")

        if scope is not None:
            conditions.append(f"scope = ${idx}")
            params.append(scope.value)
            idx += 1

        if owner_ref is not None:
            conditions.append(f"owner_ref = ${idx}")
            params.append(owner_ref)
            idx += 1

        if platform is not None:
            conditions.append(f"platform = ${idx}")
            params.append(platform.value)
            idx += 1

        where_clause = " WHERE " + " AND ".join(conditions) if conditions else ""
        rows = await self._db.fetch(
            f"SELECT * FROM source_configs{where_clause} ORDER BY scope, owner_ref, id",
            *params,
        )
        return [_record_to_source(r) for r in rows]

    async def update(self, source: SourceConfig) -> SourceConfig | None:
        """Write every updatable field of an existing source. None if it is gone."""
        row = await self._db.fetchrow(
            """
            UPDATE source_configs SET
                platform = $2,
                account_name = $3,
                account_url = $4,
                rss_url = $5,
                scraping_url = $6,
                rss_feed_id = $7,
                prefecture = $8,
                is_active = $9,
                updated_at = NOW()
            WHERE id = $1 AND removed_at IS NULL
            RETURNING *
            """,
            source.id,
            source.platform.value,
            source.account_name,
            source.account_url,
            source.rss_url,
            source.scraping_url,
            source.rss_feed_id,
            source.prefecture,
            source.is_active,
        )
        return _record_to_source(row) if row else None

    async def mark_removed(self, source_id: int) -> bool:
        """Soft-remove a source. Returns True if a row was updated."""
        result = await self._db.execute(
            """
            UPDATE source_configs
            SET is_active = FALSE, removed_at = NOW(), updated_at = NOW()
            WHERE id = $1 AND removed_at IS NULL
            """,
            source_id,
        )
        return result.endswith(" 1")

    async def purge(self, source_id: int) -> bool:
        """Hard-delete a source row. Returns True if a row was deleted."""
        result = await self._db.execute("DELETE FROM source_configs WHERE id = $1", source_id)
        return result.endswith(" 1")

    async def count_posts(self, source_id: int) -> int:
        """Number of stored posts that reference the source."""
        return await self._db.fetchval(
            "SELECT COUNT(*) FROM posts WHERE source_id = $1", source_id
        ) or 0

    async def touch_scraped(self, source_id: int) -> None:
        await self._db.execute(
            "UPDATE source_configs SET last_scraped_at = NOW() WHERE id = $1",
            source_id,
        )
