"""Database repository for filter preferences, plans and timeline entries."""

import logging
from datetime import datetime

from party_feed.ingestion.deduplication import record_to_post
from party_feed.ingestion.schemas import NormalizedPost
from party_feed.storage.database import Database
from party_feed.timeline.schemas import FilterPreference, SubscriptionPlan

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS subscription_plans (
    id                   TEXT PRIMARY KEY,
    name                 TEXT NOT NULL DEFAULT '',
    max_custom_timelines INTEGER NOT NULL DEFAULT 3 CHECK (max_custom_timelines >= 0),
    is_active            BOOLEAN NOT NULL DEFAULT TRUE
);

CREATE TABLE IF NOT EXISTS user_subscriptions (
    user_id    TEXT PRIMARY KEY,
    plan_id    TEXT NOT NULL REFERENCES subscription_plans(id),
    status     TEXT NOT NULL DEFAULT 'active',
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS filter_preferences (
    id               BIGSERIAL PRIMARY KEY,
    user_id          TEXT NOT NULL,
    name             TEXT NOT NULL DEFAULT '',
    news_categories  TEXT[] NOT NULL DEFAULT '{}',
    event_categories TEXT[] NOT NULL DEFAULT '{}',
    sns_categories   TEXT[] NOT NULL DEFAULT '{}',
    prefectures      TEXT[] NOT NULL DEFAULT '{}',
    filter_signature TEXT NOT NULL,
    created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (user_id, filter_signature)
);

CREATE INDEX IF NOT EXISTS idx_filter_preferences_user
    ON filter_preferences(user_id, created_at);

CREATE TABLE IF NOT EXISTS user_timeline_entries (
    id            BIGSERIAL PRIMARY KEY,
    user_id       TEXT NOT NULL,
    post_id       BIGINT NOT NULL REFERENCES posts(id),
    domain        TEXT NOT NULL,
    view_id       BIGINT REFERENCES filter_preferences(id) ON DELETE SET NULL,
    displayed_at  TIMESTAMPTZ NOT NULL,
    is_read       BOOLEAN NOT NULL DEFAULT FALSE,
    is_interested BOOLEAN NOT NULL DEFAULT FALSE,
    created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (user_id, post_id)
);

CREATE INDEX IF NOT EXISTS idx_timeline_user_domain_displayed
    ON user_timeline_entries(user_id, domain, displayed_at DESC);
"""

_INSERT_VIEW_SQL = """
INSERT INTO filter_preferences (
    user_id, name, news_categories, event_categories, sns_categories,
    prefectures, filter_signature
)
SELECT $1::text, $2::text, $3::text[], $4::text[], $5::text[], $6::text[], $7::text
WHERE (SELECT COUNT(*) FROM filter_preferences WHERE user_id = $1::text) < $8::int
ON CONFLICT (user_id, filter_signature) DO NOTHING
RETURNING *
"""

_INSERT_ENTRIES_SQL = """
INSERT INTO user_timeline_entries (user_id, post_id, domain, view_id, displayed_at)
SELECT * FROM unnest($1::text[], $2::bigint[], $3::text[], $4::bigint[], $5::timestamptz[])
ON CONFLICT (user_id, post_id) DO NOTHING
RETURNING post_id, domain
"""


def _record_to_preference(record) -> FilterPreference:
    return FilterPreference(
        id=record["id"],
        user_id=record["user_id"],
        name=record["name"],
        news_categories=frozenset(record["news_categories"] or ()),
        event_categories=frozenset(record["event_categories"] or ()),
        sns_categories=frozenset(record["sns_categories"] or ()),
        prefectures=frozenset(record["prefectures"] or ()),
        created_at=record["created_at"],
    )


class TimelineRepository:
    """Storage for views, plan caps and timeline entries."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create timeline tables and indexes (idempotent)."""
        await self._db.execute(_CREATE_TABLES_SQL)
        logger.info("Timeline tables ensured")

    # ── Views and plans ─────────────────────────────────────────

    async def list_views(self, user_id: str | None = None) -> list[FilterPreference]:
        """All views, oldest first per user, optionally for one user."""
        if user_id is None:
            rows = await self._db.fetch(
                "SELECT * FROM filter_preferences ORDER BY user_id, created_at, id"
            )
        else:
            rows = await self._db.fetch(
                "SELECT * FROM filter_preferences WHERE user_id = $1 ORDER BY created_at, id",
                user_id,
            )
        views = []
        for row in rows:
            try:
                views.append(_record_to_preference(row))
            except ValueError as e:
                logger.warning(
                    "Skipping invalid view %s for user %s: %s", row["id"], row["user_id"], e
                )
        return views

    async def find_view(self, user_id: str, signature: str) -> FilterPreference | None:
        row = await self._db.fetchrow(
            "SELECT * FROM filter_preferences WHERE user_id = $1 AND filter_signature = $2",
            user_id,
            signature,
        )
        return _record_to_preference(row) if row else None

    async def count_views(self, user_id: str) -> int:
        return await self._db.fetchval(
            "SELECT COUNT(*) FROM filter_preferences WHERE user_id = $1", user_id
        ) or 0

    async def insert_view_within_limit(
        self, preference: FilterPreference, limit: int
    ) -> FilterPreference | None:
        """
        Insert a view only if the user stays within ``limit`` views.

        Returns None when the cap is reached or the same filter already exists.
        """
        row = await self._db.fetchrow(
            _INSERT_VIEW_SQL,
            preference.user_id,
            preference.name,
            sorted(preference.news_categories),
            sorted(preference.event_categories),
            sorted(preference.sns_categories),
            sorted(preference.prefectures),
            preference.signature,
            limit,
        )
        return _record_to_preference(row) if row else None

    async def delete_view(self, user_id: str, view_id: int) -> bool:
        result = await self._db.execute(
            "DELETE FROM filter_preferences WHERE id = $1 AND user_id = $2",
            view_id,
            user_id,
        )
        return result.endswith(" 1")

    async def plan_limits(self, user_ids: list[str]) -> dict[str, int]:
        """
        View caps for users with an active subscription on an active plan.

        Users missing from the result have no usable subscription.
        """
        if not user_ids:
            return {}
        rows = await self._db.fetch(
            """
            SELECT s.user_id, p.max_custom_timelines
            FROM user_subscriptions s
            JOIN subscription_plans p ON p.id = s.plan_id
            WHERE s.user_id = ANY($1::text[])
              AND s.status = 'active'
              AND p.is_active = TRUE
            """,
            user_ids,
        )
        return {r["user_id"]: r["max_custom_timelines"] for r in rows}

    async def upsert_plan(self, plan: SubscriptionPlan) -> None:
        await self._db.execute(
            """
            INSERT INTO subscription_plans (id, name, max_custom_timelines, is_active)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name,
                max_custom_timelines = EXCLUDED.max_custom_timelines,
                is_active = EXCLUDED.is_active
            """,
            plan.id,
            plan.name,
            plan.max_custom_timelines,
            plan.is_active,
        )

    # ── Posts awaiting fan-out ──────────────────────────────────

    async def pending_posts(self, limit: int, after_id: int = 0) -> list[NormalizedPost]:
        """Stored posts not fanned out yet with ids above ``after_id``, oldest first."""
        rows = await self._db.fetch(
            """
            SELECT * FROM posts
            WHERE fanned_out_at IS NULL AND id > $2
            ORDER BY id
            LIMIT $1
            """,
            limit,
            after_id,
        )
        return [record_to_post(r) for r in rows]

    async def mark_fanned_out(self, post_ids: list[int]) -> None:
        if not post_ids:
            return
        await self._db.execute(
            "UPDATE posts SET fanned_out_at = NOW() WHERE id = ANY($1::bigint[]) AND fanned_out_at IS NULL",
            post_ids,
        )

    # ── Timeline entries ────────────────────────────────────────

    async def insert_entries(
        self,
        user_id: str,
        rows: list[tuple[int, str, int | None, datetime]],
    ) -> dict[str, int]:
        """
        Insert (post_id, domain, view_id, displayed_at) rows for one user.

        Existing (user, post) pairs are left untouched. Returns the number
        of newly created entries per domain.
        """
        if not rows:
            return {}
        inserted = await self._db.fetch(
            _INSERT_ENTRIES_SQL,
            [user_id] * len(rows),
            [r[0] for r in rows],
            [r[1] for r in rows],
            [r[2] for r in rows],
            [r[3] for r in rows],
        )
        counts: dict[str, int] = {}
        for row in inserted:
            counts[row["domain"]] = counts.get(row["domain"], 0) + 1
        return counts

    async def set_read(self, user_id: str, post_id: int, is_read: bool = True) -> bool:
        result = await self._db.execute(
            "UPDATE user_timeline_entries SET is_read = $3 WHERE user_id = $1 AND post_id = $2",
            user_id,
            post_id,
            is_read,
        )
        return result.endswith(" 1")

    async def set_interest(self, user_id: str, post_id: int, is_interested: bool) -> bool:
        result = await self._db.execute(
            "UPDATE user_timeline_entries SET is_interested = $3 WHERE user_id = $1 AND post_id = $2",
            user_id,
            post_id,
            is_interested,
        )
        return result.endswith(" 1")
