"""
Dedup keys and the store-backed dedup check.

Identity is URL-first: a post is identified by its canonical URL. When the
URL is known to be unstable (shorteners, redirect wrappers) the platform's
native id is used, and only when neither is available does the key fall back
to a fingerprint of the content. Keys built from a fingerprint are marked so
the orchestrator can flag the feed.

The UNIQUE (scope, dedup_key) constraint on the posts table is the
authoritative guard; the pre-insert lookup only saves work.
"""

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from party_feed.ingestion.schemas import NormalizedPost, Platform
from party_feed.storage.database import Database

logger = logging.getLogger(__name__)

UNSTABLE_URL_HOSTS = frozenset({
    "t.co",
    "bit.ly",
    "goo.gl",
    "ow.ly",
    "buff.ly",
    "tinyurl.com",
    "dlvr.it",
    "ift.tt",
    "lnkd.in",
    "news.google.com",
    "feedproxy.google.com",
})

_HOST_ALIASES = {
    "x.com": "twitter.com",
    "www.x.com": "twitter.com",
    "mobile.x.com": "twitter.com",
    "www.twitter.com": "twitter.com",
    "mobile.twitter.com": "twitter.com",
    "youtube.com": "www.youtube.com",
    "m.youtube.com": "www.youtube.com",
    "www.note.com": "note.com",
    "sp.nicovideo.jp": "www.nicovideo.jp",
}

_TRACKING_PARAMS = frozenset({"fbclid", "gclid", "igshid", "ref_src", "ref_url", "si", "feature"})

BASIS_URL = "url"
BASIS_NATIVE_ID = "native_id"
BASIS_FINGERPRINT = "fingerprint"


def stable_hash(value: str) -> str:
    """SHA256 of the value, truncated to 32 hex characters."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:32]


def canonical_url(url: str) -> str | None:
    """
    Canonical form of a post URL, or None if the URL is not a stable identity.

    Lowercases scheme and host, folds host aliases (x.com -> twitter.com),
    rewrites youtu.be short links, drops tracking parameters, fragments and
    trailing slashes.
    """
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return None
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return None

    host = parts.hostname.lower()
    if host in UNSTABLE_URL_HOSTS:
        return None
    host = _HOST_ALIASES.get(host, host)

    path = parts.path or "/"
    query_pairs = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if not k.lower().startswith("utm_") and k.lower() not in _TRACKING_PARAMS
    ]

    if host == "twitter.com":
        query_pairs = []

    if host == "youtu.be":
        video_id = path.strip("/")
        host, path = "www.youtube.com", "/watch"
        query_pairs = [("v", video_id)]

    if len(path) > 1:
        path = path.rstrip("/")

    return urlunsplit(("https", host, path, urlencode(sorted(query_pairs)), ""))


def content_fingerprint(content: str) -> str:
    """Whitespace- and case-insensitive fingerprint of post text."""
    normalized = " ".join(content.lower().split())
    return stable_hash(normalized)


@dataclass(frozen=True)
class DedupKey:
    value: str
    basis: str


def compute_dedup_key(
    platform: Platform,
    post_url: str,
    native_id: str | None = None,
    content: str = "",
) -> DedupKey:
    """Derive the dedup key for a post. Deterministic for identical inputs."""
    canonical = canonical_url(post_url)
    if canonical:
        return DedupKey(stable_hash(f"{platform.value}|url|{canonical}"), BASIS_URL)
    if native_id:
        return DedupKey(stable_hash(f"{platform.value}|id|{native_id}"), BASIS_NATIVE_ID)
    return DedupKey(
        stable_hash(f"{platform.value}|fp|{content_fingerprint(content)}"),
        BASIS_FINGERPRINT,
    )


# SQL for table creation
_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS posts (
    id               BIGSERIAL PRIMARY KEY,
    dedup_key        TEXT NOT NULL,
    dedup_basis      TEXT NOT NULL DEFAULT 'url',
    domain           TEXT NOT NULL,
    platform         TEXT NOT NULL,
    scope            TEXT NOT NULL,
    source_id        BIGINT REFERENCES source_configs(id) ON DELETE RESTRICT,
    owner_ref        TEXT,
    title            TEXT NOT NULL DEFAULT '',
    content          TEXT NOT NULL DEFAULT '',
    media_urls       JSONB NOT NULL DEFAULT '[]',
    thumbnail_url    TEXT,
    post_url         TEXT NOT NULL,
    published_at     TIMESTAMPTZ NOT NULL,
    engagement_count INTEGER NOT NULL DEFAULT 0,
    hashtags         JSONB NOT NULL DEFAULT '[]',
    mentions         JSONB NOT NULL DEFAULT '[]',
    category         TEXT,
    prefecture       TEXT,
    native_id        TEXT,
    attributes       JSONB NOT NULL DEFAULT '{}',
    ingested_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    fanned_out_at    TIMESTAMPTZ,
    UNIQUE (scope, dedup_key)
);

CREATE INDEX IF NOT EXISTS idx_posts_domain_published
    ON posts(domain, published_at DESC);
CREATE INDEX IF NOT EXISTS idx_posts_source
    ON posts(source_id);
CREATE INDEX IF NOT EXISTS idx_posts_pending_fanout
    ON posts(id) WHERE fanned_out_at IS NULL;
"""

_EXISTING_KEYS_SQL = """
SELECT dedup_key FROM posts
WHERE scope = $1 AND dedup_key = ANY($2::text[])
"""

_BULK_INSERT_SQL = """
INSERT INTO posts (
    dedup_key, dedup_basis, domain, platform, scope, source_id, owner_ref,
    title, content, media_urls, thumbnail_url, post_url, published_at,
    engagement_count, hashtags, mentions, category, prefecture, native_id,
    attributes
)
SELECT * FROM unnest(
    $1::text[], $2::text[], $3::text[], $4::text[], $5::text[], $6::bigint[],
    $7::text[], $8::text[], $9::text[], $10::jsonb[], $11::text[], $12::text[],
    $13::timestamptz[], $14::int[], $15::jsonb[], $16::jsonb[], $17::text[],
    $18::text[], $19::text[], $20::jsonb[]
)
ON CONFLICT (scope, dedup_key) DO NOTHING
RETURNING id, scope, dedup_key
"""


def _unique_in_batch(posts: list[NormalizedPost]) -> list[NormalizedPost]:
    """Drop repeated keys within one batch, keeping the first occurrence."""
    seen: set[tuple[str, str]] = set()
    unique = []
    for post in posts:
        key = (post.scope.value, post.dedup_key)
        if key in seen:
            continue
        seen.add(key)
        unique.append(post)
    return unique


class DedupStore:
    """
    Decides which normalized posts are new and persists them at most once.

    Example:
        store = DedupStore(db)
        stored = await store.store_new(posts)  # only the new ones, with ids
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create the posts table and indexes (idempotent)."""
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Posts table ensured")

    async def filter_new(self, posts: list[NormalizedPost]) -> list[NormalizedPost]:
        """
        Return the posts whose keys are not yet stored, in their original order.

        Raises:
            StoreFailure: If the lookup fails
        """
        candidates = _unique_in_batch(posts)
        if not candidates:
            return []

        by_scope: dict[str, list[str]] = {}
        for post in candidates:
            by_scope.setdefault(post.scope.value, []).append(post.dedup_key)

        existing: set[tuple[str, str]] = set()
        for scope, keys in by_scope.items():
            rows = await self._db.fetch(_EXISTING_KEYS_SQL, scope, keys)
            existing.update((scope, row["dedup_key"]) for row in rows)

        return [p for p in candidates if (p.scope.value, p.dedup_key) not in existing]

    async def store_new(self, posts: list[NormalizedPost]) -> list[NormalizedPost]:
        """
        Persist unseen posts and return exactly the ones that were inserted.

        Posts that lose an insert race against a concurrent run are dropped
        by the uniqueness constraint and are not returned.

        Raises:
            StoreFailure: If the lookup or insert fails. Nothing is assumed
                stored in that case.
        """
        return await self.insert(await self.filter_new(posts))

    async def insert(self, posts: list[NormalizedPost]) -> list[NormalizedPost]:
        """
        Insert posts in one statement, skipping keys that already exist.

        Returns the inserted posts with their ids, in input order.

        Raises:
            StoreFailure: If the insert fails; nothing is stored in that case
        """
        fresh = _unique_in_batch(posts)
        if not fresh:
            return []

        rows = await self._db.fetch(_BULK_INSERT_SQL, *_insert_columns(fresh))
        ids = {(row["scope"], row["dedup_key"]): row["id"] for row in rows}

        stored = [
            post.model_copy(update={"id": ids[(post.scope.value, post.dedup_key)]})
            for post in fresh
            if (post.scope.value, post.dedup_key) in ids
        ]
        if len(stored) < len(fresh):
            logger.info(
                f"{len(fresh) - len(stored)} posts were already stored, skipped by constraint"
            )
        return stored


def _insert_columns(posts: list[NormalizedPost]) -> list[list]:
    return [
        [p.dedup_key for p in posts],
        [p.dedup_basis for p in posts],
        [p.domain.value for p in posts],
        [p.platform.value for p in posts],
        [p.scope.value for p in posts],
        [p.source_id for p in posts],
        [p.owner_ref for p in posts],
        [p.title for p in posts],
        [p.content for p in posts],
        [json.dumps(list(p.media_urls)) for p in posts],
        [p.thumbnail_url for p in posts],
        [p.post_url for p in posts],
        [p.published_at for p in posts],
        [p.engagement_count for p in posts],
        [json.dumps(sorted(p.hashtags), ensure_ascii=False) for p in posts],
        [json.dumps(sorted(p.mentions), ensure_ascii=False) for p in posts],
        [p.category for p in posts],
        [p.prefecture for p in posts],
        [p.native_id for p in posts],
        [json.dumps(p.attributes, ensure_ascii=False, default=str) for p in posts],
    ]


def _json_value(value, default):
    if value is None:
        return default
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def record_to_post(record) -> NormalizedPost:
    """Convert an asyncpg Record from the posts table to a NormalizedPost."""
    return NormalizedPost(
        id=record["id"],
        dedup_key=record["dedup_key"],
        dedup_basis=record["dedup_basis"],
        domain=record["domain"],
        platform=Platform.parse(record["platform"]),
        scope=record["scope"],
        source_id=record["source_id"],
        owner_ref=record["owner_ref"],
        title=record["title"],
        content=record["content"],
        media_urls=tuple(_json_value(record["media_urls"], [])),
        thumbnail_url=record["thumbnail_url"],
        post_url=record["post_url"],
        published_at=record["published_at"],
        engagement_count=record["engagement_count"],
        hashtags=frozenset(_json_value(record["hashtags"], [])),
        mentions=frozenset(_json_value(record["mentions"], [])),
        category=record["category"],
        prefecture=record["prefecture"],
        native_id=record["native_id"],
        attributes=_json_value(record["attributes"], {}),
    )
