"""
Scrape orchestrator - drives one ingestion run across a set of sources.

A run covers one or more categories (news, events, official SNS,
prefectural SNS, politician SNS). Categories run in sequence; the sources of
a category run concurrently up to ``scrape_concurrency``. Every source is
fetched, parsed, normalized and deduplicated independently, and its failure
is recorded without touching its siblings. Fan-out into user timelines runs
once, after ingestion, and can only add warnings to the result.
"""

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from party_feed.config.settings import Settings, get_settings
from party_feed.ingestion.deduplication import BASIS_FINGERPRINT, DedupStore
from party_feed.ingestion.feed_parser import parse_feed
from party_feed.ingestion.http_client import (
    FeedFetcher,
    FetchError,
    FetchKind,
    FetchResult,
    FetchTarget,
    RetryConfig,
)
from party_feed.ingestion.normalizer import PlatformNormalizer, replace_content
from party_feed.ingestion.schemas import NormalizedPost, Platform, PostDomain, RawEntry, Scope
from party_feed.ingestion.tweet_text import fetch_full_text
from party_feed.ingestion.validator import InvalidFormat
from party_feed.ingestion.website import (
    enrich_post,
    parse_events_page,
    parse_news_page,
    parse_team_page,
)
from party_feed.observability.metrics import get_metrics
from party_feed.sources.resolver import discover_youtube_feed, resolve_fetch_target
from party_feed.sources.schemas import InvalidSourceConfig, SourceConfig
from party_feed.sources.service import SourceConfigRegistry, SourceNotFound
from party_feed.storage.database import Database, StoreFailure
from party_feed.timeline.fanout import FanoutResult, TimelineFanoutEngine

logger = structlog.get_logger(__name__)


class RunType(str, Enum):
    """Run selector accepted by the trigger surface."""

    NEWS = "news"
    EVENTS = "events"
    SNS = "sns"
    ALL = "all"

    @classmethod
    def parse(cls, value: "str | RunType | None") -> "RunType":
        """Unknown or missing selectors mean a full run."""
        if isinstance(value, RunType):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.ALL


class Category(str, Enum):
    NEWS = "news"
    EVENTS = "events"
    OFFICIAL = "official"
    PREFECTURE = "prefecture"
    POLITICIAN = "politician"


RUN_CATEGORIES: dict[RunType, tuple[Category, ...]] = {
    RunType.NEWS: (Category.NEWS,),
    RunType.EVENTS: (Category.EVENTS,),
    RunType.SNS: (Category.OFFICIAL, Category.PREFECTURE),
    RunType.ALL: (
        Category.NEWS,
        Category.EVENTS,
        Category.OFFICIAL,
        Category.PREFECTURE,
        Category.POLITICIAN,
    ),
}

_CATEGORY_SCOPES = {
    Category.OFFICIAL: Scope.PARTY_HQ,
    Category.PREFECTURE: Scope.PREFECTURE,
    Category.POLITICIAN: Scope.POLITICIAN,
}


def category_for_scope(scope: Scope) -> Category:
    return {v: k for k, v in _CATEGORY_SCOPES.items()}[scope]


# ── Result models ───────────────────────────────────────────────


class SourceErrorRecord(BaseModel):
    """One source that failed during a run."""

    category: str
    source: str
    source_id: int | None = None
    error_type: str
    message: str


class CategoryResult(BaseModel):
    """Outcome of one category within a run."""

    category: str
    success: bool
    new_count: int = 0
    sources_total: int = 0
    sources_failed: int = 0
    skipped_entries: int = 0
    message: str = ""


class RunResult(BaseModel):
    """
    Structured outcome of a scrape run.

    ``success`` is true when at least one category succeeded. The SNS
    counters serialize as officialCount / prefCount / total.
    """

    model_config = ConfigDict(populate_by_name=True)

    run_type: str = Field(serialization_alias="runType")
    success: bool
    message: str
    counts: dict[str, int] = Field(default_factory=dict)
    official_count: int = Field(default=0, serialization_alias="officialCount")
    pref_count: int = Field(default=0, serialization_alias="prefCount")
    total: int = 0
    categories: list[CategoryResult] = Field(default_factory=list)
    source_errors: list[SourceErrorRecord] = Field(default_factory=list, serialization_alias="sourceErrors")
    warnings: list[str] = Field(default_factory=list)
    timeline_entries: int | None = Field(default=None, serialization_alias="timelineEntries")
    duration_seconds: float = Field(default=0.0, serialization_alias="durationSeconds")

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ── Per-source work units ───────────────────────────────────────


class PageKind(str, Enum):
    NEWS = "news"
    TEAM = "team"
    EVENTS = "events"


_PAGE_PARSERS = {
    PageKind.NEWS: parse_news_page,
    PageKind.TEAM: parse_team_page,
    PageKind.EVENTS: parse_events_page,
}


@dataclass
class ScrapeTask:
    """One source to visit: a configured account or a party website page."""

    category: Category
    scope: Scope
    label: str
    source: SourceConfig | None = None
    page_url: str | None = None
    page_kind: PageKind | None = None


@dataclass
class SourceOutcome:
    task: ScrapeTask
    fetched: int = 0
    skipped: int = 0
    stored: list[NormalizedPost] = field(default_factory=list)
    error_type: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ScrapeOrchestrator:
    """
    Runs scrape runs against the active source set.

    Holds no state between runs; every dependency can be injected.

    Usage:
        orchestrator = ScrapeOrchestrator(db)
        result = await orchestrator.run("sns")
    """

    def __init__(
        self,
        database: Database | None = None,
        registry: SourceConfigRegistry | None = None,
        dedup: DedupStore | None = None,
        fanout: TimelineFanoutEngine | None = None,
        normalizer: PlatformNormalizer | None = None,
        fetcher: FeedFetcher | None = None,
        retry: RetryConfig | None = None,
        settings: Settings | None = None,
    ):
        if database is None and not (registry and dedup and fanout):
            raise ValueError("database is required unless registry, dedup and fanout are given")
        self._settings = settings or get_settings()
        self._registry = registry or SourceConfigRegistry(database)
        self._dedup = dedup or DedupStore(database)
        self._fanout = fanout or TimelineFanoutEngine(database)
        self._normalizer = normalizer or PlatformNormalizer()
        self._fetcher = fetcher
        self._retry = retry or RetryConfig.from_settings()
        self._metrics = get_metrics()

    # ── Entry points ────────────────────────────────────────────

    async def run(self, run_type: "str | RunType | None" = None) -> RunResult:
        """
        Execute one run for a selector in {news, events, sns, all}.

        Unknown or missing selectors run everything.
        """
        resolved = RunType.parse(run_type)
        return await self._execute(
            resolved.value,
            RUN_CATEGORIES[resolved],
            always_fan_out=resolved is RunType.ALL,
        )

    async def scrape_politicians(self, politician_id: str | None = None) -> RunResult:
        """Scrape every politician account, or only one politician's accounts."""
        label = f"politician:{politician_id}" if politician_id else "politicians"
        return await self._execute(label, (Category.POLITICIAN,), owner_ref=politician_id)

    async def scrape_source(self, source_id: int) -> RunResult:
        """
        Scrape a single configured source regardless of its category.

        Raises:
            SourceNotFound: Unknown or removed source
        """
        source = await self._registry.get(source_id)
        category = category_for_scope(source.scope)
        task = ScrapeTask(category, source.scope, source.label, source=source)
        return await self._execute(f"source:{source_id}", (category,), tasks_override={category: [task]})

    # ── Run execution ───────────────────────────────────────────

    async def _execute(
        self,
        run_label: str,
        categories: tuple[Category, ...],
        owner_ref: str | None = None,
        always_fan_out: bool = False,
        tasks_override: dict[Category, list[ScrapeTask]] | None = None,
    ) -> RunResult:
        started = time.monotonic()
        log = logger.bind(run_type=run_label)
        log.info("scrape_run_started", categories=[c.value for c in categories])

        category_results: list[CategoryResult] = []
        source_errors: list[SourceErrorRecord] = []
        warnings: list[str] = []
        counts: dict[str, int] = {}

        async with self._fetcher_session() as fetcher:
            for category in categories:
                try:
                    if tasks_override is not None:
                        tasks = tasks_override[category]
                    else:
                        tasks = await self._tasks_for(category, owner_ref)
                except StoreFailure as e:
                    log.error("source_listing_failed", category=category.value, error=str(e))
                    category_results.append(
                        CategoryResult(
                            category=category.value,
                            success=False,
                            message=f"{category.value}: could not load sources ({e})",
                        )
                    )
                    counts[category.value] = 0
                    continue

                outcomes = await self._run_category(category, tasks, fetcher)
                result = self._summarize_category(category, outcomes)
                category_results.append(result)
                counts[category.value] = result.new_count

                for outcome in outcomes:
                    if not outcome.ok:
                        source_errors.append(
                            SourceErrorRecord(
                                category=category.value,
                                source=outcome.task.label,
                                source_id=outcome.task.source.id if outcome.task.source else None,
                                error_type=outcome.error_type or "Error",
                                message=outcome.error or "",
                            )
                        )

        success = any(r.success for r in category_results)

        timeline_entries = None
        if success or always_fan_out:
            fanout_result, fanout_warnings = await self._fan_out()
            warnings.extend(fanout_warnings)
            if fanout_result is not None:
                timeline_entries = fanout_result.total_entries

        duration = time.monotonic() - started
        official = counts.get(Category.OFFICIAL.value, 0)
        pref = counts.get(Category.PREFECTURE.value, 0)

        result = RunResult(
            run_type=run_label,
            success=success,
            message=self._run_message(category_results, warnings),
            counts=counts,
            official_count=official,
            pref_count=pref,
            total=sum(counts.values()),
            categories=category_results,
            source_errors=source_errors,
            warnings=warnings,
            timeline_entries=timeline_entries,
            duration_seconds=round(duration, 3),
        )

        self._metrics.record_run(run_label.split(":")[0], success, duration)
        log.info(
            "scrape_run_completed",
            success=success,
            total=result.total,
            source_errors=len(source_errors),
            warnings=len(warnings),
            duration=round(duration, 2),
        )
        return result

    @asynccontextmanager
    async def _fetcher_session(self) -> AsyncIterator[FeedFetcher]:
        if self._fetcher is not None:
            yield self._fetcher
            return
        async with FeedFetcher(
            timeout=self._settings.fetch_timeout_seconds,
            user_agent=self._settings.user_agent,
        ) as fetcher:
            yield fetcher

    async def _tasks_for(self, category: Category, owner_ref: str | None = None) -> list[ScrapeTask]:
        if category is Category.NEWS:
            tasks = []
            for url in self._settings.news_page_urls:
                kind = PageKind.NEWS if url.startswith(self._settings.website_base_url) else PageKind.TEAM
                tasks.append(
                    ScrapeTask(category, Scope.PARTY_HQ, f"website:{url}", page_url=url, page_kind=kind)
                )
            return tasks
        if category is Category.EVENTS:
            url = self._settings.events_page_url
            return [
                ScrapeTask(category, Scope.PARTY_HQ, f"website:{url}", page_url=url, page_kind=PageKind.EVENTS)
            ]

        scope = _CATEGORY_SCOPES[category]
        sources = await self._registry.active_sources(scope=scope, owner_ref=owner_ref)
        return [ScrapeTask(category, scope, s.label, source=s) for s in sources]

    async def _run_category(
        self,
        category: Category,
        tasks: list[ScrapeTask],
        fetcher: FeedFetcher,
    ) -> list[SourceOutcome]:
        """Run all sources of a category with bounded concurrency."""
        if not tasks:
            return []

        semaphore = asyncio.Semaphore(self._settings.scrape_concurrency)

        async def guarded(task: ScrapeTask) -> SourceOutcome:
            async with semaphore:
                return await self._process(task, fetcher)

        results = await asyncio.gather(*(guarded(t) for t in tasks), return_exceptions=True)

        outcomes = []
        for task, result in zip(tasks, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error(
                    "source_crashed",
                    category=category.value,
                    source=task.label,
                    error=str(result),
                    exc_info=result,
                )
                result = SourceOutcome(task, error_type=type(result).__name__, error=str(result))
            if not result.ok:
                self._metrics.record_source_error(category.value, result.error_type or "Error")
            outcomes.append(result)
        return outcomes

    async def _process(self, task: ScrapeTask, fetcher: FeedFetcher) -> SourceOutcome:
        """Fetch, parse, normalize and store one source. Never raises expected errors."""
        outcome = SourceOutcome(task)
        log = logger.bind(category=task.category.value, source=task.label)
        try:
            entries = await self._collect_entries(task, fetcher)
            outcome.fetched = len(entries)

            source = task.source
            posts, skips = self._normalizer.normalize_many(
                entries,
                task.scope,
                source_id=source.id if source else None,
                owner_ref=source.owner_ref if source else None,
                prefecture=source.prefecture if source else None,
            )
            outcome.skipped = len(skips)
            for skip in skips:
                self._metrics.record_skip(
                    (skip.platform or Platform.WEBSITE).value, skip.reason
                )

            fingerprinted = sum(1 for p in posts if p.dedup_basis == BASIS_FINGERPRINT)
            if fingerprinted:
                log.warning(
                    "dedup_fingerprint_fallback",
                    posts=fingerprinted,
                    hint="post URLs are unstable; identity falls back to content",
                )

            fresh = await self._dedup.filter_new(posts)
            fresh = await self._enrich(fresh, fetcher)
            outcome.stored = await self._dedup.insert(fresh)

        except (FetchError, InvalidFormat, InvalidSourceConfig) as e:
            outcome.error_type = type(e).__name__
            outcome.error = str(e)
            log.warning("source_failed", error_type=outcome.error_type, error=outcome.error)
            return outcome
        except StoreFailure as e:
            # Fail closed: nothing from this source is assumed stored
            outcome.stored = []
            outcome.error_type = "StoreFailure"
            outcome.error = str(e)
            log.error("source_store_failed", error=str(e))
            return outcome

        if task.source is not None and task.source.id is not None:
            try:
                await self._registry.mark_scraped(task.source.id)
            except StoreFailure as e:
                log.warning("last_scraped_update_failed", error=str(e))

        if outcome.stored:
            first = outcome.stored[0]
            self._metrics.record_posts_stored(first.scope.value, first.platform.value, len(outcome.stored))
        log.info(
            "source_scraped",
            fetched=outcome.fetched,
            skipped=outcome.skipped,
            new=len(outcome.stored),
        )
        return outcome

    async def _collect_entries(self, task: ScrapeTask, fetcher: FeedFetcher) -> list[RawEntry]:
        if task.page_kind is not None:
            result = await self._fetch(fetcher, FetchTarget(task.page_url, Platform.WEBSITE, FetchKind.PAGE))
            return _PAGE_PARSERS[task.page_kind](result.text, task.page_url)

        source = task.source
        target = resolve_fetch_target(source)
        result = await self._fetch(fetcher, target)

        if target.kind is FetchKind.PAGE:
            feed_url = discover_youtube_feed(result.text)
            if not feed_url:
                raise InvalidSourceConfig(f"No channel feed found on {target.url}")
            target = FetchTarget(feed_url, source.platform, FetchKind.FEED)
            result = await self._fetch(fetcher, target)

        return parse_feed(
            result.content or result.text,
            source.platform,
            source_url=target.url,
            limit=self._settings.max_entries_per_feed,
        )

    async def _fetch(self, fetcher: FeedFetcher, target: FetchTarget) -> FetchResult:
        """Fetch with the retry policy; the fetcher itself never retries."""
        attempt = 0
        while True:
            started = time.monotonic()
            try:
                result = await fetcher.fetch(target)
            except FetchError as e:
                if attempt >= self._retry.max_retries or not self._retry.is_retryable(e):
                    raise
                backoff = self._retry.calculate_backoff(attempt)
                logger.debug(
                    "fetch_retry",
                    url=target.url,
                    attempt=attempt + 1,
                    error=str(e),
                    backoff=round(backoff, 2),
                )
                attempt += 1
                await asyncio.sleep(backoff)
                continue
            platform = target.platform.value if target.platform else "unknown"
            self._metrics.fetch_latency.labels(platform=platform).observe(time.monotonic() - started)
            return result

    async def _enrich(self, posts: list[NormalizedPost], fetcher: FeedFetcher) -> list[NormalizedPost]:
        """Best-effort extra fetches for posts about to be stored."""
        enriched = []
        for post in posts:
            if post.platform is Platform.WEBSITE and post.domain is PostDomain.NEWS:
                if self._settings.enrich_articles:
                    post = await enrich_post(fetcher, post, self._settings.article_snippet_length)
            elif post.platform.is_twitter and post.native_id and self._settings.tweet_full_text_enabled:
                full_text = await fetch_full_text(fetcher, post.native_id)
                if full_text and len(full_text) > len(post.content):
                    post = replace_content(post, full_text)
            enriched.append(post)
        return enriched

    def _summarize_category(self, category: Category, outcomes: list[SourceOutcome]) -> CategoryResult:
        failed = [o for o in outcomes if not o.ok]
        new_count = sum(len(o.stored) for o in outcomes)
        skipped = sum(o.skipped for o in outcomes)

        if not outcomes:
            return CategoryResult(
                category=category.value,
                success=False,
                message=f"{category.value}: no active sources",
            )

        success = len(failed) < len(outcomes)
        if success:
            message = f"{category.value}: {new_count} new from {len(outcomes) - len(failed)} sources"
            if failed:
                message += f" ({len(failed)} failed)"
        else:
            message = f"{category.value}: all {len(outcomes)} sources failed"

        return CategoryResult(
            category=category.value,
            success=success,
            new_count=new_count,
            sources_total=len(outcomes),
            sources_failed=len(failed),
            skipped_entries=skipped,
            message=message,
        )

    async def _fan_out(self) -> tuple[FanoutResult | None, list[str]]:
        """Fan out pending posts; failures become warnings."""
        warnings: list[str] = []
        try:
            result = await self._fanout.fan_out()
        except Exception as e:
            logger.error("fanout_failed", error=str(e), error_type=type(e).__name__, exc_info=True)
            return None, [f"Timeline fan-out failed: {type(e).__name__}: {e}"]

        for error in result.plan_limit_errors:
            warnings.append(str(error))
        return result, warnings

    @staticmethod
    def _run_message(categories: list[CategoryResult], warnings: list[str]) -> str:
        parts = [c.message for c in categories]
        if warnings:
            parts.append(f"{len(warnings)} warning(s)")
        return "; ".join(parts)
