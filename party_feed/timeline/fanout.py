"""
Timeline fan-out: project stored posts into per-user timelines.

A user's filter preferences are their timeline views. A post lands in a
user's timeline when at least one of the user's views matches it; how many
views count is capped by the user's subscription plan.
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import structlog

from party_feed.config.settings import get_settings
from party_feed.ingestion.schemas import NormalizedPost
from party_feed.observability.metrics import get_metrics
from party_feed.storage.database import Database
from party_feed.timeline.repository import TimelineRepository
from party_feed.timeline.schemas import FilterPreference

logger = structlog.get_logger(__name__)


class PlanLimitExceeded(Exception):
    """A user's timeline views exceed the cap of their subscription plan."""

    def __init__(self, user_id: str, limit: int, requested: int):
        super().__init__(
            f"User {user_id} is limited to {limit} custom timelines (requested {requested})"
        )
        self.user_id = user_id
        self.limit = limit
        self.requested = requested


@dataclass
class FanoutResult:
    """Outcome of one fan-out pass."""

    posts_considered: int = 0
    users_considered: int = 0
    entries_created: dict[str, int] = field(default_factory=dict)
    plan_limit_errors: list[PlanLimitExceeded] = field(default_factory=list)

    @property
    def total_entries(self) -> int:
        return sum(self.entries_created.values())

    def add_entries(self, counts: dict[str, int]) -> None:
        for domain, count in counts.items():
            self.entries_created[domain] = self.entries_created.get(domain, 0) + count


class TimelineFanoutEngine:
    """
    Creates UserTimelineEntry rows for newly stored posts.

    Inserts are idempotent per (user, post) so overlapping runs are safe.

    Example:
        engine = TimelineFanoutEngine(db)
        result = await engine.fan_out(stored_posts)
    """

    def __init__(
        self,
        database: Database,
        default_max_custom_timelines: int | None = None,
        batch_limit: int | None = None,
    ) -> None:
        settings = get_settings()
        self._repo = TimelineRepository(database)
        self._default_cap = (
            default_max_custom_timelines
            if default_max_custom_timelines is not None
            else settings.default_max_custom_timelines
        )
        self._batch_limit = batch_limit or settings.fanout_batch_limit

    @property
    def repository(self) -> TimelineRepository:
        return self._repo

    async def plan_limit(self, user_id: str) -> int:
        """View cap for a user; users without an active plan get the default."""
        limits = await self._repo.plan_limits([user_id])
        return limits.get(user_id, self._default_cap)

    async def materialize_view(self, preference: FilterPreference) -> FilterPreference:
        """
        Persist a new filtered timeline view for a user.

        Re-materializing a filter the user already has returns the existing
        view and does not count against the cap.

        Raises:
            PlanLimitExceeded: The user already has as many views as the plan allows
        """
        existing = await self._repo.find_view(preference.user_id, preference.signature)
        if existing is not None:
            return existing

        limit = await self.plan_limit(preference.user_id)
        current = await self._repo.count_views(preference.user_id)
        if current >= limit:
            get_metrics().plan_limit_rejections.inc()
            raise PlanLimitExceeded(preference.user_id, limit, current + 1)

        created = await self._repo.insert_view_within_limit(preference, limit)
        if created is not None:
            logger.info("timeline_view_created", user_id=preference.user_id, view_id=created.id)
            return created

        # Lost a race: either the same filter or another view got in first
        existing = await self._repo.find_view(preference.user_id, preference.signature)
        if existing is not None:
            return existing
        get_metrics().plan_limit_rejections.inc()
        raise PlanLimitExceeded(preference.user_id, limit, current + 1)

    async def fan_out(self, posts: list[NormalizedPost] | None = None) -> FanoutResult:
        """
        Project posts into every user's timeline.

        Args:
            posts: Newly stored posts. When None, every stored post not yet
                fanned out is drained in pages of ``batch_limit``.

        Returns:
            FanoutResult; users over their plan cap are reported in
            ``plan_limit_errors`` and still receive entries for the views
            within their cap.

        Raises:
            StoreFailure: Reading views or writing entries failed
        """
        result = FanoutResult()

        if posts is not None:
            batch = [p for p in posts if p.id is not None]
            if batch:
                targets = await self._load_targets(result)
                await self._fan_out_batch(batch, targets, result)
        else:
            # Views are loaded once, after the first page shows there is work
            targets = None
            async for batch in self._pending_batches():
                if targets is None:
                    targets = await self._load_targets(result)
                await self._fan_out_batch(batch, targets, result)

        metrics = get_metrics()
        for domain, count in result.entries_created.items():
            metrics.record_timeline_entries(domain, count)

        if result.posts_considered:
            logger.info(
                "fanout_completed",
                posts=result.posts_considered,
                users=result.users_considered,
                entries=result.total_entries,
                plan_limit_errors=len(result.plan_limit_errors),
            )
        return result

    async def _pending_batches(self) -> AsyncIterator[list[NormalizedPost]]:
        after_id = 0
        while True:
            batch = await self._repo.pending_posts(self._batch_limit, after_id=after_id)
            if not batch:
                return
            yield batch
            if len(batch) < self._batch_limit:
                return
            after_id = batch[-1].id

    async def _load_targets(self, result: FanoutResult) -> dict[str, list[FilterPreference]]:
        """Views each user may fan out into, trimmed to the user's plan cap."""
        views_by_user: dict[str, list[FilterPreference]] = {}
        for view in await self._repo.list_views():
            views_by_user.setdefault(view.user_id, []).append(view)

        limits = await self._repo.plan_limits(list(views_by_user))
        metrics = get_metrics()

        targets: dict[str, list[FilterPreference]] = {}
        for user_id, views in views_by_user.items():
            result.users_considered += 1
            limit = limits.get(user_id, self._default_cap)
            if len(views) > limit:
                error = PlanLimitExceeded(user_id, limit, len(views))
                result.plan_limit_errors.append(error)
                metrics.plan_limit_rejections.inc()
                logger.warning(
                    "plan_limit_exceeded",
                    user_id=user_id,
                    limit=limit,
                    views=len(views),
                )
            allowed = views[:limit]
            if allowed:
                targets[user_id] = allowed
        return targets

    async def _fan_out_batch(
        self,
        posts: list[NormalizedPost],
        targets: dict[str, list[FilterPreference]],
        result: FanoutResult,
    ) -> None:
        result.posts_considered += len(posts)
        for user_id, views in targets.items():
            rows = []
            for post in posts:
                view = next((v for v in views if v.matches(post)), None)
                if view is not None:
                    rows.append((post.id, post.domain.value, view.id, post.published_at))

            counts = await self._repo.insert_entries(user_id, rows)
            result.add_entries(counts)

        await self._repo.mark_fanned_out([p.id for p in posts])

    async def mark_read(self, user_id: str, post_id: int, is_read: bool = True) -> bool:
        return await self._repo.set_read(user_id, post_id, is_read)

    async def set_interest(self, user_id: str, post_id: int, is_interested: bool) -> bool:
        return await self._repo.set_interest(user_id, post_id, is_interested)
