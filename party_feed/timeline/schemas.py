"""Data models for per-user timelines."""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime

from party_feed.ingestion.schemas import (
    NATIONWIDE_PREFECTURE,
    PREFECTURE_CODES,
    NormalizedPost,
    PostDomain,
)

VALID_NEWS_CATEGORIES = frozenset({
    "party_hq",
    "policy",
    "parliament",
    "election",
    "party_declaration",
    "announcement",
    "national_democratic_press_outer",
    "other",
})
VALID_EVENT_CATEGORIES = frozenset({
    "candidate_recruitment",
    "street_campaign_support",
    "party_hq_regular_posting",
    "poster_posting",
    "poster_display",
    "indoor_work",
    "citizen_campus",
    "town_meeting",
    "off_meeting",
    "indoor_event_support",
    "other",
})
VALID_SNS_CATEGORIES = frozenset({"party_hq", "politician", "prefecture"})


@dataclass
class FilterPreference:
    """
    One filtered timeline view belonging to a user.

    Empty category or prefecture sets mean "no filter" on that dimension.
    """

    user_id: str
    name: str = ""
    news_categories: frozenset[str] = field(default_factory=frozenset)
    event_categories: frozenset[str] = field(default_factory=frozenset)
    sns_categories: frozenset[str] = field(default_factory=frozenset)
    prefectures: frozenset[str] = field(default_factory=frozenset)
    id: int | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("user_id is required")
        self.news_categories = frozenset(self.news_categories)
        self.event_categories = frozenset(self.event_categories)
        self.sns_categories = frozenset(self.sns_categories)
        self.prefectures = frozenset(self.prefectures)
        _check_subset("news_categories", self.news_categories, VALID_NEWS_CATEGORIES)
        _check_subset("event_categories", self.event_categories, VALID_EVENT_CATEGORIES)
        _check_subset("sns_categories", self.sns_categories, VALID_SNS_CATEGORIES)
        _check_subset("prefectures", self.prefectures, PREFECTURE_CODES)

    @property
    def signature(self) -> str:
        """Identity of the filter itself; equal filters are the same view."""
        payload = json.dumps(
            {
                "news": sorted(self.news_categories),
                "event": sorted(self.event_categories),
                "sns": sorted(self.sns_categories),
                "prefectures": sorted(self.prefectures),
            },
            separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]

    def categories_for(self, domain: PostDomain) -> frozenset[str]:
        if domain is PostDomain.NEWS:
            return self.news_categories
        if domain is PostDomain.EVENT:
            return self.event_categories
        return self.sns_categories

    def matches_category(self, domain: PostDomain, category: str | None) -> bool:
        selected = self.categories_for(domain)
        return not selected or category in selected

    def matches_prefecture(self, prefecture: str | None) -> bool:
        if not self.prefectures:
            return True
        if prefecture == NATIONWIDE_PREFECTURE:
            return True
        return prefecture in self.prefectures

    def matches(self, post: NormalizedPost) -> bool:
        """Category and prefecture predicates, both must hold."""
        return self.matches_category(post.domain, post.category) and self.matches_prefecture(
            post.prefecture
        )


def _check_subset(name: str, values: frozenset[str], allowed: frozenset[str]) -> None:
    unknown = values - allowed
    if unknown:
        raise ValueError(f"Invalid {name}: {', '.join(sorted(unknown))}")


@dataclass
class SubscriptionPlan:
    id: str
    max_custom_timelines: int
    is_active: bool = True
    name: str = ""

    def __post_init__(self) -> None:
        if self.max_custom_timelines < 0:
            raise ValueError("max_custom_timelines must be >= 0")


@dataclass
class UserTimelineEntry:
    """A post projected into one user's timeline."""

    user_id: str
    post_id: int
    domain: PostDomain
    displayed_at: datetime
    view_id: int | None = None
    is_read: bool = False
    is_interested: bool = False
    id: int | None = None
    created_at: datetime | None = None
