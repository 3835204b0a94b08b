"""Timeline: per-user fan-out of ingested posts."""

from party_feed.timeline.fanout import FanoutResult, PlanLimitExceeded, TimelineFanoutEngine
from party_feed.timeline.repository import TimelineRepository
from party_feed.timeline.schemas import (
    FilterPreference,
    SubscriptionPlan,
    UserTimelineEntry,
)

__all__ = [
    "FanoutResult",
    "FilterPreference",
    "PlanLimitExceeded",
    "SubscriptionPlan",
    "TimelineFanoutEngine",
    "TimelineRepository",
    "UserTimelineEntry",
]
