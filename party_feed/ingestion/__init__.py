"""Ingestion: fetching, validating, normalizing and deduplicating feed content."""

from party_feed.ingestion.deduplication import DedupStore, compute_dedup_key
from party_feed.ingestion.feed_parser import parse_feed
from party_feed.ingestion.http_client import (
    FeedFetcher,
    FetchError,
    FetchKind,
    FetchResult,
    FetchTarget,
    RetryConfig,
    SourceError,
    Timeout,
    Unreachable,
)
from party_feed.ingestion.normalizer import NormalizationSkip, PlatformNormalizer
from party_feed.ingestion.schemas import (
    NATIONWIDE_PREFECTURE,
    NormalizedPost,
    Platform,
    PostDomain,
    RawEntry,
    Scope,
)
from party_feed.ingestion.validator import FeedValidation, FeedValidator, InvalidFormat

__all__ = [
    "NATIONWIDE_PREFECTURE",
    "DedupStore",
    "FeedFetcher",
    "FeedValidation",
    "FeedValidator",
    "FetchError",
    "FetchKind",
    "FetchResult",
    "FetchTarget",
    "InvalidFormat",
    "NormalizationSkip",
    "NormalizedPost",
    "Platform",
    "PlatformNormalizer",
    "PostDomain",
    "RawEntry",
    "RetryConfig",
    "Scope",
    "SourceError",
    "Timeout",
    "Unreachable",
    "compute_dedup_key",
    "parse_feed",
]
