"""Logging and metrics."""

from party_feed.observability.logging import bind_context, clear_context, get_logger, setup_logging
from party_feed.observability.metrics import MetricsCollector, get_metrics

__all__ = [
    "MetricsCollector",
    "bind_context",
    "clear_context",
    "get_logger",
    "get_metrics",
    "setup_logging",
]
