"""
Prometheus metrics for the ingestion and fan-out pipeline.

Covers:
- Posts stored per scope and platform
- Entries skipped during normalization
- Per-source failures
- Fetch and run latency
- Timeline entries created and plan-limit rejections
"""

import logging

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    start_http_server,
)

from party_feed.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0, 30.0)
RUN_BUCKETS = (1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0)


class MetricsCollector:
    """
    Prometheus metrics collector for party-feed.

    Usage:
        metrics = get_metrics()
        metrics.record_posts_stored("party_hq", "youtube", 3)
        metrics.fetch_latency.labels(platform="youtube").observe(0.4)
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self._registry = registry or REGISTRY

        self.posts_stored = Counter(
            "party_feed_posts_stored_total",
            "Total number of new posts stored",
            ["scope", "platform"],
            registry=self._registry,
        )

        self.entries_skipped = Counter(
            "party_feed_entries_skipped_total",
            "Feed entries dropped as structurally unusable",
            ["platform", "reason"],
            registry=self._registry,
        )

        self.source_errors = Counter(
            "party_feed_source_errors_total",
            "Per-source failures during a scrape run",
            ["category", "error_type"],
            registry=self._registry,
        )

        self.fetch_latency = Histogram(
            "party_feed_fetch_latency_seconds",
            "Time to fetch one feed or page",
            ["platform"],
            buckets=LATENCY_BUCKETS,
            registry=self._registry,
        )

        self.run_duration = Histogram(
            "party_feed_run_duration_seconds",
            "Wall time of one scrape run",
            ["run_type"],
            buckets=RUN_BUCKETS,
            registry=self._registry,
        )

        self.runs = Counter(
            "party_feed_runs_total",
            "Scrape runs by outcome",
            ["run_type", "status"],  # status: success, failure
            registry=self._registry,
        )

        self.timeline_entries_created = Counter(
            "party_feed_timeline_entries_created_total",
            "User timeline entries created by fan-out",
            ["domain"],
            registry=self._registry,
        )

        self.plan_limit_rejections = Counter(
            "party_feed_plan_limit_rejections_total",
            "Timeline views rejected because of the subscription cap",
            registry=self._registry,
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """Start the Prometheus metrics HTTP server."""
        port = port or get_settings().metrics_port
        start_http_server(port, registry=self._registry)
        logger.info(f"Prometheus metrics server started on port {port}")

    def record_posts_stored(self, scope: str, platform: str, count: int) -> None:
        if count > 0:
            self.posts_stored.labels(scope=scope, platform=platform).inc(count)

    def record_skip(self, platform: str, reason: str) -> None:
        self.entries_skipped.labels(platform=platform, reason=reason).inc()

    def record_source_error(self, category: str, error_type: str) -> None:
        self.source_errors.labels(category=category, error_type=error_type).inc()

    def record_run(self, run_type: str, success: bool, duration: float) -> None:
        """Record the outcome and duration of a scrape run."""
        status = "success" if success else "failure"
        self.runs.labels(run_type=run_type, status=status).inc()
        self.run_duration.labels(run_type=run_type).observe(duration)

    def record_timeline_entries(self, domain: str, count: int) -> None:
        if count > 0:
            self.timeline_entries_created.labels(domain=domain).inc(count)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """
    Get global metrics collector instance.

    Creates the collector on first call.
    """
    global _metrics

    if _metrics is None:
        _metrics = MetricsCollector()

    return _metrics
