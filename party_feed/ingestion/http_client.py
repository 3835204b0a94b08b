"""
HTTP fetch layer for feeds and public pages.

Provides:
- FeedFetcher: single-attempt async GET with feed-appropriate headers
- FetchError hierarchy: Unreachable, Timeout, SourceError
- RetryConfig: exponential backoff policy applied by the orchestrator

FeedFetcher never retries; the caller decides whether a failure is worth
another attempt using RetryConfig.
"""

import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from party_feed.config.settings import get_settings
from party_feed.ingestion.schemas import Platform

logger = logging.getLogger(__name__)

FEED_ACCEPT = "application/rss+xml, application/xml, text/xml, application/atom+xml"
PAGE_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
JSON_ACCEPT = "application/json"


class FetchKind(str, Enum):
    """What kind of payload a target is expected to return."""

    FEED = "feed"
    PAGE = "page"
    JSON = "json"


_ACCEPT_BY_KIND = {
    FetchKind.FEED: FEED_ACCEPT,
    FetchKind.PAGE: PAGE_ACCEPT,
    FetchKind.JSON: JSON_ACCEPT,
}


@dataclass(frozen=True)
class FetchTarget:
    """A URL to fetch plus the platform it belongs to."""

    url: str
    platform: Platform | None = None
    kind: FetchKind = FetchKind.FEED


@dataclass
class FetchResult:
    """Raw payload and status of a successful fetch."""

    url: str
    status_code: int
    content: bytes
    text: str
    content_type: str | None = None
    final_url: str | None = None
    elapsed: float = 0.0


class FetchError(Exception):
    """Base exception for fetch failures."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class Unreachable(FetchError):
    """Network-level failure (DNS, connection refused, TLS, ...)."""


class Timeout(FetchError):
    """The request did not complete within the configured timeout."""


class SourceError(FetchError):
    """The server answered with a non-success status."""

    def __init__(self, message: str, status_code: int, url: str | None = None):
        super().__init__(message, url=url)
        self.status_code = status_code


@dataclass
class RetryConfig:
    """
    Exponential backoff configuration for fetch retries.

    Formula: min(max_backoff, base_delay * 2^attempt) * (1 + random(0, jitter_factor))
    """

    max_retries: int = 2
    max_backoff_seconds: float = 10.0
    base_delay: float = 1.0
    jitter_factor: float = 0.1

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        settings = get_settings()
        return cls(
            max_retries=settings.max_fetch_retries,
            max_backoff_seconds=settings.max_backoff_seconds,
        )

    def calculate_backoff(self, attempt: int) -> float:
        """
        Calculate backoff duration for a given retry attempt.

        Args:
            attempt: The retry attempt number (0-indexed)

        Returns:
            Backoff duration in seconds with jitter applied
        """
        delay = min(self.base_delay * (2**attempt), self.max_backoff_seconds)
        return delay + delay * self.jitter_factor * random.random()

    def is_retryable_status(self, status_code: int) -> bool:
        """429 and the transient 5xx codes are worth retrying."""
        return status_code in {429, 500, 502, 503, 504}

    def is_retryable(self, exc: Exception) -> bool:
        """Check if a fetch failure should trigger another attempt."""
        if isinstance(exc, SourceError):
            return self.is_retryable_status(exc.status_code)
        return isinstance(exc, (Timeout, Unreachable))


class FeedFetcher:
    """
    Async HTTP GET for feeds and pages.

    Sends an identifying User-Agent and an Accept header matching the target
    kind, with a bounded timeout. Use as an async context manager so the
    underlying connection pool is shared across one run.

    Example:
        async with FeedFetcher() as fetcher:
            result = await fetcher.fetch(FetchTarget(url, Platform.YOUTUBE))
    """

    def __init__(
        self,
        timeout: float | None = None,
        user_agent: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        self.timeout = timeout or settings.fetch_timeout_seconds
        self.user_agent = user_agent or settings.user_agent
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "FeedFetcher":
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
            )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch(self, target: FetchTarget) -> FetchResult:
        """
        Perform one GET against the target.

        Raises:
            Timeout: Request exceeded the timeout
            Unreachable: Network-level failure
            SourceError: Non-2xx response
        """
        started = time.monotonic()
        response = await self._get(
            target.url,
            headers={"Accept": _ACCEPT_BY_KIND[target.kind]},
        )
        return FetchResult(
            url=target.url,
            status_code=response.status_code,
            content=response.content,
            text=response.text,
            content_type=response.headers.get("content-type"),
            final_url=str(response.url),
            elapsed=time.monotonic() - started,
        )

    async def fetch_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """GET a JSON document. Raises the same errors as fetch()."""
        response = await self._get(url, params=params, headers={"Accept": JSON_ACCEPT})
        try:
            return response.json()
        except ValueError as e:
            raise SourceError(
                f"Invalid JSON from {url}", status_code=response.status_code, url=url
            ) from e

    async def _get(
        self,
        url: str,
        headers: dict[str, str],
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        if not self._client:
            raise RuntimeError("FeedFetcher must be used as async context manager")

        request_headers = {"User-Agent": self.user_agent, **headers}
        started = time.monotonic()
        try:
            response = await self._client.get(
                url,
                params=params,
                headers=request_headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise Timeout(f"Timed out after {self.timeout:.0f}s fetching {url}", url=url) from e
        except (httpx.RequestError, httpx.InvalidURL) as e:
            raise Unreachable(f"{type(e).__name__} fetching {url}: {e}", url=url) from e

        logger.debug(
            f"GET {url} -> {response.status_code} in {time.monotonic() - started:.2f}s"
        )

        if not 200 <= response.status_code < 300:
            raise SourceError(
                f"HTTP {response.status_code} from {url}",
                status_code=response.status_code,
                url=url,
            )
        return response

