"""Application services that coordinate ingestion and fan-out."""

from party_feed.services.scrape_orchestrator import (
    Category,
    CategoryResult,
    RunResult,
    RunType,
    ScrapeOrchestrator,
    SourceErrorRecord,
)

__all__ = [
    "Category",
    "CategoryResult",
    "RunResult",
    "RunType",
    "ScrapeOrchestrator",
    "SourceErrorRecord",
]
