"""
Dependency injection for FastAPI endpoints.
"""

from party_feed.services.scrape_orchestrator import ScrapeOrchestrator
from party_feed.sources.service import SourceConfigRegistry
from party_feed.storage.database import Database
from party_feed.storage.database import close_database as _close_database
from party_feed.storage.database import get_database as _get_database


async def get_database() -> Database:
    """Get the shared database, connecting on first use."""
    return await _get_database()


async def get_registry() -> SourceConfigRegistry:
    db = await get_database()
    return SourceConfigRegistry(db)


async def get_orchestrator() -> ScrapeOrchestrator:
    """Orchestrators are cheap and stateless between runs; build one per request."""
    db = await get_database()
    return ScrapeOrchestrator(db)


async def cleanup_dependencies() -> None:
    """Release resources held by shared dependencies."""
    await _close_database()
