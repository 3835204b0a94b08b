"""
FastAPI trigger and admin service.

Provides:
- POST /api/scrape - Run a scrape run
- /api/admin/* - Source configuration management and feed checks
- GET /health - Service health check
"""

from party_feed.api.app import create_app

__all__ = ["create_app"]
