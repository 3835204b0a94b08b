"""Shared fixtures for API tests."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from party_feed.api.app import create_app
from party_feed.api.dependencies import get_database, get_orchestrator, get_registry
from party_feed.ingestion.schemas import Platform, Scope
from party_feed.sources.schemas import SourceConfig


def _make_source(source_id: int = 7, **kwargs) -> SourceConfig:
    """SourceConfig with sensible defaults, as the registry returns it."""
    fields = {
        "scope": Scope.PREFECTURE,
        "owner_ref": "13",
        "platform": Platform.TWITTER,
        "account_name": "dpfp_tokyo",
        "account_url": "https://x.com/dpfp_tokyo",
        "rss_feed_id": "tokyo123",
        "created_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
        "updated_at": datetime(2025, 1, 2, tzinfo=timezone.utc),
    }
    fields.update(kwargs)
    return SourceConfig(id=source_id, **fields)


@pytest.fixture
def source_factory():
    return _make_source


@pytest.fixture
def mock_registry():
    registry = MagicMock()
    registry.create = AsyncMock(side_effect=lambda source, channel_id=None: _make_source(11))
    registry.update = AsyncMock(return_value=_make_source(is_active=False))
    registry.delete = AsyncMock(return_value=None)
    registry.list_sources = AsyncMock(return_value=[_make_source()])
    registry.validate_feed_url = AsyncMock()
    return registry


@pytest.fixture
def mock_orchestrator():
    orchestrator = MagicMock()
    orchestrator.run = AsyncMock()
    return orchestrator


@pytest.fixture
def mock_db():
    db = AsyncMock()
    db.health_check = AsyncMock(return_value=True)
    return db


@pytest.fixture
def client(mock_registry, mock_orchestrator, mock_db):
    """FastAPI TestClient with dependency overrides."""
    app = create_app()

    app.dependency_overrides[get_registry] = lambda: mock_registry
    app.dependency_overrides[get_orchestrator] = lambda: mock_orchestrator
    app.dependency_overrides[get_database] = lambda: mock_db

    yield TestClient(app)

    app.dependency_overrides.clear()
