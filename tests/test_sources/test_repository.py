"""Tests for SourceConfigRepository."""

import pytest

from party_feed.ingestion.schemas import Platform, Scope
from party_feed.sources.repository import SourceConfigRepository


@pytest.fixture
def repo(mock_database) -> SourceConfigRepository:
    return SourceConfigRepository(mock_database)


class TestSourceConfigRepository:
    @pytest.mark.asyncio
    async def test_create_table(self, repo, mock_database):
        await repo.create_table()

        sql = mock_database.execute.call_args[0][0]
        assert "CREATE TABLE IF NOT EXISTS source_configs" in sql
        assert "uq_source_configs_account" in sql

    @pytest.mark.asyncio
    async def test_insert_returns_stored_row(self, repo, mock_database, sample_source, sample_db_row):
        mock_database.fetchrow.return_value = sample_db_row

        stored = await repo.insert(sample_source)

        assert stored.id == 7
        assert stored.scope is Scope.PREFECTURE
        assert stored.platform is Platform.TWITTER
        args = mock_database.fetchrow.call_args[0]
        assert args[1:4] == ("prefecture", "13", "twitter")

    @pytest.mark.asyncio
    async def test_get_excludes_removed_by_default(self, repo, mock_database):
        assert await repo.get(99) is None
        assert "removed_at IS NULL" in mock_database.fetchrow.call_args[0][0]

        await repo.get(99, include_removed=True)
        assert "removed_at" not in mock_database.fetchrow.call_args[0][0]

    @pytest.mark.asyncio
    async def test_list_with_filters(self, repo, mock_database, sample_db_row):
        mock_database.fetch.return_value = [sample_db_row]

        sources = await repo.list_sources(scope=Scope.PREFECTURE, owner_ref="13", active_only=True)

        assert len(sources) == 1
        sql, *params = mock_database.fetch.call_args[0]
        assert "is_active = TRUE" in sql
        assert "scope = $1" in sql
        assert "owner_ref = $2" in sql
        assert params == ["prefecture", "13"]

    @pytest.mark.asyncio
    async def test_list_without_filters_still_hides_removed(self, repo, mock_database):
        await repo.list_sources()

        sql = mock_database.fetch.call_args[0][0]
        assert "WHERE removed_at IS NULL" in sql

    @pytest.mark.asyncio
    async def test_mark_removed(self, repo, mock_database):
        mock_database.execute.return_value = "UPDATE 1"
        assert await repo.mark_removed(7) is True

        mock_database.execute.return_value = "UPDATE 0"
        assert await repo.mark_removed(7) is False

    @pytest.mark.asyncio
    async def test_purge(self, repo, mock_database):
        mock_database.execute.return_value = "DELETE 1"
        assert await repo.purge(7) is True
        assert "DELETE FROM source_configs" in mock_database.execute.call_args[0][0]

    @pytest.mark.asyncio
    async def test_count_posts_defaults_to_zero(self, repo, mock_database):
        assert await repo.count_posts(7) == 0

        mock_database.fetchval.return_value = 4
        assert await repo.count_posts(7) == 4
