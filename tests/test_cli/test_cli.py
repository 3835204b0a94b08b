"""Tests for the party-feed CLI."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from party_feed.cli import main
from party_feed.ingestion.http_client import Unreachable
from party_feed.ingestion.schemas import Platform
from party_feed.ingestion.validator import FeedValidation
from party_feed.services.scrape_orchestrator import RunResult, SourceErrorRecord
from party_feed.sources.service import SourceNotFound

SOURCE_ROW = {
    "id": 8,
    "scope": "party_hq",
    "owner_ref": None,
    "platform": "youtube",
    "account_name": "dpfp",
    "account_url": "https://www.youtube.com/@dpfp",
    "rss_url": "https://www.youtube.com/feeds/videos.xml?channel_id=UCxxxx",
    "scraping_url": None,
    "rss_feed_id": None,
    "prefecture": None,
    "is_active": True,
    "removed_at": None,
    "last_scraped_at": None,
    "created_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
    "updated_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def mock_db(mock_database):
    """Database mock usable as ``async with Database() as db``."""
    mock_database.__aenter__.return_value = mock_database
    mock_database.__aexit__.return_value = None
    return mock_database


def _orchestrator(result: RunResult) -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.run = AsyncMock(return_value=result)
    orchestrator.scrape_politicians = AsyncMock(return_value=result)
    orchestrator.scrape_source = AsyncMock(return_value=result)
    return orchestrator


def _result(success: bool = True) -> RunResult:
    return RunResult(
        run_type="sns",
        success=success,
        message="official: 3 new from 1 sources",
        counts={"official": 3},
        official_count=3,
        total=3,
        source_errors=[
            SourceErrorRecord(
                category="official",
                source="party_hq:twitter:hq2",
                source_id=2,
                error_type="SourceError",
                message="HTTP 404",
            )
        ],
    )


class TestInitDb:
    def test_creates_all_tables(self, runner, mock_db):
        with patch("party_feed.storage.database.Database", return_value=mock_db):
            result = runner.invoke(main, ["init-db"])

        assert result.exit_code == 0, result.output
        assert "Database initialized successfully" in result.output
        statements = [c.args[0] for c in mock_db.execute.await_args_list]
        assert "source_configs" in statements[0]
        assert "CREATE TABLE IF NOT EXISTS posts" in statements[1]
        assert "user_timeline_entries" in statements[2]


class TestScrape:
    def test_prints_summary(self, runner, mock_db):
        orchestrator = _orchestrator(_result())
        with patch("party_feed.storage.database.Database", return_value=mock_db), patch(
            "party_feed.services.scrape_orchestrator.ScrapeOrchestrator", return_value=orchestrator
        ):
            result = runner.invoke(main, ["scrape", "--type", "sns"])

        assert result.exit_code == 0, result.output
        assert "official: 3 new" in result.output
        assert "party_hq:twitter:hq2" in result.output
        orchestrator.run.assert_awaited_once_with("sns")

    def test_json_output(self, runner, mock_db):
        orchestrator = _orchestrator(_result())
        with patch("party_feed.storage.database.Database", return_value=mock_db), patch(
            "party_feed.services.scrape_orchestrator.ScrapeOrchestrator", return_value=orchestrator
        ):
            result = runner.invoke(main, ["scrape", "--type", "sns", "--json"])

        data = json.loads(result.output)
        assert data["officialCount"] == 3
        assert data["sourceErrors"][0]["source_id"] == 2

    def test_failed_run_exits_nonzero(self, runner, mock_db):
        orchestrator = _orchestrator(_result(success=False))
        with patch("party_feed.storage.database.Database", return_value=mock_db), patch(
            "party_feed.services.scrape_orchestrator.ScrapeOrchestrator", return_value=orchestrator
        ):
            result = runner.invoke(main, ["scrape"])

        assert result.exit_code == 1
        orchestrator.run.assert_awaited_once_with("all")

    def test_unknown_type_rejected(self, runner):
        result = runner.invoke(main, ["scrape", "--type", "weekly"])
        assert result.exit_code == 2

    def test_scrape_politicians(self, runner, mock_db):
        orchestrator = _orchestrator(_result())
        with patch("party_feed.storage.database.Database", return_value=mock_db), patch(
            "party_feed.services.scrape_orchestrator.ScrapeOrchestrator", return_value=orchestrator
        ):
            result = runner.invoke(main, ["scrape-politicians", "--politician-id", "p-1"])

        assert result.exit_code == 0, result.output
        orchestrator.scrape_politicians.assert_awaited_once_with("p-1")

    def test_scrape_unknown_source(self, runner, mock_db):
        orchestrator = _orchestrator(_result())
        orchestrator.scrape_source.side_effect = SourceNotFound("Source 9 not found")
        with patch("party_feed.storage.database.Database", return_value=mock_db), patch(
            "party_feed.services.scrape_orchestrator.ScrapeOrchestrator", return_value=orchestrator
        ):
            result = runner.invoke(main, ["scrape-source", "9"])

        assert result.exit_code == 1
        assert "Source 9 not found" in result.output


class TestValidateFeed:
    def test_valid_feed(self, runner):
        validation = FeedValidation(format="atom", item_count=15, platform=Platform.YOUTUBE, flags={"hasYouTubeContent": True})
        with patch("party_feed.sources.service.validate_feed_url", AsyncMock(return_value=validation)):
            result = runner.invoke(main, ["validate-feed", "https://www.youtube.com/feeds/videos.xml?channel_id=UCx", "--platform", "youtube"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["itemCount"] == 15

    def test_warnings_exit_2(self, runner):
        validation = FeedValidation(format="rss", item_count=0, warnings=["Feed contains no entries"])
        with patch("party_feed.sources.service.validate_feed_url", AsyncMock(return_value=validation)):
            result = runner.invoke(main, ["validate-feed", "https://example.org/feed"])

        assert result.exit_code == 2

    def test_unreachable(self, runner):
        with patch(
            "party_feed.sources.service.validate_feed_url",
            AsyncMock(side_effect=Unreachable("DNS failure")),
        ):
            result = runner.invoke(main, ["validate-feed", "https://example.invalid/feed"])

        assert result.exit_code == 1
        assert "Unreachable" in result.output


class TestSources:
    def test_list_empty(self, runner, mock_db):
        with patch("party_feed.storage.database.Database", return_value=mock_db):
            result = runner.invoke(main, ["sources", "list"])

        assert result.exit_code == 0, result.output
        assert "No sources configured" in result.output

    def test_list_rows(self, runner, mock_db):
        mock_db.fetch.return_value = [SOURCE_ROW]
        with patch("party_feed.storage.database.Database", return_value=mock_db):
            result = runner.invoke(main, ["sources", "list", "--scope", "party_hq"])

        assert "party_hq:youtube:dpfp" in result.output
        assert "active" in result.output

    def test_add(self, runner, mock_db):
        mock_db.fetchrow.return_value = SOURCE_ROW
        with patch("party_feed.storage.database.Database", return_value=mock_db):
            result = runner.invoke(
                main,
                [
                    "sources", "add",
                    "--scope", "party_hq",
                    "--platform", "youtube",
                    "--account-url", "https://www.youtube.com/@dpfp",
                    "--channel-id", "UCxxxx",
                ],
            )

        assert result.exit_code == 0, result.output
        assert "Created source 8" in result.output
        assert "channel_id=UCxxxx" in mock_db.fetchrow.await_args.args[6]

    def test_add_invalid(self, runner, mock_db):
        with patch("party_feed.storage.database.Database", return_value=mock_db):
            result = runner.invoke(
                main,
                ["sources", "add", "--scope", "politician", "--platform", "note", "--account-url", "https://note.com/p"],
            )

        assert result.exit_code == 1
        assert "owner_ref" in result.output
        mock_db.fetchrow.assert_not_called()

    def test_update_requires_changes(self, runner):
        result = runner.invoke(main, ["sources", "update", "8"])
        assert result.exit_code == 2
        assert "Nothing to update" in result.output

    def test_remove(self, runner, mock_db):
        mock_db.execute.return_value = "UPDATE 1"
        with patch("party_feed.storage.database.Database", return_value=mock_db):
            result = runner.invoke(main, ["sources", "remove", "8"])

        assert result.exit_code == 0, result.output
        assert "Removed source 8" in result.output

    def test_remove_unknown(self, runner, mock_db):
        mock_db.execute.return_value = "UPDATE 0"
        with patch("party_feed.storage.database.Database", return_value=mock_db):
            result = runner.invoke(main, ["sources", "remove", "99"])

        assert result.exit_code == 1
        assert "not found" in result.output


def test_health(runner, mock_db):
    mock_db.health_check = AsyncMock(return_value=True)
    with patch("party_feed.storage.database.Database", return_value=mock_db):
        result = runner.invoke(main, ["health"])

    assert result.exit_code == 0
    assert "postgres: True" in result.output
