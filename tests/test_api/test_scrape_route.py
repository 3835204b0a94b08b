"""Tests for the scrape trigger endpoint."""

from party_feed.services.scrape_orchestrator import CategoryResult, RunResult
from party_feed.storage.database import StoreFailure


def _run_result(success: bool = True, run_type: str = "sns") -> RunResult:
    return RunResult(
        run_type=run_type,
        success=success,
        message="official: 3 new from 1 sources; prefecture: 2 new from 1 sources",
        counts={"official": 3, "prefecture": 2},
        official_count=3,
        pref_count=2,
        total=5,
        categories=[
            CategoryResult(category="official", success=success, new_count=3, sources_total=1),
            CategoryResult(category="prefecture", success=success, new_count=2, sources_total=1),
        ],
        timeline_entries=8,
    )


class TestTriggerScrape:
    def test_success(self, client, mock_orchestrator):
        mock_orchestrator.run.return_value = _run_result()

        response = client.post("/api/scrape", json={"type": "sns"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["runType"] == "sns"
        assert data["officialCount"] == 3
        assert data["prefCount"] == 2
        assert data["total"] == 5
        assert data["timelineEntries"] == 8
        mock_orchestrator.run.assert_awaited_once_with("sns")

    def test_missing_body_runs_everything(self, client, mock_orchestrator):
        mock_orchestrator.run.return_value = _run_result(run_type="all")

        response = client.post("/api/scrape")

        assert response.status_code == 200
        mock_orchestrator.run.assert_awaited_once_with(None)

    def test_failed_run_is_500_with_body(self, client, mock_orchestrator):
        mock_orchestrator.run.return_value = _run_result(success=False)

        response = client.post("/api/scrape", json={"type": "sns"})

        assert response.status_code == 500
        assert response.json()["success"] is False

    def test_store_failure_is_503(self, client, mock_orchestrator):
        mock_orchestrator.run.side_effect = StoreFailure("connection lost")

        response = client.post("/api/scrape", json={"type": "news"})

        assert response.status_code == 503
        assert response.json()["error_type"] == "store_failure"
