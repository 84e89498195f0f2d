"""
tests/test_cli.py -- End-to-end tests for the command-line entry point (main.py)
and the terminal/JSON renderers in core/formatter.py.

Covers:
  - score: terminal summary and JSON output from a portfolio export
  - generate-tasks: persists to the given database, --dry-run persists nothing
  - refresh-eol: feed patched, exit code reflects per-family failures
  - Unreadable or empty exports exit non-zero without a traceback
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from core.fetcher import FeedFetchError
from core.formatter import strip_ansi
from core.models import FrameworkType
from main import main
from portfolio.store import PortfolioStore


def _iso(days_ago: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days_ago)).isoformat()


@pytest.fixture
def export_file(tmp_path):
    export = {
        "applications": [
            {
                "id": "cli-1",
                "name": "Payroll",
                "last_sync_date": _iso(0),
                "usage": {"level": "High"},
                "last_activity_date": _iso(3),
                "documentation": {"has_architecture_diagram": True, "has_system_documentation": True},
                "role_assignments": [
                    {
                        "user_id": "u1",
                        "user_name": "Alice",
                        "role": "Owner",
                        "assigned_date": _iso(500),
                        "last_validated_date": _iso(300),
                    }
                ],
                "security_review": {"is_completed": True, "completed_date": _iso(5)},
            },
            {"id": "cli-2", "name": "Ledger", "last_sync_date": _iso(0), "has_data_conflicts": True},
        ]
    }
    path = tmp_path / "portfolio.json"
    path.write_text(json.dumps(export))
    return path


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'cli.db'}"


class TestScore:
    def test_terminal_summary(self, export_file, capsys) -> None:
        assert main(["--no-color", "score", str(export_file)]) == 0
        out = strip_ansi(capsys.readouterr().out)
        assert "PORTFOLIO HEALTH — 2 applications" in out
        assert "Payroll" in out
        assert "Ledger" in out

    def test_json_output(self, export_file, capsys) -> None:
        assert main(["score", str(export_file), "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        scores = {r["application_id"]: r["final_score"] for r in data["results"]}
        assert scores == {"cli-1": 100, "cli-2": 50}
        assert data["results"][0]["category"] == "Healthy"
        assert data["summary"]["total_applications"] == 2

    def test_empty_incident_list_scored(self, export_file, capsys) -> None:
        main(["score", str(export_file), "--json"])
        without = json.loads(capsys.readouterr().out)["results"][0]
        assert without["incident_details"] is None

        export = json.loads(export_file.read_text())
        export["incidents"] = []
        export_file.write_text(json.dumps(export))
        main(["score", str(export_file), "--json"])
        listed = json.loads(capsys.readouterr().out)["results"][0]
        assert listed["incident_details"]["total_incidents"] == 0
        assert listed["incident_penalty"] == 0

    def test_missing_file(self, tmp_path, capsys) -> None:
        assert main(["score", str(tmp_path / "nope.json")]) == 1
        assert "is not a readable file" in capsys.readouterr().out

    def test_export_without_applications(self, tmp_path, capsys) -> None:
        path = tmp_path / "empty.json"
        path.write_text("{}")
        assert main(["score", str(path)]) == 1
        assert "No applications found" in capsys.readouterr().out


class TestGenerateTasks:
    def test_persists_tasks(self, export_file, db_url, capsys) -> None:
        main(["generate-tasks", str(export_file), "--db", db_url, "--json"])
        data = json.loads(capsys.readouterr().out)
        assert data["tasks_by_type"]["RoleValidation"] == 1

        store = PortfolioStore(db_url)
        try:
            assert len(store.list_tasks(application_id="cli-1", task_type=None)) >= 1
        finally:
            store.close()

        main(["generate-tasks", str(export_file), "--db", db_url, "--json"])
        assert json.loads(capsys.readouterr().out)["tasks_created"] == 0

    def test_dry_run_persists_nothing(self, export_file, db_url, capsys) -> None:
        main(["--no-color", "generate-tasks", str(export_file), "--db", db_url, "--dry-run"])
        out = strip_ansi(capsys.readouterr().out)
        assert "TASK GENERATION (dry run)" in out
        assert "Revalidate Owner role for Payroll" in out

        store = PortfolioStore(db_url)
        try:
            assert store.list_tasks() == []
        finally:
            store.close()


class TestRefreshEol:
    def test_refresh_and_exit_code(self, db_url, capsys) -> None:
        def fake_fetch(framework):
            if framework == FrameworkType.NODEJS:
                raise FeedFetchError(framework, "Network error: timed out")
            return [{"cycle": "3.12", "eol": "2099-10-31", "support": "2099-04-02"}]

        with patch("core.pipeline.fetch_eol_feed", side_effect=fake_fetch):
            code = main(
                ["refresh-eol", "--framework", "python", "--framework", "nodejs", "--db", db_url, "--no-cache", "--json"]
            )
        assert code == 1
        data = json.loads(capsys.readouterr().out)
        assert data["success"] is False
        assert [v["id"] for v in data["added"]] == ["python-3.12"]
        assert data["errors"] == [{"framework": "nodejs", "message": "Network error: timed out"}]

        store = PortfolioStore(db_url)
        try:
            assert store.get_framework_version("python-3.12") is not None
        finally:
            store.close()

    def test_terminal_output(self, db_url, capsys) -> None:
        with patch("core.pipeline.fetch_eol_feed", return_value=[{"cycle": "20", "eol": "2099-04-30"}]):
            code = main(["--no-color", "refresh-eol", "--framework", "nodejs", "--db", db_url, "--no-cache"])
        assert code == 0
        out = strip_ansi(capsys.readouterr().out)
        assert "EOL REFRESH — 1 added, 0 updated, 0 unchanged" in out
        assert "Node.js 20" in out


def test_no_command_prints_help(capsys) -> None:
    assert main([]) == 0
    assert "usage:" in capsys.readouterr().out
