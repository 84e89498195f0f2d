"""Unit tests for portfolio/ingest.py -- JSON portfolio export parser.

Covers:
- Full export with applications, tasks and incidents
- Naive and "Z" timestamps normalized to aware UTC
- Enum values accepted by value or case-insensitively by name
- Malformed records skipped without failing the whole export
- Invalid JSON and non-object documents return an empty portfolio
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from core.models import ApplicationRole, Severity, TaskPriority, TaskStatus, TaskType, UsageLevel
from portfolio.ingest import application_from_dict, parse_datetime, parse_enum, parse_portfolio

_EXPORT = {
    "applications": [
        {
            "id": "app-1",
            "name": "Payroll",
            "last_sync_date": "2025-05-30T08:00:00Z",
            "last_activity_date": "2025-05-20T10:00:00",
            "usage": {"monthly_requests": 2500, "monthly_users": 40},
            "documentation": {"has_architecture_diagram": True},
            "security_findings": [
                {"id": "f1", "severity": "Critical", "title": "SQL injection", "file_path": "db.py", "line_number": 12},
                {"id": "f2", "severity": "low", "is_resolved": True},
            ],
            "role_assignments": [
                {"user_id": "u1", "user_name": "Alice", "role": "technical_lead", "assigned_date": "2024-01-01"},
            ],
            "key_dates": [{"id": "k1", "title": "SOX", "date": "2025-03-01T00:00:00Z", "type": "Audit"}],
            "has_readme": True,
            "readme_quality_score": 80,
        },
        {"id": "app-2", "name": "Ledger", "last_sync_date": "2025-05-30T08:00:00+02:00"},
    ],
    "tasks": [
        {
            "id": "t1",
            "title": "Revalidate Owner role for Payroll",
            "type": "RoleValidation",
            "status": "InProgress",
            "application_id": "app-1",
            "assignee_id": "u1",
            "due_date": "2025-06-15T00:00:00Z",
            "history": [{"id": "h1", "timestamp": "2025-05-16T00:00:00Z", "action": "Created"}],
        }
    ],
    "incidents": [
        {"id": "i1", "imported_at": "2025-05-01T00:00:00Z", "close_code": "Config", "application_id": "app-1"},
        {"id": "i2", "imported_at": "2025-05-02T00:00:00Z", "close_code": "", "application_id": "app-2"},
    ],
}


class TestFieldHelpers:
    def test_z_suffix(self) -> None:
        assert parse_datetime("2025-05-30T08:00:00Z") == datetime(2025, 5, 30, 8, tzinfo=timezone.utc)

    def test_naive_taken_as_utc(self) -> None:
        assert parse_datetime("2025-05-30T08:00:00").tzinfo == timezone.utc

    def test_offset_converted_to_utc(self) -> None:
        parsed = parse_datetime("2025-05-30T08:00:00+02:00")
        assert parsed == datetime(2025, 5, 30, 6, tzinfo=timezone.utc)
        assert parsed.utcoffset() == timedelta(0)

    def test_empty_is_none(self) -> None:
        assert parse_datetime(None) is None
        assert parse_datetime("") is None

    def test_non_string_rejected(self) -> None:
        with pytest.raises(TypeError):
            parse_datetime(20250530)

    @pytest.mark.parametrize("raw", ["TechnicalLead", "technicallead", "TECHNICAL_LEAD", "technical_lead"])
    def test_enum_spellings(self, raw) -> None:
        assert parse_enum(ApplicationRole, raw) == ApplicationRole.TECHNICAL_LEAD

    def test_unknown_enum_raises(self) -> None:
        with pytest.raises(ValueError):
            parse_enum(Severity, "Catastrophic")


class TestParsePortfolio:
    def test_full_export(self) -> None:
        portfolio = parse_portfolio(json.dumps(_EXPORT))
        assert [a.id for a in portfolio.applications] == ["app-1", "app-2"]

        app = portfolio.applications[0]
        assert app.usage.level == UsageLevel.MODERATE
        assert app.documentation.has_architecture_diagram
        assert not app.documentation.has_system_documentation
        assert [f.id for f in app.unresolved_findings] == ["f1"]
        assert app.security_findings[0].line_number == 12
        assert app.role_assignments[0].role == ApplicationRole.TECHNICAL_LEAD
        assert app.role_assignments[0].assigned_date.tzinfo == timezone.utc
        assert app.readme_quality_score == 80

        task = portfolio.tasks[0]
        assert task.type == TaskType.ROLE_VALIDATION
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.priority == TaskPriority.MEDIUM
        assert task.created_date == task.due_date
        assert task.history[0].performed_by == "System"

        assert portfolio.tasks_by_application() == {"app-1": [task]}
        assert [i.id for i in portfolio.incidents_for("app-1")] == ["i1"]
        assert portfolio.incidents[1].close_code is None

    def test_empty_incident_section_kept_distinct_from_absent(self) -> None:
        app = {"id": "app-1", "name": "Payroll", "last_sync_date": "2025-01-01"}
        listed = parse_portfolio(json.dumps({"applications": [app], "incidents": []}))
        absent = parse_portfolio(json.dumps({"applications": [app]}))
        assert listed.incidents == []
        assert listed.incidents_for("app-1") == []
        assert absent.incidents is None
        assert absent.incidents_for("app-1") is None

    def test_malformed_records_skipped(self) -> None:
        export = {
            "applications": [
                {"id": "ok", "name": "Fine", "last_sync_date": "2025-01-01T00:00:00Z"},
                {"id": "no-name", "last_sync_date": "2025-01-01T00:00:00Z"},
                {"id": "no-sync", "name": "Missing sync"},
                {"id": "bad-sev", "name": "X", "last_sync_date": "2025-01-01", "security_findings": [{"id": "f", "severity": "?"}]},
            ],
            "tasks": [{"id": "t", "title": "No due date", "type": "Custom", "application_id": "ok", "assignee_id": "u"}],
        }
        portfolio = parse_portfolio(json.dumps(export))
        assert [a.id for a in portfolio.applications] == ["ok"]
        assert portfolio.tasks == []

    @pytest.mark.parametrize("content", ["not json", "[1, 2]", "null", ""])
    def test_unusable_documents_give_empty_portfolio(self, content) -> None:
        portfolio = parse_portfolio(content)
        assert portfolio.applications == []
        assert portfolio.tasks == []
        assert portfolio.incidents is None

    def test_application_defaults(self) -> None:
        app = application_from_dict({"id": 7, "name": "Minimal", "last_sync_date": "2025-01-01"})
        assert app.id == "7"
        assert app.usage is None
        assert app.security_findings == []
        assert app.documentation.completeness_score == 0
        assert app.exposed_secrets_count == 0
