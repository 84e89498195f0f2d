"""
portfolio/ingest.py -- JSON portfolio export parser.

Turns the export written by the data-sync collaborators into domain records:

    {
      "applications": [{"id": "app-1", "name": "Payroll", "last_sync_date": "2025-01-01T00:00:00Z", ...}],
      "tasks":        [{"id": "t-1", "type": "SecurityRemediation", "priority": "Critical", ...}],
      "incidents":    [{"id": "inc-1", "imported_at": "2025-01-01T00:00:00Z", "close_code": "Config", ...}]
    }

Keys are snake_case, enum values are written by name ("TechnicalArchitect",
"Critical") and dates are ISO 8601. Naive timestamps are taken as UTC.

Pipeline:
  export file -> parse_portfolio() -> Portfolio
  -> caller: calculate_health_score() / generate_tasks() -> PortfolioStore

The *_from_dict() helpers raise on a malformed record (KeyError, ValueError,
TypeError); parse_portfolio() skips such records with a warning and never
raises to the caller. The API reuses the helpers on already-validated
request bodies.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional, TypeVar

from core.models import (
    Application,
    ApplicationRole,
    DocumentationStatus,
    Incident,
    KeyDate,
    KeyDateType,
    LifecycleTask,
    RoleAssignment,
    SecurityFinding,
    SecurityReview,
    Severity,
    TaskHistoryEntry,
    TaskPriority,
    TaskStatus,
    TaskType,
    UsageLevel,
    UsageMetrics,
)

logger = logging.getLogger("lifecycle.ingest")

E = TypeVar("E", bound=Enum)


@dataclass
class Portfolio:
    applications: list[Application] = field(default_factory=list)
    tasks: list[LifecycleTask] = field(default_factory=list)
    # None when the export has no incidents section; [] when it lists none.
    incidents: Optional[list[Incident]] = None

    def tasks_by_application(self) -> dict[str, list[LifecycleTask]]:
        grouped: dict[str, list[LifecycleTask]] = {}
        for task in self.tasks:
            grouped.setdefault(task.application_id, []).append(task)
        return grouped

    def incidents_for(self, application_id: str) -> Optional[list[Incident]]:
        if self.incidents is None:
            return None
        return [i for i in self.incidents if i.application_id == application_id]


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def parse_datetime(value: Any) -> Optional[datetime]:
    """ISO 8601 string (or datetime) -> aware UTC datetime. None passes through."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        # fromisoformat() only accepts a trailing "Z" from 3.11 on
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise TypeError(f"Expected an ISO 8601 string, got {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _required_datetime(value: Any, name: str) -> datetime:
    dt = parse_datetime(value)
    if dt is None:
        raise ValueError(f"{name} is required")
    return dt


def parse_enum(enum_cls: type[E], value: Any) -> E:
    """Enum member by value, falling back to a case-insensitive match."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        wanted = str(value).replace("_", "").lower()
        for member in enum_cls:
            if member.value.lower() == wanted or member.name.replace("_", "").lower() == wanted:
                return member
        raise


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


# ---------------------------------------------------------------------------
# Record parsers
# ---------------------------------------------------------------------------


def finding_from_dict(d: dict) -> SecurityFinding:
    line = d.get("line_number")
    return SecurityFinding(
        id=str(d["id"]),
        severity=parse_enum(Severity, d["severity"]),
        title=d.get("title") or "",
        is_resolved=bool(d.get("is_resolved", False)),
        file_path=d.get("file_path"),
        line_number=int(line) if line is not None else None,
        detected_date=parse_datetime(d.get("detected_date")),
        resolved_date=parse_datetime(d.get("resolved_date")),
    )


def role_from_dict(d: dict) -> RoleAssignment:
    return RoleAssignment(
        user_id=str(d["user_id"]),
        user_name=d.get("user_name") or str(d["user_id"]),
        user_email=d.get("user_email") or "",
        role=parse_enum(ApplicationRole, d["role"]),
        assigned_date=_required_datetime(d.get("assigned_date"), "assigned_date"),
        last_validated_date=parse_datetime(d.get("last_validated_date")),
        needs_revalidation=bool(d.get("needs_revalidation", False)),
    )


def key_date_from_dict(d: dict) -> KeyDate:
    return KeyDate(
        id=str(d["id"]),
        title=d.get("title") or "",
        description=d.get("description"),
        date=_required_datetime(d.get("date"), "date"),
        type=parse_enum(KeyDateType, d.get("type") or KeyDateType.OTHER.value),
    )


def _usage_from_dict(d: Optional[dict]) -> Optional[UsageMetrics]:
    if d is None:
        return None
    level = d.get("level")
    return UsageMetrics(
        monthly_requests=int(d.get("monthly_requests") or 0),
        monthly_users=int(d.get("monthly_users") or 0),
        explicit_level=parse_enum(UsageLevel, level) if level else None,
    )


def _review_from_dict(d: Optional[dict]) -> Optional[SecurityReview]:
    if d is None:
        return None
    return SecurityReview(
        is_completed=bool(d.get("is_completed", False)),
        completed_date=parse_datetime(d.get("completed_date")),
        next_review_date=parse_datetime(d.get("next_review_date")),
    )


def application_from_dict(d: dict) -> Application:
    docs = d.get("documentation") or {}
    quality = d.get("readme_quality_score")
    return Application(
        id=str(d["id"]),
        name=d["name"],
        last_sync_date=_required_datetime(d.get("last_sync_date"), "last_sync_date"),
        health_score=int(d.get("health_score") or 0),
        security_findings=[finding_from_dict(f) for f in d.get("security_findings") or []],
        usage=_usage_from_dict(d.get("usage")),
        last_activity_date=parse_datetime(d.get("last_activity_date")),
        documentation=DocumentationStatus(
            has_architecture_diagram=bool(docs.get("has_architecture_diagram", False)),
            has_system_documentation=bool(docs.get("has_system_documentation", False)),
            has_user_documentation=bool(docs.get("has_user_documentation", False)),
            has_support_documentation=bool(docs.get("has_support_documentation", False)),
        ),
        role_assignments=[role_from_dict(r) for r in d.get("role_assignments") or []],
        key_dates=[key_date_from_dict(k) for k in d.get("key_dates") or []],
        security_review=_review_from_dict(d.get("security_review")),
        has_data_conflicts=bool(d.get("has_data_conflicts", False)),
        repository_url=d.get("repository_url"),
        exposed_secrets_count=int(d.get("exposed_secrets_count") or 0),
        has_readme=bool(d.get("has_readme", False)),
        readme_quality_score=int(quality) if quality is not None else None,
    )


def _history_from_dict(d: dict) -> TaskHistoryEntry:
    return TaskHistoryEntry(
        id=str(d["id"]),
        timestamp=_required_datetime(d.get("timestamp"), "timestamp"),
        action=d["action"],
        performed_by=d.get("performed_by") or "System",
        performed_by_id=d.get("performed_by_id"),
        old_value=d.get("old_value"),
        new_value=d.get("new_value"),
        notes=d.get("notes"),
    )


def task_from_dict(d: dict) -> LifecycleTask:
    due = _required_datetime(d.get("due_date"), "due_date")
    return LifecycleTask(
        id=str(d["id"]),
        title=d["title"],
        description=d.get("description") or "",
        type=parse_enum(TaskType, d["type"]),
        priority=parse_enum(TaskPriority, d.get("priority") or TaskPriority.MEDIUM.value),
        status=parse_enum(TaskStatus, d.get("status") or TaskStatus.PENDING.value),
        application_id=str(d["application_id"]),
        application_name=d.get("application_name") or "",
        assignee_id=str(d["assignee_id"]),
        assignee_name=d.get("assignee_name") or "",
        assignee_email=d.get("assignee_email"),
        due_date=due,
        created_date=parse_datetime(d.get("created_date")) or due,
        completed_date=parse_datetime(d.get("completed_date")),
        notes=d.get("notes"),
        is_escalated=bool(d.get("is_escalated", False)),
        escalated_date=parse_datetime(d.get("escalated_date")),
        original_assignee_id=d.get("original_assignee_id"),
        delegation_reason=d.get("delegation_reason"),
        history=tuple(_history_from_dict(h) for h in d.get("history") or []),
    )


def incident_from_dict(d: dict) -> Incident:
    return Incident(
        id=str(d["id"]),
        number=d.get("number") or "",
        close_code=d.get("close_code") or None,
        imported_at=_required_datetime(d.get("imported_at"), "imported_at"),
        application_id=d.get("application_id"),
    )


# ---------------------------------------------------------------------------
# Export parser
# ---------------------------------------------------------------------------


def _parse_section(data: dict, key: str, parser) -> list:
    records = []
    for index, raw in enumerate(data.get(key) or []):
        try:
            records.append(parser(raw))
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Skipping malformed %s record #%d: %s", key, index, e)
    return records


def parse_portfolio(content: str) -> Portfolio:
    """Parse a JSON portfolio export.

    Returns an empty Portfolio if the content is not valid JSON or is not a
    JSON object -- never raises to the caller.
    """
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, ValueError):
        logger.warning("Portfolio export is not valid JSON")
        return Portfolio()
    if not isinstance(data, dict):
        logger.warning("Portfolio export must be a JSON object")
        return Portfolio()

    incidents = None
    if data.get("incidents") is not None:
        incidents = _parse_section(data, "incidents", incident_from_dict)

    return Portfolio(
        applications=_parse_section(data, "applications", application_from_dict),
        tasks=_parse_section(data, "tasks", task_from_dict),
        incidents=incidents,
    )
