"""
API request and response models for the lifecycle health REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal domain representation. Route handlers map between the two:
request models convert with to_domain(), response models build themselves
with a from_*() factory.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.eol import EolFetchError, EolRefreshResult, EolUpdateInfo
from core.models import (
    Application,
    ApplicationRole,
    FrameworkType,
    FrameworkVersion,
    HealthCategory,
    HealthScoreBreakdown,
    Incident,
    KeyDateType,
    LifecycleTask,
    Severity,
    SupportStatus,
    TaskHistoryEntry,
    TaskPriority,
    TaskStatus,
    TaskType,
    UsageLevel,
)
from core.scoring import PortfolioHealthSummary
from core.tasks import TaskGenerationResult
from portfolio.ingest import application_from_dict, incident_from_dict

MAX_APPLICATIONS = 500

# ---------------------------------------------------------------------------
# Request models -- application facts
# ---------------------------------------------------------------------------


class SecurityFindingIn(BaseModel):
    id: str = Field(min_length=1, max_length=100)
    severity: Severity
    title: str = ""
    is_resolved: bool = False
    file_path: Optional[str] = None
    line_number: Optional[int] = Field(default=None, ge=0)
    detected_date: Optional[datetime] = None
    resolved_date: Optional[datetime] = None


class UsageIn(BaseModel):
    monthly_requests: int = Field(default=0, ge=0)
    monthly_users: int = Field(default=0, ge=0)
    level: Optional[UsageLevel] = None


class DocumentationIn(BaseModel):
    has_architecture_diagram: bool = False
    has_system_documentation: bool = False
    has_user_documentation: bool = False
    has_support_documentation: bool = False


class RoleAssignmentIn(BaseModel):
    user_id: str = Field(min_length=1, max_length=100)
    user_name: str = Field(min_length=1, max_length=255)
    user_email: str = ""
    role: ApplicationRole
    assigned_date: datetime
    last_validated_date: Optional[datetime] = None
    needs_revalidation: bool = False


class KeyDateIn(BaseModel):
    id: str = Field(min_length=1, max_length=100)
    title: str = ""
    description: Optional[str] = None
    date: datetime
    type: KeyDateType = KeyDateType.OTHER


class SecurityReviewIn(BaseModel):
    is_completed: bool = False
    completed_date: Optional[datetime] = None
    next_review_date: Optional[datetime] = None


class ApplicationIn(BaseModel):
    """One application as sent by a sync client. Mirrors the JSON export."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=255)
    last_sync_date: datetime
    health_score: int = Field(default=0, ge=0, le=100)
    security_findings: list[SecurityFindingIn] = Field(default_factory=list)
    usage: Optional[UsageIn] = None
    last_activity_date: Optional[datetime] = None
    documentation: DocumentationIn = Field(default_factory=DocumentationIn)
    role_assignments: list[RoleAssignmentIn] = Field(default_factory=list)
    key_dates: list[KeyDateIn] = Field(default_factory=list)
    security_review: Optional[SecurityReviewIn] = None
    has_data_conflicts: bool = False
    repository_url: Optional[str] = None
    exposed_secrets_count: int = Field(default=0, ge=0)
    has_readme: bool = False
    readme_quality_score: Optional[int] = Field(default=None, ge=0, le=100)

    def to_domain(self) -> Application:
        return application_from_dict(self.model_dump())


class IncidentIn(BaseModel):
    id: str = Field(min_length=1, max_length=100)
    number: str = ""
    close_code: Optional[str] = None
    imported_at: datetime
    application_id: Optional[str] = None

    def to_domain(self) -> Incident:
        return incident_from_dict(self.model_dump())


def _unique_ids(values: list[ApplicationIn]) -> list[ApplicationIn]:
    seen: set[str] = set()
    for app in values:
        if app.id in seen:
            raise ValueError(f"Duplicate application id: {app.id}")
        seen.add(app.id)
    return values


class HealthScoreRequest(BaseModel):
    """Request body for POST /api/v1/health-scores.

    incidents=None skips the incident component entirely; an empty list
    scores it as zero incidents.
    """

    applications: list[ApplicationIn] = Field(min_length=1, max_length=MAX_APPLICATIONS)
    incidents: Optional[list[IncidentIn]] = None
    weighted_documentation: bool = False

    @field_validator("applications")
    @classmethod
    def check_unique_ids(cls, values: list[ApplicationIn]) -> list[ApplicationIn]:
        return _unique_ids(values)


class TaskGenerateRequest(BaseModel):
    """Request body for POST /api/v1/tasks/generate.

    application_id scopes the run to one of the submitted applications.
    """

    applications: list[ApplicationIn] = Field(min_length=1, max_length=MAX_APPLICATIONS)
    application_id: Optional[str] = None

    @field_validator("applications")
    @classmethod
    def check_unique_ids(cls, values: list[ApplicationIn]) -> list[ApplicationIn]:
        return _unique_ids(values)


class TaskStatusUpdate(BaseModel):
    """Request body for PATCH /api/v1/tasks/{task_id}/status."""

    status: TaskStatus
    performed_by: str = Field(default="api", min_length=1, max_length=255)
    performed_by_id: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class TaskNoteIn(BaseModel):
    """Request body for POST /api/v1/tasks/{task_id}/notes."""

    note: str = Field(min_length=1, max_length=2000)
    performed_by: str = Field(default="api", min_length=1, max_length=255)
    performed_by_id: Optional[str] = None


class TaskDelegateIn(BaseModel):
    """Request body for PATCH /api/v1/tasks/{task_id}/assignee."""

    assignee_id: str = Field(min_length=1, max_length=255)
    assignee_name: str = Field(min_length=1, max_length=255)
    assignee_email: Optional[str] = Field(default=None, max_length=255)
    reason: str = Field(min_length=1, max_length=2000)
    performed_by: str = Field(default="api", min_length=1, max_length=255)
    performed_by_id: Optional[str] = None


class TaskEscalateIn(BaseModel):
    """Request body for POST /api/v1/tasks/{task_id}/escalate."""

    reason: Optional[str] = Field(default=None, max_length=2000)
    performed_by: str = Field(default="api", min_length=1, max_length=255)
    performed_by_id: Optional[str] = None


class EolRefreshRequest(BaseModel):
    """Request body for POST /api/v1/eol/refresh. Omit frameworks for all."""

    frameworks: Optional[list[FrameworkType]] = None
    use_cache: bool = True


# ---------------------------------------------------------------------------
# Response models -- health scores
# ---------------------------------------------------------------------------


class HealthScoreRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    application_id: str
    application_name: str
    final_score: int
    raw_score: int
    category: HealthCategory
    security_penalty: int
    usage_adjustment: int
    maintenance_adjustment: int
    documentation_adjustment: int
    overdue_task_penalty: int
    data_conflict_penalty: int
    incident_penalty: int
    unresolved_findings: dict[str, int]

    @classmethod
    def from_breakdown(cls, app: Application, b: HealthScoreBreakdown) -> "HealthScoreRow":
        sec = b.security_details
        return cls(
            application_id=app.id,
            application_name=app.name,
            final_score=b.final_score,
            raw_score=b.raw_score,
            category=b.category,
            security_penalty=b.security_penalty,
            usage_adjustment=b.usage_adjustment,
            maintenance_adjustment=b.maintenance_adjustment,
            documentation_adjustment=b.documentation_adjustment,
            overdue_task_penalty=b.overdue_task_penalty,
            data_conflict_penalty=b.data_conflict_penalty,
            incident_penalty=b.incident_penalty,
            unresolved_findings={
                "Critical": sec.critical_count,
                "High": sec.high_count,
                "Medium": sec.medium_count,
                "Low": sec.low_count,
            },
        )


class PortfolioSummaryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_applications: int
    healthy: int
    needs_attention: int
    at_risk: int
    critical: int
    average_score: float
    healthy_percentage: float

    @classmethod
    def from_summary(cls, s: PortfolioHealthSummary) -> "PortfolioSummaryResponse":
        return cls(
            total_applications=s.total_applications,
            healthy=s.healthy,
            needs_attention=s.needs_attention,
            at_risk=s.at_risk,
            critical=s.critical,
            average_score=s.average_score,
            healthy_percentage=s.healthy_percentage,
        )


class HealthScoreResponse(BaseModel):
    results: list[HealthScoreRow]
    summary: PortfolioSummaryResponse


# ---------------------------------------------------------------------------
# Response models -- tasks
# ---------------------------------------------------------------------------


class TaskHistoryRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    action: str
    performed_by: str
    performed_by_id: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_entry(cls, h: TaskHistoryEntry) -> "TaskHistoryRow":
        return cls(
            id=h.id,
            timestamp=h.timestamp,
            action=h.action,
            performed_by=h.performed_by,
            performed_by_id=h.performed_by_id,
            old_value=h.old_value,
            new_value=h.new_value,
            notes=h.notes,
        )


class TaskRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    type: TaskType
    priority: TaskPriority
    status: TaskStatus
    application_id: str
    application_name: str
    assignee_id: str
    assignee_name: str
    assignee_email: Optional[str] = None
    due_date: datetime
    created_date: datetime
    completed_date: Optional[datetime] = None
    is_overdue: bool = False
    is_escalated: bool = False
    original_assignee_id: Optional[str] = None
    delegation_reason: Optional[str] = None
    notes: Optional[str] = None
    history: list[TaskHistoryRow] = Field(default_factory=list)

    @classmethod
    def from_task(cls, t: LifecycleTask, now: datetime) -> "TaskRow":
        return cls(
            id=t.id,
            title=t.title,
            description=t.description,
            type=t.type,
            priority=t.priority,
            status=t.status,
            application_id=t.application_id,
            application_name=t.application_name,
            assignee_id=t.assignee_id,
            assignee_name=t.assignee_name,
            assignee_email=t.assignee_email,
            due_date=t.due_date,
            created_date=t.created_date,
            completed_date=t.completed_date,
            is_overdue=t.is_overdue(now),
            is_escalated=t.is_escalated,
            original_assignee_id=t.original_assignee_id,
            delegation_reason=t.delegation_reason,
            notes=t.notes,
            history=[TaskHistoryRow.from_entry(h) for h in t.history],
        )


class TaskRunResponse(BaseModel):
    tasks_created: int
    tasks_skipped: int
    applications_processed: int
    errors: list[str]
    notes: list[str]
    tasks_by_type: dict[str, int]
    created: list[TaskRow]

    @classmethod
    def from_result(cls, r: TaskGenerationResult, persisted: list[LifecycleTask], now: datetime) -> "TaskRunResponse":
        return cls(
            tasks_created=len(persisted),
            tasks_skipped=r.skipped,
            applications_processed=r.applications_processed,
            errors=list(r.errors),
            notes=list(r.notes),
            tasks_by_type={t.value: n for t, n in r.tasks_by_type.items()},
            created=[TaskRow.from_task(t, now) for t in persisted],
        )


# ---------------------------------------------------------------------------
# Response models -- framework lifecycle
# ---------------------------------------------------------------------------


class FrameworkVersionRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    framework: FrameworkType
    version: str
    display_name: str
    status: SupportStatus
    release_date: Optional[date] = None
    eol_date: Optional[date] = None
    active_support_end: Optional[date] = None
    is_lts: bool = False
    latest_patch: Optional[str] = None
    days_until_eol: Optional[int] = None

    @classmethod
    def from_version(cls, v: FrameworkVersion, today: date) -> "FrameworkVersionRow":
        return cls(
            id=v.id,
            framework=v.framework,
            version=v.version,
            display_name=v.display_name,
            status=v.status,
            release_date=v.release_date,
            eol_date=v.eol_date,
            active_support_end=v.active_support_end,
            is_lts=v.is_lts,
            latest_patch=v.latest_patch,
            days_until_eol=v.days_until_eol(today),
        )


class EolUpdateRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    previous_eol_date: Optional[date] = None
    new_eol_date: Optional[date] = None
    previous_status: SupportStatus
    new_status: SupportStatus
    change_description: str

    @classmethod
    def from_info(cls, u: EolUpdateInfo) -> "EolUpdateRow":
        return cls(
            id=u.version.id,
            display_name=u.version.display_name,
            previous_eol_date=u.previous_eol_date,
            new_eol_date=u.new_eol_date,
            previous_status=u.previous_status,
            new_status=u.new_status,
            change_description=u.change_description,
        )


class EolErrorRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    framework: FrameworkType
    message: str

    @classmethod
    def from_error(cls, e: EolFetchError) -> "EolErrorRow":
        return cls(framework=e.framework, message=e.message)


class EolRefreshResponse(BaseModel):
    success: bool
    added: list[FrameworkVersionRow]
    updated: list[EolUpdateRow]
    unchanged: list[str]
    errors: list[EolErrorRow]

    @classmethod
    def from_result(cls, r: EolRefreshResult, today: date) -> "EolRefreshResponse":
        return cls(
            success=r.success,
            added=[FrameworkVersionRow.from_version(v, today) for v in r.added],
            updated=[EolUpdateRow.from_info(u) for u in r.updated],
            unchanged=list(r.unchanged),
            errors=[EolErrorRow.from_error(e) for e in r.errors],
        )


# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
