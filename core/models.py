"""
core/models.py -- Domain records for the lifecycle health engine.

Pure data containers. The scoring, task-rule and EOL logic that reads these
records lives in core/scoring.py, core/tasks.py and core/eol.py.

Records the engine produces or copies (tasks, history entries, framework
versions, score breakdowns, config snapshots) are frozen: an "update" is a
dataclasses.replace() copy, never an in-place mutation.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class UsageLevel(str, Enum):
    NONE = "None"
    VERY_LOW = "VeryLow"
    LOW = "Low"
    MODERATE = "Moderate"
    HIGH = "High"


class HealthCategory(str, Enum):
    HEALTHY = "Healthy"  # 80-100
    NEEDS_ATTENTION = "NeedsAttention"  # 60-79
    AT_RISK = "AtRisk"  # 40-59
    CRITICAL = "Critical"  # 0-39


class ApplicationRole(str, Enum):
    OWNER = "Owner"
    PRODUCT_MANAGER = "ProductManager"
    BUSINESS_OWNER = "BusinessOwner"
    FUNCTIONAL_ARCHITECT = "FunctionalArchitect"
    TECHNICAL_ARCHITECT = "TechnicalArchitect"
    TECHNICAL_LEAD = "TechnicalLead"
    DEVELOPER = "Developer"
    SECURITY_CHAMPION = "SecurityChampion"
    SUPPORT = "Support"


class KeyDateType(str, Enum):
    RELEASE = "Release"
    DEADLINE = "Deadline"
    AUDIT = "Audit"
    SCHEDULED_MAINTENANCE = "ScheduledMaintenance"
    BUSINESS_EVENT = "BusinessEvent"
    GO_LIVE = "GoLive"
    EXPIRATION = "Expiration"
    EXTERNAL_DEPENDENCY = "ExternalDependency"
    OTHER = "Other"


class TaskType(str, Enum):
    ROLE_VALIDATION = "RoleValidation"
    SECURITY_REMEDIATION = "SecurityRemediation"
    DOCUMENTATION_REVIEW = "DocumentationReview"
    ARCHITECTURE_REVIEW = "ArchitectureReview"  # also used for application-info reviews
    RETIREMENT_REVIEW = "RetirementReview"
    COMPLIANCE_CHECK = "ComplianceCheck"
    DATA_CONFLICT_RESOLUTION = "DataConflictResolution"
    MAINTENANCE_REVIEW = "MaintenanceReview"
    CUSTOM = "Custom"


class TaskPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class TaskStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    BLOCKED = "Blocked"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})


class FrameworkType(str, Enum):
    DOTNET = "dotnet"
    DOTNET_FRAMEWORK = "dotnet-framework"
    PYTHON = "python"
    R = "r"
    NODEJS = "nodejs"
    JAVA = "java"
    OTHER = "other"


class SupportStatus(str, Enum):
    ACTIVE = "Active"
    MAINTENANCE = "Maintenance"
    END_OF_LIFE = "EndOfLife"
    PREVIEW = "Preview"
    UNKNOWN = "Unknown"


class EolUrgency(str, Enum):
    NONE = "None"
    LOW = "Low"  # more than a year out
    MEDIUM = "Medium"  # 6-12 months
    HIGH = "High"  # 3-6 months
    CRITICAL = "Critical"  # under 3 months
    PAST_EOL = "PastEol"


# ---------------------------------------------------------------------------
# Application and its facts
# ---------------------------------------------------------------------------


@dataclass
class SecurityFinding:
    """Scanner finding. A finding is resolved once resolved_date is set or the
    scanner marks it resolved explicitly."""

    id: str
    severity: Severity
    title: str = ""
    is_resolved: bool = False
    file_path: Optional[str] = None
    line_number: Optional[int] = None
    detected_date: Optional[datetime] = None
    resolved_date: Optional[datetime] = None

    @property
    def resolved(self) -> bool:
        return self.is_resolved or self.resolved_date is not None


@dataclass
class UsageMetrics:
    monthly_requests: int = 0
    monthly_users: int = 0
    # Explicit classification from the usage collaborator wins over the
    # request-count bands below.
    explicit_level: Optional[UsageLevel] = None

    @property
    def level(self) -> UsageLevel:
        if self.explicit_level is not None:
            return self.explicit_level
        if self.monthly_requests <= 0:
            return UsageLevel.NONE
        if self.monthly_requests <= 100:
            return UsageLevel.VERY_LOW
        if self.monthly_requests <= 1000:
            return UsageLevel.LOW
        if self.monthly_requests <= 10000:
            return UsageLevel.MODERATE
        return UsageLevel.HIGH


@dataclass
class DocumentationStatus:
    has_architecture_diagram: bool = False
    has_system_documentation: bool = False
    has_user_documentation: bool = False
    has_support_documentation: bool = False

    @property
    def is_complete(self) -> bool:
        return self.has_architecture_diagram and self.has_system_documentation

    @property
    def completeness_score(self) -> int:
        flags = (
            self.has_architecture_diagram,
            self.has_system_documentation,
            self.has_user_documentation,
            self.has_support_documentation,
        )
        return 25 * sum(1 for f in flags if f)


@dataclass
class RoleAssignment:
    user_id: str
    user_name: str
    role: ApplicationRole
    assigned_date: datetime
    user_email: str = ""
    last_validated_date: Optional[datetime] = None
    needs_revalidation: bool = False


@dataclass
class KeyDate:
    id: str
    title: str
    date: datetime
    type: KeyDateType = KeyDateType.OTHER
    description: Optional[str] = None


@dataclass
class SecurityReview:
    is_completed: bool = False
    completed_date: Optional[datetime] = None
    next_review_date: Optional[datetime] = None


@dataclass
class Application:
    """A portfolio application as normalized by the data-sync collaborators.

    The engine only reads these records. health_score is the last persisted
    score; health_category is derived from it with the same thresholds as
    core.scoring.category_for.
    """

    id: str
    name: str
    last_sync_date: datetime
    health_score: int = 0
    security_findings: list[SecurityFinding] = field(default_factory=list)
    usage: Optional[UsageMetrics] = None
    last_activity_date: Optional[datetime] = None
    documentation: DocumentationStatus = field(default_factory=DocumentationStatus)
    role_assignments: list[RoleAssignment] = field(default_factory=list)
    key_dates: list[KeyDate] = field(default_factory=list)
    security_review: Optional[SecurityReview] = None
    has_data_conflicts: bool = False
    repository_url: Optional[str] = None
    exposed_secrets_count: int = 0  # from the linked repository scan
    has_readme: bool = False
    readme_quality_score: Optional[int] = None

    @property
    def health_category(self) -> HealthCategory:
        from core.scoring import category_for

        return category_for(self.health_score)

    @property
    def unresolved_findings(self) -> list[SecurityFinding]:
        return [f for f in self.security_findings if not f.resolved]


@dataclass
class Incident:
    """Ticketing-system incident linked to an application."""

    id: str
    imported_at: datetime
    number: str = ""
    close_code: Optional[str] = None
    application_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Lifecycle tasks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaskHistoryEntry:
    id: str
    timestamp: datetime
    action: str
    performed_by: str
    performed_by_id: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class LifecycleTask:
    """An actionable work item against an application.

    history is append-only: core/transitions.py returns copies with exactly
    one entry added per change.
    """

    id: str
    title: str
    type: TaskType
    application_id: str
    application_name: str
    assignee_id: str
    assignee_name: str
    due_date: datetime
    created_date: datetime
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    description: str = ""
    assignee_email: Optional[str] = None
    completed_date: Optional[datetime] = None
    notes: Optional[str] = None
    is_escalated: bool = False
    escalated_date: Optional[datetime] = None
    original_assignee_id: Optional[str] = None
    delegation_reason: Optional[str] = None
    history: tuple[TaskHistoryEntry, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_overdue(self, now: datetime) -> bool:
        return not self.is_terminal and self.due_date < now

    def days_overdue(self, now: datetime) -> int:
        """Whole days past the due date, 0 when not overdue."""
        if not self.is_overdue(now):
            return 0
        return int((now - self.due_date).total_seconds() / 86400)


# ---------------------------------------------------------------------------
# Framework lifecycle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FrameworkVersion:
    id: str  # "<framework>-<version>", lowercase
    framework: FrameworkType
    version: str
    display_name: str
    status: SupportStatus = SupportStatus.UNKNOWN
    release_date: Optional[date] = None
    eol_date: Optional[date] = None  # None = no EOL scheduled (or already ended, see status)
    active_support_end: Optional[date] = None
    is_lts: bool = False
    latest_patch: Optional[str] = None
    last_updated: Optional[datetime] = None

    def days_until_eol(self, today: date) -> Optional[int]:
        if self.eol_date is None:
            return None
        return (self.eol_date - today).days

    def eol_urgency(self, today: date) -> EolUrgency:
        days = self.days_until_eol(today)
        if days is None:
            return EolUrgency.PAST_EOL if self.status == SupportStatus.END_OF_LIFE else EolUrgency.NONE
        if days < 0:
            return EolUrgency.PAST_EOL
        if days <= 90:
            return EolUrgency.CRITICAL
        if days <= 180:
            return EolUrgency.HIGH
        if days <= 365:
            return EolUrgency.MEDIUM
        return EolUrgency.LOW


# ---------------------------------------------------------------------------
# Task generation configuration (immutable snapshot per run)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaskGenerationConfig:
    role_revalidation_days: int = 180
    documentation_review_days: int = 365
    app_info_review_days: int = 365
    critical_vulnerability_due_days: int = 30
    high_vulnerability_due_days: int = 60
    medium_vulnerability_due_days: int = 90
    treat_exposed_secrets_as_critical: bool = True
    enabled: bool = True


# ---------------------------------------------------------------------------
# Score breakdown
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SecurityScoreDetails:
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0


@dataclass(frozen=True)
class IncidentScoreDetails:
    total_incidents: int = 0
    recent_incidents: int = 0
    repeat_patterns: int = 0
    close_code_counts: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class DocumentationScoreDetails:
    has_readme: bool
    readme_quality_score: Optional[int]
    readme_adjustment: int
    architecture_adjustment: int
    system_docs_adjustment: int
    user_docs_adjustment: int
    support_docs_adjustment: int
    raw_total: int
    final_adjustment: int


@dataclass(frozen=True)
class HealthScoreBreakdown:
    """Every component that went into a health score.

    Penalties are stored as positive magnitudes; adjustments are signed.
    """

    base_score: int = 100
    security_penalty: int = 0
    usage_adjustment: int = 0
    maintenance_adjustment: int = 0
    documentation_adjustment: int = 0
    overdue_task_penalty: int = 0
    data_conflict_penalty: int = 0
    incident_penalty: int = 0
    security_details: SecurityScoreDetails = field(default_factory=SecurityScoreDetails)
    incident_details: Optional[IncidentScoreDetails] = None
    documentation_details: Optional[DocumentationScoreDetails] = None

    @property
    def raw_score(self) -> int:
        return (
            self.base_score
            - self.security_penalty
            + self.usage_adjustment
            + self.maintenance_adjustment
            + self.documentation_adjustment
            - self.overdue_task_penalty
            - self.data_conflict_penalty
            - self.incident_penalty
        )

    @property
    def final_score(self) -> int:
        return max(0, min(100, self.raw_score))

    @property
    def category(self) -> HealthCategory:
        from core.scoring import category_for

        return category_for(self.final_score)
