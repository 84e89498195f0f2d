"""
core/tasks.py -- Lifecycle task rule evaluator.

Four rules decide which tasks should exist for an application:

  role revalidation     one task per stale role assignment
  documentation review  annual review, assigned to the owner side
  app-info review       annual metadata check (TaskType.ARCHITECTURE_REVIEW)
  security remediation  one task per Critical/High/Medium bucket

Rules are pure: they return proposed LifecycleTask records and never persist
anything. Persisting (and re-checking idempotency under a transaction) is the
store's job -- see portfolio/store.py.

Idempotency: at most one non-terminal task per idempotency_key(). Tasks
proposed earlier in the same run count as existing, so a single run never
proposes a duplicate.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, Mapping, Optional, Sequence

from core.config import short_date, utc_now
from core.models import (
    Application,
    ApplicationRole,
    DocumentationStatus,
    KeyDateType,
    LifecycleTask,
    RoleAssignment,
    SecurityFinding,
    Severity,
    TaskGenerationConfig,
    TaskPriority,
    TaskType,
)

logger = logging.getLogger("lifecycle.tasks")

ROLE_REVALIDATION_DUE_DAYS = 30
DOCUMENTATION_REVIEW_DUE_DAYS = 30
APP_INFO_REVIEW_DUE_DAYS = 60
MAX_LISTED_FINDINGS = 10

DISABLED_NOTE = "Task generation is disabled"

ExistingTasks = Mapping[str, Sequence[LifecycleTask]]


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass
class TaskGenerationResult:
    """Outcome of a rule run. `created` holds the proposed tasks."""

    created: list[LifecycleTask] = field(default_factory=list)
    skipped: int = 0
    applications_processed: int = 0
    errors: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    tasks_by_type: dict[TaskType, int] = field(default_factory=dict)

    @property
    def tasks_created(self) -> int:
        return len(self.created)

    def absorb(self, other: "TaskGenerationResult") -> None:
        """Fold another result into this one (counts summed, types merged)."""
        self.created.extend(other.created)
        self.skipped += other.skipped
        self.errors.extend(other.errors)
        self.notes.extend(other.notes)
        for task_type, count in other.tasks_by_type.items():
            self.tasks_by_type[task_type] = self.tasks_by_type.get(task_type, 0) + count


# ---------------------------------------------------------------------------
# Idempotency
# ---------------------------------------------------------------------------


def idempotency_key(task: LifecycleTask) -> tuple:
    """Key under which at most one non-terminal task may exist.

    (application, type), narrowed by assignee for role revalidation (one task
    per role holder) and by priority for security remediation (one per bucket).
    """
    if task.type == TaskType.ROLE_VALIDATION:
        return (task.application_id, task.type, task.assignee_id)
    if task.type == TaskType.SECURITY_REMEDIATION:
        return (task.application_id, task.type, task.priority)
    return (task.application_id, task.type)


def _has_open_task(known: Iterable[LifecycleTask], key: tuple) -> bool:
    return any(not t.is_terminal and idempotency_key(t) == key for t in known)


# ---------------------------------------------------------------------------
# Assignee resolution
# ---------------------------------------------------------------------------

RolePredicate = Callable[[RoleAssignment], bool]


def has_role(role: ApplicationRole) -> RolePredicate:
    def predicate(assignment: RoleAssignment) -> bool:
        return assignment.role == role

    return predicate


def any_role(assignment: RoleAssignment) -> bool:
    return True


DOCUMENTATION_REVIEW_CHAIN: tuple[RolePredicate, ...] = (
    has_role(ApplicationRole.OWNER),
    has_role(ApplicationRole.FUNCTIONAL_ARCHITECT),
    has_role(ApplicationRole.PRODUCT_MANAGER),
    any_role,
)

APP_INFO_REVIEW_CHAIN: tuple[RolePredicate, ...] = (
    has_role(ApplicationRole.OWNER),
    has_role(ApplicationRole.BUSINESS_OWNER),
    has_role(ApplicationRole.PRODUCT_MANAGER),
    any_role,
)

TECHNICAL_CHAIN: tuple[RolePredicate, ...] = (
    has_role(ApplicationRole.TECHNICAL_ARCHITECT),
    has_role(ApplicationRole.TECHNICAL_LEAD),
    has_role(ApplicationRole.SECURITY_CHAMPION),
    has_role(ApplicationRole.DEVELOPER),
)


def resolve_assignee(
    assignments: Sequence[RoleAssignment], chain: Sequence[RolePredicate]
) -> Optional[RoleAssignment]:
    """First assignment matching the earliest predicate in the chain."""
    for predicate in chain:
        for assignment in assignments:
            if predicate(assignment):
                return assignment
    return None


# ---------------------------------------------------------------------------
# Task construction
# ---------------------------------------------------------------------------


def _new_task(
    app: Application,
    assignee: RoleAssignment,
    task_type: TaskType,
    priority: TaskPriority,
    title: str,
    description: str,
    due_days: int,
    now: datetime,
) -> LifecycleTask:
    return LifecycleTask(
        id=str(uuid.uuid4()),
        title=title,
        description=description,
        type=task_type,
        priority=priority,
        application_id=app.id,
        application_name=app.name,
        assignee_id=assignee.user_id,
        assignee_name=assignee.user_name,
        assignee_email=assignee.user_email or None,
        due_date=now + timedelta(days=due_days),
        created_date=now,
    )


def _documentation_summary(docs: DocumentationStatus) -> str:
    def line(label: str, present: bool) -> str:
        return f"- {label}: {'Present' if present else '**Missing**'}"

    return "\n".join(
        [
            line("System documentation", docs.has_system_documentation),
            line("Architecture diagram", docs.has_architecture_diagram),
            line("User documentation", docs.has_user_documentation),
            line("Support documentation", docs.has_support_documentation),
            f"- Overall completeness: {docs.completeness_score}%",
        ]
    )


def _security_description(
    app: Application,
    assignee: RoleAssignment,
    findings: Sequence[SecurityFinding],
    severity: Severity,
    due_days: int,
    exposed_secrets: int,
) -> str:
    lines = [
        f"**Why you're receiving this task:** You are the {assignee.role.value} for {app.name} "
        "and are responsible for addressing security vulnerabilities.",
        "",
        f"**{severity.value} Severity Vulnerabilities:** {len(findings)}",
    ]
    if exposed_secrets > 0:
        lines.append(f"**Exposed Secrets (CRITICAL):** {exposed_secrets}")
    lines += ["", f"**Due:** {due_days} days from discovery", ""]

    if findings:
        lines.append("**Findings:**")
        for finding in findings[:MAX_LISTED_FINDINGS]:
            lines.append(f"- {finding.title}")
            if finding.file_path:
                location = f"  - File: `{finding.file_path}`"
                if finding.line_number is not None:
                    location += f" (line {finding.line_number})"
                lines.append(location)
        if len(findings) > MAX_LISTED_FINDINGS:
            lines.append(f"- ... and {len(findings) - MAX_LISTED_FINDINGS} more")

    if exposed_secrets > 0:
        lines += [
            "",
            "**IMPORTANT:** Exposed secrets require immediate action:",
            "- Rotate the affected credentials immediately",
            "- Check for unauthorized access using the compromised credentials",
            "- Remove secrets from code and use secure storage",
        ]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Per-application rules
#
# Each takes the run's working list of known tasks for the application and
# appends what it proposes, so later rules and later buckets see it.
# ---------------------------------------------------------------------------


def _role_revalidation_for_app(
    app: Application, known: list[LifecycleTask], config: TaskGenerationConfig, now: datetime
) -> TaskGenerationResult:
    result = TaskGenerationResult()
    threshold = now - timedelta(days=config.role_revalidation_days)

    for role in app.role_assignments:
        last_validated = role.last_validated_date or role.assigned_date
        if last_validated > threshold and not role.needs_revalidation:
            result.skipped += 1
            continue

        validated_text = short_date(role.last_validated_date) if role.last_validated_date else "Never"
        task = _new_task(
            app,
            role,
            TaskType.ROLE_VALIDATION,
            TaskPriority.MEDIUM,
            title=f"Revalidate {role.role.value} role for {app.name}",
            description=(
                f"Please verify that {role.user_name} should continue as {role.role.value} for {app.name}.\n\n"
                f"**Why you're receiving this task:** You are currently assigned as {role.role.value} and role "
                f"assignments must be revalidated every {config.role_revalidation_days} days.\n\n"
                f"Last validated: {validated_text}\n"
                f"Assigned: {short_date(role.assigned_date)}"
            ),
            due_days=ROLE_REVALIDATION_DUE_DAYS,
            now=now,
        )
        if _has_open_task(known, idempotency_key(task)):
            result.skipped += 1
            continue

        known.append(task)
        result.created.append(task)
        logger.info("Created role revalidation task for %s (%s) on %s", role.user_name, role.role.value, app.name)

    return result


def _documentation_review_for_app(
    app: Application, known: list[LifecycleTask], config: TaskGenerationConfig, now: datetime
) -> TaskGenerationResult:
    threshold = now - timedelta(days=config.documentation_review_days)

    last_review = app.security_review.completed_date if app.security_review else None
    if last_review is None:
        # Never reviewed: land just past the threshold so the review is due.
        last_review = app.last_sync_date - timedelta(days=config.documentation_review_days + 1)
    if last_review > threshold:
        return TaskGenerationResult(skipped=1)

    if _has_open_task(known, (app.id, TaskType.DOCUMENTATION_REVIEW)):
        return TaskGenerationResult(skipped=1)

    assignee = resolve_assignee(app.role_assignments, DOCUMENTATION_REVIEW_CHAIN)
    if assignee is None:
        logger.warning("No assignee found for documentation review task on %s", app.name)
        return TaskGenerationResult(skipped=1, errors=[f"No assignee found for {app.name}"])

    docs = app.documentation
    task = _new_task(
        app,
        assignee,
        TaskType.DOCUMENTATION_REVIEW,
        TaskPriority.HIGH if docs.completeness_score < 50 else TaskPriority.MEDIUM,
        title=f"Annual documentation review for {app.name}",
        description=(
            f"Please review and update the documentation for {app.name}.\n\n"
            f"**Why you're receiving this task:** You are the {assignee.role.value} for this application, "
            "and documentation must be reviewed annually.\n\n"
            f"**Current documentation status:**\n{_documentation_summary(docs)}\n\n"
            "Please verify that all documentation is current and complete, updating any outdated information."
        ),
        due_days=DOCUMENTATION_REVIEW_DUE_DAYS,
        now=now,
    )
    known.append(task)
    logger.info("Created documentation review task for %s, assigned to %s", app.name, assignee.user_name)
    return TaskGenerationResult(created=[task])


def _is_review_key_date(key_date) -> bool:
    if key_date.type == KeyDateType.AUDIT:
        return True
    return bool(key_date.description) and "review" in key_date.description.lower()


def _app_info_review_for_app(
    app: Application, known: list[LifecycleTask], config: TaskGenerationConfig, now: datetime
) -> TaskGenerationResult:
    threshold = now - timedelta(days=config.app_info_review_days)

    review_dates = [kd.date for kd in app.key_dates if _is_review_key_date(kd)]
    if review_dates and max(review_dates) > threshold:
        return TaskGenerationResult(skipped=1)

    # Synced within the window: metadata is assumed fresh.
    if app.last_sync_date > threshold:
        return TaskGenerationResult(skipped=1)

    if _has_open_task(known, (app.id, TaskType.ARCHITECTURE_REVIEW)):
        return TaskGenerationResult(skipped=1)

    assignee = resolve_assignee(app.role_assignments, APP_INFO_REVIEW_CHAIN)
    if assignee is None:
        logger.warning("No assignee found for app info review task on %s", app.name)
        return TaskGenerationResult(skipped=1, errors=[f"No assignee found for {app.name}"])

    task = _new_task(
        app,
        assignee,
        TaskType.ARCHITECTURE_REVIEW,
        TaskPriority.LOW,
        title=f"Annual application information review for {app.name}",
        description=(
            f"Please review and verify the application information for {app.name}.\n\n"
            f"**Why you're receiving this task:** You are the {assignee.role.value} for this application, "
            "and application metadata must be verified annually.\n\n"
            "**Please verify:**\n"
            "- Application description and purpose are accurate\n"
            "- Capability/business area assignment is correct\n"
            "- Application type and architecture classification are accurate\n"
            "- All role assignments are current\n"
            "- Key dates and milestones are up to date\n\n"
            f"Last synced: {short_date(app.last_sync_date)}"
        ),
        due_days=APP_INFO_REVIEW_DUE_DAYS,
        now=now,
    )
    known.append(task)
    logger.info("Created app info review task for %s, assigned to %s", app.name, assignee.user_name)
    return TaskGenerationResult(created=[task])


_SECURITY_BUCKETS = (
    (Severity.CRITICAL, TaskPriority.CRITICAL, "URGENT: Remediate critical security vulnerabilities in {name}"),
    (Severity.HIGH, TaskPriority.HIGH, "Remediate high severity vulnerabilities in {name}"),
    (Severity.MEDIUM, TaskPriority.MEDIUM, "Address medium severity vulnerabilities in {name}"),
)


def _bucket_due_days(severity: Severity, config: TaskGenerationConfig) -> int:
    match severity:
        case Severity.CRITICAL:
            return config.critical_vulnerability_due_days
        case Severity.HIGH:
            return config.high_vulnerability_due_days
        case Severity.MEDIUM:
            return config.medium_vulnerability_due_days
        case _:
            raise ValueError(f"No remediation bucket for severity {severity!r}")


def _security_remediation_for_app(
    app: Application, known: list[LifecycleTask], config: TaskGenerationConfig, now: datetime
) -> TaskGenerationResult:
    unresolved = app.unresolved_findings
    assignee = resolve_assignee(app.role_assignments, TECHNICAL_CHAIN)
    if assignee is None:
        if not unresolved:
            return TaskGenerationResult()
        logger.warning("No technical role found for %s; %d findings unassigned", app.name, len(unresolved))
        return TaskGenerationResult(
            skipped=len(unresolved),
            errors=[f"No technical role found for {app.name} - cannot assign security tasks"],
        )

    result = TaskGenerationResult()
    for severity, priority, title in _SECURITY_BUCKETS:
        findings = [f for f in unresolved if f.severity == severity]
        exposed = 0
        if severity == Severity.CRITICAL and config.treat_exposed_secrets_as_critical:
            exposed = app.exposed_secrets_count
        if not findings and exposed <= 0:
            continue

        if _has_open_task(known, (app.id, TaskType.SECURITY_REMEDIATION, priority)):
            result.skipped += 1
            continue

        due_days = _bucket_due_days(severity, config)
        task = _new_task(
            app,
            assignee,
            TaskType.SECURITY_REMEDIATION,
            priority,
            title=title.format(name=app.name),
            description=_security_description(app, assignee, findings, severity, due_days, exposed),
            due_days=due_days,
            now=now,
        )
        known.append(task)
        result.created.append(task)
        logger.info(
            "Created %s security remediation task for %s (%d findings), assigned to %s",
            severity.value.upper(),
            app.name,
            len(findings) + (1 if exposed > 0 else 0),
            assignee.user_name,
        )
    return result


AppRule = Callable[[Application, list[LifecycleTask], TaskGenerationConfig, datetime], TaskGenerationResult]

_RULES: tuple[tuple[AppRule, TaskType], ...] = (
    (_role_revalidation_for_app, TaskType.ROLE_VALIDATION),
    (_documentation_review_for_app, TaskType.DOCUMENTATION_REVIEW),
    (_app_info_review_for_app, TaskType.ARCHITECTURE_REVIEW),
    (_security_remediation_for_app, TaskType.SECURITY_REMEDIATION),
)


# ---------------------------------------------------------------------------
# Rule runners
# ---------------------------------------------------------------------------


def _working_copy(existing: Optional[ExistingTasks]) -> dict[str, list[LifecycleTask]]:
    return {app_id: list(tasks) for app_id, tasks in (existing or {}).items()}


def _run_rule(
    rule: AppRule,
    task_type: TaskType,
    applications: Sequence[Application],
    known: dict[str, list[LifecycleTask]],
    config: TaskGenerationConfig,
    now: datetime,
) -> TaskGenerationResult:
    result = TaskGenerationResult(applications_processed=len(applications))
    for app in applications:
        try:
            result.absorb(rule(app, known.setdefault(app.id, []), config, now))
        except Exception as exc:
            logger.exception("Error generating %s tasks for %s", task_type.value, app.name)
            result.errors.append(f"Error processing {app.name}: {exc}")
    if result.created:
        result.tasks_by_type = {task_type: len(result.created)}
    return result


def _public_rule(rule: AppRule, task_type: TaskType):
    def run(
        applications: Sequence[Application],
        existing_tasks_by_app: Optional[ExistingTasks] = None,
        config: Optional[TaskGenerationConfig] = None,
        now: Optional[datetime] = None,
    ) -> TaskGenerationResult:
        return _run_rule(
            rule,
            task_type,
            applications,
            _working_copy(existing_tasks_by_app),
            config or TaskGenerationConfig(),
            now or utc_now(),
        )

    return run


role_revalidation_tasks = _public_rule(_role_revalidation_for_app, TaskType.ROLE_VALIDATION)
documentation_review_tasks = _public_rule(_documentation_review_for_app, TaskType.DOCUMENTATION_REVIEW)
app_info_review_tasks = _public_rule(_app_info_review_for_app, TaskType.ARCHITECTURE_REVIEW)
security_remediation_tasks = _public_rule(_security_remediation_for_app, TaskType.SECURITY_REMEDIATION)


def generate_tasks(
    applications: Sequence[Application],
    existing_tasks_by_app: Optional[ExistingTasks] = None,
    config: Optional[TaskGenerationConfig] = None,
    now: Optional[datetime] = None,
) -> TaskGenerationResult:
    """Run all four rules over the portfolio and aggregate.

    existing_tasks_by_app maps application id -> tasks already stored for it.
    The mapping is not modified. When config.enabled is false nothing is
    evaluated and the result carries a note instead.
    """
    config = config or TaskGenerationConfig()
    if not config.enabled:
        return TaskGenerationResult(notes=[DISABLED_NOTE])

    now = now or utc_now()
    logger.info("Starting task generation run for %d applications", len(applications))

    known = _working_copy(existing_tasks_by_app)
    aggregated = TaskGenerationResult()
    for rule, task_type in _RULES:
        partial = _run_rule(rule, task_type, applications, known, config, now)
        aggregated.absorb(partial)
        aggregated.applications_processed = max(aggregated.applications_processed, partial.applications_processed)

    logger.info(
        "Task generation complete: %d created, %d skipped, %d errors",
        aggregated.tasks_created,
        aggregated.skipped,
        len(aggregated.errors),
    )
    return aggregated


def generate_tasks_for_application(
    application: Application,
    existing_tasks: Sequence[LifecycleTask] = (),
    config: Optional[TaskGenerationConfig] = None,
    now: Optional[datetime] = None,
) -> TaskGenerationResult:
    """The four rules scoped to a single application."""
    config = config or TaskGenerationConfig()
    if not config.enabled:
        return TaskGenerationResult(notes=[DISABLED_NOTE])

    now = now or utc_now()
    known = {application.id: list(existing_tasks)}
    aggregated = TaskGenerationResult(applications_processed=1)
    for rule, task_type in _RULES:
        aggregated.absorb(_run_rule(rule, task_type, [application], known, config, now))
    return aggregated
