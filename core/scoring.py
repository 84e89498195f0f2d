"""
core/scoring.py -- Application health scoring.

Starts every application at 100 and applies signed components:

    final = 100 - security + usage + maintenance + documentation
                - overdue tasks - data conflict - incidents

clamped to [0, 100]. The category is taken from the clamped score.

Pure functions only. Every time-dependent function takes an optional `now`
(defaults to the current UTC time) so callers and tests control the clock.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from core.config import utc_now
from core.models import (
    Application,
    DocumentationScoreDetails,
    DocumentationStatus,
    HealthCategory,
    HealthScoreBreakdown,
    Incident,
    IncidentScoreDetails,
    LifecycleTask,
    SecurityFinding,
    SecurityScoreDetails,
    Severity,
    UsageLevel,
    UsageMetrics,
)

logger = logging.getLogger("lifecycle.scoring")

BASE_SCORE = 100
DATA_CONFLICT_PENALTY = 5

# Overdue task penalties
OVERDUE_PENALTY = 3
LONG_OVERDUE_PENALTY = 5
LONG_OVERDUE_DAYS = 30

# Incident penalties
RECENT_INCIDENT_WINDOW_DAYS = 90
RECENT_INCIDENT_PENALTY = 2
RECENT_INCIDENT_CAP = 20
REPEAT_PATTERN_THRESHOLD = 3
REPEAT_PATTERN_PENALTY = 3
REPEAT_PATTERN_CAP = 15


# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------


def severity_weight(severity: Severity) -> tuple[float, int]:
    """Return (per-finding penalty, cap) for a severity."""
    match severity:
        case Severity.CRITICAL:
            return 15, 60
        case Severity.HIGH:
            return 8, 40
        case Severity.MEDIUM:
            return 2, 20
        case Severity.LOW:
            return 0.5, 10
        case _:
            raise ValueError(f"Unknown severity: {severity!r}")


def security_penalty(findings: Iterable[SecurityFinding]) -> tuple[int, SecurityScoreDetails]:
    """Penalty for unresolved findings, capped per severity.

    Resolved findings are ignored. The Low bucket's fractional product is
    truncated to an int before capping.
    """
    counts = Counter(f.severity for f in findings if not f.resolved)
    total = 0
    for severity in Severity:
        per_finding, cap = severity_weight(severity)
        total += min(cap, int(counts[severity] * per_finding))
    details = SecurityScoreDetails(
        critical_count=counts[Severity.CRITICAL],
        high_count=counts[Severity.HIGH],
        medium_count=counts[Severity.MEDIUM],
        low_count=counts[Severity.LOW],
    )
    return total, details


# ---------------------------------------------------------------------------
# Usage / maintenance
# ---------------------------------------------------------------------------


def usage_adjustment(usage: Optional[UsageMetrics]) -> int:
    level = usage.level if usage is not None else UsageLevel.NONE
    match level:
        case UsageLevel.NONE:
            return -20
        case UsageLevel.VERY_LOW:
            return -10
        case UsageLevel.LOW:
            return -5
        case UsageLevel.MODERATE:
            return 0
        case UsageLevel.HIGH:
            return 5
        case _:
            raise ValueError(f"Unknown usage level: {level!r}")


def maintenance_adjustment(last_activity: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Reward recent development activity; unknown activity counts as stale."""
    if last_activity is None:
        return -10
    now = now or utc_now()
    days = (now - last_activity).days
    if days <= 30:
        return 10
    if days <= 90:
        return 5
    if days <= 180:
        return 0
    if days <= 365:
        return -5
    return -10


# ---------------------------------------------------------------------------
# Documentation
# ---------------------------------------------------------------------------


def documentation_adjustment(docs: DocumentationStatus) -> int:
    """Default mode: architecture diagram and system documentation only."""
    if docs.has_architecture_diagram and docs.has_system_documentation:
        return 10
    if not docs.has_architecture_diagram and not docs.has_system_documentation:
        return -15
    return -10


@dataclass(frozen=True)
class DocumentationWeights:
    """Weights for the weighted documentation mode. Penalties are negative."""

    readme_present_bonus: int = 5
    readme_quality_bonus: int = 5
    readme_quality_threshold: int = 70
    readme_missing_penalty: int = -10
    architecture_bonus: int = 8
    architecture_missing_penalty: int = -8
    system_docs_bonus: int = 8
    system_docs_missing_penalty: int = -8
    user_docs_bonus: int = 3
    support_docs_bonus: int = 3
    max_bonus: int = 20
    max_penalty: int = -25


def weighted_documentation_adjustment(
    application: Application, weights: Optional[DocumentationWeights] = None
) -> tuple[int, DocumentationScoreDetails]:
    """Weighted mode: README presence and quality plus the four document flags."""
    w = weights or DocumentationWeights()
    docs = application.documentation

    if application.has_readme:
        readme = w.readme_present_bonus
        quality = application.readme_quality_score
        if quality is not None and quality >= w.readme_quality_threshold:
            readme += w.readme_quality_bonus
    else:
        readme = w.readme_missing_penalty

    architecture = w.architecture_bonus if docs.has_architecture_diagram else w.architecture_missing_penalty
    system = w.system_docs_bonus if docs.has_system_documentation else w.system_docs_missing_penalty
    user = w.user_docs_bonus if docs.has_user_documentation else 0
    support = w.support_docs_bonus if docs.has_support_documentation else 0

    raw = readme + architecture + system + user + support
    final = min(raw, w.max_bonus) if raw > 0 else max(raw, w.max_penalty)

    details = DocumentationScoreDetails(
        has_readme=application.has_readme,
        readme_quality_score=application.readme_quality_score,
        readme_adjustment=readme,
        architecture_adjustment=architecture,
        system_docs_adjustment=system,
        user_docs_adjustment=user,
        support_docs_adjustment=support,
        raw_total=raw,
        final_adjustment=final,
    )
    return final, details


# ---------------------------------------------------------------------------
# Overdue tasks / incidents
# ---------------------------------------------------------------------------


def overdue_task_penalty(tasks: Iterable[LifecycleTask], now: Optional[datetime] = None) -> int:
    """3 per overdue task, 5 once a task is 30+ days late. Not capped."""
    now = now or utc_now()
    penalty = 0
    for task in tasks:
        if not task.is_overdue(now):
            continue
        penalty += LONG_OVERDUE_PENALTY if task.days_overdue(now) >= LONG_OVERDUE_DAYS else OVERDUE_PENALTY
    return penalty


def incident_penalty(
    incidents: Sequence[Incident], now: Optional[datetime] = None
) -> tuple[int, IncidentScoreDetails]:
    """Penalty for recent incident volume and for recurring close codes."""
    now = now or utc_now()
    window_start = now - timedelta(days=RECENT_INCIDENT_WINDOW_DAYS)
    recent = sum(1 for i in incidents if i.imported_at >= window_start)

    close_codes = Counter(i.close_code for i in incidents if i.close_code)
    patterns = sum(1 for count in close_codes.values() if count >= REPEAT_PATTERN_THRESHOLD)

    penalty = min(RECENT_INCIDENT_CAP, recent * RECENT_INCIDENT_PENALTY) + min(
        REPEAT_PATTERN_CAP, patterns * REPEAT_PATTERN_PENALTY
    )
    details = IncidentScoreDetails(
        total_incidents=len(incidents),
        recent_incidents=recent,
        repeat_patterns=patterns,
        close_code_counts=dict(close_codes),
    )
    return penalty, details


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------


def category_for(score: int) -> HealthCategory:
    if score >= 80:
        return HealthCategory.HEALTHY
    if score >= 60:
        return HealthCategory.NEEDS_ATTENTION
    if score >= 40:
        return HealthCategory.AT_RISK
    return HealthCategory.CRITICAL


def calculate_health_score(
    application: Application,
    tasks: Iterable[LifecycleTask] = (),
    incidents: Optional[Sequence[Incident]] = None,
    weights: Optional[DocumentationWeights] = None,
    now: Optional[datetime] = None,
) -> HealthScoreBreakdown:
    """Score one application.

    Args:
        application: The application to score.
        tasks:       Its lifecycle tasks; only overdue ones affect the score.
        incidents:   Linked incidents. None skips the incident component.
        weights:     Switches documentation scoring to the weighted mode.
        now:         Reference time for every age calculation.
    """
    now = now or utc_now()

    security, security_details = security_penalty(application.security_findings)

    documentation_details = None
    if weights is not None:
        documentation, documentation_details = weighted_documentation_adjustment(application, weights)
    else:
        documentation = documentation_adjustment(application.documentation)

    incidents_total, incident_details = 0, None
    if incidents is not None:
        incidents_total, incident_details = incident_penalty(incidents, now)

    breakdown = HealthScoreBreakdown(
        base_score=BASE_SCORE,
        security_penalty=security,
        usage_adjustment=usage_adjustment(application.usage),
        maintenance_adjustment=maintenance_adjustment(application.last_activity_date, now),
        documentation_adjustment=documentation,
        overdue_task_penalty=overdue_task_penalty(tasks, now),
        data_conflict_penalty=DATA_CONFLICT_PENALTY if application.has_data_conflicts else 0,
        incident_penalty=incidents_total,
        security_details=security_details,
        incident_details=incident_details,
        documentation_details=documentation_details,
    )
    logger.debug(
        "Scored %s: raw=%d final=%d (%s)",
        application.name,
        breakdown.raw_score,
        breakdown.final_score,
        breakdown.category.value,
    )
    return breakdown


@dataclass(frozen=True)
class PortfolioHealthSummary:
    total_applications: int = 0
    healthy: int = 0
    needs_attention: int = 0
    at_risk: int = 0
    critical: int = 0
    average_score: float = 0.0

    @property
    def healthy_percentage(self) -> float:
        if self.total_applications == 0:
            return 0.0
        return round(100.0 * self.healthy / self.total_applications, 1)


def summarize_portfolio(breakdowns: Sequence[HealthScoreBreakdown]) -> PortfolioHealthSummary:
    """Counts per category and the average final score."""
    if not breakdowns:
        return PortfolioHealthSummary()
    categories = Counter(b.category for b in breakdowns)
    return PortfolioHealthSummary(
        total_applications=len(breakdowns),
        healthy=categories[HealthCategory.HEALTHY],
        needs_attention=categories[HealthCategory.NEEDS_ATTENTION],
        at_risk=categories[HealthCategory.AT_RISK],
        critical=categories[HealthCategory.CRITICAL],
        average_score=round(sum(b.final_score for b in breakdowns) / len(breakdowns), 1),
    )
