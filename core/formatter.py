"""
formatter.py -- Renders health scores, task runs and EOL refreshes to the
terminal or JSON.
"""

import json
import os
import re
import sys
from dataclasses import asdict
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Sequence

from .eol import EolRefreshResult
from .models import HealthCategory, HealthScoreBreakdown, LifecycleTask
from .scoring import PortfolioHealthSummary
from .tasks import TaskGenerationResult

W = 68  # output width

# ---------------------------------------------------------------------------
# ANSI color control
# ---------------------------------------------------------------------------

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from a string."""
    return _ANSI_RE.sub("", text)


def _use_color() -> bool:
    """Return True if stdout is a TTY and color has not been disabled.

    Respects NO_COLOR env var (https://no-color.org) and FORCE_COLOR.
    """
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


_color_enabled: Optional[bool] = None  # None = auto-detect


def disable_color() -> None:
    """Force-disable color output (called when --no-color flag is set)."""
    global _color_enabled
    _color_enabled = False


def _color_active() -> bool:
    if _color_enabled is not None:
        return _color_enabled
    return _use_color()


CATEGORY_COLORS = {
    HealthCategory.HEALTHY: "\033[92m",  # green
    HealthCategory.NEEDS_ATTENTION: "\033[94m",  # blue
    HealthCategory.AT_RISK: "\033[93m",  # yellow
    HealthCategory.CRITICAL: "\033[91m",  # red
}


def _reset() -> str:
    return "\033[0m" if _color_active() else ""


def _bold() -> str:
    return "\033[1m" if _color_active() else ""


def _dim() -> str:
    return "\033[2m" if _color_active() else ""


def _red() -> str:
    return "\033[91m" if _color_active() else ""


def _c_color(category: HealthCategory) -> str:
    return CATEGORY_COLORS.get(category, "") if _color_active() else ""


# ---------------------------------------------------------------------------
# Layout helpers
# ---------------------------------------------------------------------------


def _bar(char: str = "═") -> str:
    return char * W


def _section(title: str) -> str:
    return f"\n  {_bold()}{title}{_reset()}\n  {'─' * (W - 2)}"


def _signed(value: int) -> str:
    return f"{value:+d}"


# ---------------------------------------------------------------------------
# Health scores
# ---------------------------------------------------------------------------


def print_breakdown(application_name: str, breakdown: HealthScoreBreakdown) -> None:
    bold = _bold()
    reset = _reset()
    color = _c_color(breakdown.category)

    print(f"\n{bold}{_bar()}{reset}")
    print(f"  {bold}{application_name}{reset}  │  {color}{bold}{breakdown.final_score}/100 {breakdown.category.value}{reset}")
    print(f"{bold}{_bar()}{reset}")

    print(_section("SCORE BREAKDOWN"))
    rows = [
        ("Base score", str(breakdown.base_score)),
        ("Security", _signed(-breakdown.security_penalty)),
        ("Usage", _signed(breakdown.usage_adjustment)),
        ("Maintenance", _signed(breakdown.maintenance_adjustment)),
        ("Documentation", _signed(breakdown.documentation_adjustment)),
        ("Overdue tasks", _signed(-breakdown.overdue_task_penalty)),
        ("Data conflicts", _signed(-breakdown.data_conflict_penalty)),
    ]
    if breakdown.incident_details is not None:
        rows.append(("Incidents", _signed(-breakdown.incident_penalty)))
    for label, val in rows:
        print(f"    {label:<22}  {val:>5}")
    if breakdown.raw_score != breakdown.final_score:
        print(f"    {_dim()}{'Raw (before clamp)':<22}  {breakdown.raw_score:>5}{reset}")

    sec = breakdown.security_details
    if sec.critical_count or sec.high_count or sec.medium_count or sec.low_count:
        print(_section("UNRESOLVED FINDINGS"))
        print(
            f"    Critical {sec.critical_count}   High {sec.high_count}   "
            f"Medium {sec.medium_count}   Low {sec.low_count}"
        )

    inc = breakdown.incident_details
    if inc is not None and inc.total_incidents:
        print(_section("INCIDENTS"))
        print(f"    {inc.recent_incidents} recent of {inc.total_incidents}, {inc.repeat_patterns} repeat pattern(s)")

    print(f"\n{_bar()}\n")


def print_score_summary(
    scored: Sequence[tuple[str, HealthScoreBreakdown]], summary: PortfolioHealthSummary
) -> None:
    """One line per application, worst first, then portfolio totals."""
    bold = _bold()
    reset = _reset()

    print(f"\n{bold}{_bar()}{reset}")
    print(f"  {bold}PORTFOLIO HEALTH — {summary.total_applications} applications{reset}")
    print(f"{bold}{_bar()}{reset}\n")

    for name, breakdown in sorted(scored, key=lambda pair: pair[1].final_score):
        color = _c_color(breakdown.category)
        print(f"  {name[:40]:<40} {breakdown.final_score:>4}  {color}{breakdown.category.value}{reset}")

    print(f"\n  {'─' * (W - 2)}")
    print(
        f"  Healthy {summary.healthy}   Needs attention {summary.needs_attention}   "
        f"At risk {summary.at_risk}   Critical {summary.critical}"
    )
    print(f"  Average score {summary.average_score}   Healthy {summary.healthy_percentage}%")
    print(f"\n{_bar()}\n")


# ---------------------------------------------------------------------------
# Task runs
# ---------------------------------------------------------------------------


def print_task_run(result: TaskGenerationResult, dry_run: bool = False) -> None:
    bold = _bold()
    reset = _reset()
    red = _red()

    title = "TASK GENERATION (dry run)" if dry_run else "TASK GENERATION"
    print(f"\n{bold}{_bar()}{reset}")
    print(f"  {bold}{title} — {result.tasks_created} created, {result.skipped} skipped{reset}")
    print(f"{bold}{_bar()}{reset}")

    for note in result.notes:
        print(f"\n    {note}")

    if result.created:
        print(_section("NEW TASKS"))
        for task in result.created:
            print(f"    [{task.priority.value:<8}] {task.title}")
            print(f"    {_dim()}{'':<11}{task.assignee_name}, due {task.due_date:%Y-%m-%d}{reset}")

    if result.errors:
        print(_section("ERRORS"))
        for error in result.errors:
            print(f"    {red}•{reset} {error}")

    print(f"\n{_bar()}\n")


# ---------------------------------------------------------------------------
# EOL refresh
# ---------------------------------------------------------------------------


def print_eol_refresh(result: EolRefreshResult) -> None:
    bold = _bold()
    reset = _reset()
    red = _red()

    print(f"\n{bold}{_bar()}{reset}")
    print(
        f"  {bold}EOL REFRESH — {len(result.added)} added, {len(result.updated)} updated, "
        f"{len(result.unchanged)} unchanged{reset}"
    )
    print(f"{bold}{_bar()}{reset}")

    if result.added:
        print(_section("ADDED"))
        for version in result.added:
            eol = version.eol_date.isoformat() if version.eol_date else "no EOL date"
            print(f"    • {version.display_name:<24} {version.status.value:<12} {eol}")

    if result.updated:
        print(_section("UPDATED"))
        for info in result.updated:
            print(f"    • {info.version.display_name}: {info.change_description}")

    if result.errors:
        print(_section("ERRORS"))
        for error in result.errors:
            print(f"    {red}•{reset} {error.framework.value}: {error.message}")

    print(f"\n{_bar()}\n")


# ---------------------------------------------------------------------------
# JSON export
# ---------------------------------------------------------------------------


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, tuple):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def breakdown_to_dict(breakdown: HealthScoreBreakdown) -> dict:
    d = asdict(breakdown)
    d["raw_score"] = breakdown.raw_score
    d["final_score"] = breakdown.final_score
    d["category"] = breakdown.category.value
    return d


def task_to_dict(task: LifecycleTask) -> dict:
    return asdict(task)


def task_run_to_dict(result: TaskGenerationResult) -> dict:
    return {
        "tasks_created": result.tasks_created,
        "tasks_skipped": result.skipped,
        "applications_processed": result.applications_processed,
        "errors": list(result.errors),
        "notes": list(result.notes),
        "tasks_by_type": {t.value: n for t, n in result.tasks_by_type.items()},
        "created": [task_to_dict(t) for t in result.created],
    }


def eol_refresh_to_dict(result: EolRefreshResult) -> dict:
    return {
        "success": result.success,
        "added": [asdict(v) for v in result.added],
        "updated": [asdict(u) for u in result.updated],
        "unchanged": list(result.unchanged),
        "errors": [{"framework": e.framework.value, "message": e.message} for e in result.errors],
    }


def to_json(data: Any) -> str:
    """Serialize a dict produced by one of the *_to_dict helpers."""
    return json.dumps(data, indent=2, default=_json_default)
