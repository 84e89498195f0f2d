"""
core/transitions.py -- Task state changes as pure copy-and-append functions.

Each function returns a new LifecycleTask with one change applied and exactly
one TaskHistoryEntry appended. The input task is never modified.

Callers: PortfolioStore.update_task_status() (with_status) and the per-task
routes in api/routes/v1/tasks.py (add_note, delegate, escalate).
"""

import uuid
from dataclasses import replace
from datetime import datetime
from typing import Optional

from core.config import utc_now
from core.models import LifecycleTask, TaskHistoryEntry, TaskStatus

SYSTEM_ACTOR = "System"


def _entry(
    action: str,
    performed_by: str,
    performed_by_id: Optional[str],
    now: datetime,
    old_value: Optional[str] = None,
    new_value: Optional[str] = None,
    notes: Optional[str] = None,
) -> TaskHistoryEntry:
    return TaskHistoryEntry(
        id=str(uuid.uuid4()),
        timestamp=now,
        action=action,
        performed_by=performed_by,
        performed_by_id=performed_by_id,
        old_value=old_value,
        new_value=new_value,
        notes=notes,
    )


def with_status(
    task: LifecycleTask,
    status: TaskStatus,
    performed_by: str = SYSTEM_ACTOR,
    performed_by_id: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LifecycleTask:
    """Move a task to `status`. Completing it stamps completed_date."""
    now = now or utc_now()
    entry = _entry(
        f"Status changed to {status.value}",
        performed_by,
        performed_by_id,
        now,
        old_value=task.status.value,
        new_value=status.value,
        notes=notes,
    )
    return replace(
        task,
        status=status,
        completed_date=now if status == TaskStatus.COMPLETED else task.completed_date,
        history=task.history + (entry,),
    )


def add_note(
    task: LifecycleTask,
    note: str,
    performed_by: str = SYSTEM_ACTOR,
    performed_by_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LifecycleTask:
    now = now or utc_now()
    combined = f"{task.notes}\n{note}" if task.notes else note
    entry = _entry("Note added", performed_by, performed_by_id, now, notes=note)
    return replace(task, notes=combined, history=task.history + (entry,))


def delegate(
    task: LifecycleTask,
    new_assignee_id: str,
    new_assignee_name: str,
    reason: str,
    performed_by: str = SYSTEM_ACTOR,
    performed_by_id: Optional[str] = None,
    new_assignee_email: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LifecycleTask:
    """Hand the task to someone else.

    original_assignee_id records the first assignee only; repeated
    delegation keeps it.
    """
    now = now or utc_now()
    entry = _entry(
        f"Delegated to {new_assignee_name}",
        performed_by,
        performed_by_id,
        now,
        old_value=task.assignee_name,
        new_value=new_assignee_name,
        notes=reason,
    )
    return replace(
        task,
        assignee_id=new_assignee_id,
        assignee_name=new_assignee_name,
        assignee_email=new_assignee_email,
        original_assignee_id=task.original_assignee_id or task.assignee_id,
        delegation_reason=reason,
        history=task.history + (entry,),
    )


def escalate(
    task: LifecycleTask,
    reason: Optional[str] = None,
    performed_by: str = SYSTEM_ACTOR,
    performed_by_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LifecycleTask:
    now = now or utc_now()
    entry = _entry("Task escalated", performed_by, performed_by_id, now, notes=reason)
    return replace(task, is_escalated=True, escalated_date=now, history=task.history + (entry,))
