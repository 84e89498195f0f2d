"""Unit tests for core/transitions.py -- task state changes.

Covers:
- Each transition appends exactly one history entry and leaves the input untouched
- Completing a task stamps completed_date
- Delegation keeps the first original assignee across repeated hand-offs
- Escalation and notes
"""

from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone

import pytest

from core.models import LifecycleTask, TaskStatus, TaskType
from core.transitions import SYSTEM_ACTOR, add_note, delegate, escalate, with_status

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def task() -> LifecycleTask:
    return LifecycleTask(
        id="t-1",
        title="Annual documentation review for Payroll",
        type=TaskType.DOCUMENTATION_REVIEW,
        application_id="app-1",
        application_name="Payroll",
        assignee_id="alice",
        assignee_name="Alice",
        due_date=NOW + timedelta(days=30),
        created_date=NOW - timedelta(days=1),
    )


class TestWithStatus:
    def test_appends_one_entry(self, task) -> None:
        updated = with_status(task, TaskStatus.IN_PROGRESS, performed_by="alice", now=NOW)
        assert updated.status == TaskStatus.IN_PROGRESS
        assert len(updated.history) == 1
        entry = updated.history[0]
        assert entry.action == "Status changed to InProgress"
        assert entry.old_value == "Pending"
        assert entry.new_value == "InProgress"
        assert entry.performed_by == "alice"
        assert entry.timestamp == NOW

    def test_input_untouched(self, task) -> None:
        with_status(task, TaskStatus.COMPLETED, now=NOW)
        assert task.status == TaskStatus.PENDING
        assert task.history == ()
        with pytest.raises(FrozenInstanceError):
            task.status = TaskStatus.COMPLETED

    def test_completion_stamps_date(self, task) -> None:
        done = with_status(task, TaskStatus.COMPLETED, now=NOW)
        assert done.completed_date == NOW
        assert done.is_terminal
        assert not done.is_overdue(NOW + timedelta(days=365))

    def test_default_actor_is_system(self, task) -> None:
        assert with_status(task, TaskStatus.BLOCKED, now=NOW).history[0].performed_by == SYSTEM_ACTOR

    def test_history_grows_in_order(self, task) -> None:
        t = with_status(task, TaskStatus.IN_PROGRESS, now=NOW)
        t = with_status(t, TaskStatus.BLOCKED, notes="waiting on vendor", now=NOW + timedelta(hours=1))
        t = with_status(t, TaskStatus.COMPLETED, now=NOW + timedelta(hours=2))
        assert [h.new_value for h in t.history] == ["InProgress", "Blocked", "Completed"]
        assert t.history[1].notes == "waiting on vendor"


class TestDelegate:
    def test_reassigns_and_records_original(self, task) -> None:
        moved = delegate(task, "bob", "Bob", "on leave", performed_by="alice", now=NOW)
        assert moved.assignee_id == "bob"
        assert moved.original_assignee_id == "alice"
        assert moved.delegation_reason == "on leave"
        assert moved.history[-1].action == "Delegated to Bob"
        assert moved.history[-1].old_value == "Alice"

    def test_repeated_delegation_keeps_first_assignee(self, task) -> None:
        moved = delegate(task, "bob", "Bob", "on leave", now=NOW)
        moved = delegate(moved, "carol", "Carol", "team change", now=NOW)
        assert moved.assignee_id == "carol"
        assert moved.original_assignee_id == "alice"
        assert len(moved.history) == 2


class TestEscalateAndNotes:
    def test_escalate(self, task) -> None:
        up = escalate(task, "overdue", now=NOW)
        assert up.is_escalated
        assert up.escalated_date == NOW
        assert up.history[-1].action == "Task escalated"
        assert up.history[-1].notes == "overdue"

    def test_notes_accumulate(self, task) -> None:
        t = add_note(task, "first", now=NOW)
        t = add_note(t, "second", now=NOW)
        assert t.notes == "first\nsecond"
        assert [h.action for h in t.history] == ["Note added", "Note added"]
