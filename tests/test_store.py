"""Unit tests for portfolio/store.py -- task and framework version persistence.

Covers:
- Task round trip including history and timezone-aware dates
- One open task per idempotency key; terminal tasks exempt
- save_generated() skips tasks that collide with stored open tasks
- Status updates append history and never rewrite earlier entries
- Not-found errors for tasks and framework versions
- Applying an EOL refresh writes added and updated versions
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from core.eol import EolRefreshResult, EolUpdateInfo
from core.models import (
    FrameworkType,
    FrameworkVersion,
    LifecycleTask,
    SupportStatus,
    TaskPriority,
    TaskStatus,
    TaskType,
)
from core.tasks import TaskGenerationResult
from core.transitions import add_note, with_status
from portfolio.store import (
    DuplicateTaskError,
    FrameworkVersionNotFoundError,
    PortfolioStore,
    TaskNotFoundError,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store():
    s = PortfolioStore("sqlite:///:memory:")
    yield s
    s.close()


def _task(task_id: str, task_type: TaskType = TaskType.DOCUMENTATION_REVIEW, **kwargs) -> LifecycleTask:
    defaults = dict(
        id=task_id,
        title=f"Task {task_id}",
        type=task_type,
        application_id="app-1",
        application_name="Payroll",
        assignee_id="alice",
        assignee_name="Alice",
        due_date=NOW + timedelta(days=30),
        created_date=NOW,
    )
    defaults.update(kwargs)
    return LifecycleTask(**defaults)


def _version(version: str, **kwargs) -> FrameworkVersion:
    defaults = dict(
        id=f"python-{version}",
        framework=FrameworkType.PYTHON,
        version=version,
        display_name=f"Python {version}",
        status=SupportStatus.ACTIVE,
        last_updated=NOW,
    )
    defaults.update(kwargs)
    return FrameworkVersion(**defaults)


# ---------------------------------------------------------------------------
# TestTasks
# ---------------------------------------------------------------------------


class TestTasks:
    def test_round_trip(self, store) -> None:
        task = add_note(_task("t1", priority=TaskPriority.HIGH, assignee_email="a@example.com"), "hello", now=NOW)
        store.create_task(task)

        loaded = store.get_task("t1")
        assert loaded == task
        assert loaded.due_date.tzinfo is not None

    def test_missing_task_is_none(self, store) -> None:
        assert store.get_task("nope") is None

    def test_duplicate_open_task_rejected(self, store) -> None:
        store.create_task(_task("t1"))
        with pytest.raises(DuplicateTaskError):
            store.create_task(_task("t2"))

    def test_terminal_task_does_not_block(self, store) -> None:
        store.create_task(_task("t1", status=TaskStatus.COMPLETED))
        store.create_task(_task("t2"))
        assert [t.id for t in store.list_tasks(open_only=True)] == ["t2"]

    def test_key_narrowed_by_assignee_and_priority(self, store) -> None:
        store.create_task(_task("r1", TaskType.ROLE_VALIDATION, assignee_id="alice"))
        store.create_task(_task("r2", TaskType.ROLE_VALIDATION, assignee_id="bob"))
        store.create_task(_task("s1", TaskType.SECURITY_REMEDIATION, priority=TaskPriority.CRITICAL))
        store.create_task(_task("s2", TaskType.SECURITY_REMEDIATION, priority=TaskPriority.HIGH))
        with pytest.raises(DuplicateTaskError):
            store.create_task(_task("s3", TaskType.SECURITY_REMEDIATION, priority=TaskPriority.HIGH))
        assert len(store.list_tasks()) == 4

    def test_save_generated_skips_collisions(self, store) -> None:
        store.create_task(_task("existing"))
        result = TaskGenerationResult(created=[_task("dup"), _task("new", TaskType.MAINTENANCE_REVIEW)])
        persisted = store.save_generated(result)
        assert [t.id for t in persisted] == ["new"]
        assert result.skipped == 1

    def test_list_filters_and_order(self, store) -> None:
        store.create_task(_task("late", due_date=NOW + timedelta(days=60)))
        store.create_task(_task("soon", TaskType.CUSTOM, due_date=NOW + timedelta(days=5)))
        store.create_task(_task("other", application_id="app-2"))

        assert [t.id for t in store.list_tasks(application_id="app-1")] == ["soon", "late"]
        assert [t.id for t in store.list_tasks(task_type=TaskType.CUSTOM)] == ["soon"]
        grouped = store.tasks_by_application(["app-2"])
        assert list(grouped) == ["app-2"]


# ---------------------------------------------------------------------------
# TestTaskUpdates
# ---------------------------------------------------------------------------


class TestTaskUpdates:
    def test_status_update_appends_history(self, store) -> None:
        store.create_task(_task("t1"))
        store.update_task_status("t1", TaskStatus.IN_PROGRESS, performed_by="alice", now=NOW)
        updated = store.update_task_status("t1", TaskStatus.COMPLETED, performed_by="alice", now=NOW)

        loaded = store.get_task("t1")
        assert loaded == updated
        assert loaded.status == TaskStatus.COMPLETED
        assert loaded.completed_date == NOW
        assert [h.action for h in loaded.history] == ["Status changed to InProgress", "Status changed to Completed"]

    def test_existing_history_never_rewritten(self, store) -> None:
        task = with_status(_task("t1"), TaskStatus.IN_PROGRESS, now=NOW)
        store.create_task(task)
        first = task.history[0]

        tampered = replace(task, history=(replace(first, notes="edited"),))
        store.update_task(with_status(tampered, TaskStatus.BLOCKED, now=NOW))

        loaded = store.get_task("t1")
        assert loaded.history[0].notes is None
        assert len(loaded.history) == 2

    def test_unknown_task(self, store) -> None:
        with pytest.raises(TaskNotFoundError):
            store.update_task_status("nope", TaskStatus.COMPLETED)
        with pytest.raises(TaskNotFoundError):
            store.update_task(_task("ghost"))

    def test_reopening_into_clash_rejected(self, store) -> None:
        store.create_task(_task("old", status=TaskStatus.CANCELLED))
        store.create_task(_task("current"))
        with pytest.raises(DuplicateTaskError):
            store.update_task_status("old", TaskStatus.PENDING)
        assert store.get_task("old").status == TaskStatus.CANCELLED


# ---------------------------------------------------------------------------
# TestFrameworkVersions
# ---------------------------------------------------------------------------


class TestFrameworkVersions:
    def test_round_trip(self, store) -> None:
        version = _version("3.12", eol_date=NOW.date() + timedelta(days=900), is_lts=True, latest_patch="3.12.8")
        store.create_framework_version(version)
        assert store.get_framework_version("PYTHON-3.12") == version

    def test_update_missing_version(self, store) -> None:
        with pytest.raises(FrameworkVersionNotFoundError):
            store.update_framework_version(_version("9.9"))

    def test_list_by_family(self, store) -> None:
        store.create_framework_version(_version("3.12"))
        store.create_framework_version(
            _version("20", id="nodejs-20", framework=FrameworkType.NODEJS, display_name="Node.js 20")
        )
        assert [v.id for v in store.list_framework_versions(FrameworkType.NODEJS)] == ["nodejs-20"]
        assert set(store.versions_by_family()) == {FrameworkType.PYTHON, FrameworkType.NODEJS}

    def test_apply_eol_refresh(self, store) -> None:
        stored = _version("3.11")
        store.create_framework_version(stored)
        changed = replace(stored, status=SupportStatus.MAINTENANCE)
        result = EolRefreshResult(
            added=[_version("3.13")],
            updated=[
                EolUpdateInfo(
                    version=changed,
                    previous_eol_date=None,
                    new_eol_date=None,
                    previous_status=SupportStatus.ACTIVE,
                    new_status=SupportStatus.MAINTENANCE,
                    change_description="Status: Active -> Maintenance",
                )
            ],
            unchanged=["Python 3.12"],
        )
        assert store.apply_eol_refresh(result) == 2
        assert store.get_framework_version("python-3.11").status == SupportStatus.MAINTENANCE
        assert store.get_framework_version("python-3.13") is not None
