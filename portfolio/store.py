"""
portfolio/store.py -- SQLAlchemy-backed persistence for lifecycle tasks and
framework versions.

Uses SQLAlchemy Core (not ORM) so the frozen dataclasses in core/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change.

Pattern: Repository + Data Mapper. PortfolioStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL directly.

Idempotency: each task row carries its idempotency key (core.tasks.
idempotency_key) and a partial unique index allows one non-terminal row per
key. create_task() also checks inside its transaction so the caller gets a
DuplicateTaskError rather than a raw IntegrityError.

Task history is append-only: update_task() inserts the history entries the
stored row does not have yet and never rewrites existing ones.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = PortfolioStore()                               # SQLite default
    store = PortfolioStore("postgresql://user:pw@host/db") # PostgreSQL
    store.create_task(task)
    store.update_task_status(task_id, TaskStatus.COMPLETED, performed_by="alice")
    store.apply_eol_refresh(result)
    store.close()
"""

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Optional, Sequence

from sqlalchemy import (
    Boolean,
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from core.eol import EolRefreshResult
from core.models import (
    TERMINAL_STATUSES,
    FrameworkType,
    FrameworkVersion,
    LifecycleTask,
    SupportStatus,
    TaskHistoryEntry,
    TaskPriority,
    TaskStatus,
    TaskType,
)
from core.tasks import TaskGenerationResult, idempotency_key
from core.transitions import SYSTEM_ACTOR, with_status
from portfolio.ingest import parse_datetime

logger = logging.getLogger("lifecycle.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'lifecycle.db'}"

_TERMINAL_VALUES = sorted(s.value for s in TERMINAL_STATUSES)


class TaskNotFoundError(LookupError):
    """No task with the given id."""


class FrameworkVersionNotFoundError(LookupError):
    """No framework version with the given id."""


class DuplicateTaskError(Exception):
    """A non-terminal task with the same idempotency key already exists."""

    def __init__(self, task: LifecycleTask) -> None:
        target = task.application_name or task.application_id
        super().__init__(f"An open {task.type.value} task already exists for {target}")
        self.task = task


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_tasks = Table(
    "lifecycle_tasks",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("title", String(500), nullable=False),
    Column("description", Text),
    Column("type", String(40), nullable=False),
    Column("priority", String(20), nullable=False),
    Column("status", String(20), nullable=False),
    Column("application_id", String(64), nullable=False, index=True),
    Column("application_name", String(255)),
    Column("assignee_id", String(64), nullable=False),
    Column("assignee_name", String(255)),
    Column("assignee_email", String(255)),
    Column("due_date", String(32), nullable=False),
    Column("created_date", String(32), nullable=False),
    Column("completed_date", String(32)),
    Column("notes", Text),
    Column("is_escalated", Boolean, nullable=False, server_default="0"),
    Column("escalated_date", String(32)),
    Column("original_assignee_id", String(64)),
    Column("delegation_reason", Text),
    Column("idempotency_key", String(255), nullable=False),
)

# One open task per key. Terminal rows are exempt.
Index(
    "uq_open_task_key",
    _tasks.c.idempotency_key,
    unique=True,
    sqlite_where=_tasks.c.status.not_in(_TERMINAL_VALUES),
    postgresql_where=_tasks.c.status.not_in(_TERMINAL_VALUES),
)

_history = Table(
    "task_history",
    metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("id", String(64), nullable=False, unique=True),
    Column("task_id", String(64), nullable=False, index=True),
    Column("timestamp", String(32), nullable=False),
    Column("action", String(255), nullable=False),
    Column("performed_by", String(255), nullable=False),
    Column("performed_by_id", String(64)),
    Column("old_value", Text),
    Column("new_value", Text),
    Column("notes", Text),
)

_framework_versions = Table(
    "framework_versions",
    metadata,
    Column("id", String(100), primary_key=True),
    Column("framework", String(30), nullable=False, index=True),
    Column("version", String(50), nullable=False),
    Column("display_name", String(100), nullable=False),
    Column("status", String(20), nullable=False),
    Column("release_date", String(10)),  # YYYY-MM-DD
    Column("eol_date", String(10)),
    Column("active_support_end", String(10)),
    Column("is_lts", Boolean, nullable=False, server_default="0"),
    Column("latest_patch", String(50)),
    Column("last_updated", String(32)),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _key_text(task: LifecycleTask) -> str:
    return "|".join(p.value if hasattr(p, "value") else str(p) for p in idempotency_key(task))


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _day(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_day(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _task_values(task: LifecycleTask) -> dict:
    return {
        "title": task.title,
        "description": task.description,
        "type": task.type.value,
        "priority": task.priority.value,
        "status": task.status.value,
        "application_id": task.application_id,
        "application_name": task.application_name,
        "assignee_id": task.assignee_id,
        "assignee_name": task.assignee_name,
        "assignee_email": task.assignee_email,
        "due_date": _iso(task.due_date),
        "created_date": _iso(task.created_date),
        "completed_date": _iso(task.completed_date),
        "notes": task.notes,
        "is_escalated": task.is_escalated,
        "escalated_date": _iso(task.escalated_date),
        "original_assignee_id": task.original_assignee_id,
        "delegation_reason": task.delegation_reason,
        "idempotency_key": _key_text(task),
    }


def _version_values(version: FrameworkVersion) -> dict:
    return {
        "framework": version.framework.value,
        "version": version.version,
        "display_name": version.display_name,
        "status": version.status.value,
        "release_date": _day(version.release_date),
        "eol_date": _day(version.eol_date),
        "active_support_end": _day(version.active_support_end),
        "is_lts": version.is_lts,
        "latest_patch": version.latest_patch,
        "last_updated": _iso(version.last_updated),
    }


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode. Set per-connection: SQLite PRAGMAs are not
    inherited by new pool connections."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PortfolioStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # Route handlers run in a thread pool; the same pooled connection
            # may be used from more than one thread.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, task: LifecycleTask) -> LifecycleTask:
        """Insert a task and its history.

        Raises DuplicateTaskError if a non-terminal task with the same
        idempotency key is already stored.
        """
        key = _key_text(task)
        try:
            with self.engine.begin() as conn:
                if not task.is_terminal:
                    clash = conn.execute(
                        select(_tasks.c.id).where(
                            _tasks.c.idempotency_key == key,
                            _tasks.c.status.not_in(_TERMINAL_VALUES),
                        )
                    ).first()
                    if clash is not None:
                        raise DuplicateTaskError(task)
                conn.execute(_tasks.insert().values(id=task.id, **_task_values(task)))
                self._insert_history(conn, task.id, task.history)
        except IntegrityError as e:
            # Lost a race against a concurrent insert of the same key.
            raise DuplicateTaskError(task) from e
        return task

    def save_generated(self, result: TaskGenerationResult) -> list[LifecycleTask]:
        """Persist the tasks a generation run proposed.

        Tasks that collide with an open task stored since the run's snapshot
        are skipped (counted on the result) instead of failing the batch.
        """
        persisted: list[LifecycleTask] = []
        for task in result.created:
            try:
                persisted.append(self.create_task(task))
            except DuplicateTaskError:
                logger.info("Skipping duplicate %s task for %s", task.type.value, task.application_name)
                result.skipped += 1
        return persisted

    def get_task(self, task_id: str) -> Optional[LifecycleTask]:
        """Fetch a single task with its history. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_tasks.select().where(_tasks.c.id == task_id)).fetchone()
            if row is None:
                return None
            return _row_to_task(row, self._load_history(conn, [task_id]).get(task_id, ()))

    def list_tasks(
        self,
        application_id: Optional[str] = None,
        open_only: bool = False,
        task_type: Optional[TaskType] = None,
    ) -> list[LifecycleTask]:
        """Return tasks ordered by due date, soonest first."""
        query = _tasks.select()
        if application_id is not None:
            query = query.where(_tasks.c.application_id == application_id)
        if open_only:
            query = query.where(_tasks.c.status.not_in(_TERMINAL_VALUES))
        if task_type is not None:
            query = query.where(_tasks.c.type == task_type.value)
        query = query.order_by(_tasks.c.due_date, _tasks.c.id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
            history = self._load_history(conn, [r.id for r in rows])
        return [_row_to_task(r, history.get(r.id, ())) for r in rows]

    def tasks_by_application(self, application_ids: Optional[Iterable[str]] = None) -> dict[str, list[LifecycleTask]]:
        """Existing tasks grouped by application id, as the rule engine expects."""
        wanted = set(application_ids) if application_ids is not None else None
        grouped: dict[str, list[LifecycleTask]] = {}
        for task in self.list_tasks():
            if wanted is not None and task.application_id not in wanted:
                continue
            grouped.setdefault(task.application_id, []).append(task)
        return grouped

    def update_task(self, task: LifecycleTask) -> LifecycleTask:
        """Write back a transitioned copy of a stored task.

        Raises TaskNotFoundError if the task is not stored and
        DuplicateTaskError if reopening it would clash with another open task.
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(_tasks.update().where(_tasks.c.id == task.id).values(**_task_values(task)))
                if result.rowcount == 0:
                    raise TaskNotFoundError(task.id)
                known = {
                    r.id for r in conn.execute(select(_history.c.id).where(_history.c.task_id == task.id))
                }
                self._insert_history(conn, task.id, [h for h in task.history if h.id not in known])
        except IntegrityError as e:
            raise DuplicateTaskError(task) from e
        return task

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        performed_by: str = SYSTEM_ACTOR,
        performed_by_id: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LifecycleTask:
        """Transition a stored task. Raises TaskNotFoundError if absent."""
        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        updated = with_status(task, status, performed_by, performed_by_id, notes, now)
        return self.update_task(updated)

    def _insert_history(self, conn: Connection, task_id: str, entries: Sequence[TaskHistoryEntry]) -> None:
        for entry in entries:
            conn.execute(
                _history.insert().values(
                    id=entry.id,
                    task_id=task_id,
                    timestamp=_iso(entry.timestamp),
                    action=entry.action,
                    performed_by=entry.performed_by,
                    performed_by_id=entry.performed_by_id,
                    old_value=entry.old_value,
                    new_value=entry.new_value,
                    notes=entry.notes,
                )
            )

    def _load_history(self, conn: Connection, task_ids: list[str]) -> dict[str, tuple[TaskHistoryEntry, ...]]:
        if not task_ids:
            return {}
        rows = conn.execute(
            _history.select().where(_history.c.task_id.in_(task_ids)).order_by(_history.c.seq)
        ).fetchall()
        grouped: dict[str, list[TaskHistoryEntry]] = {}
        for r in rows:
            grouped.setdefault(r.task_id, []).append(_row_to_history(r))
        return {task_id: tuple(entries) for task_id, entries in grouped.items()}

    # ------------------------------------------------------------------
    # Framework versions
    # ------------------------------------------------------------------

    def create_framework_version(self, version: FrameworkVersion) -> None:
        """Insert a version. Raises sqlalchemy IntegrityError if the id exists."""
        with self.engine.begin() as conn:
            conn.execute(_framework_versions.insert().values(id=version.id, **_version_values(version)))

    def update_framework_version(self, version: FrameworkVersion) -> None:
        """Replace a stored version. Raises FrameworkVersionNotFoundError if absent."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _framework_versions.update()
                .where(_framework_versions.c.id == version.id)
                .values(**_version_values(version))
            )
            if result.rowcount == 0:
                raise FrameworkVersionNotFoundError(version.id)

    def get_framework_version(self, version_id: str) -> Optional[FrameworkVersion]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _framework_versions.select().where(_framework_versions.c.id == version_id.lower())
            ).fetchone()
        return _row_to_version(row) if row is not None else None

    def list_framework_versions(self, framework: Optional[FrameworkType] = None) -> list[FrameworkVersion]:
        """Return stored versions ordered by framework, then id."""
        query = _framework_versions.select()
        if framework is not None:
            query = query.where(_framework_versions.c.framework == framework.value)
        query = query.order_by(_framework_versions.c.framework, _framework_versions.c.id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_version(r) for r in rows]

    def versions_by_family(self) -> dict[FrameworkType, list[FrameworkVersion]]:
        grouped: dict[FrameworkType, list[FrameworkVersion]] = {}
        for version in self.list_framework_versions():
            grouped.setdefault(version.framework, []).append(version)
        return grouped

    def apply_eol_refresh(self, result: EolRefreshResult) -> int:
        """Write the added and updated versions of a refresh. Returns rows written."""
        written = 0
        for version in result.added:
            self.create_framework_version(version)
            written += 1
        for info in result.updated:
            self.update_framework_version(info.version)
            written += 1
        return written

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_history(row) -> TaskHistoryEntry:
    return TaskHistoryEntry(
        id=row.id,
        timestamp=parse_datetime(row.timestamp),
        action=row.action,
        performed_by=row.performed_by,
        performed_by_id=row.performed_by_id,
        old_value=row.old_value,
        new_value=row.new_value,
        notes=row.notes,
    )


def _row_to_task(row, history: tuple[TaskHistoryEntry, ...] = ()) -> LifecycleTask:
    return LifecycleTask(
        id=row.id,
        title=row.title,
        description=row.description or "",
        type=TaskType(row.type),
        priority=TaskPriority(row.priority),
        status=TaskStatus(row.status),
        application_id=row.application_id,
        application_name=row.application_name or "",
        assignee_id=row.assignee_id,
        assignee_name=row.assignee_name or "",
        assignee_email=row.assignee_email,
        due_date=parse_datetime(row.due_date),
        created_date=parse_datetime(row.created_date),
        completed_date=parse_datetime(row.completed_date),
        notes=row.notes,
        is_escalated=bool(row.is_escalated),
        escalated_date=parse_datetime(row.escalated_date),
        original_assignee_id=row.original_assignee_id,
        delegation_reason=row.delegation_reason,
        history=history,
    )


def _row_to_version(row) -> FrameworkVersion:
    return FrameworkVersion(
        id=row.id,
        framework=FrameworkType(row.framework),
        version=row.version,
        display_name=row.display_name,
        status=SupportStatus(row.status),
        release_date=_parse_day(row.release_date),
        eol_date=_parse_day(row.eol_date),
        active_support_end=_parse_day(row.active_support_end),
        is_lts=bool(row.is_lts),
        latest_patch=row.latest_patch,
        last_updated=parse_datetime(row.last_updated),
    )
