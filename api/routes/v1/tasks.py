"""
api/routes/v1/tasks.py -- Lifecycle task routes.

POST /tasks/generate runs the rule engine against the submitted applications
and the tasks already stored for them, then persists what it proposed. The
store re-checks idempotency per insert, so two overlapping runs cannot both
persist the same task.

The per-task routes (status, notes, assignee, escalate) load the stored task,
apply one core/transitions.py change and write it back, so every change adds
exactly one history entry.
"""

from typing import Callable, Optional

from fastapi import APIRouter, HTTPException, Request

from api.models import (
    ErrorDetail,
    TaskDelegateIn,
    TaskEscalateIn,
    TaskGenerateRequest,
    TaskNoteIn,
    TaskRow,
    TaskRunResponse,
    TaskStatusUpdate,
)
from core.config import utc_now
from core.models import LifecycleTask
from core.tasks import generate_tasks, generate_tasks_for_application
from core.transitions import add_note, delegate, escalate
from portfolio.store import DuplicateTaskError, PortfolioStore, TaskNotFoundError

router = APIRouter()


@router.post("/tasks/generate", response_model=TaskRunResponse)
def post_generate_tasks(request: Request, body: TaskGenerateRequest) -> TaskRunResponse:
    """Generate and persist lifecycle tasks.

    With application_id set, only that application is evaluated; it must be
    one of the submitted applications (404 otherwise).
    """
    store: PortfolioStore = request.app.state.store
    config = request.app.state.settings.task_generation_config()
    now = utc_now()

    applications = [a.to_domain() for a in body.applications]

    if body.application_id is not None:
        target = next((a for a in applications if a.id == body.application_id), None)
        if target is None:
            raise HTTPException(
                status_code=404,
                detail=ErrorDetail(
                    code="application_not_found",
                    message="Application not found.",
                    detail=f"Application {body.application_id[:100]} not found",
                ).model_dump(),
            )
        result = generate_tasks_for_application(target, store.list_tasks(application_id=target.id), config, now)
    else:
        existing = store.tasks_by_application(a.id for a in applications)
        result = generate_tasks(applications, existing, config, now)

    persisted = store.save_generated(result)
    return TaskRunResponse.from_result(result, persisted, now)


@router.get("/tasks", response_model=list[TaskRow])
def list_tasks(
    request: Request,
    application_id: Optional[str] = None,
    open_only: bool = False,
) -> list[TaskRow]:
    """Return stored tasks, soonest due first."""
    store: PortfolioStore = request.app.state.store
    now = utc_now()
    return [TaskRow.from_task(t, now) for t in store.list_tasks(application_id=application_id, open_only=open_only)]


@router.patch("/tasks/{task_id}/status", response_model=TaskRow)
def patch_task_status(request: Request, task_id: str, body: TaskStatusUpdate) -> TaskRow:
    """Move a task to a new status and record it in the task history."""
    store: PortfolioStore = request.app.state.store
    try:
        task = store.update_task_status(
            task_id,
            body.status,
            performed_by=body.performed_by,
            performed_by_id=body.performed_by_id,
            notes=body.notes,
        )
    except TaskNotFoundError:
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(code="task_not_found", message="Task not found.").model_dump(),
        )
    except DuplicateTaskError as e:
        raise HTTPException(
            status_code=409,
            detail=ErrorDetail(code="duplicate_task", message="Conflicting open task.", detail=str(e)).model_dump(),
        )
    return TaskRow.from_task(task, utc_now())


# ---------------------------------------------------------------------------
# Notes, delegation, escalation
# ---------------------------------------------------------------------------


def _write_back(store: PortfolioStore, task_id: str, change: Callable[[LifecycleTask], LifecycleTask]) -> TaskRow:
    """Load a stored task, apply one transition and persist it."""
    try:
        task = store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        updated = store.update_task(change(task))
    except TaskNotFoundError:
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(code="task_not_found", message="Task not found.").model_dump(),
        )
    except DuplicateTaskError as e:
        raise HTTPException(
            status_code=409,
            detail=ErrorDetail(code="duplicate_task", message="Conflicting open task.", detail=str(e)).model_dump(),
        )
    return TaskRow.from_task(updated, utc_now())


@router.post("/tasks/{task_id}/notes", response_model=TaskRow)
def post_task_note(request: Request, task_id: str, body: TaskNoteIn) -> TaskRow:
    """Append a note to the task and its history."""
    return _write_back(
        request.app.state.store,
        task_id,
        lambda t: add_note(t, body.note, body.performed_by, body.performed_by_id),
    )


@router.patch("/tasks/{task_id}/assignee", response_model=TaskRow)
def patch_task_assignee(request: Request, task_id: str, body: TaskDelegateIn) -> TaskRow:
    """Delegate the task. 409 when the new assignee already holds the same open task."""
    return _write_back(
        request.app.state.store,
        task_id,
        lambda t: delegate(
            t,
            body.assignee_id,
            body.assignee_name,
            body.reason,
            body.performed_by,
            body.performed_by_id,
            new_assignee_email=body.assignee_email,
        ),
    )


@router.post("/tasks/{task_id}/escalate", response_model=TaskRow)
def post_task_escalation(request: Request, task_id: str, body: TaskEscalateIn) -> TaskRow:
    return _write_back(
        request.app.state.store,
        task_id,
        lambda t: escalate(t, body.reason, body.performed_by, body.performed_by_id),
    )
