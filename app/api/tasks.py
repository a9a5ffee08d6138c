"""Task management and progress endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, status

from app.api.deps import ActorDep, StoreDep
from app.models.api import (
    AssigneeRequest,
    Envelope,
    LeadTaskStatus,
    ProgressRequest,
    ProgressResult,
    ReviewRequest,
    success,
)
from app.models.dashboard import TaskView
from app.models.workflow import ProgressExtra, Task, TaskSpec, TaskType
from app.services.workflow import WorkflowStore

router = APIRouter(prefix="/tasks", tags=["tasks"])


def _view(store: WorkflowStore, task: Task) -> TaskView:
    return TaskView.build(task, store.aggregate(task))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_task(spec: TaskSpec, store: StoreDep, actor: ActorDep) -> Envelope[TaskView]:
    """Create a task (advocates only)."""
    task = await store.create_task(spec, actor)
    return success(_view(store, task))


@router.get("")
async def list_tasks(
    store: StoreDep,
    actor: ActorDep,
    task_type: Annotated[TaskType | None, Query(alias="type")] = None,
    lead_id: str | None = None,
) -> Envelope[list[TaskView]]:
    """
    Active tasks.

    With lead_id: the lead's tasks, earliest due first. Otherwise all active
    tasks newest first, optionally filtered by type.
    """
    if lead_id is not None:
        tasks = await store.list_tasks_for_lead(lead_id, actor)
        if task_type is not None:
            tasks = [t for t in tasks if t.type == task_type]
    else:
        tasks = await store.list_tasks(actor, task_type)
    return success([_view(store, t) for t in tasks])


@router.get("/{task_id}")
async def get_task(task_id: str, store: StoreDep, actor: ActorDep) -> Envelope[TaskView]:
    task = await store.get_task(task_id, actor)
    return success(_view(store, task))


@router.post("/{task_id}/assignees")
async def assign_task(
    task_id: str, body: AssigneeRequest, store: StoreDep, actor: ActorDep
) -> Envelope[TaskView]:
    """Assign a lead; assigning an existing assignee changes nothing."""
    task = await store.assign_task(task_id, body.lead_id, actor)
    return success(_view(store, task))


@router.delete("/{task_id}/assignees/{lead_id}")
async def unassign_task(
    task_id: str, lead_id: str, store: StoreDep, actor: ActorDep
) -> Envelope[TaskView]:
    task = await store.unassign_task(task_id, lead_id, actor)
    return success(_view(store, task))


@router.get("/{task_id}/assignees/{lead_id}/status")
async def get_lead_task_status(
    task_id: str, lead_id: str, store: StoreDep, actor: ActorDep
) -> Envelope[LeadTaskStatus]:
    """Effective status of one assignee, with overdue applied."""
    lead_status = await store.get_lead_task_status(task_id, lead_id, actor)
    return success(LeadTaskStatus(task_id=task_id, lead_id=lead_id, status=lead_status))


@router.put("/{task_id}/progress")
async def record_progress(
    task_id: str, body: ProgressRequest, store: StoreDep, actor: ActorDep
) -> Envelope[ProgressResult]:
    """
    Record progress on a task.

    Leads update their own record (lead_id may be omitted); advocates must
    name the lead.
    """
    lead_id = body.lead_id
    if lead_id is None:
        lead_id = (await store.get_lead_by_email(actor.email, actor)).id

    task, record = await store.record_progress(
        task_id,
        lead_id,
        body.status,
        ProgressExtra(notes=body.notes, submission_url=body.submission_url),
        actor,
    )
    return success(ProgressResult(task=_view(store, task), record=record))


@router.post("/{task_id}/reviews")
async def review_submission(
    task_id: str, body: ReviewRequest, store: StoreDep, actor: ActorDep
) -> Envelope[ProgressResult]:
    """Approve a submission or ask for a revision (advocates only)."""
    task, record = await store.review_submission(
        task_id, body.lead_id, actor, body.decision, body.notes
    )
    return success(ProgressResult(task=_view(store, task), record=record))


@router.post("/{task_id}/deactivate")
async def deactivate_task(task_id: str, store: StoreDep, actor: ActorDep) -> Envelope[TaskView]:
    task = await store.deactivate_task(task_id, actor)
    return success(_view(store, task))
