"""Derive a task's status from its completion records and due date."""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict

from app.models.workflow import CompletionRecord, CompletionStatus, Task, TaskStatus

_ONE_DAY = timedelta(days=1)


class TaskAggregate(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: TaskStatus
    completion_rate: float
    days_until_due: int | None
    is_overdue: bool


def is_past_due(due_date: datetime | None, now: datetime) -> bool:
    return due_date is not None and due_date < now


def days_until_due(due_date: datetime | None, now: datetime) -> int | None:
    """Whole days left until the due date, rounded up; negative once past."""
    if due_date is None:
        return None
    return math.ceil((due_date - now) / _ONE_DAY)


def lead_status(
    record: CompletionRecord | None, due_date: datetime | None, now: datetime
) -> TaskStatus:
    """
    Effective status of one assignee's record.

    A missing record counts as pending. Past the due date, anything short of
    completed reads as overdue.
    """
    status = record.status if record is not None else CompletionStatus.PENDING
    if status == CompletionStatus.COMPLETED:
        return TaskStatus.COMPLETED
    if is_past_due(due_date, now):
        return TaskStatus.OVERDUE
    return TaskStatus(status.value)


def aggregate(task: Task, *, now: datetime) -> TaskAggregate:
    """
    Compute the task-level status.

    Only active records of leads currently in assigned_to take part, so the
    result depends on the record set and never on the order it was written.

    Args:
        task: Task with its completion ledger
        now: Reference time for overdue detection

    Returns:
        TaskAggregate with status, completion rate, days until due and overdue flag
    """
    days = days_until_due(task.due_date, now)

    if task.assigned_to_all:
        return TaskAggregate(
            status=TaskStatus.NOT_APPLICABLE,
            completion_rate=0.0,
            days_until_due=days,
            is_overdue=False,
        )

    assignees = list(dict.fromkeys(task.assigned_to))
    statuses = []
    for lead_id in assignees:
        record = task.completions.get(lead_id)
        statuses.append(record.status if record is not None else CompletionStatus.PENDING)

    total = len(statuses)
    completed = statuses.count(CompletionStatus.COMPLETED)
    past_due = is_past_due(task.due_date, now)

    if total and completed == total:
        status = TaskStatus.COMPLETED
    elif past_due:
        status = TaskStatus.OVERDUE
    elif CompletionStatus.IN_PROGRESS in statuses:
        status = TaskStatus.IN_PROGRESS
    else:
        status = TaskStatus.PENDING

    return TaskAggregate(
        status=status,
        completion_rate=(completed / total * 100) if total else 0.0,
        days_until_due=days,
        is_overdue=status == TaskStatus.OVERDUE,
    )


def refresh(task: Task, *, now: datetime) -> Task:
    """Return a copy of task with the cached status recomputed."""
    return task.model_copy(update={"status": aggregate(task, now=now).status})
