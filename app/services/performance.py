"""Per-lead performance metrics derived from task events."""

from __future__ import annotations

from datetime import UTC, date, datetime

from structlog import get_logger

from app.core.errors import NotFoundError, service_boundary
from app.models.workflow import (
    Actor,
    CompletionStatus,
    Lead,
    OnboardingProgress,
    PerformanceMetrics,
    Task,
    TaskAssignedEvent,
    TaskCompletedEvent,
    TaskType,
)
from app.services.authorization import Capability, authorize
from app.services.workflow import WorkflowStore

logger = get_logger()


def _utc_day(ts: datetime) -> date:
    return ts.astimezone(UTC).date()


def record_assignment(metrics: PerformanceMetrics, task_id: str) -> PerformanceMetrics:
    """Count task_id once toward tasks_assigned."""
    if task_id in metrics.assigned_task_ids:
        return metrics
    return metrics.model_copy(
        update={
            "tasks_assigned": metrics.tasks_assigned + 1,
            "assigned_task_ids": [*metrics.assigned_task_ids, task_id],
        }
    )


def _advance_streak(
    metrics: PerformanceMetrics, completed_at: datetime
) -> tuple[int, datetime]:
    last = metrics.last_activity_at
    if last is None:
        return 1, completed_at

    gap = (_utc_day(completed_at) - _utc_day(last)).days
    if gap < 0:
        # Late delivery of an older completion
        return max(1, metrics.streak_count), last
    if gap == 0:
        return max(1, metrics.streak_count), max(last, completed_at)
    if gap == 1:
        return metrics.streak_count + 1, completed_at
    return 1, completed_at


def apply_completion(
    metrics: PerformanceMetrics,
    progress: OnboardingProgress,
    event: TaskCompletedEvent,
    onboarding_total: int,
) -> tuple[PerformanceMetrics, OnboardingProgress]:
    """
    Fold one completion into a lead's metrics and onboarding progress.

    Idempotent on (task_id, lead_id): a task already credited leaves both
    values unchanged.

    Args:
        metrics: Current metrics of the lead
        progress: Current onboarding progress of the lead
        event: Completion being credited
        onboarding_total: Onboarding tasks that apply to the lead

    Returns:
        (metrics, progress) after the fold
    """
    if event.task_id in metrics.credited_task_ids:
        return metrics, progress

    completed = metrics.tasks_completed + 1
    start = event.started_at or event.assigned_at
    hours = max(0.0, (event.completed_at - start).total_seconds() / 3600)
    previous = metrics.average_completion_hours
    average = previous + (hours - previous) / completed
    streak, last_activity = _advance_streak(metrics, event.completed_at)

    metrics = record_assignment(metrics, event.task_id).model_copy(
        update={
            "tasks_completed": completed,
            "average_completion_hours": round(average, 4),
            "streak_count": streak,
            "last_activity_at": last_activity,
        }
    )
    metrics = metrics.model_copy(
        update={"credited_task_ids": [*metrics.credited_task_ids, event.task_id]}
    )

    if event.task_type == TaskType.ONBOARDING and event.task_id not in progress.completed_task_ids:
        done = [*progress.completed_task_ids, event.task_id]
        total = max(onboarding_total, len(done))
        percentage = round(len(done) / total * 100, 2)
        progress = progress.model_copy(
            update={
                "is_started": True,
                "completed_task_ids": done,
                "completion_percentage": percentage,
                "started_at": progress.started_at or event.completed_at,
                "completed_at": progress.completed_at
                or (event.completed_at if percentage >= 100 else None),
            }
        )

    return metrics, progress


def completion_rate(lead: Lead, tasks: list[Task]) -> float:
    """Share of applicable tasks the lead has completed, from current task state."""
    applicable = 0
    completed = 0
    for task in tasks:
        record = task.completions.get(lead.id)
        if record is None and not task.assigned_to_all:
            continue
        applicable += 1
        if record is not None and record.status == CompletionStatus.COMPLETED:
            completed += 1
    return round(completed / applicable * 100, 2) if applicable else 0.0


def onboarding_total(tasks: list[Task]) -> int:
    return sum(1 for t in tasks if t.type == TaskType.ONBOARDING and t.is_active)


class PerformanceTracker:
    """
    Keeps lead metrics in step with task events.

    Subscribes to the store on construction and writes only through
    WorkflowStore.update_lead_metrics.
    """

    def __init__(self, store: WorkflowStore) -> None:
        self.store = store
        store.subscribe(TaskCompletedEvent, self.handle_task_completed)
        store.subscribe(TaskAssignedEvent, self.handle_task_assigned)

    async def handle_task_assigned(self, event: TaskAssignedEvent) -> None:
        await self.store.update_lead_metrics(
            event.lead_id,
            lambda lead: lead.model_copy(
                update={
                    "performance_metrics": record_assignment(
                        lead.performance_metrics, event.task_id
                    )
                }
            ),
        )

    async def handle_task_completed(self, event: TaskCompletedEvent) -> None:
        total = onboarding_total(await self.store.applicable_tasks(event.lead_id))

        def mutate(lead: Lead) -> Lead:
            metrics, progress = apply_completion(
                lead.performance_metrics, lead.onboarding_progress, event, total
            )
            return lead.model_copy(
                update={"performance_metrics": metrics, "onboarding_progress": progress}
            )

        lead = await self.store.update_lead_metrics(event.lead_id, mutate)
        logger.info(
            "lead_metrics_updated",
            lead_id=event.lead_id,
            task_id=event.task_id,
            tasks_completed=lead.performance_metrics.tasks_completed,
            streak_count=lead.performance_metrics.streak_count,
        )

    @service_boundary
    async def rebuild_metrics(self, lead_id: str, actor: Actor) -> Lead:
        """
        Recompute a lead's metrics from its completion records.

        Folds every completed record in completion-time order, so the result
        matches what live event delivery would have produced. Unassignment
        never retracts credit, so tombstoned records are folded as well.
        """
        authorize(actor, Capability.MAINTAIN_METRICS)
        if await self.store.repository.get_lead(lead_id) is None:
            raise NotFoundError("Lead", lead_id)

        tasks = await self.store.applicable_tasks(
            lead_id, include_inactive=True, include_removed=True
        )
        total = onboarding_total(
            [t for t in tasks if t.assigned_to_all or t.completions.get(lead_id)]
        )

        events: list[TaskCompletedEvent] = []
        assigned: list[str] = []
        for task in tasks:
            record = task.completions.recorded(lead_id)
            if record is None:
                continue
            assigned.append(task.id)
            if record.completed_at is not None:
                events.append(
                    TaskCompletedEvent(
                        task_id=task.id,
                        lead_id=lead_id,
                        task_type=task.type,
                        assigned_at=record.assigned_at,
                        started_at=record.started_at,
                        completed_at=record.completed_at,
                    )
                )
        events.sort(key=lambda e: e.completed_at)

        def mutate(lead: Lead) -> Lead:
            metrics = PerformanceMetrics()
            for task_id in assigned:
                metrics = record_assignment(metrics, task_id)
            progress = OnboardingProgress(
                is_started=lead.onboarding_progress.is_started,
                started_at=lead.onboarding_progress.started_at,
            )
            for event in events:
                metrics, progress = apply_completion(metrics, progress, event, total)
            return lead.model_copy(
                update={"performance_metrics": metrics, "onboarding_progress": progress}
            )

        lead = await self.store.update_lead_metrics(lead_id, mutate)
        logger.info(
            "lead_metrics_rebuilt",
            lead_id=lead_id,
            tasks_completed=lead.performance_metrics.tasks_completed,
            tasks_assigned=lead.performance_metrics.tasks_assigned,
        )
        return lead
