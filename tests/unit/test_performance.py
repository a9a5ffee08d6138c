"""Unit tests for lead performance tracking."""

from datetime import UTC, datetime, timedelta

import pytest

from app.core.errors import ForbiddenError, NotFoundError
from app.models.workflow import (
    CompletionStatus,
    OnboardingProgress,
    PerformanceMetrics,
    TaskCompletedEvent,
    TaskType,
)
from app.services.performance import apply_completion, completion_rate, record_assignment
from tests.fixtures.factories import create_lead, create_task, create_task_spec, lead_actor

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


def completed_event(
    task_id: str = "t1",
    *,
    completed_at: datetime = NOW,
    hours: float = 4.0,
    task_type: TaskType = TaskType.WEEKLY,
) -> TaskCompletedEvent:
    return TaskCompletedEvent(
        task_id=task_id,
        lead_id="l1",
        task_type=task_type,
        assigned_at=completed_at - timedelta(days=1),
        started_at=completed_at - timedelta(hours=hours),
        completed_at=completed_at,
    )


class TestApplyCompletion:
    """Tests for apply_completion()."""

    def test_first_completion(self):
        metrics, progress = apply_completion(
            PerformanceMetrics(), OnboardingProgress(), completed_event(), 0
        )

        assert metrics.tasks_completed == 1
        assert metrics.tasks_assigned == 1
        assert metrics.average_completion_hours == 4.0
        assert metrics.streak_count == 1
        assert metrics.last_activity_at == NOW
        assert progress == OnboardingProgress()

    def test_same_task_credited_once(self):
        metrics, progress = apply_completion(
            PerformanceMetrics(), OnboardingProgress(), completed_event(), 0
        )
        again, progress_again = apply_completion(metrics, progress, completed_event(), 0)

        assert again == metrics
        assert progress_again == progress

    def test_running_average(self):
        metrics, progress = apply_completion(
            PerformanceMetrics(), OnboardingProgress(), completed_event("t1", hours=2), 0
        )
        metrics, _ = apply_completion(metrics, progress, completed_event("t2", hours=4), 0)

        assert metrics.average_completion_hours == 3.0

    def test_falls_back_to_assigned_at(self):
        event = completed_event().model_copy(update={"started_at": None})
        metrics, _ = apply_completion(PerformanceMetrics(), OnboardingProgress(), event, 0)

        assert metrics.average_completion_hours == 24.0

    @pytest.mark.parametrize(
        ("gap", "expected"),
        [
            (timedelta(hours=2), 3),  # same UTC day
            (timedelta(days=1), 4),
            (timedelta(days=2), 1),
        ],
    )
    def test_streak(self, gap, expected):
        metrics = PerformanceMetrics(streak_count=3, last_activity_at=NOW)

        metrics, _ = apply_completion(
            metrics, OnboardingProgress(), completed_event(completed_at=NOW + gap), 0
        )

        assert metrics.streak_count == expected

    def test_late_event_keeps_last_activity(self):
        metrics = PerformanceMetrics(streak_count=2, last_activity_at=NOW)

        metrics, _ = apply_completion(
            metrics,
            OnboardingProgress(),
            completed_event(completed_at=NOW - timedelta(days=3)),
            0,
        )

        assert metrics.streak_count == 2
        assert metrics.last_activity_at == NOW

    def test_onboarding_progress(self):
        event = completed_event("o1", task_type=TaskType.ONBOARDING)
        _, progress = apply_completion(PerformanceMetrics(), OnboardingProgress(), event, 4)

        assert progress.is_started
        assert progress.completed_task_ids == ["o1"]
        assert progress.completed_count == 1
        assert progress.completion_percentage == 25.0
        assert progress.completed_at is None

    def test_onboarding_complete(self):
        metrics, progress = PerformanceMetrics(), OnboardingProgress()
        for task_id in ("o1", "o2"):
            metrics, progress = apply_completion(
                metrics, progress, completed_event(task_id, task_type=TaskType.ONBOARDING), 2
            )

        assert progress.completion_percentage == 100.0
        assert progress.completed_at == NOW


def test_record_assignment_counts_once():
    metrics = record_assignment(PerformanceMetrics(), "t1")
    metrics = record_assignment(metrics, "t1")

    assert metrics.tasks_assigned == 1
    assert metrics.assigned_task_ids == ["t1"]


def test_completion_rate_over_applicable_tasks():
    lead_id = "l1"
    done = create_task({lead_id: CompletionStatus.COMPLETED}, now=NOW)
    open_ = create_task({lead_id: CompletionStatus.IN_PROGRESS}, now=NOW)
    other = create_task({"l2": CompletionStatus.COMPLETED}, now=NOW)
    everyone = create_task({}, now=NOW, assigned_to_all=True)

    class _Lead:
        id = lead_id

    assert completion_rate(_Lead(), [done, open_, other, everyone]) == pytest.approx(33.33)


class TestPerformanceTracker:
    """Tests for PerformanceTracker wired to a store."""

    @pytest.mark.asyncio
    async def test_assignment_and_completion_update_lead(self, store, tracker, advocate, clock):
        lead = await create_lead(store, advocate, "l1@x.com")
        task = await store.create_task(create_task_spec(assigned_to=[lead.id]), advocate)
        actor = lead_actor(lead)

        await store.record_progress(task.id, lead.id, CompletionStatus.IN_PROGRESS, None, actor)
        clock.advance(hours=5)
        await store.record_progress(task.id, lead.id, CompletionStatus.COMPLETED, None, actor)

        metrics = (await store.get_lead(lead.id, advocate)).performance_metrics
        assert metrics.tasks_assigned == 1
        assert metrics.tasks_completed == 1
        assert metrics.average_completion_hours == 5.0
        assert metrics.streak_count == 1
        assert metrics.last_activity_at == clock.now

    @pytest.mark.asyncio
    async def test_onboarding_percentage_uses_applicable_tasks(self, store, tracker, advocate):
        lead = await create_lead(store, advocate, "l1@x.com")
        tasks = [
            await store.create_task(
                create_task_spec(assigned_to=[lead.id], type=TaskType.ONBOARDING), advocate
            )
            for _ in range(4)
        ]

        await store.record_progress(
            tasks[0].id, lead.id, CompletionStatus.COMPLETED, None, lead_actor(lead)
        )

        progress = (await store.get_lead(lead.id, advocate)).onboarding_progress
        assert progress.completion_percentage == 25.0

    @pytest.mark.asyncio
    async def test_rebuild_repairs_missed_event(self, store, tracker, advocate, clock):
        lead = await create_lead(store, advocate, "l1@x.com")
        task = await store.create_task(create_task_spec(assigned_to=[lead.id]), advocate)
        store._handlers.clear()  # simulate a lost delivery

        clock.advance(hours=2)
        await store.record_progress(
            task.id, lead.id, CompletionStatus.COMPLETED, None, lead_actor(lead)
        )
        assert (await store.get_lead(lead.id, advocate)).performance_metrics.tasks_completed == 0

        rebuilt = await tracker.rebuild_metrics(lead.id, advocate)

        assert rebuilt.performance_metrics.tasks_completed == 1
        assert rebuilt.performance_metrics.tasks_assigned == 1
        assert rebuilt.performance_metrics.average_completion_hours == 2.0

    @pytest.mark.asyncio
    async def test_rebuild_matches_live_metrics(self, store, tracker, advocate, clock):
        lead = await create_lead(store, advocate, "l1@x.com")
        for _ in range(3):
            task = await store.create_task(create_task_spec(assigned_to=[lead.id]), advocate)
            clock.advance(days=1)
            await store.record_progress(
                task.id, lead.id, CompletionStatus.COMPLETED, None, lead_actor(lead)
            )

        live = (await store.get_lead(lead.id, advocate)).performance_metrics
        rebuilt = (await tracker.rebuild_metrics(lead.id, advocate)).performance_metrics

        assert rebuilt.tasks_completed == live.tasks_completed == 3
        assert rebuilt.streak_count == live.streak_count == 3
        assert rebuilt.average_completion_hours == live.average_completion_hours

    @pytest.mark.asyncio
    async def test_rebuild_keeps_credit_after_unassignment(self, store, tracker, advocate, clock):
        """Unassigning never retracts credit, live or rebuilt."""
        lead = await create_lead(store, advocate, "l1@x.com")
        done = await store.create_task(create_task_spec(assigned_to=[lead.id]), advocate)
        dropped = await store.create_task(create_task_spec(assigned_to=[lead.id]), advocate)
        clock.advance(hours=3)
        await store.record_progress(
            done.id, lead.id, CompletionStatus.COMPLETED, None, lead_actor(lead)
        )

        await store.unassign_task(done.id, lead.id, advocate)
        await store.unassign_task(dropped.id, lead.id, advocate)

        live = (await store.get_lead(lead.id, advocate)).performance_metrics
        rebuilt = (await tracker.rebuild_metrics(lead.id, advocate)).performance_metrics

        assert (live.tasks_completed, live.tasks_assigned) == (1, 2)
        assert (rebuilt.tasks_completed, rebuilt.tasks_assigned) == (1, 2)
        assert rebuilt.average_completion_hours == live.average_completion_hours == 3.0
        assert rebuilt.streak_count == live.streak_count

    @pytest.mark.asyncio
    async def test_rebuild_requires_advocate(self, store, tracker, advocate):
        lead = await create_lead(store, advocate, "l1@x.com")

        with pytest.raises(ForbiddenError):
            await tracker.rebuild_metrics(lead.id, lead_actor(lead))

    @pytest.mark.asyncio
    async def test_rebuild_unknown_lead(self, tracker, advocate):
        with pytest.raises(NotFoundError):
            await tracker.rebuild_metrics("ghost", advocate)
