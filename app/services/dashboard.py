"""Dashboard projections recomputed from current store state."""

from __future__ import annotations

from collections import Counter

from structlog import get_logger

from app.core.config import settings
from app.core.errors import ForbiddenError, service_boundary
from app.models.dashboard import (
    AdvocateDashboard,
    ApplicationStats,
    ApplicationSummary,
    LeadDashboard,
    LeadPerformance,
    LeadRollup,
    LeadStats,
    LeadTaskView,
    OnboardingSummary,
    TaskBuckets,
    TaskStats,
    TaskView,
)
from app.models.workflow import (
    Actor,
    ApplicationStatus,
    CompletionStatus,
    Lead,
    LeadBucket,
    Task,
    TaskStatus,
    TaskType,
)
from app.services.authorization import Capability, authorize
from app.services.performance import completion_rate
from app.services.task_aggregator import aggregate
from app.services.workflow import PENDING_REVIEW_STATUSES, WorkflowStore

logger = get_logger()


def _applies_to(task: Task, lead: Lead) -> bool:
    return task.assigned_to_all or task.completions.get(lead.id) is not None


def _rollup(lead: Lead, tasks: list[Task]) -> LeadRollup:
    metrics = lead.performance_metrics
    return LeadRollup(
        lead_id=lead.id,
        name=lead.name,
        email=lead.email,
        status=lead.status,
        tasks_completed=metrics.tasks_completed,
        tasks_assigned=metrics.tasks_assigned,
        completion_rate=completion_rate(lead, [t for t in tasks if _applies_to(t, lead)]),
        average_completion_hours=metrics.average_completion_hours,
        streak_count=metrics.streak_count,
        last_activity_at=metrics.last_activity_at,
    )


class DashboardProjector:
    """Read-only views for leads and advocates."""

    def __init__(
        self,
        store: WorkflowStore,
        *,
        recent_applications_limit: int | None = None,
        leaderboard_size: int | None = None,
    ) -> None:
        self.store = store
        self.recent_applications_limit = (
            recent_applications_limit
            if recent_applications_limit is not None
            else settings.recent_applications_limit
        )
        self.leaderboard_size = (
            leaderboard_size if leaderboard_size is not None else settings.leaderboard_size
        )

    @service_boundary
    async def lead_dashboard(self, actor: Actor, lead_id: str | None = None) -> LeadDashboard:
        """
        Personal dashboard of one lead.

        Args:
            actor: The lead, or an advocate looking at a lead
            lead_id: Lead to show; defaults to the actor's own lead

        Raises:
            NotFoundError: No such lead
            ForbiddenError: Lead cannot access the dashboard yet, or belongs to someone else
        """
        if lead_id is None:
            lead = await self.store.get_lead_by_email(actor.email, actor)
        else:
            lead = await self.store.get_lead(lead_id, actor)

        if not lead.can_access_dashboard:
            raise ForbiddenError(
                "Dashboard is available once the application is approved",
                context={"lead_id": lead.id, "status": lead.status.value},
            )

        now = self.store.clock()
        tasks = await self.store.list_tasks_for_lead(lead.id, actor)

        buckets = TaskBuckets()
        onboarding_views: list[LeadTaskView] = []
        for task in tasks:
            view = LeadTaskView.build(task, lead.id, aggregate(task, now=now), now)
            getattr(buckets, view.status.value).append(view)
            if task.type == TaskType.ONBOARDING:
                onboarding_views.append(view)

        onboarding_done = sum(1 for v in onboarding_views if v.status == TaskStatus.COMPLETED)
        next_task = next(
            (
                v
                for v in onboarding_views
                if (v.record.status if v.record else CompletionStatus.PENDING)
                == CompletionStatus.PENDING
            ),
            None,
        )
        onboarding = OnboardingSummary(
            total=len(onboarding_views),
            completed=onboarding_done,
            percentage=(
                round(onboarding_done / len(onboarding_views) * 100, 2) if onboarding_views else 0.0
            ),
            next_task=next_task,
        )

        return LeadDashboard(
            lead=lead,
            tasks=buckets,
            onboarding=onboarding,
            performance=LeadPerformance(
                metrics=lead.performance_metrics,
                completion_rate=completion_rate(lead, tasks),
            ),
        )

    @service_boundary
    async def advocate_dashboard(self, actor: Actor) -> AdvocateDashboard:
        """Program-wide counts, rollups and leaderboard."""
        authorize(actor, Capability.VIEW_ADVOCATE_DASHBOARD)

        applications = await self.store.list_applications(actor)
        leads = await self.store.list_leads(actor)
        tasks = await self.store.list_tasks(actor)
        now = self.store.clock()

        app_counts = Counter(a.status for a in applications)
        application_stats = ApplicationStats(
            total=len(applications),
            by_status={s.value: app_counts.get(s, 0) for s in ApplicationStatus},
            pending_review=sum(app_counts.get(s, 0) for s in PENDING_REVIEW_STATUSES),
            recent=[
                ApplicationSummary.build(a)
                for a in applications[: self.recent_applications_limit]
            ],
        )

        bucket_counts = Counter(lead.bucket for lead in leads)
        lead_stats = LeadStats(
            total=len(leads),
            by_bucket={b.value: bucket_counts.get(b, 0) for b in LeadBucket},
        )

        performance = [_rollup(lead, tasks) for lead in leads if lead.can_access_dashboard]
        leaderboard = sorted(
            (r for r in performance if r.status == ApplicationStatus.ONBOARDED),
            key=lambda r: (-r.tasks_completed, -r.streak_count),
        )[: self.leaderboard_size]

        summaries = [(t, aggregate(t, now=now)) for t in tasks]
        task_counts = Counter(s.status for _, s in summaries)
        task_stats = TaskStats(
            total=len(tasks),
            by_status={s.value: task_counts.get(s, 0) for s in TaskStatus},
            overdue=task_counts.get(TaskStatus.OVERDUE, 0),
        )
        overdue_tasks = sorted(
            (TaskView.build(t, s) for t, s in summaries if s.status == TaskStatus.OVERDUE),
            key=lambda v: v.due_date or now,
        )

        logger.info(
            "advocate_dashboard_built",
            applications=len(applications),
            leads=len(leads),
            tasks=len(tasks),
        )
        return AdvocateDashboard(
            applications=application_stats,
            leads=lead_stats,
            performance=performance,
            leaderboard=leaderboard,
            tasks=task_stats,
            overdue_tasks=overdue_tasks,
        )
