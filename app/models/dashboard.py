"""Read models returned by the API and dashboard projector."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from app.models.workflow import (
    Application,
    ApplicationStatus,
    CompletionRecord,
    Lead,
    PerformanceMetrics,
    Resource,
    SubmissionType,
    Task,
    TaskPriority,
    TaskStatus,
    TaskType,
)
from app.services.task_aggregator import TaskAggregate, lead_status


class ApplicationView(Application):
    """Application plus derived review age."""

    days_in_review: int

    @classmethod
    def build(cls, application: Application, now: datetime) -> ApplicationView:
        return cls(
            **application.model_dump(),
            days_in_review=application.days_in_review(now),
        )


class TaskView(BaseModel):
    """A task with its live aggregate and only its active records."""

    id: str
    title: str
    description: str
    type: TaskType
    priority: TaskPriority
    due_date: datetime | None
    estimated_hours: float | None
    requirements: list[str]
    resources: list[Resource]
    submission_required: bool
    submission_type: SubmissionType | None
    submission_instructions: str | None
    tags: list[str]
    is_active: bool
    created_by: str
    assigned_to: list[str]
    assigned_to_all: bool
    status: TaskStatus
    completion_rate: float
    days_until_due: int | None
    is_overdue: bool
    completions: list[CompletionRecord]
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def build(cls, task: Task, summary: TaskAggregate) -> TaskView:
        return cls(
            **task.model_dump(exclude={"completions", "status"}),
            status=summary.status,
            completion_rate=summary.completion_rate,
            days_until_due=summary.days_until_due,
            is_overdue=summary.is_overdue,
            completions=task.completions.active(),
        )


class LeadTaskView(BaseModel):
    """A task as one lead sees it."""

    id: str
    title: str
    description: str
    type: TaskType
    priority: TaskPriority
    due_date: datetime | None
    days_until_due: int | None
    resources: list[Resource]
    submission_required: bool
    submission_type: SubmissionType | None
    submission_instructions: str | None
    status: TaskStatus
    record: CompletionRecord | None

    @classmethod
    def build(
        cls, task: Task, lead_id: str, summary: TaskAggregate, now: datetime
    ) -> LeadTaskView:
        record = task.completions.get(lead_id)
        return cls(
            id=task.id,
            title=task.title,
            description=task.description,
            type=task.type,
            priority=task.priority,
            due_date=task.due_date,
            days_until_due=summary.days_until_due,
            resources=task.resources,
            submission_required=task.submission_required,
            submission_type=task.submission_type,
            submission_instructions=task.submission_instructions,
            status=lead_status(record, task.due_date, now),
            record=record,
        )


class TaskBuckets(BaseModel):
    pending: list[LeadTaskView] = Field(default_factory=list)
    in_progress: list[LeadTaskView] = Field(default_factory=list)
    completed: list[LeadTaskView] = Field(default_factory=list)
    overdue: list[LeadTaskView] = Field(default_factory=list)


class OnboardingSummary(BaseModel):
    total: int
    completed: int
    percentage: float
    next_task: LeadTaskView | None = None


class LeadPerformance(BaseModel):
    metrics: PerformanceMetrics
    completion_rate: float


class LeadDashboard(BaseModel):
    lead: Lead
    tasks: TaskBuckets
    onboarding: OnboardingSummary
    performance: LeadPerformance


class ApplicationSummary(BaseModel):
    id: str
    applicant_name: str
    applicant_email: str
    status: ApplicationStatus
    submitted_at: datetime

    @classmethod
    def build(cls, application: Application) -> ApplicationSummary:
        return cls(
            id=application.id,
            applicant_name=application.applicant_name,
            applicant_email=application.applicant_email,
            status=application.status,
            submitted_at=application.submitted_at,
        )


class ApplicationStats(BaseModel):
    total: int
    by_status: dict[str, int]
    pending_review: int
    recent: list[ApplicationSummary]


class LeadStats(BaseModel):
    total: int
    by_bucket: dict[str, int]


class LeadRollup(BaseModel):
    lead_id: str
    name: str
    email: str
    status: ApplicationStatus
    tasks_completed: int
    tasks_assigned: int
    completion_rate: float
    average_completion_hours: float
    streak_count: int
    last_activity_at: datetime | None


class TaskStats(BaseModel):
    total: int
    by_status: dict[str, int]
    overdue: int


class AdvocateDashboard(BaseModel):
    applications: ApplicationStats
    leads: LeadStats
    performance: list[LeadRollup]
    leaderboard: list[LeadRollup]
    tasks: TaskStats
    overdue_tasks: list[TaskView] = Field(default_factory=list)
