"""Pydantic models for applications, leads and tasks."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import ClassVar

from pydantic import BaseModel, Field, RootModel, computed_field, field_validator

# ============================================
# Helpers
# ============================================


def assume_utc(value: datetime | None) -> datetime | None:
    """Treat a datetime without a timezone (including date-only input) as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# ============================================
# Vocabulary
# ============================================


class ApplicationStatus(StrEnum):
    """Lifecycle shared by applications and their mirrored leads."""

    APPLIED = "applied"
    UNDER_REVIEW = "under_review"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    INTERVIEW_COMPLETED = "interview_completed"
    APPROVED = "approved"
    REJECTED = "rejected"
    OFFER_SENT = "offer_sent"
    OFFER_ACCEPTED = "offer_accepted"
    ONBOARDED = "onboarded"


DASHBOARD_STATUSES = frozenset(
    {
        ApplicationStatus.APPROVED,
        ApplicationStatus.OFFER_SENT,
        ApplicationStatus.OFFER_ACCEPTED,
        ApplicationStatus.ONBOARDED,
    }
)

TERMINAL_STATUSES = frozenset({ApplicationStatus.REJECTED, ApplicationStatus.ONBOARDED})


class LeadBucket(StrEnum):
    """Coarse grouping of lead statuses for dashboards."""

    CANDIDATE = "candidate"
    ONBOARDING = "onboarding"
    ACTIVE = "active"
    REJECTED = "rejected"


def bucket_for(status: ApplicationStatus) -> LeadBucket:
    """Collapse a lead status into its dashboard bucket."""
    if status == ApplicationStatus.ONBOARDED:
        return LeadBucket.ACTIVE
    if status == ApplicationStatus.REJECTED:
        return LeadBucket.REJECTED
    if status in DASHBOARD_STATUSES:
        return LeadBucket.ONBOARDING
    return LeadBucket.CANDIDATE


class Role(StrEnum):
    ADVOCATE = "advocate"
    LEAD = "lead"


class TaskType(StrEnum):
    ONBOARDING = "onboarding"
    WEEKLY = "weekly"
    SPECIAL = "special"
    TRAINING = "training"


class TaskPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CompletionStatus(StrEnum):
    """Status of one assignee's completion record."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TaskStatus(StrEnum):
    """Aggregate (or effective per-lead) task status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    OVERDUE = "overdue"
    NOT_APPLICABLE = "n/a"  # assigned_to_all tasks have no single status


class ReviewStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    NEEDS_REVISION = "needs_revision"


class SubmissionType(StrEnum):
    URL = "url"
    TEXT = "text"
    FILE = "file"


class ResourceType(StrEnum):
    LINK = "link"
    DOCUMENT = "document"
    VIDEO = "video"


class DecisionOutcome(StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"


# ============================================
# Identity
# ============================================


class Actor(BaseModel):
    """Authenticated caller supplied by the identity layer."""

    id: str
    email: str
    role: Role

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def is_advocate(self) -> bool:
        return self.role == Role.ADVOCATE


# ============================================
# Applications
# ============================================


class Commitments(BaseModel):
    """Program commitments the applicant agreed to."""

    weekly_learning: bool = False
    community_participation: bool = False
    event_attendance: bool = False
    content_creation: bool = False
    social_media_engagement: bool = False


class ApplicationProfile(BaseModel):
    """Submitted profile; opaque to the workflow beyond required-field checks."""

    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = (
        "tech_stack",
        "experience_level",
        "learning_focus",
        "availability",
        "motivation",
        "why_join",
        "commitments",
    )

    tech_stack: list[str] = Field(default_factory=list)
    experience_level: str = ""
    learning_focus: list[str] = Field(default_factory=list)
    availability: str = ""
    motivation: str = Field(default="", max_length=1000)
    why_join: str = Field(default="", max_length=1000)
    previous_experience: str | None = Field(default=None, max_length=1000)
    current_role: str | None = None
    company: str | None = None
    linkedin_profile: str | None = None
    github_profile: str | None = None
    portfolio_url: str | None = None
    commitments: Commitments | None = None

    def missing_fields(self) -> list[str]:
        """Names of required fields that are empty."""
        missing = []
        for name in self.REQUIRED_FIELDS:
            value = getattr(self, name)
            if isinstance(value, str):
                value = value.strip()
            if not value:
                missing.append(name)
        return missing


class ApplicationSubmission(BaseModel):
    """Input for submit_application."""

    name: str = ""
    email: str = ""
    profile: ApplicationProfile = Field(default_factory=ApplicationProfile)


class InterviewDescriptor(BaseModel):
    date: datetime | None = None
    link: str | None = None
    feedback: str | None = Field(default=None, max_length=2000)
    rating: int | None = Field(default=None, ge=1, le=10)
    completed_at: datetime | None = None

    @field_validator("date")
    @classmethod
    def date_in_utc(cls, v: datetime | None) -> datetime | None:
        return assume_utc(v)


class Decision(BaseModel):
    outcome: DecisionOutcome
    decided_by: str
    decided_at: datetime
    notes: str | None = None


class Application(BaseModel):
    """One candidate's submission and review lifecycle."""

    id: str
    applicant_email: str
    applicant_name: str
    profile: ApplicationProfile
    status: ApplicationStatus = ApplicationStatus.APPLIED
    stage_timestamps: dict[ApplicationStatus, datetime] = Field(default_factory=dict)
    submitted_at: datetime
    review_started_at: datetime | None = None
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    review_notes: str | None = None
    interview: InterviewDescriptor | None = None
    decision: Decision | None = None
    version: int = 1
    updated_at: datetime

    def days_in_review(self, now: datetime) -> int:
        """Whole days since review started (or since submission)."""
        start = self.review_started_at or self.submitted_at
        return max(0, (now - start).days)


# ============================================
# Leads
# ============================================


class OnboardingProgress(BaseModel):
    is_started: bool = False
    completed_task_ids: list[str] = Field(default_factory=list)
    completion_percentage: float = 0.0
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def completed_count(self) -> int:
        return len(self.completed_task_ids)


class PerformanceMetrics(BaseModel):
    tasks_completed: int = 0
    tasks_assigned: int = 0
    average_completion_hours: float = 0.0
    streak_count: int = 0
    last_activity_at: datetime | None = None
    # Make the counters idempotent per task
    credited_task_ids: list[str] = Field(default_factory=list)
    assigned_task_ids: list[str] = Field(default_factory=list)


class Lead(BaseModel):
    """Mirror of an application that also carries task progress."""

    id: str
    name: str
    email: str
    application_id: str
    status: ApplicationStatus = ApplicationStatus.APPLIED
    approved_by: str | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    offer_sent_at: datetime | None = None
    offer_accepted_at: datetime | None = None
    onboarded_at: datetime | None = None
    onboarding_progress: OnboardingProgress = Field(default_factory=OnboardingProgress)
    performance_metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    version: int = 1
    created_at: datetime
    updated_at: datetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def can_access_dashboard(self) -> bool:
        return self.status in DASHBOARD_STATUSES

    @property
    def bucket(self) -> LeadBucket:
        return bucket_for(self.status)


# ============================================
# Tasks
# ============================================


class SubmissionReview(BaseModel):
    status: ReviewStatus = ReviewStatus.PENDING
    reviewer_id: str | None = None
    notes: str | None = None
    reviewed_at: datetime | None = None


class CompletionRecord(BaseModel):
    """One assignee's progress on a task."""

    lead_id: str
    status: CompletionStatus = CompletionStatus.PENDING
    assigned_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    notes: str | None = None
    submission_url: str | None = None
    review: SubmissionReview | None = None
    removed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.removed_at is None


class CompletionLedger(RootModel[dict[str, CompletionRecord]]):
    """
    Completion records of a task keyed by lead id.

    Tombstoned records (unassigned leads) are kept for audit but never
    returned by get() or active().
    """

    root: dict[str, CompletionRecord] = Field(default_factory=dict)

    def get(self, lead_id: str) -> CompletionRecord | None:
        record = self.root.get(lead_id)
        if record is None or not record.is_active:
            return None
        return record

    def recorded(self, lead_id: str) -> CompletionRecord | None:
        """Record for lead_id, tombstoned or not."""
        return self.root.get(lead_id)

    def put(self, record: CompletionRecord) -> None:
        self.root[record.lead_id] = record

    def tombstone(self, lead_id: str, when: datetime) -> None:
        record = self.root.get(lead_id)
        if record is not None and record.is_active:
            self.root[lead_id] = record.model_copy(update={"removed_at": when})

    def active(self) -> list[CompletionRecord]:
        """Active records ordered by lead id."""
        return [self.root[k] for k in sorted(self.root) if self.root[k].is_active]


class Resource(BaseModel):
    title: str
    url: str
    type: ResourceType


class TaskSpec(BaseModel):
    """Input for create_task."""

    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("title", "description", "type")

    title: str = ""
    description: str = ""
    type: TaskType | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    assigned_to: list[str] = Field(default_factory=list)
    assigned_to_all: bool = False
    due_date: datetime | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    requirements: list[str] = Field(default_factory=list)
    resources: list[Resource] = Field(default_factory=list)
    submission_required: bool = False
    submission_type: SubmissionType | None = None
    submission_instructions: str | None = None
    tags: list[str] = Field(default_factory=list)

    @field_validator("due_date")
    @classmethod
    def due_date_in_utc(cls, v: datetime | None) -> datetime | None:
        return assume_utc(v)

    def missing_fields(self) -> list[str]:
        missing = []
        for name in self.REQUIRED_FIELDS:
            value = getattr(self, name)
            if isinstance(value, str):
                value = value.strip()
            if not value:
                missing.append(name)
        return missing


class Task(BaseModel):
    """Unit of assignable work; exclusively owns its completion records."""

    id: str
    title: str
    description: str
    type: TaskType
    priority: TaskPriority = TaskPriority.MEDIUM
    assigned_to: list[str] = Field(default_factory=list)
    assigned_to_all: bool = False
    created_by: str
    due_date: datetime | None = None
    estimated_hours: float | None = None
    requirements: list[str] = Field(default_factory=list)
    resources: list[Resource] = Field(default_factory=list)
    submission_required: bool = False
    submission_type: SubmissionType | None = None
    submission_instructions: str | None = None
    tags: list[str] = Field(default_factory=list)
    is_active: bool = True
    # Denormalised cache; refreshed by the task aggregator on every read and write
    status: TaskStatus = TaskStatus.PENDING
    completions: CompletionLedger = Field(default_factory=CompletionLedger)
    version: int = 1
    created_at: datetime
    updated_at: datetime

    @field_validator("due_date")
    @classmethod
    def due_date_in_utc(cls, v: datetime | None) -> datetime | None:
        return assume_utc(v)

    def is_assigned(self, lead_id: str) -> bool:
        return lead_id in self.assigned_to


# ============================================
# Operation inputs and events
# ============================================


class TransitionContext(BaseModel):
    """Context accompanying a status transition."""

    actor_id: str | None = None
    notes: str | None = None
    interview: InterviewDescriptor | None = None
    decision_notes: str | None = None
    interview_feedback: str | None = Field(default=None, max_length=2000)
    interview_rating: int | None = Field(default=None, ge=1, le=10)


class ProgressExtra(BaseModel):
    notes: str | None = None
    submission_url: str | None = None


class TaskCompletedEvent(BaseModel):
    """Emitted the first time a completion record reaches completed."""

    task_id: str
    lead_id: str
    task_type: TaskType
    assigned_at: datetime
    started_at: datetime | None = None
    completed_at: datetime


class TaskAssignedEvent(BaseModel):
    """Emitted when a lead is newly assigned to a task."""

    task_id: str
    lead_id: str
    assigned_at: datetime
