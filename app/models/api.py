"""Request bodies and the response envelope for the HTTP API."""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from app.models.dashboard import ApplicationView, TaskView
from app.models.workflow import (
    ApplicationStatus,
    CompletionRecord,
    CompletionStatus,
    InterviewDescriptor,
    Lead,
    ReviewStatus,
    TaskStatus,
    TransitionContext,
)

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    """
    Uniform result wrapper.

    Success: {"ok": true, "data": ...}
    Failure: {"ok": false, "errorKind": "...", "message": "..."}
    """

    model_config = ConfigDict(populate_by_name=True)

    ok: bool
    data: T | None = None
    error_kind: str | None = Field(default=None, alias="errorKind")
    message: str | None = None
    details: dict[str, Any] | None = None


def success(data: Any) -> Envelope[Any]:
    return Envelope(ok=True, data=data)


def failure(
    error_kind: str, message: str, details: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Failure envelope ready for a JSONResponse."""
    return Envelope(ok=False, error_kind=error_kind, message=message, details=details).model_dump(
        by_alias=True, exclude_none=True
    )


# ============================================
# Requests
# ============================================


class TransitionRequest(BaseModel):
    """Body of POST /applications/{id}/transitions."""

    status: ApplicationStatus
    expected_version: int | None = None
    notes: str | None = None
    interview: InterviewDescriptor | None = None
    decision_notes: str | None = None
    interview_feedback: str | None = Field(default=None, max_length=2000)
    interview_rating: int | None = Field(default=None, ge=1, le=10)

    def to_context(self) -> TransitionContext:
        return TransitionContext(
            notes=self.notes,
            interview=self.interview,
            decision_notes=self.decision_notes,
            interview_feedback=self.interview_feedback,
            interview_rating=self.interview_rating,
        )


class AssigneeRequest(BaseModel):
    lead_id: str


class ProgressRequest(BaseModel):
    """Body of PUT /tasks/{id}/progress; lead_id defaults to the caller's lead."""

    status: CompletionStatus
    lead_id: str | None = None
    notes: str | None = None
    submission_url: str | None = None


class ReviewRequest(BaseModel):
    lead_id: str
    decision: ReviewStatus
    notes: str | None = None


# ============================================
# Responses
# ============================================


class TransitionResult(BaseModel):
    application: ApplicationView
    lead: Lead


class ProgressResult(BaseModel):
    task: TaskView
    record: CompletionRecord


class HealthStatus(BaseModel):
    status: str
    storage: str


class LeadTaskStatus(BaseModel):
    task_id: str
    lead_id: str
    status: TaskStatus
