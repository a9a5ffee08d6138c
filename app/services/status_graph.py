"""Lifecycle rules for applications and their mirrored leads."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from app.core.errors import InvalidTransitionError
from app.models.workflow import (
    TERMINAL_STATUSES,
    Application,
    ApplicationStatus,
    Decision,
    DecisionOutcome,
    InterviewDescriptor,
    Lead,
    TransitionContext,
)

S = ApplicationStatus

# Adjacency enforced in strict mode. interview_scheduled -> interview_scheduled
# is a reschedule.
STRICT_EDGES: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    S.APPLIED: frozenset({S.UNDER_REVIEW}),
    S.UNDER_REVIEW: frozenset({S.INTERVIEW_SCHEDULED}),
    S.INTERVIEW_SCHEDULED: frozenset({S.INTERVIEW_SCHEDULED, S.INTERVIEW_COMPLETED}),
    S.INTERVIEW_COMPLETED: frozenset({S.APPROVED, S.REJECTED}),
    S.APPROVED: frozenset({S.OFFER_SENT}),
    S.OFFER_SENT: frozenset({S.OFFER_ACCEPTED}),
    S.OFFER_ACCEPTED: frozenset({S.ONBOARDED}),
    S.REJECTED: frozenset(),
    S.ONBOARDED: frozenset(),
}

_DECISION_TARGETS = {
    S.APPROVED: DecisionOutcome.APPROVED,
    S.REJECTED: DecisionOutcome.REJECTED,
}


class Transition(BaseModel):
    """A validated status change, ready to apply to both records."""

    model_config = ConfigDict(frozen=True)

    source: ApplicationStatus
    target: ApplicationStatus
    at: datetime
    context: TransitionContext


def is_terminal(status: ApplicationStatus) -> bool:
    return status in TERMINAL_STATUSES


def allowed_targets(
    current: ApplicationStatus, *, strict: bool = False
) -> frozenset[ApplicationStatus]:
    """Statuses reachable from current under the given mode."""
    if is_terminal(current):
        return frozenset()
    if strict:
        return STRICT_EDGES[current]
    return frozenset(ApplicationStatus)


def transition(
    current: ApplicationStatus,
    target: ApplicationStatus,
    context: TransitionContext,
    *,
    now: datetime,
    strict: bool = False,
) -> Transition:
    """
    Validate a status change.

    Args:
        current: Status the application is in now
        target: Requested status
        context: Actor, notes, interview and decision details
        now: Timestamp to stamp on the records
        strict: Only allow the edges in STRICT_EDGES

    Returns:
        Transition to hand to apply_to_application / apply_to_lead

    Raises:
        InvalidTransitionError: Terminal source, disallowed edge, or missing context
    """
    if is_terminal(current):
        raise InvalidTransitionError(
            f"Cannot move from {current.value}: it is a final status",
            context={"current": current.value, "target": target.value},
        )

    if target not in allowed_targets(current, strict=strict):
        raise InvalidTransitionError(
            f"Cannot move from {current.value} to {target.value}",
            context={"current": current.value, "target": target.value},
        )

    if target == S.INTERVIEW_SCHEDULED:
        interview = context.interview
        if interview is None or interview.date is None or not (interview.link or "").strip():
            raise InvalidTransitionError(
                "Scheduling an interview requires an interview date and link",
                context={"target": target.value},
            )

    if target in _DECISION_TARGETS and not (context.actor_id or "").strip():
        raise InvalidTransitionError(
            f"Moving to {target.value} requires the deciding advocate",
            context={"target": target.value},
        )

    return Transition(source=current, target=target, at=now, context=context)


def apply_to_application(application: Application, t: Transition) -> Application:
    """Return a copy of application with the transition applied."""
    ctx = t.context
    stage_timestamps = dict(application.stage_timestamps)
    stage_timestamps.setdefault(t.target, t.at)

    update: dict = {
        "status": t.target,
        "stage_timestamps": stage_timestamps,
        "updated_at": t.at,
    }

    if t.target == S.UNDER_REVIEW:
        update["review_started_at"] = application.review_started_at or t.at
        if ctx.actor_id:
            update["reviewed_by"] = ctx.actor_id
        if ctx.notes is not None:
            update["review_notes"] = ctx.notes

    elif t.target == S.INTERVIEW_SCHEDULED:
        scheduled = ctx.interview or InterviewDescriptor()
        base = application.interview or InterviewDescriptor()
        update["interview"] = base.model_copy(
            update={
                "date": scheduled.date,
                "link": scheduled.link,
                "completed_at": None,
            }
        )

    elif t.target == S.INTERVIEW_COMPLETED:
        base = application.interview or InterviewDescriptor()
        supplied = ctx.interview or InterviewDescriptor()
        update["interview"] = base.model_copy(
            update={
                "feedback": ctx.interview_feedback or supplied.feedback or base.feedback,
                "rating": ctx.interview_rating or supplied.rating or base.rating,
                "completed_at": t.at,
            }
        )

    elif t.target in _DECISION_TARGETS:
        update["decision"] = Decision(
            outcome=_DECISION_TARGETS[t.target],
            decided_by=ctx.actor_id or "",
            decided_at=t.at,
            notes=ctx.decision_notes or ctx.notes,
        )
        update["reviewed_at"] = t.at
        update["reviewed_by"] = ctx.actor_id

    return application.model_copy(update=update)


def apply_to_lead(lead: Lead, t: Transition) -> Lead:
    """Return a copy of lead mirroring the transition."""
    ctx = t.context
    update: dict = {"status": t.target, "updated_at": t.at}

    if t.target == S.APPROVED:
        update["approved_by"] = ctx.actor_id
    elif t.target == S.REJECTED:
        update["rejected_at"] = lead.rejected_at or t.at
        update["rejection_reason"] = ctx.decision_notes or ctx.notes
    elif t.target == S.OFFER_SENT:
        update["offer_sent_at"] = lead.offer_sent_at or t.at
    elif t.target == S.OFFER_ACCEPTED:
        update["offer_accepted_at"] = lead.offer_accepted_at or t.at
    elif t.target == S.ONBOARDED:
        update["onboarded_at"] = lead.onboarded_at or t.at
        progress = lead.onboarding_progress
        update["onboarding_progress"] = progress.model_copy(
            update={"is_started": True, "started_at": progress.started_at or t.at}
        )

    return lead.model_copy(update=update)
