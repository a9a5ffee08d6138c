"""Capability checks performed inside the workflow store."""

from __future__ import annotations

from enum import StrEnum

from structlog import get_logger

from app.core.errors import ForbiddenError
from app.models.workflow import Actor, Role

logger = get_logger()


class Capability(StrEnum):
    SUBMIT_APPLICATION = "submit_application"
    VIEW_APPLICATION = "view_application"
    LIST_APPLICATIONS = "list_applications"
    DECIDE_APPLICATION = "decide_application"
    VIEW_LEAD = "view_lead"
    LIST_LEADS = "list_leads"
    MANAGE_TASKS = "manage_tasks"
    VIEW_TASKS = "view_tasks"
    MUTATE_COMPLETION = "mutate_completion"
    REVIEW_SUBMISSION = "review_submission"
    VIEW_ADVOCATE_DASHBOARD = "view_advocate_dashboard"
    MAINTAIN_METRICS = "maintain_metrics"


# Leads hold these only for records carrying their own email
OWNER_SCOPED = frozenset(
    {
        Capability.SUBMIT_APPLICATION,
        Capability.VIEW_APPLICATION,
        Capability.VIEW_LEAD,
        Capability.MUTATE_COMPLETION,
    }
)

# Any authenticated actor
OPEN = frozenset({Capability.VIEW_TASKS})


def is_allowed(actor: Actor, capability: Capability, owner_email: str | None = None) -> bool:
    if actor.role == Role.ADVOCATE:
        return True
    if capability in OPEN:
        return True
    if capability in OWNER_SCOPED:
        return owner_email is not None and owner_email.strip().lower() == actor.email
    return False


def authorize(actor: Actor, capability: Capability, owner_email: str | None = None) -> None:
    """
    Single authorization gate for store operations.

    Args:
        actor: Authenticated caller
        capability: What the operation needs
        owner_email: Email of the record owner, for owner-scoped capabilities

    Raises:
        ForbiddenError: If the actor lacks the capability
    """
    if is_allowed(actor, capability, owner_email):
        return

    logger.warning(
        "authorization_denied",
        actor_id=actor.id,
        role=actor.role.value,
        capability=capability.value,
    )
    raise ForbiddenError(
        f"{actor.role.value} {actor.id} may not {capability.value}",
        context={"actor_id": actor.id, "capability": capability.value},
    )
