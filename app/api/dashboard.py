"""Dashboard endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from app.api.deps import ActorDep, ProjectorDep
from app.models.api import Envelope, success
from app.models.dashboard import AdvocateDashboard, LeadDashboard

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/lead")
async def lead_dashboard(
    projector: ProjectorDep,
    actor: ActorDep,
    lead_id: str | None = None,
) -> Envelope[LeadDashboard]:
    """
    Personal dashboard of a lead.

    Leads see their own; advocates pass lead_id. Forbidden until the lead's
    status grants dashboard access.
    """
    return success(await projector.lead_dashboard(actor, lead_id))


@router.get("/advocate")
async def advocate_dashboard(
    projector: ProjectorDep, actor: ActorDep
) -> Envelope[AdvocateDashboard]:
    """Program-wide statistics (advocates only)."""
    return success(await projector.advocate_dashboard(actor))
