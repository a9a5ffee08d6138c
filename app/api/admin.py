"""Admin endpoints for operational tasks."""

from __future__ import annotations

from fastapi import APIRouter
from structlog import get_logger

from app.api.deps import ActorDep, TrackerDep
from app.models.api import Envelope, success
from app.models.workflow import Lead

logger = get_logger()
router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/leads/{lead_id}/rebuild-metrics")
async def rebuild_lead_metrics(
    lead_id: str, tracker: TrackerDep, actor: ActorDep
) -> Envelope[Lead]:
    """
    Recompute a lead's performance metrics from its task records.

    Useful after a failed completion-event delivery left metrics behind.

    Args:
        lead_id: Lead to repair

    Returns:
        The lead with rebuilt metrics and onboarding progress
    """
    logger.info("admin_rebuild_metrics_triggered", lead_id=lead_id)
    lead = await tracker.rebuild_metrics(lead_id, actor)
    return success(lead)
