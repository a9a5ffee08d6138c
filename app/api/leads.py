"""Lead endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from app.api.deps import ActorDep, StoreDep
from app.models.api import Envelope, success
from app.models.workflow import Lead

router = APIRouter(prefix="/leads", tags=["leads"])


@router.get("")
async def list_leads(store: StoreDep, actor: ActorDep) -> Envelope[list[Lead]]:
    """All leads (advocates only)."""
    return success(await store.list_leads(actor))


@router.get("/{lead_id}")
async def get_lead(lead_id: str, store: StoreDep, actor: ActorDep) -> Envelope[Lead]:
    """A lead, visible to advocates and to the lead itself."""
    return success(await store.get_lead(lead_id, actor))
