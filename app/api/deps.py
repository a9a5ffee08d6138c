"""FastAPI dependencies: services from app.state and the calling actor."""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import Depends, Header, HTTPException, Request, status
from pydantic import ValidationError as PydanticValidationError
from structlog import get_logger

from app.core.config import settings
from app.models.workflow import Actor
from app.services.dashboard import DashboardProjector
from app.services.performance import PerformanceTracker
from app.services.workflow import WorkflowStore
from app.utils.security import verify_identity_signature

logger = get_logger()


def get_store(request: Request) -> WorkflowStore:
    return request.app.state.store


def get_tracker(request: Request) -> PerformanceTracker:
    return request.app.state.tracker


def get_projector(request: Request) -> DashboardProjector:
    return request.app.state.projector


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=message)


def _resolve_actor(
    actor_id: str | None,
    email: str | None,
    role: str | None,
    signature: str | None,
) -> Actor:
    if not (actor_id and email and role):
        raise _unauthorized("Missing identity headers")

    secret = settings.identity_signing_secret
    if secret and not verify_identity_signature(secret, actor_id, email, role, signature):
        raise _unauthorized("Invalid identity signature")

    try:
        actor = Actor(id=actor_id, email=email, role=role)
    except PydanticValidationError as e:
        logger.warning("identity_invalid", actor_id=actor_id, role=role)
        raise _unauthorized("Invalid identity") from e

    # Later log lines in this request carry the actor
    structlog.contextvars.bind_contextvars(actor_id=actor.id, actor_role=actor.role.value)
    return actor


async def get_actor(
    x_actor_id: Annotated[str | None, Header()] = None,
    x_actor_email: Annotated[str | None, Header()] = None,
    x_actor_role: Annotated[str | None, Header()] = None,
    x_actor_signature: Annotated[str | None, Header()] = None,
) -> Actor:
    """
    Authenticated actor supplied by the upstream identity layer.

    Raises:
        HTTPException: 401 if headers are missing, the role is unknown, or the
            signature does not verify when IDENTITY_SIGNING_SECRET is set
    """
    return _resolve_actor(x_actor_id, x_actor_email, x_actor_role, x_actor_signature)


async def get_optional_actor(
    x_actor_id: Annotated[str | None, Header()] = None,
    x_actor_email: Annotated[str | None, Header()] = None,
    x_actor_role: Annotated[str | None, Header()] = None,
    x_actor_signature: Annotated[str | None, Header()] = None,
) -> Actor | None:
    """Like get_actor, but anonymous callers (no identity headers at all) get None."""
    if not (x_actor_id or x_actor_email or x_actor_role):
        return None
    return _resolve_actor(x_actor_id, x_actor_email, x_actor_role, x_actor_signature)


StoreDep = Annotated[WorkflowStore, Depends(get_store)]
TrackerDep = Annotated[PerformanceTracker, Depends(get_tracker)]
ProjectorDep = Annotated[DashboardProjector, Depends(get_projector)]
ActorDep = Annotated[Actor, Depends(get_actor)]
OptionalActorDep = Annotated[Actor | None, Depends(get_optional_actor)]
