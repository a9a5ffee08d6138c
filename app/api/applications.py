"""Application submission and review endpoints."""

from fastapi import APIRouter, Request, status
from structlog import get_logger

from app.api.deps import ActorDep, OptionalActorDep, StoreDep
from app.core.config import settings
from app.middleware.rate_limit import get_limiter
from app.models.api import Envelope, TransitionRequest, TransitionResult, success
from app.models.dashboard import ApplicationView
from app.models.workflow import ApplicationStatus, ApplicationSubmission

logger = get_logger()
router = APIRouter(prefix="/applications", tags=["applications"])
limiter = get_limiter()


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.application_rate_limit)
async def submit_application(
    request: Request,
    submission: ApplicationSubmission,
    store: StoreDep,
    actor: OptionalActorDep,
) -> Envelope[ApplicationView]:
    """
    Public application form submission.

    Anonymous callers are allowed; an authenticated lead may only apply with
    its own email. Rate limited per client address.
    """
    application = await store.submit_application(submission, actor)
    return success(ApplicationView.build(application, store.clock()))


@router.get("")
async def list_applications(
    store: StoreDep,
    actor: ActorDep,
    status: ApplicationStatus | None = None,
) -> Envelope[list[ApplicationView]]:
    """Applications, newest first (advocates only)."""
    now = store.clock()
    applications = await store.list_applications(actor, status)
    return success([ApplicationView.build(a, now) for a in applications])


@router.get("/pending-review")
async def list_pending_reviews(
    store: StoreDep, actor: ActorDep
) -> Envelope[list[ApplicationView]]:
    """Applications in applied or under_review, oldest first."""
    now = store.clock()
    applications = await store.list_pending_reviews(actor)
    return success([ApplicationView.build(a, now) for a in applications])


@router.get("/{application_id}")
async def get_application(
    application_id: str, store: StoreDep, actor: ActorDep
) -> Envelope[ApplicationView]:
    application = await store.get_application(application_id, actor)
    return success(ApplicationView.build(application, store.clock()))


@router.post("/{application_id}/transitions")
async def transition_application(
    application_id: str,
    body: TransitionRequest,
    store: StoreDep,
    actor: ActorDep,
) -> Envelope[TransitionResult]:
    """
    Move an application to a new status.

    The mirrored lead is updated in the same write. Send expected_version to
    get a Conflict instead of overwriting a concurrent change.
    """
    application, lead = await store.transition_application(
        application_id,
        body.status,
        body.to_context(),
        actor,
        expected_version=body.expected_version,
    )
    return success(
        TransitionResult(
            application=ApplicationView.build(application, store.clock()),
            lead=lead,
        )
    )
