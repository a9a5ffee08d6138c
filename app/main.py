"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request

from app.api.admin import router as admin_router
from app.api.applications import limiter
from app.api.applications import router as applications_router
from app.api.dashboard import router as dashboard_router
from app.api.errors import setup_exception_handlers
from app.api.leads import router as leads_router
from app.api.tasks import router as tasks_router
from app.core.config import settings
from app.core.logging import logger, setup_logging
from app.middleware import LoggingMiddleware, RequestIDMiddleware, setup_cors, setup_rate_limiting
from app.models.api import Envelope, HealthStatus, success
from app.services.dashboard import DashboardProjector
from app.services.performance import PerformanceTracker
from app.services.workflow import Clock, WorkflowStore, utc_now
from app.storage import WorkflowRepository, open_repository

API_PREFIX = "/api/v1"

# Configure logging
setup_logging()


def attach_services(
    app: FastAPI,
    repository: WorkflowRepository,
    *,
    clock: Clock = utc_now,
    strict_transitions: bool | None = None,
) -> WorkflowStore:
    """
    Wire the store, tracker and projector onto app.state.

    The repository must already be open.
    """
    store = WorkflowStore(
        repository,
        clock=clock,
        strict_transitions=(
            settings.strict_status_transitions
            if strict_transitions is None
            else strict_transitions
        ),
    )
    app.state.repository = repository
    app.state.store = store
    app.state.tracker = PerformanceTracker(store)
    app.state.projector = DashboardProjector(store)
    return store


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events."""
    # Startup
    logger.info("application_starting", storage_backend=settings.storage_backend)
    repository = open_repository(settings)
    await repository.open()
    attach_services(app, repository)
    logger.info("application_ready", strict_transitions=settings.strict_status_transitions)

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await repository.close()
    logger.info("application_stopped")


# Create FastAPI app
app = FastAPI(
    title="DevRel Recruiting Pipeline",
    description="Application review workflow and lead task tracking",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware: the last one added runs first
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)
setup_cors(app)

setup_exception_handlers(app)
setup_rate_limiting(app, limiter)

# Include routers
app.include_router(applications_router, prefix=API_PREFIX)
app.include_router(leads_router, prefix=API_PREFIX)
app.include_router(tasks_router, prefix=API_PREFIX)
app.include_router(dashboard_router, prefix=API_PREFIX)
app.include_router(admin_router, prefix=API_PREFIX)


@app.get("/health")
async def health_check(request: Request) -> Envelope[HealthStatus]:
    """
    Health check endpoint.

    Verifies the storage backend answers.

    Raises:
        HTTPException: 503 if storage is unavailable
    """
    repository: WorkflowRepository | None = getattr(request.app.state, "repository", None)
    if repository is None:
        raise HTTPException(status_code=503, detail="Storage not initialized")

    try:
        healthy = await repository.ping()
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        raise HTTPException(status_code=503, detail="Storage unavailable") from e

    if not healthy:
        raise HTTPException(status_code=503, detail="Storage unavailable")
    return success(HealthStatus(status="healthy", storage=repository.name))
