"""E2E test fixtures for HTTP testing."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.main import app, attach_services
from app.models.workflow import Actor, Role
from app.utils.security import sign_identity

ADVOCATE = Actor(id="adv_1", email="advocate@devrel.test", role=Role.ADVOCATE)


@pytest_asyncio.fixture
async def http_client(repository, clock):
    """HTTP client for testing actual FastAPI app.

    Services are attached to a fresh in-memory repository and a frozen
    clock. The app's lifespan is not run.
    """
    attach_services(app, repository, clock=clock, strict_transitions=False)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    for name in ("repository", "store", "tracker", "projector"):
        if hasattr(app.state, name):
            delattr(app.state, name)


def actor_headers(actor: Actor, secret: str | None = None) -> dict[str, str]:
    """Identity headers as the upstream identity layer would send them."""
    headers = {
        "X-Actor-Id": actor.id,
        "X-Actor-Email": actor.email,
        "X-Actor-Role": actor.role.value,
    }
    if secret:
        headers["X-Actor-Signature"] = sign_identity(
            secret, actor.id, actor.email, actor.role.value
        )
    return headers


def lead_headers(email: str, actor_id: str = "user_lead") -> dict[str, str]:
    return actor_headers(Actor(id=actor_id, email=email, role=Role.LEAD))


@pytest.fixture
def advocate_headers() -> dict[str, str]:
    return actor_headers(ADVOCATE)


def application_body(email: str, name: str = "Ada Lovelace") -> dict:
    return {
        "name": name,
        "email": email,
        "profile": {
            "tech_stack": ["python"],
            "experience_level": "beginner",
            "learning_focus": ["public speaking"],
            "availability": "5 hours/week",
            "motivation": "Learn to teach.",
            "why_join": "Community.",
            "commitments": {"weekly_learning": True, "community_participation": True},
        },
    }
