"""Pytest configuration for tests."""

import os
from datetime import UTC, datetime
from pathlib import Path

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# Load .env.test file if it exists
env_test_path = Path(__file__).parent.parent / ".env.test"
if env_test_path.exists():
    load_dotenv(env_test_path)

# Set test environment variables before any imports (only if not already set)
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("DATABASE_URL", "postgresql://localhost:5432/devrel_pipeline_test")
os.environ.setdefault("LOG_LEVEL", "INFO")
os.environ.setdefault("APPLICATION_RATE_LIMIT", "1000/minute")

from app.models.workflow import Actor, Role  # noqa: E402
from app.services.dashboard import DashboardProjector  # noqa: E402
from app.services.performance import PerformanceTracker  # noqa: E402
from app.services.workflow import WorkflowStore  # noqa: E402
from app.storage.memory import MemoryRepository  # noqa: E402
from tests.fixtures.factories import FrozenClock  # noqa: E402

SCHEMA_PATH = Path(__file__).parent.parent / "database" / "schema.sql"

START = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


@pytest.fixture
def clock() -> FrozenClock:
    """Clock fixed at 2025-03-10 12:00 UTC; tests move it with advance()."""
    return FrozenClock(START)


@pytest_asyncio.fixture
async def repository():
    """Opened in-memory repository."""
    repo = MemoryRepository(timeout=2.0)
    await repo.open()
    yield repo
    await repo.close()


@pytest.fixture
def store(repository, clock) -> WorkflowStore:
    return WorkflowStore(repository, clock=clock)


@pytest.fixture
def tracker(store) -> PerformanceTracker:
    return PerformanceTracker(store)


@pytest.fixture
def projector(store, tracker) -> DashboardProjector:
    return DashboardProjector(store, recent_applications_limit=10, leaderboard_size=10)


@pytest.fixture
def advocate() -> Actor:
    return Actor(id="adv_1", email="advocate@devrel.test", role=Role.ADVOCATE)


@pytest_asyncio.fixture
async def db_pool():
    """
    asyncpg pool on DATABASE_URL with the schema applied.

    Skips the test when PostgreSQL is not reachable.
    """
    from asyncpg import create_pool

    from app.core.config import settings

    try:
        pool = await create_pool(settings.database_url, min_size=1, max_size=5, timeout=3)
    except (OSError, TimeoutError) as e:
        pytest.skip(f"PostgreSQL not reachable: {e}")
    except Exception as e:  # asyncpg raises its own errors for auth/unknown database
        pytest.skip(f"PostgreSQL not usable: {e}")

    async with pool.acquire() as conn:
        await conn.execute(SCHEMA_PATH.read_text())

    yield pool

    await pool.close()


@pytest_asyncio.fixture
async def clean_db(db_pool):
    """Clean database before each test."""
    async with db_pool.acquire() as conn:
        # Clear all tables in reverse dependency order
        await conn.execute("DELETE FROM task_completions")
        await conn.execute("DELETE FROM tasks")
        await conn.execute("DELETE FROM leads")
        await conn.execute("DELETE FROM applications")

    yield db_pool


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "e2e: marks tests as end-to-end HTTP tests (slower)")
    config.addinivalue_line("markers", "unit: marks tests as unit tests (fast)")
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (needs PostgreSQL)"
    )
