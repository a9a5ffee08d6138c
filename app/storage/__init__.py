"""Storage backends for the workflow store."""

from app.core.config import Settings
from app.core.database import Database
from app.storage.base import WorkflowRepository
from app.storage.memory import MemoryRepository
from app.storage.postgres import PostgresRepository


def open_repository(settings: Settings) -> WorkflowRepository:
    """
    Build the repository selected by STORAGE_BACKEND.

    The handle is not connected yet; the caller owns open() and close().
    """
    if settings.storage_backend == "memory":
        return MemoryRepository(timeout=settings.store_timeout_seconds)

    database = Database(
        settings.database_url,
        min_size=settings.database_pool_min_size,
        max_size=settings.database_pool_max_size,
        command_timeout=settings.database_command_timeout,
        acquire_timeout=settings.store_timeout_seconds,
    )
    return PostgresRepository(database, timeout=settings.store_timeout_seconds)


__all__ = [
    "MemoryRepository",
    "PostgresRepository",
    "WorkflowRepository",
    "open_repository",
]
