"""Domain exceptions and service boundary decorator."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import asyncpg
from structlog import get_logger

logger = get_logger()

P = ParamSpec("P")
T = TypeVar("T")

GENERIC_FAILURE_MESSAGE = "An unexpected error occurred"


class DomainError(Exception):
    """Base exception for all domain errors."""

    code: str = "DomainError"
    retryable: bool = False

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        return self.message

    @property
    def public_message(self) -> str:
        """Message the front end may show to the user."""
        return GENERIC_FAILURE_MESSAGE


class NotFoundError(DomainError):
    """Referenced application, lead, task or assignee does not exist."""

    code = "NotFound"

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} {resource_id} not found"
        ctx = context or {}
        ctx.setdefault("resource", resource)
        if resource_id is not None:
            ctx.setdefault("resource_id", resource_id)
        super().__init__(message, ctx)

    @property
    def public_message(self) -> str:
        return self.message


class DuplicateApplicationError(DomainError):
    """An application already exists for this email."""

    code = "DuplicateApplication"

    def __init__(self, email: str):
        super().__init__(
            f"An application for {email} has already been submitted",
            context={"email": email},
        )

    @property
    def public_message(self) -> str:
        return self.message


class InvalidTransitionError(DomainError):
    """Target status is unreachable or the transition lacks required context."""

    code = "InvalidTransition"

    @property
    def public_message(self) -> str:
        return self.message


class ForbiddenError(DomainError):
    """Actor lacks the role or ownership the operation needs."""

    code = "Forbidden"

    @property
    def public_message(self) -> str:
        return "not authorized"


class ValidationError(DomainError):
    """Input validation failed."""

    code = "ValidationError"

    @property
    def public_message(self) -> str:
        return self.message


class ConflictError(DomainError):
    """Concurrent update won the race; the caller may retry with the same input."""

    code = "Conflict"
    retryable = True

    @property
    def public_message(self) -> str:
        return "try again"


class StoreTimeoutError(DomainError):
    """Store operation exceeded its time bound; safe to retry."""

    code = "Timeout"
    retryable = True

    @property
    def public_message(self) -> str:
        return "try again"


class DatabaseError(DomainError):
    """Database operation failed."""

    code = "DatabaseError"


class ConfigurationError(DomainError):
    """System misconfigured."""

    code = "ConfigurationError"


# asyncpg errors that mean "another writer got there first"
_CONFLICT_ERRORS: tuple[type[Exception], ...] = (
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
    asyncpg.exceptions.LockNotAvailableError,
)


def service_boundary(
    func: Callable[P, Awaitable[T]],
) -> Callable[P, Awaitable[T]]:
    """
    Convert native exceptions to domain exceptions at service entry points.

    Usage:
        @service_boundary
        async def record_progress(...):
            await repository.update_completion(...)  # TimeoutError -> StoreTimeoutError

    Conversions:
        TimeoutError                      -> StoreTimeoutError (retryable)
        serialization/deadlock/lock wait  -> ConflictError (retryable)
        other asyncpg.PostgresError       -> DatabaseError
        anything else unexpected          -> DomainError
    """

    @wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await func(*args, **kwargs)
        except DomainError:
            # Already a domain error, pass through
            raise
        except TimeoutError as e:
            logger.warning("store_timeout", function=func.__name__)
            raise StoreTimeoutError(
                "Store operation timed out", context={"function": func.__name__}
            ) from e
        except _CONFLICT_ERRORS as e:
            logger.warning("store_conflict", function=func.__name__, error=str(e))
            raise ConflictError(str(e), context={"function": func.__name__}) from e
        except asyncpg.PostgresError as e:
            logger.error("database_error", function=func.__name__, error=str(e))
            raise DatabaseError(str(e), context={"function": func.__name__}) from e
        except Exception as e:
            logger.exception("unexpected_error", function=func.__name__)
            raise DomainError(
                str(e), context={"function": func.__name__, "type": type(e).__name__}
            ) from e

    return wrapper
