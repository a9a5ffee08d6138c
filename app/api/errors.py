"""FastAPI exception handlers rendering the response envelope."""

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from structlog import get_logger

from app.core.config import settings
from app.core.errors import GENERIC_FAILURE_MESSAGE, DomainError
from app.models.api import failure

logger = get_logger()

# Map domain error codes to HTTP status codes
ERROR_STATUS_MAP = {
    "NotFound": status.HTTP_404_NOT_FOUND,
    "DuplicateApplication": status.HTTP_409_CONFLICT,
    "InvalidTransition": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "Forbidden": status.HTTP_403_FORBIDDEN,
    "ValidationError": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "Conflict": status.HTTP_409_CONFLICT,
    "Timeout": status.HTTP_503_SERVICE_UNAVAILABLE,
    "DatabaseError": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "ConfigurationError": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "DomainError": status.HTTP_500_INTERNAL_SERVER_ERROR,
}

HTTP_ERROR_KINDS = {
    status.HTTP_401_UNAUTHORIZED: "Unauthorized",
    status.HTTP_403_FORBIDDEN: "Forbidden",
    status.HTTP_404_NOT_FOUND: "NotFound",
    status.HTTP_405_METHOD_NOT_ALLOWED: "MethodNotAllowed",
    status.HTTP_503_SERVICE_UNAVAILABLE: "Unavailable",
}


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """
    Translate domain exceptions into enveloped HTTP responses.

    Domain errors are expected outcomes, so they log at WARNING. The message
    sent to the front end is the error's public message; context is included
    only when EXPOSE_ERROR_DETAILS is on.

    Args:
        request: FastAPI request
        exc: Domain exception

    Returns:
        JSON envelope with the mapped status code
    """
    http_status = ERROR_STATUS_MAP.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.warning(
        "domain_error_handled",
        error_code=exc.code,
        http_status=http_status,
        retryable=exc.retryable,
        message=exc.message,
        context=exc.context,
    )

    details: dict[str, Any] | None = None
    if settings.expose_error_details:
        details = {"message": exc.message, **exc.context}

    return JSONResponse(
        status_code=http_status,
        content=failure(exc.code, exc.public_message, details),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTPException (401 from identity checks, 404 routes, ...) as an envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=failure(
            HTTP_ERROR_KINDS.get(exc.status_code, f"HTTP_{exc.status_code}"), str(exc.detail)
        ),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Render request validation failures as ValidationError envelopes.

    Pydantic error details are attached only when EXPOSE_ERROR_DETAILS is on.
    """
    errors = exc.errors()
    fields = [".".join(str(p) for p in e.get("loc", ()) if p != "body") for e in errors]
    message = "Invalid request data"
    if fields:
        message = f"Invalid request data: {', '.join(f for f in fields if f)}"

    details = {"errors": jsonable_encoder(errors)} if settings.expose_error_details else None
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=failure("ValidationError", message, details),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions with a generic envelope.

    These are unexpected, so log at ERROR with the stack trace.
    """
    logger.exception("unhandled_exception", error_type=type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=failure("DomainError", GENERIC_FAILURE_MESSAGE),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Configure exception handlers for the application.

    Registers handlers for:
    - DomainError (domain-level exceptions)
    - HTTPException (FastAPI/starlette exceptions)
    - RequestValidationError (Pydantic validation)
    - Exception (catch-all for unexpected errors)
    """
    app.add_exception_handler(DomainError, domain_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, general_exception_handler)
