"""Rate limiting for public endpoints."""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from structlog import get_logger

logger = get_logger()


def get_limiter() -> Limiter:
    """
    Create rate limiter instance.

    Uses client IP address for rate limiting.
    """
    return Limiter(key_func=get_remote_address)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render a 429 in the response envelope."""
    logger.warning(
        "rate_limit_exceeded",
        path=request.url.path,
        limit=str(exc.detail),
        client=request.client.host if request.client else None,
    )
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "ok": False,
            "errorKind": "RateLimited",
            "message": "Too many requests, try again later",
        },
    )


def setup_rate_limiting(app: FastAPI, limiter: Limiter) -> Limiter:
    """
    Attach the limiter used by route decorators to the application.

    Returns:
        The same limiter, for chaining
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)  # type: ignore[arg-type]
    return limiter
