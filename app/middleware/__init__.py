"""HTTP middleware for cross-cutting concerns."""

from app.middleware.cors import setup_cors
from app.middleware.logging import LoggingMiddleware
from app.middleware.rate_limit import get_limiter, setup_rate_limiting
from app.middleware.request_id import RequestIDMiddleware

__all__ = [
    "RequestIDMiddleware",
    "LoggingMiddleware",
    "setup_cors",
    "setup_rate_limiting",
    "get_limiter",
]
