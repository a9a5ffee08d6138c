"""CORS middleware configuration."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings

IDENTITY_HEADERS = ["X-Actor-Id", "X-Actor-Email", "X-Actor-Role", "X-Actor-Signature"]


def setup_cors(app: FastAPI) -> None:
    """
    Allow the submission/review front end to call the API.

    Origins come from FRONTEND_URL (comma-separated).
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.frontend_urls,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "X-Request-ID", *IDENTITY_HEADERS],
        expose_headers=["X-Request-ID"],
    )
