"""Tests for API error handling."""

import pytest
from fastapi import FastAPI, HTTPException
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel

from app.api.errors import setup_exception_handlers
from app.core.errors import (
    ConflictError,
    DatabaseError,
    DuplicateApplicationError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    StoreTimeoutError,
)
from app.middleware.request_id import RequestIDMiddleware


class SampleInput(BaseModel):
    """Sample input model for validation."""

    name: str
    age: int


def build_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)
    setup_exception_handlers(app)
    return app


async def call(app: FastAPI, path: str, method: str = "GET", **kwargs):
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.request(method, path, **kwargs)


@pytest.mark.asyncio
async def test_http_exception_enveloped():
    """HTTPException returns the failure envelope."""
    app = build_app()

    @app.get("/test")
    async def test_route():
        raise HTTPException(status_code=401, detail="Missing identity headers")

    response = await call(app, "/test")

    assert response.status_code == 401
    assert response.json() == {
        "ok": False,
        "errorKind": "Unauthorized",
        "message": "Missing identity headers",
    }


@pytest.mark.asyncio
async def test_unknown_route_enveloped():
    response = await call(build_app(), "/nowhere")

    assert response.status_code == 404
    assert response.json()["errorKind"] == "NotFound"


@pytest.mark.asyncio
async def test_unmapped_http_status_kind():
    app = build_app()

    @app.get("/test")
    async def test_route():
        raise HTTPException(status_code=400, detail="Bad request")

    response = await call(app, "/test")

    assert response.json()["errorKind"] == "HTTP_400"


@pytest.mark.asyncio
async def test_validation_error_enveloped():
    """Pydantic validation errors name the offending fields."""
    app = build_app()

    @app.post("/test")
    async def test_route(data: SampleInput):
        return {"status": "ok"}

    response = await call(app, "/test", method="POST", json={"name": "test"})

    assert response.status_code == 422
    data = response.json()
    assert data["ok"] is False
    assert data["errorKind"] == "ValidationError"
    assert data["message"] == "Invalid request data: age"
    assert "details" not in data


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "http_status", "kind", "message"),
    [
        (NotFoundError("Task", "t1"), 404, "NotFound", "Task t1 not found"),
        (
            DuplicateApplicationError("a@x.com"),
            409,
            "DuplicateApplication",
            "An application for a@x.com has already been submitted",
        ),
        (
            InvalidTransitionError("Cannot move from rejected: it is a final status"),
            422,
            "InvalidTransition",
            "Cannot move from rejected: it is a final status",
        ),
        (ForbiddenError("lead u1 may not manage_tasks"), 403, "Forbidden", "not authorized"),
        (ConflictError("version mismatch"), 409, "Conflict", "try again"),
        (StoreTimeoutError("Store operation timed out"), 503, "Timeout", "try again"),
        (
            DatabaseError("relation does not exist"),
            500,
            "DatabaseError",
            "An unexpected error occurred",
        ),
    ],
)
async def test_domain_error_mapping(error, http_status, kind, message):
    """Each domain error maps to its status and public message."""
    app = build_app()

    @app.get("/test")
    async def test_route():
        raise error

    response = await call(app, "/test")

    assert response.status_code == http_status
    assert response.json() == {"ok": False, "errorKind": kind, "message": message}


@pytest.mark.asyncio
async def test_error_details_exposed_when_configured(monkeypatch):
    """Error context included when expose_error_details=True."""
    from app.core import config

    monkeypatch.setattr(config.settings, "expose_error_details", True)
    app = build_app()

    @app.get("/test")
    async def test_route():
        raise NotFoundError("Lead", "abc-123", context={"table": "leads"})

    response = await call(app, "/test")

    data = response.json()
    assert data["details"]["resource_id"] == "abc-123"
    assert data["details"]["table"] == "leads"
    assert data["details"]["message"] == "Lead abc-123 not found"


@pytest.mark.asyncio
async def test_error_details_hidden_by_default(monkeypatch):
    from app.core import config

    monkeypatch.setattr(config.settings, "expose_error_details", False)
    app = build_app()

    @app.get("/test")
    async def test_route():
        raise DatabaseError("password authentication failed for user app")

    response = await call(app, "/test")

    assert "details" not in response.json()
    assert "password" not in response.text


@pytest.mark.asyncio
async def test_unexpected_exception_is_generic():
    """Unhandled exceptions never leak their message."""
    app = build_app()

    @app.get("/test")
    async def test_route():
        raise RuntimeError("secret internals")

    response = await call(app, "/test")

    assert response.status_code == 500
    assert response.json() == {
        "ok": False,
        "errorKind": "DomainError",
        "message": "An unexpected error occurred",
    }
