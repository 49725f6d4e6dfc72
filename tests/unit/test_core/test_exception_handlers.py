"""Unit tests for RFC 7807 problem-details exception handlers."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel

from notify_service.app.exception_handlers import configure_exception_handlers
from notify_service.app.middleware import RequestIDMiddleware
from notify_service.core.database import NotFoundError
from notify_service.core.exceptions import NotFoundException, ValidationException
from notify_service.features.notifications.exceptions import (
    InvalidTransition,
    TemplateMissing,
    TemplateSyntaxInvalid,
)


class _Body(BaseModel):
    count: int


@pytest.fixture
async def problem_client():
    app = FastAPI()
    configure_exception_handlers(app)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/not-found")
    async def not_found():
        raise NotFoundException(detail="Entry x not found", type="queue-entry-not-found")

    @app.get("/validation")
    async def validation():
        raise ValidationException(
            detail="scheduled_for must be in the future",
            type="scheduled-in-past",
            extra={"scheduled_for": "2020-01-01T00:00:00+00:00"},
        )

    @app.get("/transition")
    async def transition():
        raise InvalidTransition("entry-1", "delivered", "cancel")

    @app.get("/template-missing")
    async def template_missing():
        raise TemplateMissing(tenant_id="acme", type_code="otp", channel="sms", language="en")

    @app.get("/template-invalid")
    async def template_invalid():
        raise TemplateSyntaxInvalid("does not parse", field="body")

    @app.get("/repository")
    async def repository():
        raise NotFoundError("Webhook", {"id": "w-1"})

    @app.post("/body")
    async def body(payload: _Body):
        return payload

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.mark.unit
class TestProblemDetails:
    """Test suite for the problem-details responses."""

    @pytest.mark.asyncio
    async def test_app_exception(self, problem_client):
        response = await problem_client.get("/not-found", headers={"X-Request-ID": "req-1"})

        assert response.status_code == 404
        data = response.json()
        assert data["type"] == "queue-entry-not-found"
        assert data["status"] == 404
        assert data["detail"] == "Entry x not found"
        assert data["request_id"] == "req-1"
        assert response.headers["X-Request-ID"] == "req-1"

    @pytest.mark.asyncio
    async def test_extra_fields_are_merged(self, problem_client):
        response = await problem_client.get("/validation")

        assert response.status_code == 422
        data = response.json()
        assert data["type"] == "scheduled-in-past"
        assert data["scheduled_for"] == "2020-01-01T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_invalid_transition_is_conflict(self, problem_client):
        response = await problem_client.get("/transition")

        assert response.status_code == 409
        data = response.json()
        assert data["type"] == "invalid-transition"
        assert data["status"] == 409
        assert data["entry_status"] == "delivered"
        assert "cancel" in data["detail"]

    @pytest.mark.asyncio
    async def test_template_errors_are_unprocessable(self, problem_client):
        missing = await problem_client.get("/template-missing")
        invalid = await problem_client.get("/template-invalid")

        assert missing.status_code == 422
        assert missing.json()["type"] == "template-missing"
        assert missing.json()["channel"] == "sms"
        assert invalid.status_code == 422
        assert invalid.json()["field"] == "body"

    @pytest.mark.asyncio
    async def test_repository_not_found(self, problem_client):
        response = await problem_client.get("/repository")

        assert response.status_code == 404
        assert response.json()["model"] == "Webhook"

    @pytest.mark.asyncio
    async def test_request_validation_lists_fields(self, problem_client):
        response = await problem_client.post("/body", json={"count": "many"})

        assert response.status_code == 422
        data = response.json()
        assert data["type"] == "validation-error"
        assert data["errors"][0]["field"] == "body.count"
