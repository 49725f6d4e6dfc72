"""End-to-end tests for the HTTP API against an in-memory database."""

from __future__ import annotations

import pytest

NOTIFICATIONS = "/api/v1/notifications"
WEBHOOKS = "/api/v1/webhooks"


def _submission(**overrides):
    payload = {
        "recipient": {"type": "user", "id": "u-1"},
        "address": "ada@example.com",
        "type_code": "order_shipped",
        "channel": "email",
        "variables": {"order_id": "A-1", "name": "Ada"},
        "idempotency_key": "order-A-1",
    }
    payload.update(overrides)
    return payload


# ============================================================================
# Tenancy
# ============================================================================


@pytest.mark.unit
class TestTenantHeader:
    """Test suite for tenant resolution on API routes."""

    @pytest.mark.asyncio
    async def test_missing_tenant_header(self, client):
        response = await client.get(f"{NOTIFICATIONS}/stats")

        assert response.status_code == 400
        assert response.json()["type"] == "tenant-missing"

    @pytest.mark.asyncio
    async def test_malformed_tenant_header(self, client):
        response = await client.get(f"{NOTIFICATIONS}/stats", headers={"X-Tenant-ID": "has space"})

        assert response.status_code == 400
        assert response.json()["type"] == "tenant-invalid"


# ============================================================================
# Notifications
# ============================================================================


@pytest.mark.unit
class TestNotificationsApi:
    """Test suite for submission and queue endpoints."""

    @pytest.mark.asyncio
    async def test_submit_is_accepted_and_deduplicated(self, client, tenant_headers, add_template):
        await add_template()

        first = await client.post(NOTIFICATIONS, json=_submission(), headers=tenant_headers)
        second = await client.post(NOTIFICATIONS, json=_submission(), headers=tenant_headers)

        assert first.status_code == 202
        assert first.json()["status"] == "pending"
        assert first.json()["deduplicated"] is False
        assert second.status_code == 202
        assert second.json()["deduplicated"] is True
        assert second.json()["entry_id"] == first.json()["entry_id"]

        stats = await client.get(f"{NOTIFICATIONS}/stats", headers=tenant_headers)
        assert stats.json()["pending"] == 1

    @pytest.mark.asyncio
    async def test_missing_template_is_rejected(self, client, tenant_headers):
        response = await client.post(NOTIFICATIONS, json=_submission(), headers=tenant_headers)

        assert response.status_code == 422
        assert response.json()["type"] == "template-missing"

    @pytest.mark.asyncio
    async def test_invalid_body_is_rejected(self, client, tenant_headers):
        response = await client.post(
            NOTIFICATIONS, json=_submission(channel="carrier-pigeon"), headers=tenant_headers
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_entry_is_tenant_scoped(self, client, tenant_headers, add_template):
        await add_template()
        created = await client.post(NOTIFICATIONS, json=_submission(), headers=tenant_headers)
        entry_id = created.json()["entry_id"]

        own = await client.get(f"{NOTIFICATIONS}/entries/{entry_id}", headers=tenant_headers)
        other = await client.get(
            f"{NOTIFICATIONS}/entries/{entry_id}", headers={"X-Tenant-ID": "globex"}
        )

        assert own.status_code == 200
        assert own.json()["address"] == "ada@example.com"
        assert other.status_code == 404

    @pytest.mark.asyncio
    async def test_cancel_then_cancel_again(self, client, tenant_headers, add_template):
        await add_template()
        created = await client.post(NOTIFICATIONS, json=_submission(), headers=tenant_headers)
        entry_id = created.json()["entry_id"]

        cancelled = await client.post(
            f"{NOTIFICATIONS}/entries/{entry_id}/cancel", headers=tenant_headers
        )
        again = await client.post(f"{NOTIFICATIONS}/entries/{entry_id}/cancel", headers=tenant_headers)

        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "failed"
        assert cancelled.json()["failure_reason"] == "cancelled"
        assert again.status_code == 409
        assert again.json()["type"] == "invalid-transition"

        history = await client.get(
            f"{NOTIFICATIONS}/entries/{entry_id}/events", headers=tenant_headers
        )
        assert sorted(e["event_type"] for e in history.json()) == ["cancelled", "queued"]

    @pytest.mark.asyncio
    async def test_template_upsert_and_preview(self, client, tenant_headers):
        template = {
            "type_code": "password_reset",
            "channel": "sms",
            "body": "Your code is {{ code }}",
        }

        first = await client.put(f"{NOTIFICATIONS}/templates", json=template, headers=tenant_headers)
        second = await client.put(
            f"{NOTIFICATIONS}/templates",
            json={**template, "body": "Code: {{ code }}"},
            headers=tenant_headers,
        )
        preview = await client.post(
            f"{NOTIFICATIONS}/templates/preview",
            json={"type_code": "password_reset", "channel": "sms", "variables": {"code": "123456"}},
            headers=tenant_headers,
        )

        assert first.status_code == 200
        assert second.json()["version"] == 2
        assert second.json()["id"] == first.json()["id"]
        assert preview.status_code == 200
        assert preview.json()["content"]["text"] == "Code: 123456"
        assert preview.json()["missing_placeholders"] == []

    @pytest.mark.asyncio
    async def test_template_with_bad_syntax_is_rejected(self, client, tenant_headers):
        response = await client.put(
            f"{NOTIFICATIONS}/templates",
            json={"type_code": "broken", "channel": "sms", "body": "Hi {{ name "},
            headers=tenant_headers,
        )

        assert response.status_code == 422
        assert response.json()["field"] == "body"

    @pytest.mark.asyncio
    async def test_opt_out_reaches_compliance_log(self, client, tenant_headers):
        preferences = f"{NOTIFICATIONS}/recipients/user/u-1/preferences"
        headers = {**tenant_headers, "User-Agent": "settings-page/1.0"}

        await client.put(preferences, json={"channel": "email"}, headers=headers)
        saved = await client.put(
            preferences, json={"channel": "email", "opted_in": False}, headers=headers
        )
        events = await client.get(
            f"{NOTIFICATIONS}/compliance-events",
            params={"recipient_id": "u-1", "action": "opted_out"},
            headers=tenant_headers,
        )

        assert saved.status_code == 200
        assert events.status_code == 200
        body = events.json()
        assert body["total"] == 1
        assert body["items"][0]["channel"] == "email"
        assert body["items"][0]["user_agent"] == "settings-page/1.0"
        assert body["items"][0]["details"] == {"previous_opted_in": True, "opted_in": False}


# ============================================================================
# Webhooks
# ============================================================================


@pytest.mark.unit
class TestWebhooksApi:
    """Test suite for webhook registration and publishing."""

    @pytest.mark.asyncio
    async def test_register_list_and_publish(self, client, tenant_headers):
        created = await client.post(
            WEBHOOKS,
            json={
                "name": "orders",
                "url": "https://hooks.example.com/acme",
                "event_types": ["order.placed"],
            },
            headers=tenant_headers,
        )
        listed = await client.get(WEBHOOKS, headers=tenant_headers)
        foreign = await client.get(WEBHOOKS, headers={"X-Tenant-ID": "globex"})

        assert created.status_code == 201
        assert created.json()["secret"]
        assert listed.json()["total"] == 1
        assert foreign.json()["total"] == 0

        event = {"event_type": "order.placed", "event_id": "evt-1", "data": {"order_id": 7}}
        published = await client.post(f"{WEBHOOKS}/events", json=event, headers=tenant_headers)
        replayed = await client.post(f"{WEBHOOKS}/events", json=event, headers=tenant_headers)

        assert published.status_code == 202
        assert len(published.json()["delivery_ids"]) == 1
        assert replayed.json()["delivery_ids"] == []
        assert replayed.json()["duplicates"] == 1

    @pytest.mark.asyncio
    async def test_internal_url_is_rejected(self, client, tenant_headers):
        response = await client.post(
            WEBHOOKS,
            json={"name": "meta", "url": "http://169.254.169.254/", "event_types": ["*"]},
            headers=tenant_headers,
        )

        assert response.status_code == 400
        assert response.json()["type"] == "invalid-webhook-url"

    @pytest.mark.asyncio
    async def test_unknown_webhook_is_not_found(self, client, tenant_headers):
        response = await client.get(
            f"{WEBHOOKS}/01890000-0000-7000-8000-000000000000", headers=tenant_headers
        )

        assert response.status_code == 404
        assert response.json()["type"] == "webhook-not-found"


# ============================================================================
# Operations
# ============================================================================


@pytest.mark.unit
class TestOperationalEndpoints:
    """Test suite for health and metrics."""

    @pytest.mark.asyncio
    async def test_liveness(self, client):
        response = await client.get("/api/v1/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["service"] == "notify-service"

    @pytest.mark.asyncio
    async def test_readiness(self, client):
        response = await client.get("/api/v1/health/ready")

        assert response.status_code == 200
        assert response.json()["database"] == "up"

    @pytest.mark.asyncio
    async def test_metrics_exposition(self, client):
        await client.get("/api/v1/health/live")

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "http_requests_total" in response.text
