"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000+00:00

"""
from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

from notify_service.core.database.types import JSONType, StringArray, UTCDateTime

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id() -> sa.Column:
    return sa.Column("id", sa.Uuid(), nullable=False, comment="UUID v7 primary key (time-sortable)")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            UTCDateTime(),
            server_default=sa.func.now(),
            nullable=False,
            comment="Timestamp of record creation",
        ),
        sa.Column(
            "updated_at",
            UTCDateTime(),
            server_default=sa.func.now(),
            nullable=False,
            comment="Timestamp of last update",
        ),
    ]


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        "notification_templates",
        _id(),
        sa.Column("type_code", sa.String(length=100), nullable=False, comment="Notification type (e.g. 'order_shipped')"),
        sa.Column("channel", sa.String(length=20), nullable=False, comment="Delivery channel"),
        sa.Column("language", sa.String(length=16), nullable=False, comment="BCP 47 language tag"),
        sa.Column("category", sa.String(length=30), nullable=False),
        sa.Column("requires_consent", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, comment="Bumped on every content change"),
        sa.Column("subject", sa.Text(), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("html_body", sa.Text(), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("data", JSONType, nullable=True, comment="Structured source for push data / webhook payloads"),
        sa.Column("action_url", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column(
            "tenant_id",
            sa.String(length=255),
            nullable=True,
            comment="Tenant ID for multi-tenant isolation (NULL = global)",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notification_templates")),
        sa.UniqueConstraint(
            "tenant_id", "type_code", "channel", "language", name="uq_notification_template_key"
        ),
    )
    op.create_index(
        "ix_notification_template_lookup",
        "notification_templates",
        ["type_code", "channel", "language"],
    )
    op.create_index(
        op.f("ix_notification_templates_tenant_id"), "notification_templates", ["tenant_id"]
    )

    op.create_table(
        "recipient_preferences",
        _id(),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("recipient_type", sa.String(length=50), nullable=False),
        sa.Column("recipient_id", sa.String(length=255), nullable=False),
        sa.Column("scope_type", sa.String(length=20), nullable=False),
        sa.Column("scope", sa.String(length=100), nullable=False),
        sa.Column("channel", sa.String(length=20), nullable=False),
        sa.Column("opted_in", sa.Boolean(), nullable=False),
        sa.Column("consent_granted_at", UTCDateTime(), nullable=True),
        sa.Column("quiet_hours_start", sa.Time(), nullable=True),
        sa.Column("quiet_hours_end", sa.Time(), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=True, comment="IANA timezone for quiet hours"),
        sa.Column("language", sa.String(length=16), nullable=True, comment="Preferred language (wildcard row only)"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_recipient_preferences")),
        sa.UniqueConstraint(
            "tenant_id",
            "recipient_type",
            "recipient_id",
            "scope_type",
            "scope",
            "channel",
            name="uq_recipient_preference_scope",
        ),
    )
    op.create_index(
        "ix_recipient_preference_recipient",
        "recipient_preferences",
        ["tenant_id", "recipient_type", "recipient_id"],
    )
    op.create_index(
        op.f("ix_recipient_preferences_tenant_id"), "recipient_preferences", ["tenant_id"]
    )

    op.create_table(
        "tenant_notification_configs",
        _id(),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("channel_rate_limits", JSONType, nullable=True, comment='{"sms": {"hour": 100, "day": 500}}'),
        sa.Column("retry", JSONType, nullable=True, comment='{"max_attempts": 5, "base_delay": 30, "max_delay": 3600}'),
        sa.Column("quiet_hours", JSONType, nullable=True, comment='{"start": "22:00", "end": "07:00", "timezone": "UTC"}'),
        sa.Column("webhook_timeout_seconds", sa.Integer(), nullable=True),
        sa.Column("webhook_retry_attempts", sa.Integer(), nullable=True),
        sa.Column("default_language", sa.String(length=16), nullable=True),
        sa.Column("disabled_channels", StringArray(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_tenant_notification_configs")),
        sa.UniqueConstraint("tenant_id", name=op.f("uq_tenant_notification_configs_tenant_id")),
    )

    op.create_table(
        "queue_entries",
        _id(),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False, comment="Producer event id + channel, unique per tenant"),
        sa.Column("source_event_id", sa.String(length=255), nullable=True),
        sa.Column("recipient_type", sa.String(length=50), nullable=False),
        sa.Column("recipient_id", sa.String(length=255), nullable=False),
        sa.Column("address", sa.String(length=512), nullable=False, comment="Channel address (email, phone, device token...)"),
        sa.Column("channel", sa.String(length=20), nullable=False),
        sa.Column("type_code", sa.String(length=100), nullable=False),
        sa.Column("category", sa.String(length=30), nullable=True),
        sa.Column("language", sa.String(length=16), nullable=True),
        sa.Column("template_id", sa.Uuid(), nullable=True),
        sa.Column("content", JSONType, nullable=True, comment="Rendered content (tagged by 'kind')"),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("deferral_count", sa.Integer(), nullable=False),
        sa.Column("next_eligible_at", UTCDateTime(), nullable=False),
        sa.Column("scheduled_for", UTCDateTime(), nullable=True),
        sa.Column("expires_at", UTCDateTime(), nullable=True),
        sa.Column("claimed_by", sa.String(length=255), nullable=True),
        sa.Column("claimed_until", UTCDateTime(), nullable=True),
        sa.Column("cancel_requested", sa.Boolean(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("failure_reason", sa.String(length=40), nullable=True),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("delivered_at", UTCDateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_queue_entries")),
        sa.UniqueConstraint("tenant_id", "idempotency_key", name="uq_queue_entry_idempotency"),
    )
    op.create_index(
        "ix_queue_entry_claim", "queue_entries", ["status", "next_eligible_at", "priority"]
    )
    op.create_index("ix_queue_entry_tenant_status", "queue_entries", ["tenant_id", "status"])
    op.create_index("ix_queue_entry_claimed_until", "queue_entries", ["status", "claimed_until"])

    op.create_table(
        "delivery_events",
        _id(),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("entry_kind", sa.String(length=20), nullable=False),
        sa.Column("entry_id", sa.Uuid(), nullable=False),
        sa.Column("channel", sa.String(length=20), nullable=False),
        sa.Column("type_code", sa.String(length=100), nullable=False),
        sa.Column("event_type", sa.String(length=30), nullable=False),
        sa.Column("from_status", sa.String(length=20), nullable=True),
        sa.Column("to_status", sa.String(length=20), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=40), nullable=True),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("provider", sa.String(length=100), nullable=True),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("http_status", sa.Integer(), nullable=True),
        sa.Column("details", JSONType, nullable=True),
        sa.Column("occurred_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_delivery_events")),
    )
    op.create_index(op.f("ix_delivery_events_entry_id"), "delivery_events", ["entry_id"])
    op.create_index("ix_delivery_event_tenant_time", "delivery_events", ["tenant_id", "occurred_at"])
    op.create_index("ix_delivery_event_time", "delivery_events", ["occurred_at"])

    op.create_table(
        "analytics_buckets",
        _id(),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("channel", sa.String(length=20), nullable=False),
        sa.Column("type_code", sa.String(length=100), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("sent", sa.Integer(), nullable=False),
        sa.Column("delivered", sa.Integer(), nullable=False),
        sa.Column("failed", sa.Integer(), nullable=False),
        sa.Column("dead", sa.Integer(), nullable=False),
        sa.Column("suppressed", sa.Integer(), nullable=False),
        sa.Column("deferred", sa.Integer(), nullable=False),
        sa.Column("opened", sa.Integer(), nullable=False),
        sa.Column("clicked", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_analytics_buckets")),
        sa.UniqueConstraint(
            "tenant_id", "channel", "type_code", "day", name="uq_analytics_bucket_key"
        ),
    )
    op.create_index("ix_analytics_bucket_tenant_day", "analytics_buckets", ["tenant_id", "day"])

    op.create_table(
        "analytics_fold_markers",
        sa.Column("event_id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("folded_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("event_id", name=op.f("pk_analytics_fold_markers")),
    )
    op.create_index(
        "ix_analytics_fold_marker_tenant_day", "analytics_fold_markers", ["tenant_id", "day"]
    )

    op.create_table(
        "rate_limit_windows",
        _id(),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("channel", sa.String(length=20), nullable=False),
        sa.Column("window_type", sa.String(length=10), nullable=False, comment="hour, day, month"),
        sa.Column("window_start", UTCDateTime(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_rate_limit_windows")),
        sa.UniqueConstraint(
            "tenant_id", "channel", "window_type", "window_start", name="uq_rate_limit_window_key"
        ),
    )

    op.create_table(
        "webhooks",
        _id(),
        sa.Column("tenant_id", sa.String(length=255), nullable=False, comment="Owning tenant"),
        sa.Column("name", sa.String(length=200), nullable=False, comment="Human-readable webhook name"),
        sa.Column("description", sa.Text(), nullable=True, comment="Webhook description"),
        sa.Column("url", sa.String(length=2048), nullable=False, comment="Target URL for webhook delivery"),
        sa.Column("secret", sa.String(length=255), nullable=False, comment="HMAC secret for signing payloads"),
        sa.Column("event_types", StringArray(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, comment="Whether webhook is active"),
        sa.Column("max_retries", sa.Integer(), nullable=True, comment="Delivery attempts (NULL = tenant/system default)"),
        sa.Column("timeout_seconds", sa.Integer(), nullable=True, comment="HTTP timeout (NULL = tenant/system default)"),
        sa.Column("custom_headers", JSONType, nullable=True),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False, comment="Exhausted deliveries in a row"),
        sa.Column("disabled_at", UTCDateTime(), nullable=True),
        sa.Column("disabled_reason", sa.String(length=255), nullable=True),
        sa.Column("last_delivery_at", UTCDateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_webhooks")),
    )
    op.create_index(op.f("ix_webhooks_tenant_id"), "webhooks", ["tenant_id"])

    op.create_table(
        "webhook_deliveries",
        _id(),
        sa.Column("webhook_id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False, comment="Type of event being delivered"),
        sa.Column("event_id", sa.String(length=255), nullable=False, comment="Producer identifier for the event"),
        sa.Column("body", sa.Text(), nullable=False, comment="Canonical JSON body (signed as-is)"),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("next_attempt_at", UTCDateTime(), nullable=False),
        sa.Column("claimed_by", sa.String(length=255), nullable=True),
        sa.Column("claimed_until", UTCDateTime(), nullable=True),
        sa.Column("response_status_code", sa.Integer(), nullable=True, comment="HTTP response status code"),
        sa.Column("response_body", sa.Text(), nullable=True, comment="HTTP response body (truncated)"),
        sa.Column("response_time_ms", sa.Integer(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("failure_reason", sa.String(length=40), nullable=True),
        sa.Column("delivered_at", UTCDateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["webhook_id"],
            ["webhooks.id"],
            name=op.f("fk_webhook_deliveries_webhook_id_webhooks"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_webhook_deliveries")),
        sa.UniqueConstraint("webhook_id", "event_id", name="uq_webhook_delivery_event"),
    )
    op.create_index(op.f("ix_webhook_deliveries_webhook_id"), "webhook_deliveries", ["webhook_id"])
    op.create_index("ix_webhook_delivery_claim", "webhook_deliveries", ["status", "next_attempt_at"])
    op.create_index(
        "ix_webhook_delivery_tenant_status", "webhook_deliveries", ["tenant_id", "status"]
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table("webhook_deliveries")
    op.drop_table("webhooks")
    op.drop_table("rate_limit_windows")
    op.drop_table("analytics_fold_markers")
    op.drop_table("analytics_buckets")
    op.drop_table("delivery_events")
    op.drop_table("queue_entries")
    op.drop_table("tenant_notification_configs")
    op.drop_table("recipient_preferences")
    op.drop_table("notification_templates")
