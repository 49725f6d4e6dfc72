"""notification compliance log

Revision ID: 0002_compliance_log
Revises: 0001_initial_schema
Create Date: 2026-10-19 14:00:00.000000+00:00

"""
from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

from notify_service.core.database.types import JSONType, UTCDateTime

# revision identifiers, used by Alembic.
revision: str = "0002_compliance_log"
down_revision: str | None = "0001_initial_schema"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        "notification_compliance_log",
        sa.Column("id", sa.Uuid(), nullable=False, comment="UUID v7 primary key (time-sortable)"),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("recipient_type", sa.String(length=50), nullable=False),
        sa.Column("recipient_id", sa.String(length=255), nullable=False),
        sa.Column("preference_id", sa.Uuid(), nullable=True),
        sa.Column("action", sa.String(length=30), nullable=False),
        sa.Column("scope_type", sa.String(length=20), nullable=False),
        sa.Column("scope", sa.String(length=100), nullable=False),
        sa.Column("channel", sa.String(length=20), nullable=False),
        sa.Column("source", sa.String(length=50), nullable=False, comment="api, admin, import, ..."),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("details", JSONType, nullable=True, comment="Previous and new values"),
        sa.Column("recorded_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notification_compliance_log")),
    )
    op.create_index(
        "ix_compliance_event_recipient",
        "notification_compliance_log",
        ["tenant_id", "recipient_type", "recipient_id", "recorded_at"],
    )
    op.create_index(
        "ix_compliance_event_tenant_action",
        "notification_compliance_log",
        ["tenant_id", "action", "recorded_at"],
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("ix_compliance_event_tenant_action", table_name="notification_compliance_log")
    op.drop_index("ix_compliance_event_recipient", table_name="notification_compliance_log")
    op.drop_table("notification_compliance_log")
