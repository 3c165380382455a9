"""create imprest tables

Revision ID: 0001
Revises: None
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "imprest_requests",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("requester_id", sa.String(length=64), nullable=False),
        sa.Column("department", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column("amount", sa.String(length=32), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_imprest_requests_requester_id", "imprest_requests", ["requester_id"])
    op.create_index("ix_imprest_requests_department", "imprest_requests", ["department"])
    op.create_index("ix_imprest_requests_status", "imprest_requests", ["status"])
    op.create_index("ix_imprest_requests_currency", "imprest_requests", ["currency"])
    op.create_index("ix_imprest_requests_due_date", "imprest_requests", ["due_date"])
    op.create_index("ix_imprest_requests_created_at", "imprest_requests", ["created_at"])

    op.create_table(
        "imprest_idempotency_keys",
        sa.Column("key", sa.String(length=128), primary_key=True),
        sa.Column("operation", sa.String(length=32), nullable=False),
        sa.Column("imprest_id", sa.String(length=36), nullable=False),
        sa.Column("actor_id", sa.String(length=64), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_imprest_idempotency_keys_operation", "imprest_idempotency_keys", ["operation"])
    op.create_index("ix_imprest_idempotency_keys_imprest_id", "imprest_idempotency_keys", ["imprest_id"])

    op.create_table(
        "imprest_audit_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("imprest_id", sa.String(length=36), nullable=False),
        sa.Column("event", sa.String(length=32), nullable=False),
        sa.Column("from_status", sa.String(length=32), nullable=True),
        sa.Column("to_status", sa.String(length=32), nullable=False),
        sa.Column("actor_id", sa.String(length=64), nullable=False),
        sa.Column("actor_role", sa.String(length=16), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("ts", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("imprest_id", "version", name="uq_audit_imprest_version"),
    )
    op.create_index("ix_imprest_audit_log_imprest_id", "imprest_audit_log", ["imprest_id"])
    op.create_index("ix_imprest_audit_log_event", "imprest_audit_log", ["event"])
    op.create_index("ix_imprest_audit_log_actor_id", "imprest_audit_log", ["actor_id"])
    op.create_index("ix_imprest_audit_log_ts", "imprest_audit_log", ["ts"])


def downgrade() -> None:
    op.drop_table("imprest_audit_log")
    op.drop_table("imprest_idempotency_keys")
    op.drop_table("imprest_requests")
