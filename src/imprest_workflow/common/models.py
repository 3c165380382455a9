from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from imprest_workflow.common.db import Base


class ImprestRequest(Base):
    __tablename__ = "imprest_requests"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True)
    requester_id: Mapped[str] = mapped_column(sa.String(64), index=True)
    department: Mapped[str] = mapped_column(sa.String(128), index=True)
    status: Mapped[str] = mapped_column(sa.String(32), index=True)
    currency: Mapped[str] = mapped_column(sa.String(8), index=True)
    amount: Mapped[str] = mapped_column(sa.String(32))
    due_date: Mapped[sa.Date] = mapped_column(sa.Date, nullable=False, index=True)

    # Optimistic concurrency: every committed transition bumps this by one.
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)

    # Full record (sub-structures included) as produced by ImprestRecord.to_dict().
    data: Mapped[dict] = mapped_column(sa.JSON, nullable=False)

    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, index=True)
    updated_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False)


class ImprestIdempotencyKey(Base):
    __tablename__ = "imprest_idempotency_keys"

    key: Mapped[str] = mapped_column(sa.String(128), primary_key=True)
    operation: Mapped[str] = mapped_column(sa.String(32), index=True)
    imprest_id: Mapped[str] = mapped_column(sa.String(36), index=True)
    actor_id: Mapped[str] = mapped_column(sa.String(64))
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[sa.DateTime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )


class ImprestAuditLog(Base):
    __tablename__ = "imprest_audit_log"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True)
    imprest_id: Mapped[str] = mapped_column(sa.String(36), index=True)
    event: Mapped[str] = mapped_column(sa.String(32), index=True)
    from_status: Mapped[str | None] = mapped_column(sa.String(32), nullable=True)
    to_status: Mapped[str] = mapped_column(sa.String(32))
    actor_id: Mapped[str] = mapped_column(sa.String(64), index=True)
    actor_role: Mapped[str] = mapped_column(sa.String(16))
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    payload: Mapped[dict | None] = mapped_column(sa.JSON, nullable=True)
    ts: Mapped[sa.DateTime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True
    )

    __table_args__ = (
        sa.UniqueConstraint("imprest_id", "version", name="uq_audit_imprest_version"),
    )
