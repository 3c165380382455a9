from __future__ import annotations

import dataclasses
from typing import Any

import sqlalchemy as sa
from sqlalchemy import select
from sqlalchemy.orm import Session

from imprest_workflow.common.models import ImprestAuditLog, ImprestIdempotencyKey, ImprestRequest
from imprest_workflow.common.utils import new_uuid
from imprest_workflow.kernel.errors import NotFoundError, StaleStateError
from imprest_workflow.kernel.money import money_str
from imprest_workflow.kernel.record import Actor, ImprestRecord, invariant_violations


def _to_record(row: ImprestRequest) -> ImprestRecord:
    data = dict(row.data)
    data["version"] = row.version
    return ImprestRecord.from_dict(data)


def _check_invariants(record: ImprestRecord) -> None:
    problems = invariant_violations(record)
    if problems:
        # Handlers never produce these; reaching here means a bug, not bad input.
        raise RuntimeError(f"refusing to persist inconsistent imprest {record.id}: {'; '.join(problems)}")


class ImprestRepository:
    """Row-level access to imprest records inside one caller-owned session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, imprest_id: str) -> ImprestRecord:
        row = self.session.get(ImprestRequest, imprest_id, populate_existing=True)
        if row is None:
            raise NotFoundError(f"imprest {imprest_id} not found", details={"imprest_id": imprest_id})
        return _to_record(row)

    def list_records(
        self,
        *,
        requester_id: str | None = None,
        department: str | None = None,
        status: str | None = None,
    ) -> list[ImprestRecord]:
        q = select(ImprestRequest).order_by(ImprestRequest.created_at.desc(), ImprestRequest.id)
        if requester_id:
            q = q.where(ImprestRequest.requester_id == requester_id)
        if department:
            q = q.where(sa.func.lower(ImprestRequest.department) == department.strip().lower())
        if status:
            q = q.where(ImprestRequest.status == status)
        return [_to_record(r) for r in self.session.execute(q).scalars().all()]

    def insert(self, record: ImprestRecord) -> ImprestRecord:
        _check_invariants(record)
        self.session.add(
            ImprestRequest(
                id=record.id,
                requester_id=record.requester.id,
                department=record.department,
                status=record.status.value,
                currency=record.currency,
                amount=money_str(record.amount),
                due_date=record.due_date,
                version=record.version,
                data=record.to_dict(),
                created_at=record.created_at,
                updated_at=record.updated_at,
            )
        )
        self.session.flush()
        return record

    def update(self, record: ImprestRecord, *, expected_version: int) -> ImprestRecord:
        """Compare-and-swap write: succeeds only if the stored version is still ``expected_version``."""
        _check_invariants(record)
        saved = dataclasses.replace(record, version=expected_version + 1)
        result = self.session.execute(
            sa.update(ImprestRequest)
            .where(ImprestRequest.id == record.id, ImprestRequest.version == expected_version)
            .values(
                status=saved.status.value,
                amount=money_str(saved.amount),
                due_date=saved.due_date,
                version=saved.version,
                data=saved.to_dict(),
                updated_at=saved.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleStateError(
                record.id,
                f"imprest {record.id} was modified concurrently; re-fetch and retry",
                expected_version=expected_version,
            )
        return saved

    def append_audit(
        self,
        record: ImprestRecord,
        *,
        event: str,
        from_status: str | None,
        actor: Actor,
        payload: dict[str, Any] | None = None,
    ) -> None:
        self.session.add(
            ImprestAuditLog(
                id=new_uuid(),
                imprest_id=record.id,
                event=event,
                from_status=from_status,
                to_status=record.status.value,
                actor_id=actor.id,
                actor_role=actor.role,
                version=record.version,
                payload=payload,
                ts=record.updated_at,
            )
        )
        self.session.flush()

    def audit_trail(self, imprest_id: str) -> list[ImprestAuditLog]:
        return list(
            self.session.execute(
                select(ImprestAuditLog)
                .where(ImprestAuditLog.imprest_id == imprest_id)
                .order_by(ImprestAuditLog.version.asc())
            )
            .scalars()
            .all()
        )

    def get_idempotency(self, key: str) -> ImprestIdempotencyKey | None:
        return self.session.get(ImprestIdempotencyKey, key)

    def save_idempotency(self, key: str, *, operation: str, imprest_id: str, actor_id: str, version: int) -> None:
        self.session.add(
            ImprestIdempotencyKey(
                key=key,
                operation=operation,
                imprest_id=imprest_id,
                actor_id=actor_id,
                version=version,
            )
        )
        self.session.flush()
