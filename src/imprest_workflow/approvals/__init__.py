"""Approval tracking: sequential HOD then accountant sign-off.

Each handler takes a record and returns the post-transition record. Inputs
are checked before anything is built, so a refused call leaves the caller's
record exactly as it was. Role checks are the service's concern
(``kernel.policy``); these functions only enforce state and guards.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from imprest_workflow.kernel.errors import MissingReasonError
from imprest_workflow.kernel.record import Actor, Approval, ImprestRecord, Rejection
from imprest_workflow.kernel.states import ImprestEvent, ImprestStatus, StateMachine, default_machine

STAGE_WEIGHT = 50

_FULL_PROGRESS_STATUSES = frozenset({ImprestStatus.APPROVED, ImprestStatus.DISBURSED, ImprestStatus.REJECTED})


def approval_progress(record: ImprestRecord) -> int:
    """Percentage of the approval chain completed (0, 50 or 100)."""
    if record.status in _FULL_PROGRESS_STATUSES:
        return 100
    progress = 0
    if record.hod_approval is not None:
        progress += STAGE_WEIGHT
    if record.accountant_approval is not None:
        progress += STAGE_WEIGHT
    return min(progress, 100)


def approval_timeline(record: ImprestRecord) -> list[dict[str, Any]]:
    """Ordered sign-off steps for display: one entry per stage plus a rejection if any."""
    steps: list[dict[str, Any]] = []
    for stage, approval in (("hod", record.hod_approval), ("accountant", record.accountant_approval)):
        steps.append(
            {
                "stage": stage,
                "completed": approval is not None,
                "actor": approval.approved_by.to_dict() if approval else None,
                "at": approval.approved_at.isoformat() if approval else None,
                "comments": approval.comments if approval else None,
            }
        )
    if record.rejection is not None:
        steps.append(
            {
                "stage": "rejected",
                "completed": True,
                "actor": record.rejection.rejected_by.to_dict(),
                "at": record.rejection.rejected_at.isoformat(),
                "comments": record.rejection.reason,
            }
        )
    return steps


def approve_hod(
    record: ImprestRecord,
    actor: Actor,
    comments: str = "",
    *,
    now: datetime,
    machine: StateMachine = default_machine,
) -> ImprestRecord:
    machine.require(record, ImprestEvent.HOD_APPROVE)
    approval = Approval(approved_by=actor, approved_at=now, comments=(comments or "").strip())
    return machine.fire(record, ImprestEvent.HOD_APPROVE, at=now, hod_approval=approval)


def approve_accountant(
    record: ImprestRecord,
    actor: Actor,
    comments: str = "",
    *,
    now: datetime,
    machine: StateMachine = default_machine,
) -> ImprestRecord:
    machine.require(record, ImprestEvent.ACCOUNTANT_APPROVE)
    if record.hod_approval is None:
        # pending_accountant without a HOD sign-off is a corrupt record, not a user error.
        raise RuntimeError(f"imprest {record.id} is pending_accountant without hod_approval")
    approval = Approval(approved_by=actor, approved_at=now, comments=(comments or "").strip())
    return machine.fire(record, ImprestEvent.ACCOUNTANT_APPROVE, at=now, accountant_approval=approval)


def reject(
    record: ImprestRecord,
    actor: Actor,
    reason: str,
    *,
    now: datetime,
    machine: StateMachine = default_machine,
) -> ImprestRecord:
    machine.require(record, ImprestEvent.REJECT)
    reason = (reason or "").strip()
    if not reason:
        raise MissingReasonError()
    rejection = Rejection(rejected_by=actor, rejected_at=now, reason=reason, stage=record.status)
    return machine.fire(record, ImprestEvent.REJECT, at=now, rejection=rejection)
