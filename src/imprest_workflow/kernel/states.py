"""Imprest lifecycle state machine.

    pending_hod --hod_approve--> pending_accountant --accountant_approve--> approved
         |                              |
         +------------reject------------+--> rejected (terminal)

    approved --disburse--> pending_acknowledgment
    pending_acknowledgment --confirm_receipt--> disbursed
    pending_acknowledgment --dispute_receipt--> disputed --resolve_dispute--> resolved_dispute
    disbursed --submit_accounting--> accounted --verify_accounting--> accounted

The table below is the single authority for what can happen next. Guards
are descriptive here; the handlers evaluate them before asking the machine
to fire, so a failed guard never reaches ``fire``.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from imprest_workflow.kernel.errors import InvalidStateError

if TYPE_CHECKING:
    from imprest_workflow.kernel.record import ImprestRecord


class ImprestStatus(str, Enum):
    PENDING_HOD = "pending_hod"
    PENDING_ACCOUNTANT = "pending_accountant"
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING_ACKNOWLEDGMENT = "pending_acknowledgment"
    DISBURSED = "disbursed"
    DISPUTED = "disputed"
    RESOLVED_DISPUTE = "resolved_dispute"
    ACCOUNTED = "accounted"

    def __str__(self) -> str:
        return self.value


class ImprestEvent(str, Enum):
    HOD_APPROVE = "hod_approve"
    ACCOUNTANT_APPROVE = "accountant_approve"
    REJECT = "reject"
    DISBURSE = "disburse"
    CONFIRM_RECEIPT = "confirm_receipt"
    DISPUTE_RECEIPT = "dispute_receipt"
    RESOLVE_DISPUTE = "resolve_dispute"
    SUBMIT_ACCOUNTING = "submit_accounting"
    VERIFY_ACCOUNTING = "verify_accounting"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Guard:
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    from_status: ImprestStatus
    event: ImprestEvent
    to_status: ImprestStatus
    guard: Guard | None = None


_REASON_REQUIRED = Guard("reason_non_empty", "rejection reason must be non-empty")

TRANSITIONS: tuple[Transition, ...] = (
    Transition(ImprestStatus.PENDING_HOD, ImprestEvent.HOD_APPROVE, ImprestStatus.PENDING_ACCOUNTANT),
    Transition(ImprestStatus.PENDING_HOD, ImprestEvent.REJECT, ImprestStatus.REJECTED, _REASON_REQUIRED),
    Transition(
        ImprestStatus.PENDING_ACCOUNTANT,
        ImprestEvent.ACCOUNTANT_APPROVE,
        ImprestStatus.APPROVED,
        Guard("hod_approval_present", "HOD approval must already be recorded"),
    ),
    Transition(ImprestStatus.PENDING_ACCOUNTANT, ImprestEvent.REJECT, ImprestStatus.REJECTED, _REASON_REQUIRED),
    Transition(
        ImprestStatus.APPROVED,
        ImprestEvent.DISBURSE,
        ImprestStatus.PENDING_ACKNOWLEDGMENT,
        Guard("amount_positive", "disbursed amount must be greater than 0"),
    ),
    Transition(ImprestStatus.PENDING_ACKNOWLEDGMENT, ImprestEvent.CONFIRM_RECEIPT, ImprestStatus.DISBURSED),
    Transition(
        ImprestStatus.PENDING_ACKNOWLEDGMENT,
        ImprestEvent.DISPUTE_RECEIPT,
        ImprestStatus.DISPUTED,
        Guard("comments_non_empty", "a dispute must carry comments"),
    ),
    Transition(
        ImprestStatus.DISPUTED,
        ImprestEvent.RESOLVE_DISPUTE,
        ImprestStatus.RESOLVED_DISPUTE,
        Guard("administrative_action", "only an administrator resolves disputes"),
    ),
    Transition(
        ImprestStatus.DISBURSED,
        ImprestEvent.SUBMIT_ACCOUNTING,
        ImprestStatus.ACCOUNTED,
        Guard("receipts_present", "at least one receipt"),
    ),
    Transition(
        ImprestStatus.ACCOUNTED,
        ImprestEvent.VERIFY_ACCOUNTING,
        ImprestStatus.ACCOUNTED,
        Guard("not_yet_verified", "an accounting is verified at most once"),
    ),
)

TERMINAL_STATUSES = frozenset({ImprestStatus.REJECTED, ImprestStatus.RESOLVED_DISPUTE})


class StateMachine:
    """Lookup and application of the transition table."""

    def __init__(self, transitions: tuple[Transition, ...] = TRANSITIONS) -> None:
        self._table: dict[tuple[ImprestStatus, ImprestEvent], Transition] = {}
        for t in transitions:
            key = (t.from_status, t.event)
            if key in self._table:
                raise ValueError(f"duplicate transition for {t.from_status}/{t.event}")
            self._table[key] = t

    def transition_for(self, status: ImprestStatus, event: ImprestEvent) -> Transition | None:
        return self._table.get((ImprestStatus(status), ImprestEvent(event)))

    def can_fire(self, status: ImprestStatus, event: ImprestEvent) -> bool:
        return self.transition_for(status, event) is not None

    def allowed_events(self, status: ImprestStatus) -> list[ImprestEvent]:
        status = ImprestStatus(status)
        return [t.event for t in self._table.values() if t.from_status == status]

    def is_terminal(self, status: ImprestStatus) -> bool:
        return ImprestStatus(status) in TERMINAL_STATUSES

    def require(self, record: ImprestRecord, event: ImprestEvent) -> Transition:
        """Return the transition for ``event`` from the record's status or raise InvalidStateError."""
        t = self.transition_for(record.status, event)
        if t is None:
            raise InvalidStateError(record.id, str(record.status), str(event))
        return t

    def fire(self, record: ImprestRecord, event: ImprestEvent, *, at: Any, **changes: Any) -> ImprestRecord:
        """Produce the post-transition record; the input record is never touched."""
        t = self.require(record, event)
        return dataclasses.replace(record, status=t.to_status, updated_at=at, **changes)


default_machine = StateMachine()
