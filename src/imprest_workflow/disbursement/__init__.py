"""Disbursement and receipt acknowledgment.

  - ``disburse``: approved -> pending_acknowledgment, records the released amount
    (partial release allowed, over-release only when explicitly permitted).
  - ``acknowledge``: requester confirms (-> disbursed, accounting window open)
    or disputes (-> disputed; comments are the dispute's evidence).
  - ``resolve_dispute``: administrative close-out, disputed -> resolved_dispute.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from imprest_workflow.kernel.errors import InvalidAmountError, MissingCommentsError
from imprest_workflow.kernel.money import money_str, positive_amount
from imprest_workflow.kernel.record import Acknowledgment, Actor, Disbursement, DisputeResolution, ImprestRecord
from imprest_workflow.kernel.states import ImprestEvent, StateMachine, default_machine


def disburse(
    record: ImprestRecord,
    actor: Actor,
    amount: Any,
    comments: str = "",
    *,
    now: datetime,
    payment_reference: str | None = None,
    allow_over_disbursement: bool = False,
    machine: StateMachine = default_machine,
) -> ImprestRecord:
    machine.require(record, ImprestEvent.DISBURSE)
    released = positive_amount(amount)
    if released > record.amount and not allow_over_disbursement:
        raise InvalidAmountError(
            f"disbursed amount {money_str(released)} exceeds requested amount {money_str(record.amount)}",
            details={"requested": money_str(record.amount), "disbursed": money_str(released)},
        )
    disbursement = Disbursement(
        disbursed_by=actor,
        disbursed_at=now,
        amount=released,
        comments=(comments or "").strip(),
        payment_reference=(payment_reference or "").strip() or None,
    )
    return machine.fire(record, ImprestEvent.DISBURSE, at=now, disbursement=disbursement)


def acknowledge(
    record: ImprestRecord,
    actor: Actor,
    received: bool,
    comments: str | None = None,
    *,
    now: datetime,
    machine: StateMachine = default_machine,
) -> ImprestRecord:
    event = ImprestEvent.CONFIRM_RECEIPT if received else ImprestEvent.DISPUTE_RECEIPT
    machine.require(record, event)
    comments = (comments or "").strip()
    if not received and not comments:
        raise MissingCommentsError("comments are required when reporting non-receipt")
    ack = Acknowledgment(acknowledged_by=actor, acknowledged_at=now, received=bool(received), comments=comments)
    return machine.fire(record, event, at=now, acknowledgment=ack)


def resolve_dispute(
    record: ImprestRecord,
    actor: Actor,
    comments: str,
    *,
    now: datetime,
    machine: StateMachine = default_machine,
) -> ImprestRecord:
    machine.require(record, ImprestEvent.RESOLVE_DISPUTE)
    comments = (comments or "").strip()
    if not comments:
        raise MissingCommentsError("a dispute resolution must describe the outcome")
    resolution = DisputeResolution(resolved_by=actor, resolved_at=now, comments=comments)
    return machine.fire(record, ImprestEvent.RESOLVE_DISPUTE, at=now, dispute_resolution=resolution)
