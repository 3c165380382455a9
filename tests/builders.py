"""Record builders shared by the unit tests.

``advance`` drives a fresh record along the happy path with the real
handlers, so every built record is one the workflow could have produced.
"""
from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from imprest_workflow import approvals, disbursement, recon
from imprest_workflow.kernel.record import Actor, ImprestRecord
from imprest_workflow.kernel.states import ImprestStatus

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

REQUESTER = Actor(
    id="u-req",
    role="requester",
    name="Jane Wanjiku",
    email="jane@example.org",
    department="Finance",
    payroll_number="PR-0042",
)
HOD = Actor(id="u-hod", role="hod", name="Peter Otieno", department="Finance")
OTHER_HOD = Actor(id="u-hod-ops", role="hod", name="Mary Achieng", department="Operations")
ACCOUNTANT = Actor(id="u-acc", role="accountant", name="Ali Hassan", department="Accounts")
ADMIN = Actor(id="u-admin", role="admin", name="Sys Admin")

RECEIPTS = [{"description": "fuel", "amount": "3000"}, {"description": "lunch", "amount": "1500"}]


def fresh(imprest_id: str = "imp-1", amount: str = "5000", **overrides) -> ImprestRecord:
    base = ImprestRecord(
        id=imprest_id,
        requester=REQUESTER,
        department="Finance",
        payment_reason="Site visit fuel",
        payment_type="Travel Cash",
        currency="KES",
        amount=Decimal(amount),
        explanation="Fuel and meals for the Nakuru site visit",
        request_date=NOW.date(),
        due_date=NOW.date() + timedelta(days=7),
        status=ImprestStatus.PENDING_HOD,
        created_at=NOW,
        updated_at=NOW,
    )
    return dataclasses.replace(base, **overrides) if overrides else base


def at(hours: float) -> datetime:
    return NOW + timedelta(hours=hours)


def advance(record: ImprestRecord, target: ImprestStatus, *, disbursed: str | None = None) -> ImprestRecord:
    """Move ``record`` forward until it reaches ``target``."""
    target = ImprestStatus(target)
    r = record
    if target == ImprestStatus.PENDING_HOD:
        return r
    if target == ImprestStatus.REJECTED:
        return approvals.reject(r, HOD, "insufficient justification", now=at(1))

    r = approvals.approve_hod(r, HOD, "ok", now=at(1))
    if target == ImprestStatus.PENDING_ACCOUNTANT:
        return r
    r = approvals.approve_accountant(r, ACCOUNTANT, "ok", now=at(2))
    if target == ImprestStatus.APPROVED:
        return r
    r = disbursement.disburse(r, ACCOUNTANT, disbursed or r.amount, now=at(3), payment_reference="MPESA-1")
    if target == ImprestStatus.PENDING_ACKNOWLEDGMENT:
        return r
    if target in (ImprestStatus.DISPUTED, ImprestStatus.RESOLVED_DISPUTE):
        r = disbursement.acknowledge(r, REQUESTER, False, "nothing arrived", now=at(4))
        if target == ImprestStatus.DISPUTED:
            return r
        return disbursement.resolve_dispute(r, ADMIN, "bank reversal confirmed", now=at(5))
    r = disbursement.acknowledge(r, REQUESTER, True, now=at(4))
    if target == ImprestStatus.DISBURSED:
        return r
    return recon.submit_accounting(r, REQUESTER, RECEIPTS, "all spent on site", now=at(5))
