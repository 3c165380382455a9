"""Portfolio statistics over a collection of imprest records.

``aggregate`` is a pure fold: no I/O, no clock reads, no state kept between
calls. The reference instant is passed in, so the same records and ``now``
always yield an identical ``ImprestStats``.

Outputs:
  - status counts (every status present, unseen ones at 0)
  - amount totals: overall, active, awaiting accounting, pending approval, accounted
  - breakdowns by department, currency, payment type and creation month
  - average HOD processing time in hours
  - recent activity feed (verified, disbursed, approved, rejected events)
  - upcoming accounting deadlines with overdue / due-soon flags
"""
from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from imprest_workflow.common.utils import isoformat
from imprest_workflow.kernel.money import ZERO, money_str
from imprest_workflow.kernel.record import Actor, ImprestRecord
from imprest_workflow.kernel.states import ImprestStatus

ACTIVE_STATUSES = frozenset(
    {
        ImprestStatus.PENDING_HOD,
        ImprestStatus.PENDING_ACCOUNTANT,
        ImprestStatus.PENDING_ACKNOWLEDGMENT,
        ImprestStatus.DISBURSED,
    }
)
PENDING_STATUSES = frozenset({ImprestStatus.PENDING_HOD, ImprestStatus.PENDING_ACCOUNTANT})

ACTIVITY_ACCOUNTING_VERIFIED = "accounting_verified"
ACTIVITY_DISBURSED = "disbursed"
ACTIVITY_ACCOUNTANT_APPROVED = "accountant_approved"
ACTIVITY_HOD_APPROVED = "hod_approved"
ACTIVITY_REJECTED = "rejected"


@dataclass(frozen=True)
class ActivityEntry:
    type: str
    imprest_id: str
    at: datetime
    actor: Actor
    amount: Decimal
    currency: str
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "imprest_id": self.imprest_id,
            "at": isoformat(self.at),
            "actor_id": self.actor.id,
            "actor_name": self.actor.name,
            "amount": money_str(self.amount),
            "currency": self.currency,
            "description": self.description,
        }


@dataclass(frozen=True)
class DeadlineEntry:
    imprest_id: str
    requester_name: str
    department: str
    amount: Decimal
    currency: str
    due_date: date
    days_remaining: int
    is_overdue: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "imprest_id": self.imprest_id,
            "requester_name": self.requester_name,
            "department": self.department,
            "amount": money_str(self.amount),
            "currency": self.currency,
            "due_date": self.due_date.isoformat(),
            "days_remaining": self.days_remaining,
            "is_overdue": self.is_overdue,
        }


@dataclass(frozen=True)
class ImprestStats:
    status_counts: dict[str, int]
    total_imprests: int
    total_amount: Decimal
    active_amount: Decimal
    accounting_required_amount: Decimal
    total_pending_amount: Decimal
    total_accounted_amount: Decimal
    active_imprests: int
    pending_imprests: int
    accounted_imprests: int
    rejected_imprests: int
    average_processing_time: float
    overdue_count: int
    due_soon_count: int
    department_counts: dict[str, int] = field(default_factory=dict)
    department_amounts: dict[str, Decimal] = field(default_factory=dict)
    currency_counts: dict[str, int] = field(default_factory=dict)
    currency_amounts: dict[str, Decimal] = field(default_factory=dict)
    payment_type_counts: dict[str, int] = field(default_factory=dict)
    monthly_trend: dict[str, Decimal] = field(default_factory=dict)
    recent_activity: tuple[ActivityEntry, ...] = ()
    upcoming_deadlines: tuple[DeadlineEntry, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "status_counts": dict(self.status_counts),
            "total_imprests": self.total_imprests,
            "total_amount": money_str(self.total_amount),
            "active_amount": money_str(self.active_amount),
            "accounting_required_amount": money_str(self.accounting_required_amount),
            "total_pending_amount": money_str(self.total_pending_amount),
            "total_accounted_amount": money_str(self.total_accounted_amount),
            "active_imprests": self.active_imprests,
            "pending_imprests": self.pending_imprests,
            "accounted_imprests": self.accounted_imprests,
            "rejected_imprests": self.rejected_imprests,
            "average_processing_time": self.average_processing_time,
            "overdue_count": self.overdue_count,
            "due_soon_count": self.due_soon_count,
            "department_counts": dict(self.department_counts),
            "department_amounts": {k: money_str(v) for k, v in self.department_amounts.items()},
            "currency_counts": dict(self.currency_counts),
            "currency_amounts": {k: money_str(v) for k, v in self.currency_amounts.items()},
            "payment_type_counts": dict(self.payment_type_counts),
            "monthly_trend": {k: money_str(v) for k, v in self.monthly_trend.items()},
            "recent_activity": [a.to_dict() for a in self.recent_activity],
            "upcoming_deadlines": [d.to_dict() for d in self.upcoming_deadlines],
        }


def status_counts(records: Iterable[ImprestRecord]) -> dict[str, int]:
    counts = {s.value: 0 for s in ImprestStatus}
    for r in records:
        counts[r.status.value] += 1
    return counts


def average_processing_hours(records: Iterable[ImprestRecord]) -> float:
    """Mean HOD turnaround (created -> hod approval) in hours.

    Records without a HOD approval, or whose timestamps are missing or run
    backwards, are left out of the mean rather than counted as zero.
    """
    durations: list[float] = []
    for r in records:
        if r.hod_approval is None or r.created_at is None or r.hod_approval.approved_at is None:
            continue
        hours = (r.hod_approval.approved_at - r.created_at).total_seconds() / 3600
        if hours < 0:
            continue
        durations.append(hours)
    if not durations:
        return 0.0
    return round(sum(durations) / len(durations), 2)


def activity_entries(record: ImprestRecord) -> list[ActivityEntry]:
    """Every feed-worthy event present on one record."""
    out: list[ActivityEntry] = []

    def _add(kind: str, at: datetime | None, actor: Actor, amount: Decimal, description: str) -> None:
        if at is None:
            return
        out.append(
            ActivityEntry(
                type=kind,
                imprest_id=record.id,
                at=at,
                actor=actor,
                amount=amount,
                currency=record.currency,
                description=description,
            )
        )

    acc = record.accounting
    if acc is not None and acc.verified_by is not None:
        _add(
            ACTIVITY_ACCOUNTING_VERIFIED,
            acc.verified_at,
            acc.verified_by,
            acc.total_amount,
            f"Accounting verified ({acc.classification})",
        )
    if record.disbursement is not None:
        _add(
            ACTIVITY_DISBURSED,
            record.disbursement.disbursed_at,
            record.disbursement.disbursed_by,
            record.disbursement.amount,
            "Funds disbursed",
        )
    if record.accountant_approval is not None:
        _add(
            ACTIVITY_ACCOUNTANT_APPROVED,
            record.accountant_approval.approved_at,
            record.accountant_approval.approved_by,
            record.amount,
            "Approved by accountant",
        )
    if record.hod_approval is not None:
        _add(
            ACTIVITY_HOD_APPROVED,
            record.hod_approval.approved_at,
            record.hod_approval.approved_by,
            record.amount,
            "Approved by HOD",
        )
    if record.rejection is not None:
        _add(
            ACTIVITY_REJECTED,
            record.rejection.rejected_at,
            record.rejection.rejected_by,
            record.amount,
            f"Rejected: {record.rejection.reason}",
        )
    return out


def recent_activity(records: Iterable[ImprestRecord], limit: int = 5) -> tuple[ActivityEntry, ...]:
    entries = [e for r in records for e in activity_entries(r)]
    # Ties on timestamp fall back to id/type so ordering never depends on input order.
    entries.sort(key=lambda e: (e.imprest_id, e.type))
    entries.sort(key=lambda e: e.at, reverse=True)
    return tuple(entries[: max(limit, 0)])


def upcoming_deadlines(records: Iterable[ImprestRecord], today: date) -> tuple[DeadlineEntry, ...]:
    disbursed = sorted(
        (r for r in records if r.status == ImprestStatus.DISBURSED),
        key=lambda r: (r.due_date, r.id),
    )
    return tuple(
        DeadlineEntry(
            imprest_id=r.id,
            requester_name=r.requester.name,
            department=r.department,
            amount=r.reconciliation_basis,
            currency=r.currency,
            due_date=r.due_date,
            days_remaining=r.days_remaining(today),
            is_overdue=r.is_overdue(today),
        )
        for r in disbursed
    )


def _sorted_counts(counter: Counter) -> dict[str, int]:
    return {k: counter[k] for k in sorted(counter)}


def _sorted_amounts(totals: dict[str, Decimal]) -> dict[str, Decimal]:
    return {k: totals[k] for k in sorted(totals)}


def aggregate(
    records: Iterable[ImprestRecord],
    *,
    now: datetime,
    due_soon_days: int = 2,
    activity_limit: int = 5,
) -> ImprestStats:
    items = sorted(records, key=lambda r: r.id)
    today = now.date()

    total = active = accounting_required = pending = accounted = ZERO
    dept_counts: Counter = Counter()
    currency_counts: Counter = Counter()
    type_counts: Counter = Counter()
    dept_amounts: dict[str, Decimal] = defaultdict(lambda: ZERO)
    currency_amounts: dict[str, Decimal] = defaultdict(lambda: ZERO)
    monthly: dict[str, Decimal] = defaultdict(lambda: ZERO)
    overdue = due_soon = 0

    for r in items:
        total += r.amount
        if r.status in ACTIVE_STATUSES:
            active += r.amount
        if r.status in PENDING_STATUSES:
            pending += r.amount
        if r.status == ImprestStatus.DISBURSED:
            accounting_required += r.reconciliation_basis
            days = r.days_remaining(today)
            if days < 0:
                overdue += 1
            elif days <= due_soon_days:
                due_soon += 1
        if r.status == ImprestStatus.ACCOUNTED:
            accounted += r.amount

        dept = r.department or "Unassigned"
        dept_counts[dept] += 1
        dept_amounts[dept] += r.amount
        currency_counts[r.currency] += 1
        currency_amounts[r.currency] += r.amount
        type_counts[r.payment_type] += 1
        monthly[r.created_at.strftime("%Y-%m")] += r.amount

    counts = status_counts(items)
    return ImprestStats(
        status_counts=counts,
        total_imprests=len(items),
        total_amount=total,
        active_amount=active,
        accounting_required_amount=accounting_required,
        total_pending_amount=pending,
        total_accounted_amount=accounted,
        active_imprests=sum(counts[s.value] for s in ACTIVE_STATUSES),
        pending_imprests=sum(counts[s.value] for s in PENDING_STATUSES),
        accounted_imprests=counts[ImprestStatus.ACCOUNTED.value],
        rejected_imprests=counts[ImprestStatus.REJECTED.value],
        average_processing_time=average_processing_hours(items),
        overdue_count=overdue,
        due_soon_count=due_soon,
        department_counts=_sorted_counts(dept_counts),
        department_amounts=_sorted_amounts(dept_amounts),
        currency_counts=_sorted_counts(currency_counts),
        currency_amounts=_sorted_amounts(currency_amounts),
        payment_type_counts=_sorted_counts(type_counts),
        monthly_trend=_sorted_amounts(monthly),
        recent_activity=recent_activity(items, activity_limit),
        upcoming_deadlines=upcoming_deadlines(items, today),
    )
