"""Accountability reconciliation: receipts vs. disbursed amount.

    total          = sum(receipt.amount)
    balance        = amount - total
    classification = balanced (== 0) | surplus (> 0, return funds) | deficit (< 0, explain overspend)

Equality is exact: amounts are two-place Decimals, never floats. Receipts
with non-numeric, negative or sub-cent amounts are refused at input rather
than coerced.
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from imprest_workflow.kernel.errors import EmptyReceiptsError, InvalidReceiptError, InvalidStateError
from imprest_workflow.kernel.money import ZERO, money_str, non_negative_amount, to_decimal
from imprest_workflow.kernel.record import Accounting, Actor, ImprestRecord, Receipt
from imprest_workflow.kernel.states import ImprestEvent, StateMachine, default_machine


class BalanceClassification(str, Enum):
    BALANCED = "balanced"
    SURPLUS = "surplus"
    DEFICIT = "deficit"

    def __str__(self) -> str:
        return self.value


_HINTS = {
    BalanceClassification.BALANCED: "Receipts match the disbursed amount.",
    BalanceClassification.SURPLUS: "Unspent funds must be returned.",
    BalanceClassification.DEFICIT: "Spending exceeds the disbursed amount and needs an explanation.",
}


@dataclass(frozen=True)
class ReconciliationResult:
    amount: Decimal
    total: Decimal
    balance: Decimal
    classification: BalanceClassification

    @property
    def hint(self) -> str:
        return _HINTS[self.classification]

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount": money_str(self.amount),
            "total": money_str(self.total),
            "balance": money_str(self.balance),
            "classification": self.classification.value,
            "hint": self.hint,
        }


def classify_balance(balance: Decimal) -> str:
    if balance == ZERO:
        return BalanceClassification.BALANCED.value
    if balance > ZERO:
        return BalanceClassification.SURPLUS.value
    return BalanceClassification.DEFICIT.value


def _receipt_amount(receipt: Any, index: int) -> Decimal:
    if isinstance(receipt, Receipt):
        return non_negative_amount(receipt.amount, field=f"receipts[{index}].amount")
    if isinstance(receipt, dict):
        if "amount" not in receipt:
            raise InvalidReceiptError("receipt amount is required", field=f"receipts[{index}].amount")
        return non_negative_amount(receipt["amount"], field=f"receipts[{index}].amount")
    raise InvalidReceiptError("receipt must be an object", field=f"receipts[{index}]")


def compute_balance(amount: Any, receipts: Iterable[Any]) -> ReconciliationResult:
    """Reconcile ``receipts`` against ``amount`` (disbursed, or requested if nothing was released)."""
    basis = to_decimal(amount)
    total = sum((_receipt_amount(r, i) for i, r in enumerate(receipts)), ZERO)
    balance = basis - total
    return ReconciliationResult(
        amount=basis,
        total=total,
        balance=balance,
        classification=BalanceClassification(classify_balance(balance)),
    )


def parse_receipts(
    raw: Sequence[Any],
    *,
    uploaded_at: datetime,
    receipt_urls: Sequence[str | None] = (),
) -> tuple[Receipt, ...]:
    """Validate raw receipt input into Receipt values.

    ``receipt_urls`` pairs uploaded files with receipts by position; a
    receipt may also carry its own ``receipt_url``.
    """
    if not raw:
        raise EmptyReceiptsError()
    receipts: list[Receipt] = []
    for i, item in enumerate(raw):
        if isinstance(item, Receipt):
            item = item.to_dict()
        if not isinstance(item, dict):
            raise InvalidReceiptError("receipt must be an object", field=f"receipts[{i}]")
        description = str(item.get("description") or "").strip()
        if not description:
            raise InvalidReceiptError("receipt description is required", field=f"receipts[{i}].description")
        amount = _receipt_amount(item, i)
        url = receipt_urls[i] if i < len(receipt_urls) and receipt_urls[i] else item.get("receipt_url")
        receipts.append(Receipt(description=description, amount=amount, receipt_url=url, uploaded_at=uploaded_at))
    return tuple(receipts)


def submit_accounting(
    record: ImprestRecord,
    actor: Actor,
    receipts: Sequence[Any],
    comments: str | None = None,
    *,
    now: datetime,
    receipt_urls: Sequence[str | None] = (),
    machine: StateMachine = default_machine,
) -> ImprestRecord:
    machine.require(record, ImprestEvent.SUBMIT_ACCOUNTING)
    parsed = parse_receipts(receipts, uploaded_at=now, receipt_urls=receipt_urls)
    accounting = Accounting(
        submitted_by=actor,
        submitted_at=now,
        receipts=parsed,
        reconciled_amount=record.reconciliation_basis,
        comments=(comments or "").strip(),
    )
    return machine.fire(record, ImprestEvent.SUBMIT_ACCOUNTING, at=now, accounting=accounting)


def verify_accounting(
    record: ImprestRecord,
    actor: Actor,
    comments: str | None = None,
    *,
    now: datetime,
    machine: StateMachine = default_machine,
) -> ImprestRecord:
    machine.require(record, ImprestEvent.VERIFY_ACCOUNTING)
    if record.accounting is None or record.accounting.is_verified:
        raise InvalidStateError(record.id, "accounted (already verified)", str(ImprestEvent.VERIFY_ACCOUNTING))
    verified = Accounting(
        submitted_by=record.accounting.submitted_by,
        submitted_at=record.accounting.submitted_at,
        receipts=record.accounting.receipts,
        reconciled_amount=record.accounting.reconciled_amount,
        comments=record.accounting.comments,
        verified_by=actor,
        verified_at=now,
        verification_comments=(comments or "").strip(),
    )
    return machine.fire(record, ImprestEvent.VERIFY_ACCOUNTING, at=now, accounting=verified)


def reconcile_record(record: ImprestRecord) -> ReconciliationResult:
    """Reconciliation view of a record: its submitted accounting, or an empty preview."""
    receipts = record.accounting.receipts if record.accounting else ()
    return compute_balance(record.reconciliation_basis, receipts)
