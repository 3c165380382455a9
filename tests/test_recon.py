from __future__ import annotations

from decimal import Decimal

import pytest

from builders import ACCOUNTANT, RECEIPTS, REQUESTER, advance, at, fresh
from imprest_workflow.kernel.errors import (
    EmptyReceiptsError,
    InvalidAmountError,
    InvalidReceiptError,
    InvalidStateError,
    ValidationError,
)
from imprest_workflow.kernel.record import Receipt
from imprest_workflow.kernel.states import ImprestStatus
from imprest_workflow.recon import (
    BalanceClassification,
    classify_balance,
    compute_balance,
    parse_receipts,
    reconcile_record,
    submit_accounting,
    verify_accounting,
)


def test_classify_balance_exact():
    assert classify_balance(Decimal("0")) == "balanced"
    assert classify_balance(Decimal("0.00")) == "balanced"
    assert classify_balance(Decimal("0.01")) == "surplus"
    assert classify_balance(Decimal("-0.01")) == "deficit"


def test_surplus_scenario():
    r = advance(fresh(), ImprestStatus.DISBURSED)
    out = submit_accounting(r, REQUESTER, RECEIPTS, now=at(5))
    assert out.status == ImprestStatus.ACCOUNTED
    assert out.accounting.total_amount == Decimal("4500.00")
    assert out.accounting.balance == Decimal("500.00")
    assert out.accounting.classification == "surplus"


def test_deficit_and_balanced():
    res = compute_balance("1000", [{"description": "hotel", "amount": "1200"}])
    assert res.balance == Decimal("-200.00")
    assert res.classification == BalanceClassification.DEFICIT
    assert "explanation" in res.hint

    res = compute_balance("1000", [{"description": "a", "amount": "999.99"}, {"description": "b", "amount": "0.01"}])
    assert res.classification == BalanceClassification.BALANCED
    assert res.to_dict() == {
        "amount": "1000.00",
        "total": "1000.00",
        "balance": "0.00",
        "classification": "balanced",
        "hint": "Receipts match the disbursed amount.",
    }


def test_reconciled_against_disbursed_not_requested():
    r = advance(fresh(), ImprestStatus.DISBURSED, disbursed="4000")
    out = submit_accounting(r, REQUESTER, RECEIPTS, now=at(5))
    assert out.accounting.reconciled_amount == Decimal("4000.00")
    assert out.accounting.balance == Decimal("-500.00")
    assert out.accounting.classification == "deficit"


def test_empty_receipts_rejected_without_change():
    r = advance(fresh(), ImprestStatus.DISBURSED)
    with pytest.raises(EmptyReceiptsError) as ei:
        submit_accounting(r, REQUESTER, [], now=at(5))
    assert isinstance(ei.value, ValidationError)
    assert ei.value.field == "receipts"
    assert r.status == ImprestStatus.DISBURSED
    assert r.accounting is None


@pytest.mark.parametrize(
    "bad,error,field",
    [
        ({"description": "fuel", "amount": "abc"}, InvalidAmountError, "receipts[1].amount"),
        ({"description": "fuel", "amount": "-1"}, InvalidAmountError, "receipts[1].amount"),
        ({"description": "fuel"}, InvalidReceiptError, "receipts[1].amount"),
        ({"description": "  ", "amount": "10"}, InvalidReceiptError, "receipts[1].description"),
        ("fuel 10", InvalidReceiptError, "receipts[1]"),
    ],
)
def test_bad_receipts_refused(bad, error, field):
    with pytest.raises(error) as ei:
        parse_receipts([RECEIPTS[0], bad], uploaded_at=at(5))
    assert ei.value.field == field


def test_zero_amount_receipt_allowed():
    (receipt,) = parse_receipts([{"description": "free parking", "amount": 0}], uploaded_at=at(5))
    assert receipt.amount == Decimal("0.00")


def test_receipt_urls_paired_by_position():
    receipts = parse_receipts(
        [{"description": "fuel", "amount": "10"}, {"description": "meal", "amount": "5", "receipt_url": "s3://b/own"}],
        uploaded_at=at(5),
        receipt_urls=["s3://b/uploaded-0"],
    )
    assert [r.receipt_url for r in receipts] == ["s3://b/uploaded-0", "s3://b/own"]
    assert all(r.uploaded_at == at(5) for r in receipts)


def test_accepts_receipt_values():
    receipts = parse_receipts([Receipt(description="taxi", amount=Decimal("12.00"))], uploaded_at=at(5))
    assert receipts[0].description == "taxi"


def test_submit_twice_is_state_error():
    r = advance(fresh(), ImprestStatus.ACCOUNTED)
    with pytest.raises(InvalidStateError):
        submit_accounting(r, REQUESTER, RECEIPTS, now=at(6))


def test_submit_before_acknowledgment_is_state_error():
    r = advance(fresh(), ImprestStatus.PENDING_ACKNOWLEDGMENT)
    with pytest.raises(InvalidStateError):
        submit_accounting(r, REQUESTER, RECEIPTS, now=at(5))


def test_verify_accounting_once():
    r = advance(fresh(), ImprestStatus.ACCOUNTED)
    out = verify_accounting(r, ACCOUNTANT, "receipts checked", now=at(6))
    assert out.status == ImprestStatus.ACCOUNTED
    assert out.accounting.is_verified
    assert out.accounting.verified_by == ACCOUNTANT
    assert out.accounting.receipts == r.accounting.receipts
    with pytest.raises(InvalidStateError):
        verify_accounting(out, ACCOUNTANT, now=at(7))


def test_reconcile_record_preview_without_accounting():
    r = advance(fresh(), ImprestStatus.DISBURSED)
    res = reconcile_record(r)
    assert res.total == Decimal("0")
    assert res.balance == Decimal("5000.00")
    assert res.classification == BalanceClassification.SURPLUS
