"""Property tests for the reconciliation arithmetic, transition refusal and stats purity."""
from __future__ import annotations

from decimal import Decimal

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from builders import ACCOUNTANT, ADMIN, HOD, NOW, REQUESTER, advance, at, fresh
from imprest_workflow import approvals, disbursement, recon
from imprest_workflow.kernel.errors import ImprestError, InvalidStateError, MissingCommentsError
from imprest_workflow.kernel.states import ImprestStatus, default_machine
from imprest_workflow.reports import aggregate

cents = st.integers(min_value=0, max_value=10_000_000).map(lambda c: Decimal(c) / 100)
positive_cents = st.integers(min_value=1, max_value=10_000_000).map(lambda c: Decimal(c) / 100)
receipt_lists = st.lists(
    st.builds(lambda d, a: {"description": d, "amount": str(a)}, st.text(min_size=1).filter(str.strip), cents),
    min_size=1,
    max_size=12,
)
statuses = st.sampled_from(list(ImprestStatus))

_ATTEMPTS = {
    "hod_approve": lambda r: approvals.approve_hod(r, HOD, "ok", now=at(9)),
    "accountant_approve": lambda r: approvals.approve_accountant(r, ACCOUNTANT, "ok", now=at(9)),
    "reject": lambda r: approvals.reject(r, HOD, "no", now=at(9)),
    "disburse": lambda r: disbursement.disburse(r, ACCOUNTANT, r.amount, now=at(9)),
    "confirm_receipt": lambda r: disbursement.acknowledge(r, REQUESTER, True, now=at(9)),
    "dispute_receipt": lambda r: disbursement.acknowledge(r, REQUESTER, False, "missing", now=at(9)),
    "resolve_dispute": lambda r: disbursement.resolve_dispute(r, ADMIN, "settled", now=at(9)),
    "submit_accounting": lambda r: recon.submit_accounting(
        r, REQUESTER, [{"description": "x", "amount": "1"}], now=at(9)
    ),
}


@settings(max_examples=60, suppress_health_check=[HealthCheck.too_slow])
@given(disbursed=positive_cents, receipts=receipt_lists)
def test_total_and_balance_have_no_drift(disbursed, receipts):
    record = advance(fresh(amount=str(disbursed)), ImprestStatus.DISBURSED)
    out = recon.submit_accounting(record, REQUESTER, receipts, now=at(5))
    expected_total = sum((Decimal(r["amount"]) for r in receipts), Decimal("0"))
    acc = out.accounting
    assert acc.total_amount == expected_total
    assert acc.balance == disbursed - expected_total
    assert (acc.classification == "balanced") == (acc.balance == 0)

    reloaded = type(out).from_dict(out.to_dict())
    assert reloaded.accounting.total_amount == expected_total


@settings(max_examples=80)
@given(status=statuses, event=st.sampled_from(sorted(_ATTEMPTS)))
def test_illegal_transition_never_mutates(status, event):
    record = advance(fresh(), status)
    snapshot = record.to_dict()
    if default_machine.can_fire(record.status, event):
        return
    with pytest.raises(InvalidStateError):
        _ATTEMPTS[event](record)
    assert record.to_dict() == snapshot


@given(comments=st.text(alphabet=" \t\n", max_size=5))
def test_dispute_needs_non_blank_comments(comments):
    record = advance(fresh(), ImprestStatus.PENDING_ACKNOWLEDGMENT)
    with pytest.raises(MissingCommentsError):
        disbursement.acknowledge(record, REQUESTER, False, comments, now=at(4))


@given(comments=st.text(min_size=1).filter(str.strip))
def test_dispute_with_comments_always_disputes(comments):
    record = advance(fresh(), ImprestStatus.PENDING_ACKNOWLEDGMENT)
    out = disbursement.acknowledge(record, REQUESTER, False, comments, now=at(4))
    assert out.status == ImprestStatus.DISPUTED


@settings(max_examples=40, suppress_health_check=[HealthCheck.too_slow])
@given(picks=st.lists(st.tuples(statuses, positive_cents), max_size=8))
def test_stats_are_pure(picks):
    records = [advance(fresh(f"imp-{i}", amount=str(amount)), status) for i, (status, amount) in enumerate(picks)]
    first = aggregate(records, now=NOW)
    second = aggregate(records, now=NOW)
    assert first == second
    assert first.to_dict() == second.to_dict()
    assert sum(first.status_counts.values()) == len(records)


def test_guard_failure_is_a_domain_error():
    record = advance(fresh(), ImprestStatus.APPROVED)
    with pytest.raises(ImprestError):
        disbursement.disburse(record, ACCOUNTANT, "0", now=at(3))
