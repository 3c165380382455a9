from __future__ import annotations

import dataclasses
from datetime import timedelta
from decimal import Decimal

import pytest

from builders import NOW, advance, fresh
from imprest_workflow.kernel.record import ImprestRecord, invariant_violations
from imprest_workflow.kernel.states import ImprestStatus


@pytest.mark.parametrize("status", list(ImprestStatus))
def test_dict_shape_survives_storage(status):
    record = advance(fresh(), status)
    loaded = ImprestRecord.from_dict(record.to_dict())
    assert loaded == record
    assert invariant_violations(loaded) == []


def test_accounting_dict_carries_derived_totals():
    data = advance(fresh(), ImprestStatus.ACCOUNTED).to_dict()
    acc = data["accounting"]
    assert acc["total_amount"] == "4500.00"
    assert acc["balance"] == "500.00"
    assert acc["classification"] == "surplus"
    assert data["amount"] == "5000.00"
    assert data["status"] == "accounted"


def test_stored_totals_are_ignored_on_load():
    data = advance(fresh(), ImprestStatus.ACCOUNTED).to_dict()
    data["accounting"]["total_amount"] = "1.00"
    loaded = ImprestRecord.from_dict(data)
    assert loaded.accounting.total_amount == Decimal("4500.00")


def test_overdue_is_derived_not_stored():
    r = advance(fresh(), ImprestStatus.DISBURSED)
    today = r.due_date + timedelta(days=1)
    assert r.days_remaining(today) == -1
    assert r.is_overdue(today) is True
    assert r.status == ImprestStatus.DISBURSED
    accounted = advance(fresh(), ImprestStatus.ACCOUNTED)
    assert accounted.is_overdue(today) is False


def test_invariants_flag_inconsistent_records():
    approved = advance(fresh(), ImprestStatus.APPROVED)
    bad = dataclasses.replace(approved, hod_approval=None)
    assert "accountant_approval without hod_approval" in invariant_violations(bad)

    early = dataclasses.replace(approved, status=ImprestStatus.PENDING_HOD)
    assert "hod_approval present while still pending_hod" in invariant_violations(early)

    disbursed = advance(fresh(), ImprestStatus.DISBURSED)
    rejected_too = dataclasses.replace(disbursed, rejection=advance(fresh(), ImprestStatus.REJECTED).rejection)
    problems = invariant_violations(rejected_too)
    assert "record is both rejected and fully approved" in problems
    assert "disbursement on a rejected record" in problems

    assert invariant_violations(fresh(amount="0")) == ["requested amount must be positive"]
    assert invariant_violations(dataclasses.replace(fresh(), created_at=NOW)) == []
