from __future__ import annotations

from decimal import Decimal

import pytest

from imprest_workflow.kernel.errors import InvalidAmountError, ValidationError
from imprest_workflow.kernel.money import money_str, non_negative_amount, positive_amount, to_decimal


@pytest.mark.parametrize(
    "value,expected",
    [
        (5000, Decimal("5000.00")),
        ("5000", Decimal("5000.00")),
        (" 12.5 ", Decimal("12.50")),
        (0.1, Decimal("0.10")),
        (Decimal("7.25"), Decimal("7.25")),
    ],
)
def test_to_decimal_accepts_numbers(value, expected):
    assert to_decimal(value) == expected


@pytest.mark.parametrize("value", [None, True, "abc", "", "NaN", "Infinity", float("inf"), [1], {"a": 1}])
def test_to_decimal_rejects_non_numbers(value):
    with pytest.raises(InvalidAmountError):
        to_decimal(value)


def test_to_decimal_rejects_sub_cent_precision():
    with pytest.raises(InvalidAmountError) as ei:
        to_decimal("10.005", field="receipts[0].amount")
    assert ei.value.field == "receipts[0].amount"
    assert "two decimal places" in ei.value.message


def test_positive_amount_rejects_zero_and_negative():
    for v in (0, "0.00", -1, "-0.01"):
        with pytest.raises(InvalidAmountError) as ei:
            positive_amount(v)
        assert isinstance(ei.value, ValidationError)
        assert ei.value.http_status == 400


def test_non_negative_amount_allows_zero():
    assert non_negative_amount("0") == Decimal("0.00")
    with pytest.raises(InvalidAmountError):
        non_negative_amount("-5")


def test_money_str_two_places():
    assert money_str(Decimal("5000")) == "5000.00"
    assert money_str(Decimal("-500.5")) == "-500.50"
