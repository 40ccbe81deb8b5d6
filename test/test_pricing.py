from dataclasses import dataclass

import pytest

from rpos.domain.errors import ValidationError
from rpos.domain.pricing import compute_totals


@dataclass
class Line:
    unit_price: float
    quantity: int
    tax_rate: float


def test_cart_discount_then_per_line_tax():
    totals = compute_totals([Line(100.0, 2, 5)], discount_percent=10)

    assert totals.subtotal == 200
    assert totals.discount_amount == 20
    assert totals.taxable_amount == 180
    assert totals.tax_amount == 9
    assert totals.grand_total == 189


def test_mixed_tax_rates_balance_within_tolerance():
    lines = [Line(199.99, 3, 12), Line(49.5, 7, 18), Line(10.01, 1, 0), Line(1234.56, 2, 28)]
    totals = compute_totals(lines, discount_percent=7.5)

    assert totals.balances()
    assert abs(totals.grand_total - (totals.subtotal - totals.discount_amount + totals.tax_amount)) <= 0.01
    assert abs(sum(l.total for l in totals.lines) - totals.grand_total) <= 0.01


def test_pricing_is_idempotent():
    lines = [Line(99.99, 3, 18), Line(15.0, 1, 5)]

    assert compute_totals(lines, 12.5) == compute_totals(lines, 12.5)


def test_no_discount_and_zero_tax():
    totals = compute_totals([Line(50.0, 4, 0)])

    assert totals.discount_amount == 0
    assert totals.tax_amount == 0
    assert totals.grand_total == 200


def test_empty_cart_prices_to_zero():
    totals = compute_totals([], 10)

    assert totals.grand_total == 0
    assert totals.lines == ()


@pytest.mark.parametrize("pct", [-1, 100.01, 250])
def test_discount_outside_range_is_rejected(pct):
    with pytest.raises(ValidationError, match="Discount"):
        compute_totals([Line(10.0, 1, 5)], pct)


def test_full_discount_is_allowed():
    totals = compute_totals([Line(10.0, 1, 5)], 100)
    assert totals.grand_total == 0


def test_unknown_tax_rate_is_rejected():
    with pytest.raises(ValidationError, match="Tax rate"):
        compute_totals([Line(10.0, 1, 7)])


def test_non_positive_quantity_and_negative_price_are_rejected():
    with pytest.raises(ValidationError, match="Qty"):
        compute_totals([Line(10.0, 0, 5)])
    with pytest.raises(ValidationError, match="Unit price"):
        compute_totals([Line(-1.0, 1, 5)])
