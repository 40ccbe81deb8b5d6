from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol

from rpos.domain.errors import ValidationError
from rpos.domain.models import TAX_RATES

BALANCE_TOLERANCE = 0.01


class PricedLine(Protocol):
    unit_price: float
    quantity: int
    tax_rate: float


@dataclass(frozen=True)
class LinePricing:
    gross: float
    discount: float
    tax: float
    total: float


@dataclass(frozen=True)
class Totals:
    subtotal: float
    discount_percent: float
    discount_amount: float
    taxable_amount: float
    tax_amount: float
    grand_total: float
    lines: tuple[LinePricing, ...]

    def balances(self, tolerance: float = BALANCE_TOLERANCE) -> bool:
        expected = self.subtotal - self.discount_amount + self.tax_amount
        line_sum = sum(line.total for line in self.lines)
        return abs(self.grand_total - expected) <= tolerance and abs(self.grand_total - line_sum) <= tolerance


def validate_discount(discount_percent: float) -> float:
    pct = float(discount_percent)
    if pct < 0 or pct > 100:
        raise ValidationError("Discount must be between 0 and 100%.")
    return pct


def validate_tax_rate(tax_rate: float) -> float:
    rate = float(tax_rate)
    if rate not in TAX_RATES:
        allowed = ", ".join(str(r) for r in TAX_RATES)
        raise ValidationError(f"Tax rate must be one of {allowed}. Received: {tax_rate}")
    return rate


def compute_totals(lines: Iterable[PricedLine], discount_percent: float = 0.0) -> Totals:
    """
    Cart-wide discount, per-line tax on the discounted amount:

      subtotal       = sum(unit_price * qty)
      discount       = subtotal * pct / 100
      line_tax       = (line_gross - line_gross * pct / 100) * tax_rate / 100
      grand_total    = subtotal - discount + sum(line_tax)

    No rounding is applied; callers format for display.
    """
    pct = validate_discount(discount_percent)

    priced: list[LinePricing] = []
    subtotal = 0.0
    tax_amount = 0.0
    for line in lines:
        qty = int(line.quantity)
        unit_price = float(line.unit_price)
        if qty <= 0:
            raise ValidationError("Qty must be >= 1.")
        if unit_price < 0:
            raise ValidationError("Unit price must be >= 0.")
        rate = validate_tax_rate(line.tax_rate)

        gross = unit_price * qty
        line_discount = gross * pct / 100
        line_tax = (gross - line_discount) * rate / 100
        priced.append(LinePricing(gross=gross, discount=line_discount, tax=line_tax, total=gross - line_discount + line_tax))
        subtotal += gross
        tax_amount += line_tax

    discount_amount = subtotal * pct / 100
    taxable = subtotal - discount_amount
    return Totals(
        subtotal=subtotal,
        discount_percent=pct,
        discount_amount=discount_amount,
        taxable_amount=taxable,
        tax_amount=tax_amount,
        grand_total=taxable + tax_amount,
        lines=tuple(priced),
    )
