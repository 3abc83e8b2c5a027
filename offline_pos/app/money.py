"""
Money and tax math for tax-inclusive (gross) prices.

All amounts are integer cents. Intermediate values are Decimals and every rounding
step uses ROUND_HALF_UP (half away from zero), so no fractional cents ever leave
this module.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

CENT_Q = Decimal("1")
PCT_Q = Decimal("0.01")
HUNDRED = Decimal("100")


def _dec(v) -> Decimal:
    if isinstance(v, Decimal):
        return v
    return Decimal(str(v or 0))


def round_cents(v: Decimal) -> int:
    return int(v.quantize(CENT_Q, rounding=ROUND_HALF_UP))


def discounted_unit_price(gross_cents: int, discount_percent) -> int:
    pct = _dec(discount_percent)
    if pct <= 0:
        return gross_cents
    return gross_cents - round_cents(Decimal(gross_cents) * pct / HUNDRED)


def net_price(gross_cents: int, tax_rate) -> int:
    return round_cents(Decimal(gross_cents) / (1 + _dec(tax_rate)))


def tax_from_gross_price(gross_cents: int, tax_rate) -> int:
    # Round the net and derive tax by subtraction so net + tax == gross exactly.
    return gross_cents - net_price(gross_cents, tax_rate)


def gross_price(net_cents: int, tax_rate) -> int:
    return round_cents(Decimal(net_cents) * (1 + _dec(tax_rate)))


@dataclass(frozen=True)
class CartTotals:
    subtotal_cents: int = 0
    tax_cents: int = 0
    discount_cents: int = 0
    total_cents: int = 0

    @property
    def net_cents(self) -> int:
        return self.total_cents - self.tax_cents

    def as_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
        }


def line_subtotal(item) -> int:
    """Gross line amount after the item's own percent and cents discounts."""
    unit = discounted_unit_price(item.unit_gross_price_cents, getattr(item, "discount_percent", 0))
    return max(0, unit * item.quantity - int(getattr(item, "per_item_discount_cents", 0) or 0))


def cart_totals(items: Iterable, global_discount_percent=0) -> CartTotals:
    subtotal_cents = 0
    tax_cents = 0
    for item in items:
        item_subtotal = line_subtotal(item)
        subtotal_cents += item_subtotal
        tax_cents += tax_from_gross_price(item_subtotal, item.tax_rate)

    # The global discount applies to the accumulated subtotal, not per item.
    discount_cents = round_cents(Decimal(subtotal_cents) * _dec(global_discount_percent) / HUNDRED)
    total_cents = subtotal_cents - discount_cents

    # Tax was extracted from the undiscounted subtotal; scale it down to the discounted total.
    if discount_cents > 0 and subtotal_cents > 0:
        tax_cents = round_cents(Decimal(tax_cents) * Decimal(total_cents) / Decimal(subtotal_cents))

    return CartTotals(
        subtotal_cents=subtotal_cents,
        tax_cents=tax_cents,
        discount_cents=discount_cents,
        total_cents=total_cents,
    )


def item_count(items: Iterable) -> int:
    return sum(int(item.quantity) for item in items)


def change_due(total_cents: int, tendered_cents: int) -> int:
    change = tendered_cents - total_cents
    return change if change > 0 else 0


def effective_discount_percent(original_cents: int, final_cents: int) -> Decimal:
    if original_cents == 0:
        return Decimal("0.00")
    pct = (Decimal(original_cents - final_cents) / Decimal(original_cents) * HUNDRED).quantize(PCT_Q, rounding=ROUND_HALF_UP)
    return max(Decimal("0.00"), pct)
