from decimal import Decimal

import pytest

from offline_pos.app import money
from offline_pos.app.schemas import LineItem


def _item(gross=1000, qty=3, rate="0.21", **kw):
    return LineItem(product_id="p1", unit_gross_price_cents=gross, quantity=qty, tax_rate=rate, **kw)


def test_single_item_without_discount():
    totals = money.cart_totals([_item()])
    assert totals.subtotal_cents == 3000
    assert totals.tax_cents == 521
    assert totals.discount_cents == 0
    assert totals.total_cents == 3000


def test_global_discount_rescales_tax():
    totals = money.cart_totals([_item()], Decimal("10"))
    assert totals.discount_cents == 300
    assert totals.total_cents == 2700
    assert totals.tax_cents == 469
    assert totals.net_cents == 2231


@pytest.mark.parametrize("rate", ["0", "0.05", "0.105", "0.21", "0.27", "1"])
def test_net_plus_tax_is_gross(rate):
    for gross in list(range(0, 250)) + [999, 1000, 1001, 12345, 99999]:
        assert money.net_price(gross, rate) + money.tax_from_gross_price(gross, rate) == gross


def test_discount_invariants_for_all_percents():
    items = [_item(gross=1999, qty=2, rate="0.21"), _item(gross=350, qty=1, rate="0.105").model_copy(update={"product_id": "p2"})]
    for pct in range(0, 101):
        totals = money.cart_totals(items, pct)
        assert totals.total_cents == totals.subtotal_cents - totals.discount_cents
        expected = money.round_cents(Decimal(totals.subtotal_cents) * pct / 100)
        assert totals.discount_cents == expected
        assert 0 <= totals.tax_cents <= totals.total_cents


def test_full_discount_zeroes_tax():
    totals = money.cart_totals([_item()], 100)
    assert totals.total_cents == 0
    assert totals.tax_cents == 0


def test_empty_cart_totals_are_zero():
    assert money.cart_totals([], 50) == money.CartTotals()


def test_rounding_is_half_up():
    # 1 cent at 50% -> 0.5 rounds up to 1.
    assert money.cart_totals([_item(gross=1, qty=1, rate="0")], 50).discount_cents == 1
    assert money.round_cents(Decimal("2.5")) == 3
    assert money.round_cents(Decimal("-2.5")) == -3


def test_line_subtotal_applies_item_discounts():
    item = _item(gross=1000, qty=2, discount_percent="10", per_item_discount_cents=150)
    # 900 * 2 - 150
    assert money.line_subtotal(item) == 1650


def test_gross_price_inverts_net_price():
    assert money.gross_price(money.net_price(1210, "0.21"), "0.21") == 1210


def test_change_due_and_effective_discount():
    assert money.change_due(2700, 3000) == 300
    assert money.change_due(2700, 2700) == 0
    assert money.effective_discount_percent(3000, 2700) == Decimal("10.00")
    assert money.effective_discount_percent(0, 0) == Decimal("0.00")


def test_item_count_sums_quantities():
    items = [_item(qty=3), _item(qty=2).model_copy(update={"product_id": "p2"})]
    assert money.item_count(items) == 5
