from decimal import Decimal

import pytest

from offline_pos.app.cart import Cart, CartSnapshotStore
from offline_pos.app.errors import InvalidDiscount, InvalidLineItem, StoreCorruption


def _product(pid="p1", gross=1000, rate="0.21"):
    return {"product_id": pid, "name": f"Product {pid}", "unit_gross_price_cents": gross, "tax_rate": rate}


class FailingSnapshotStore:
    def __init__(self):
        self.fail = False
        self.saved = []

    def save(self, session_id, items, global_discount_percent, location_id):
        if self.fail:
            raise StoreCorruption("disk I/O error")
        self.saved.append((session_id, list(items), global_discount_percent, location_id))


def test_add_item_merges_by_product():
    cart = Cart()
    cart.add_item(_product())
    cart.add_item(_product())
    cart.add_item(_product("p2", gross=500))
    assert [it.product_id for it in cart.items] == ["p1", "p2"]
    assert cart.get("p1").quantity == 2
    assert cart.item_count == 3


def test_new_item_starts_at_quantity_one():
    cart = Cart()
    cart.add_item({**_product(), "quantity": 7})
    assert cart.get("p1").quantity == 1


def test_add_item_rejects_invalid_line():
    cart = Cart()
    with pytest.raises(InvalidLineItem):
        cart.add_item({"product_id": "p1", "unit_gross_price_cents": -5})
    assert cart.is_empty


def test_update_quantity_to_zero_removes_item():
    cart = Cart()
    cart.add_item(_product())
    cart.update_quantity("p1", 0)
    assert cart.is_empty
    cart.add_item(_product())
    cart.update_quantity("p1", -3)
    assert cart.get("p1") is None


def test_update_quantity_unknown_product_is_noop():
    cart = Cart()
    cart.update_quantity("nope", 4)
    cart.remove_item("nope")
    assert cart.is_empty


def test_update_quantity_clamps_item_discount():
    cart = Cart()
    cart.add_item(_product(gross=1000))
    cart.update_quantity("p1", 3)
    cart.set_item_discount("p1", 2500)
    cart.update_quantity("p1", 2)
    assert cart.get("p1").per_item_discount_cents == 2000


def test_set_item_discount_bounds():
    cart = Cart()
    cart.add_item(_product(gross=1000))
    with pytest.raises(InvalidLineItem):
        cart.set_item_discount("p1", 1001)
    with pytest.raises(InvalidLineItem):
        cart.set_item_discount("p1", -1)
    cart.set_item_discount("p1", 100)
    assert cart.subtotal_cents == 900


def test_scenario_totals_with_global_discount():
    cart = Cart()
    cart.add_item(_product(gross=1000, rate="0.21"))
    cart.update_quantity("p1", 3)
    assert (cart.subtotal_cents, cart.tax_cents, cart.total_cents) == (3000, 521, 3000)
    cart.set_global_discount(10)
    assert (cart.discount_cents, cart.total_cents, cart.tax_cents) == (300, 2700, 469)


def test_invalid_global_discount_keeps_previous_value():
    cart = Cart()
    cart.add_item(_product())
    cart.set_global_discount("15")
    with pytest.raises(InvalidDiscount):
        cart.set_global_discount(150)
    with pytest.raises(InvalidDiscount):
        cart.set_global_discount("abc")
    with pytest.raises(InvalidDiscount):
        cart.set_global_discount(Decimal("NaN"))
    with pytest.raises(InvalidDiscount):
        cart.set_global_discount(Decimal("-Infinity"))
    assert cart.global_discount_percent == Decimal("15")


def test_clear_resets_items_and_discount():
    cart = Cart(location_id="loc-1")
    cart.add_item(_product())
    cart.set_global_discount(5)
    cart.clear()
    assert cart.is_empty
    assert cart.global_discount_percent == Decimal("0")
    assert cart.location_id == "loc-1"
    assert cart.total_cents == 0


def test_failed_persist_leaves_cart_unchanged():
    store = FailingSnapshotStore()
    cart = Cart(snapshot_store=store)
    cart.add_item(_product())
    store.fail = True
    with pytest.raises(StoreCorruption):
        cart.add_item(_product("p2"))
    with pytest.raises(StoreCorruption):
        cart.set_global_discount(20)
    assert [it.product_id for it in cart.items] == ["p1"]
    assert cart.global_discount_percent == Decimal("0")


def test_restore_after_restart(db, clock):
    store = CartSnapshotStore(db, now=clock)
    cart = Cart("till-1", store)
    cart.add_item(_product("p2", gross=250))
    cart.add_item(_product("p1"))
    cart.update_quantity("p1", 4)
    cart.set_global_discount("12.5")
    cart.set_location("loc-9")

    restored = Cart.restore("till-1", CartSnapshotStore(db))
    assert [it.product_id for it in restored.items] == ["p2", "p1"]
    assert restored.get("p1").quantity == 4
    assert restored.global_discount_percent == Decimal("12.5")
    assert restored.location_id == "loc-9"
    assert restored.totals() == cart.totals()

    assert Cart.restore("other-till", CartSnapshotStore(db)).is_empty


def test_unreadable_snapshot_raises_store_corruption(db):
    with db.connect() as conn:
        conn.execute(
            "INSERT INTO cart (session_id, items_json, global_discount_percent, updated_at) VALUES (?, ?, ?, ?)",
            ("till-1", "{not json", "0", "2026-01-01T00:00:00+00:00"),
        )
    with pytest.raises(StoreCorruption):
        Cart.restore("till-1", CartSnapshotStore(db))
