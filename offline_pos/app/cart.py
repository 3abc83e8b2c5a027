from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple

from pydantic import ValidationError

from . import money
from .db import LocalDatabase
from .errors import InvalidDiscount, InvalidLineItem, StoreCorruption
from .schemas import LineItem, utcnow
from .validation import parse_percent


class CartSnapshotStore:
    """Single `cart` row per session so a restart mid-sale does not lose the basket."""

    def __init__(self, db: LocalDatabase, now: Callable[[], datetime] = utcnow):
        self.db = db
        self._now = now

    def save(self, session_id: str, items, global_discount_percent: Decimal, location_id: Optional[str]):
        items_json = json.dumps([it.model_dump(mode="json") for it in items])
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO cart (session_id, items_json, global_discount_percent, location_id, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                  items_json=excluded.items_json,
                  global_discount_percent=excluded.global_discount_percent,
                  location_id=excluded.location_id,
                  updated_at=excluded.updated_at
                """,
                (session_id, items_json, str(global_discount_percent), location_id, self._now().isoformat()),
            )

    def load(self, session_id: str) -> Optional[dict]:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM cart WHERE session_id = ?", (session_id,)).fetchone()
        if not row:
            return None
        try:
            items = [LineItem.model_validate(it) for it in json.loads(row["items_json"] or "[]")]
            discount = parse_percent(row["global_discount_percent"] or "0")
        except (ValueError, TypeError) as ex:
            raise StoreCorruption(f"cart snapshot for session {session_id} is unreadable: {ex}") from ex
        return {"items": items, "global_discount_percent": discount, "location_id": row["location_id"]}

    def delete(self, session_id: str):
        with self.db.connect() as conn:
            conn.execute("DELETE FROM cart WHERE session_id = ?", (session_id,))


def _as_line_item(item) -> LineItem:
    if isinstance(item, LineItem):
        return item
    try:
        return LineItem.model_validate(item)
    except ValidationError as ex:
        raise InvalidLineItem(str(ex)) from ex


def _as_int(value, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidLineItem(f"{label} must be an integer")
    return value


class Cart:
    """
    The basket of the active sale.

    Line items are keyed by product_id in insertion order. Totals are never stored:
    every accessor recomputes through the money module. Each mutation is persisted
    before it becomes visible; if persisting fails the cart is left as it was and
    StoreCorruption is raised.

    Callers serialize mutations (one UI event at a time).
    """

    def __init__(
        self,
        session_id: str = "default",
        snapshot_store: Optional[CartSnapshotStore] = None,
        location_id: Optional[str] = None,
    ):
        self.session_id = session_id
        self._store = snapshot_store
        self._items: Dict[str, LineItem] = {}
        self._global_discount_percent = Decimal("0")
        self._location_id = location_id

    @classmethod
    def restore(cls, session_id: str, snapshot_store: CartSnapshotStore, location_id: Optional[str] = None) -> "Cart":
        cart = cls(session_id=session_id, snapshot_store=snapshot_store, location_id=location_id)
        snap = snapshot_store.load(session_id)
        if snap:
            cart._items = {it.product_id: it for it in snap["items"]}
            cart._global_discount_percent = snap["global_discount_percent"]
            cart._location_id = snap["location_id"] or location_id
        return cart

    # -- reads --------------------------------------------------------------

    @property
    def items(self) -> Tuple[LineItem, ...]:
        return tuple(self._items.values())

    def get(self, product_id: str) -> Optional[LineItem]:
        return self._items.get(product_id)

    @property
    def global_discount_percent(self) -> Decimal:
        return self._global_discount_percent

    @property
    def location_id(self) -> Optional[str]:
        return self._location_id

    @property
    def is_empty(self) -> bool:
        return not self._items

    def totals(self) -> money.CartTotals:
        return money.cart_totals(self._items.values(), self._global_discount_percent)

    @property
    def subtotal_cents(self) -> int:
        return self.totals().subtotal_cents

    @property
    def tax_cents(self) -> int:
        return self.totals().tax_cents

    @property
    def discount_cents(self) -> int:
        return self.totals().discount_cents

    @property
    def total_cents(self) -> int:
        return self.totals().total_cents

    @property
    def item_count(self) -> int:
        return money.item_count(self._items.values())

    # -- mutations ----------------------------------------------------------

    def add_item(self, item):
        item = _as_line_item(item)
        items = dict(self._items)
        existing = items.get(item.product_id)
        if existing:
            items[item.product_id] = existing.model_copy(update={"quantity": existing.quantity + 1})
        else:
            items[item.product_id] = item.model_copy(
                update={
                    "quantity": 1,
                    "per_item_discount_cents": min(item.per_item_discount_cents, item.unit_gross_price_cents),
                }
            )
        self._commit(items=items)

    def remove_item(self, product_id: str):
        if product_id not in self._items:
            return
        items = dict(self._items)
        del items[product_id]
        self._commit(items=items)

    def update_quantity(self, product_id: str, quantity: int):
        quantity = _as_int(quantity, "quantity")
        if quantity <= 0:
            self.remove_item(product_id)
            return
        existing = self._items.get(product_id)
        if not existing:
            return
        # No upper bound here: stock sufficiency is checked by the inventory side at submission.
        line_gross = existing.unit_gross_price_cents * quantity
        items = dict(self._items)
        items[product_id] = existing.model_copy(
            update={"quantity": quantity, "per_item_discount_cents": min(existing.per_item_discount_cents, line_gross)}
        )
        self._commit(items=items)

    def set_item_discount(self, product_id: str, discount_cents: int):
        discount_cents = _as_int(discount_cents, "discount_cents")
        existing = self._items.get(product_id)
        if not existing:
            return
        line_gross = existing.unit_gross_price_cents * existing.quantity
        if discount_cents < 0 or discount_cents > line_gross:
            raise InvalidLineItem(f"discount_cents must be between 0 and {line_gross}")
        items = dict(self._items)
        items[product_id] = existing.model_copy(update={"per_item_discount_cents": discount_cents})
        self._commit(items=items)

    def set_global_discount(self, percent):
        try:
            pct = parse_percent(percent)
        except ValueError as ex:
            raise InvalidDiscount(str(ex)) from ex
        self._commit(global_discount_percent=pct)

    def set_location(self, location_id: Optional[str]):
        self._commit(location_id=(location_id or "").strip() or None)

    def clear(self):
        self._commit(items={}, global_discount_percent=Decimal("0"))

    def discard(self):
        """Empty the cart in memory only; the saved snapshot is left as it was."""
        self._items = {}
        self._global_discount_percent = Decimal("0")

    def _commit(self, items=None, global_discount_percent=None, location_id=...):
        new_items = self._items if items is None else items
        new_discount = self._global_discount_percent if global_discount_percent is None else global_discount_percent
        new_location = self._location_id if location_id is ... else location_id
        if self._store is not None:
            self._store.save(self.session_id, new_items.values(), new_discount, new_location)
        self._items = new_items
        self._global_discount_percent = new_discount
        self._location_id = new_location
