from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from pydantic import ValidationError

from . import money
from .cart import Cart
from .errors import EmptyCart, InvalidTender, StoreCorruption, SubmissionFailure
from .logs import json_log
from .pending_sales import PendingSaleStore
from .schemas import SaleCustomer, SaleLine, SalePayload, utcnow


def build_sale_payload(
    cart: Cart,
    payment_method: str = "cash",
    tendered_cents: Optional[int] = None,
    notes: Optional[str] = None,
    customer: Optional[dict] = None,
    now: Callable[[], datetime] = utcnow,
) -> SalePayload:
    if cart.is_empty:
        raise EmptyCart("cannot check out an empty cart")
    totals = cart.totals()

    lines = []
    for item in cart.items:
        # Line tax is before the global discount; the sale-level tax_cents is the rescaled figure.
        line_total = money.line_subtotal(item)
        lines.append(
            SaleLine(
                product_id=item.product_id,
                name=item.name,
                sku=item.sku,
                quantity=item.quantity,
                unit_gross_price_cents=item.unit_gross_price_cents,
                tax_rate=item.tax_rate,
                discount_percent=item.discount_percent,
                discount_cents=item.per_item_discount_cents,
                line_total_cents=line_total,
                tax_cents=money.tax_from_gross_price(line_total, item.tax_rate),
            )
        )

    change_cents = 0
    if tendered_cents is not None:
        if isinstance(tendered_cents, bool) or not isinstance(tendered_cents, int) or tendered_cents < 0:
            raise InvalidTender("tendered_cents must be a non-negative integer")
        if tendered_cents < totals.total_cents:
            raise InvalidTender(f"tendered {tendered_cents} is less than total {totals.total_cents}")
        change_cents = money.change_due(totals.total_cents, tendered_cents)

    try:
        return SalePayload(
            location_id=cart.location_id,
            payment_method=payment_method,
            lines=lines,
            subtotal_cents=totals.subtotal_cents,
            discount_percent=cart.global_discount_percent,
            discount_cents=totals.discount_cents,
            tax_cents=totals.tax_cents,
            total_cents=totals.total_cents,
            tendered_cents=tendered_cents,
            change_cents=change_cents,
            notes=(notes or "").strip() or None,
            customer=SaleCustomer.model_validate(customer) if customer else None,
            created_at=now(),
        )
    except ValidationError as ex:
        raise InvalidTender(str(ex)) from ex


@dataclass(frozen=True)
class CheckoutResult:
    sale_id: str
    status: str  # "submitted" | "queued"
    totals: money.CartTotals
    payload: SalePayload
    ack: Optional[dict] = None
    error: Optional[str] = None
    cart_error: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "status": self.status,
            "totals": self.totals.as_dict(),
            "change_cents": self.payload.change_cents,
            "ack": self.ack,
            "cart_error": self.cart_error,
        }


class CheckoutService:
    """
    Turns the cart into a sale. From the cashier's point of view checkout succeeds as
    soon as the sale is either acknowledged by the backend or durably queued; the cart
    is cleared only then, and always then: a snapshot write that fails afterwards is
    reported in `cart_error` instead of leaving the sale in the cart for a second
    checkout. A StoreCorruption before the sale is queued propagates with the cart
    untouched.
    """

    def __init__(self, cart: Cart, client, store: PendingSaleStore, coordinator, submit_timeout_s: float = 10.0):
        self.cart = cart
        self.client = client
        self.store = store
        self.coordinator = coordinator
        self.submit_timeout_s = submit_timeout_s

    async def checkout(
        self,
        payment_method: str = "cash",
        tendered_cents: Optional[int] = None,
        notes: Optional[str] = None,
        customer: Optional[dict] = None,
    ) -> CheckoutResult:
        payload = build_sale_payload(self.cart, payment_method, tendered_cents, notes, customer)
        totals = self.cart.totals()
        sale_id = str(uuid.uuid4())

        error = None
        if self.coordinator.is_online:
            try:
                ack = await asyncio.wait_for(self.client.submit_sale(sale_id, payload), timeout=self.submit_timeout_s)
            except asyncio.TimeoutError:
                error = f"timeout after {self.submit_timeout_s}s"
            except SubmissionFailure as ex:
                error = str(ex) or "submission failed"
            except Exception as ex:
                error = f"{type(ex).__name__}: {ex}"
            else:
                cart_error = self._settle_cart(sale_id)
                json_log("info", "checkout.submitted", sale_id=sale_id, total_cents=totals.total_cents)
                return CheckoutResult(
                    sale_id=sale_id, status="submitted", totals=totals, payload=payload, ack=ack, cart_error=cart_error
                )

        await asyncio.to_thread(self.store.enqueue, payload, sale_id, error)
        cart_error = self._settle_cart(sale_id)
        try:
            await self.coordinator.refresh_pending_count()
        except StoreCorruption as ex:
            json_log("error", "checkout.pending_count_failed", sale_id=sale_id, error=str(ex))
        json_log("info", "checkout.queued", sale_id=sale_id, total_cents=totals.total_cents, error=error)
        return CheckoutResult(
            sale_id=sale_id, status="queued", totals=totals, payload=payload, error=error, cart_error=cart_error
        )

    def _settle_cart(self, sale_id: str) -> Optional[str]:
        # The sale is acked or queued at this point; the cart must not be checked out a second time.
        try:
            self.cart.clear()
        except StoreCorruption as ex:
            self.cart.discard()
            json_log("error", "checkout.cart_snapshot_failed", sale_id=sale_id, error=str(ex))
            return str(ex)
        return None
