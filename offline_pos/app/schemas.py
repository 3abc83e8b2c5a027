from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from .money import change_due, effective_discount_percent, line_subtotal, round_cents, tax_from_gross_price
from .validation import Cents, PaymentMethod, Percent, Quantity, TaxRate

SALE_PAYLOAD_KIND = "sale"
SALE_PAYLOAD_VERSION = 1

# Legacy payloads predate per-product tax rates; the store-wide IVA rate applied then.
LEGACY_DEFAULT_TAX_RATE = Decimal("0.21")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str = Field(min_length=1)
    name: str = ""
    sku: str = ""
    unit_gross_price_cents: Cents
    quantity: Quantity = 1
    tax_rate: TaxRate = Decimal("0")
    per_item_discount_cents: Cents = 0
    discount_percent: Percent = Decimal("0")

    @model_validator(mode="after")
    def _discount_within_line(self):
        if self.per_item_discount_cents > self.unit_gross_price_cents * self.quantity:
            raise ValueError("per_item_discount_cents cannot exceed unit_gross_price_cents * quantity")
        return self


class CatalogProduct(BaseModel):
    """A product row as served by GET /products (snake_case or camelCase)."""

    product_id: str = Field(min_length=1, validation_alias=AliasChoices("product_id", "productId", "id"))
    name: str
    sku: str = ""
    price_gross_cents: Cents = Field(validation_alias=AliasChoices("price_gross_cents", "priceGrossCents", "price_cents", "priceCents"))
    tax_rate: TaxRate = Field(default=Decimal("0"), validation_alias=AliasChoices("tax_rate", "taxRate"))


class CatalogCacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str
    name: str
    sku: str = ""
    price_gross_cents: Cents
    tax_rate: TaxRate
    synced_at: datetime


class SaleLine(BaseModel):
    product_id: str
    name: str = ""
    sku: str = ""
    quantity: Quantity
    unit_gross_price_cents: Cents
    tax_rate: TaxRate
    discount_percent: Percent = Decimal("0")
    discount_cents: Cents = 0
    line_total_cents: Cents
    tax_cents: Cents


class SaleCustomer(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    tax_id: Optional[str] = None
    phone: Optional[str] = None


class SalePayload(BaseModel):
    """
    Versioned sale document stored in pending_sales and sent to POST /sales.

    `kind` and `schema_version` tag the shape so older queued payloads can be
    migrated when read back (see load_sale_payload).
    """

    kind: Literal["sale"] = SALE_PAYLOAD_KIND
    schema_version: Literal[1] = SALE_PAYLOAD_VERSION
    location_id: Optional[str] = None
    payment_method: PaymentMethod = "cash"
    lines: List[SaleLine] = Field(min_length=1)
    subtotal_cents: Cents
    discount_percent: Percent = Decimal("0")
    discount_cents: Cents = 0
    tax_cents: Cents
    total_cents: Cents
    tendered_cents: Optional[Cents] = None
    change_cents: Cents = 0
    notes: Optional[str] = None
    customer: Optional[SaleCustomer] = None
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _totals_consistent(self):
        if self.total_cents != self.subtotal_cents - self.discount_cents:
            raise ValueError("total_cents must equal subtotal_cents - discount_cents")
        return self

    def to_wire(self) -> dict:
        # json mode renders Decimals as strings; cents stay ints.
        return self.model_dump(mode="json")


def _parse_legacy_ts(raw) -> datetime:
    if raw is None or raw == "":
        return utcnow()
    if isinstance(raw, (int, float)):
        # Legacy clients stored epoch milliseconds.
        return datetime.fromtimestamp(raw / 1000, tz=timezone.utc)
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))


def _upgrade_untagged(raw: dict) -> dict:
    """Map the untagged camelCase sale shape onto schema version 1."""
    lines = []
    subtotal = 0
    tax = 0
    for it in raw.get("items") or raw.get("lines") or []:
        item = LineItem(
            product_id=str(it.get("productId") or it.get("product_id") or ""),
            name=it.get("name") or it.get("productName") or "",
            sku=it.get("sku") or "",
            unit_gross_price_cents=it.get("unitPriceCents", it.get("unit_gross_price_cents", 0)),
            quantity=it.get("quantity", 1),
            tax_rate=it.get("taxRate", it.get("tax_rate", LEGACY_DEFAULT_TAX_RATE)),
            per_item_discount_cents=it.get("discountCents", 0) or 0,
            discount_percent=it.get("discountPercent", 0) or 0,
        )
        line_total = line_subtotal(item)
        line_tax = tax_from_gross_price(line_total, item.tax_rate)
        subtotal += line_total
        tax += line_tax
        lines.append(
            {
                "product_id": item.product_id,
                "name": item.name,
                "sku": item.sku,
                "quantity": item.quantity,
                "unit_gross_price_cents": item.unit_gross_price_cents,
                "tax_rate": item.tax_rate,
                "discount_percent": item.discount_percent,
                "discount_cents": item.per_item_discount_cents,
                "line_total_cents": line_total,
                "tax_cents": line_tax,
            }
        )

    discount = int(raw.get("discountCents") or 0)
    total = subtotal - discount
    if discount > 0 and subtotal > 0:
        tax = round_cents(Decimal(tax) * Decimal(total) / Decimal(subtotal))

    customer = None
    if any(raw.get(k) for k in ("customerName", "customerEmail", "customerCuit", "customerPhone")):
        customer = {
            "name": raw.get("customerName"),
            "email": raw.get("customerEmail"),
            "tax_id": raw.get("customerCuit"),
            "phone": raw.get("customerPhone"),
        }

    tendered = raw.get("tenderedCents")
    return {
        "kind": SALE_PAYLOAD_KIND,
        "schema_version": SALE_PAYLOAD_VERSION,
        "location_id": raw.get("locationId"),
        "payment_method": raw.get("paymentMethod") or "cash",
        "lines": lines,
        "subtotal_cents": subtotal,
        "discount_percent": effective_discount_percent(subtotal, total),
        "discount_cents": discount,
        "tax_cents": tax,
        "total_cents": total,
        "tendered_cents": tendered,
        "change_cents": change_due(total, tendered) if tendered is not None else 0,
        "notes": raw.get("notes"),
        "customer": customer,
        "created_at": _parse_legacy_ts(raw.get("createdAt")),
    }


def load_sale_payload(raw) -> SalePayload:
    """Parse a stored payload, migrating older shapes to the current version."""
    if isinstance(raw, (str, bytes)):
        raw = json.loads(raw)
    if not isinstance(raw, dict):
        raise ValueError("sale payload must be a JSON object")
    version = raw.get("schema_version")
    if version is None:
        raw = _upgrade_untagged(raw)
    elif version != SALE_PAYLOAD_VERSION:
        raise ValueError(f"unsupported sale payload version: {version}")
    return SalePayload.model_validate(raw)
