"""
Local HTTP bridge for the till UI: cart operations, checkout, product listing, sync status.

Bound to loopback by default (see agent.py). The UI never sees per-attempt network
errors, only the sync status; a broken local store is reported as 503.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from offline_pos.workers.product_lookup import line_item_for

from .errors import EmptyCart, InsufficientStock, InvalidDiscount, InvalidLineItem, InvalidTender, StoreCorruption
from .logs import json_log
from .runtime import Runtime

APP_VERSION = "0.1.0"

router = APIRouter()


class AddItemIn(BaseModel):
    product_id: str
    name: Optional[str] = None
    sku: Optional[str] = None
    unit_gross_price_cents: Optional[int] = None
    tax_rate: Optional[Any] = None


class QuantityIn(BaseModel):
    quantity: int


class ItemDiscountIn(BaseModel):
    discount_cents: int


class GlobalDiscountIn(BaseModel):
    # Left unconstrained so the cart itself rejects bad values with InvalidDiscount.
    percent: Any


class LocationIn(BaseModel):
    location_id: Optional[str] = None


class CheckoutIn(BaseModel):
    payment_method: str = "cash"
    tendered_cents: Optional[int] = None
    notes: Optional[str] = None
    customer: Optional[dict] = None


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def _cart_out(rt: Runtime) -> dict:
    cart = rt.cart
    return {
        "session_id": cart.session_id,
        "location_id": cart.location_id,
        "global_discount_percent": str(cart.global_discount_percent),
        "items": [it.model_dump(mode="json") for it in cart.items],
        "item_count": cart.item_count,
        "totals": cart.totals().as_dict(),
    }


@router.get("/health")
def health(rt: Runtime = Depends(get_runtime)):
    return {"ok": True, "online": rt.coordinator.is_online, "version": APP_VERSION}


@router.get("/cart")
def get_cart(rt: Runtime = Depends(get_runtime)):
    return _cart_out(rt)


@router.post("/cart/items")
def add_cart_item(data: AddItemIn, rt: Runtime = Depends(get_runtime)):
    if data.unit_gross_price_cents is None:
        cached = rt.catalog.get(data.product_id)
        if not cached:
            raise InvalidLineItem(f"unknown product: {data.product_id}")
        item = line_item_for(cached)
    else:
        item = {
            "product_id": data.product_id,
            "name": data.name or "",
            "sku": data.sku or "",
            "unit_gross_price_cents": data.unit_gross_price_cents,
            "tax_rate": data.tax_rate if data.tax_rate is not None else "0",
        }
    rt.cart.add_item(item)
    return _cart_out(rt)


@router.patch("/cart/items/{product_id}")
def update_cart_item(product_id: str, data: QuantityIn, rt: Runtime = Depends(get_runtime)):
    rt.cart.update_quantity(product_id, data.quantity)
    return _cart_out(rt)


@router.put("/cart/items/{product_id}/discount")
def set_cart_item_discount(product_id: str, data: ItemDiscountIn, rt: Runtime = Depends(get_runtime)):
    rt.cart.set_item_discount(product_id, data.discount_cents)
    return _cart_out(rt)


@router.delete("/cart/items/{product_id}")
def remove_cart_item(product_id: str, rt: Runtime = Depends(get_runtime)):
    rt.cart.remove_item(product_id)
    return _cart_out(rt)


@router.put("/cart/discount")
def set_cart_discount(data: GlobalDiscountIn, rt: Runtime = Depends(get_runtime)):
    rt.cart.set_global_discount(data.percent)
    return _cart_out(rt)


@router.put("/cart/location")
def set_cart_location(data: LocationIn, rt: Runtime = Depends(get_runtime)):
    rt.cart.set_location(data.location_id)
    return _cart_out(rt)


@router.delete("/cart")
def clear_cart(rt: Runtime = Depends(get_runtime)):
    rt.cart.clear()
    return _cart_out(rt)


@router.post("/checkout")
async def checkout(data: CheckoutIn, rt: Runtime = Depends(get_runtime)):
    result = await rt.checkout.checkout(
        payment_method=data.payment_method,
        tendered_cents=data.tendered_cents,
        notes=data.notes,
        customer=data.customer,
    )
    return result.as_dict()


@router.get("/products")
async def list_products(rt: Runtime = Depends(get_runtime)):
    listing = await rt.products.list_products()
    return {
        "source": listing.source,
        "is_stale": listing.is_stale,
        "synced_at": listing.synced_at.isoformat() if listing.synced_at else None,
        "products": [p.model_dump(mode="json") for p in listing.products],
    }


@router.get("/sync/status")
def sync_status(rt: Runtime = Depends(get_runtime)):
    return {
        **rt.coordinator.status.snapshot.as_dict(),
        "online": rt.coordinator.is_online,
        "state": rt.coordinator.state.value,
    }


@router.post("/sync/retry")
async def sync_retry(rt: Runtime = Depends(get_runtime)):
    report = await rt.coordinator.retry_sync()
    out = {**rt.coordinator.status.snapshot.as_dict()}
    if report is None:
        out["skipped"] = True
    else:
        out["acked"] = report.acked
        out["failed"] = report.failed
    return out


def _bad_request(_req: Request, exc: Exception):
    return JSONResponse(status_code=400, content={"detail": str(exc), "error": type(exc).__name__})


def _insufficient_stock(_req: Request, exc: InsufficientStock):
    return JSONResponse(
        status_code=409,
        content={
            "detail": str(exc),
            "error": "InsufficientStock",
            "product_id": exc.product_id,
            "requested": exc.requested,
            "available": exc.available,
        },
    )


def _store_unavailable(req: Request, exc: Exception):
    json_log("error", "store.unavailable", path=req.url.path, error=str(exc))
    return JSONResponse(status_code=503, content={"detail": "local store unavailable", "error": str(exc)})


def create_app(runtime: Runtime, background: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if background:
            runtime.start_background()
        try:
            yield
        finally:
            if background:
                await runtime.stop_background()

    app = FastAPI(title="Offline POS agent", version=APP_VERSION, lifespan=lifespan)
    app.state.runtime = runtime
    for exc_type in (InvalidDiscount, InvalidLineItem, EmptyCart, InvalidTender):
        app.add_exception_handler(exc_type, _bad_request)
    app.add_exception_handler(InsufficientStock, _insufficient_stock)
    app.add_exception_handler(StoreCorruption, _store_unavailable)
    app.include_router(router)
    return app
