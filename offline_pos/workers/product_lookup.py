from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from offline_pos.app.catalog_cache import CatalogCache
from offline_pos.app.errors import SubmissionFailure
from offline_pos.app.logs import json_log
from offline_pos.app.schemas import CatalogCacheEntry, CatalogProduct, LineItem


@dataclass(frozen=True)
class ProductListing:
    products: List[CatalogCacheEntry]
    source: str  # "remote" | "cache"
    synced_at: Optional[datetime]

    @property
    def is_stale(self) -> bool:
        return self.source != "remote"


class ProductLookup:
    """Remote catalog first; the local cache only when the backend cannot be reached."""

    def __init__(self, client, cache: CatalogCache):
        self.client = client
        self.cache = cache

    async def list_products(self) -> ProductListing:
        try:
            products = await self.client.fetch_products()
        except SubmissionFailure as ex:
            json_log("warning", "catalog.fetch_failed", error=str(ex))
            cached = await asyncio.to_thread(self.cache.read_all)
            synced_at = max((p.synced_at for p in cached), default=None)
            return ProductListing(products=cached, source="cache", synced_at=synced_at)

        await asyncio.to_thread(self.cache.refresh, products)
        fresh = await asyncio.to_thread(self.cache.read_all)
        ids = {p.product_id for p in products}
        listing = [p for p in fresh if p.product_id in ids]
        synced_at = max((p.synced_at for p in listing), default=None)
        json_log("info", "catalog.refreshed", count=len(listing))
        return ProductListing(products=listing, source="remote", synced_at=synced_at)


def line_item_for(product) -> LineItem:
    if isinstance(product, (CatalogCacheEntry, CatalogProduct)):
        return LineItem(
            product_id=product.product_id,
            name=product.name,
            sku=product.sku,
            unit_gross_price_cents=product.price_gross_cents,
            tax_rate=product.tax_rate,
        )
    return line_item_for(CatalogProduct.model_validate(product))
