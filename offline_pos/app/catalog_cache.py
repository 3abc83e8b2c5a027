from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from .db import LocalDatabase
from .schemas import CatalogCacheEntry, CatalogProduct, utcnow


def _row_to_entry(row) -> CatalogCacheEntry:
    return CatalogCacheEntry(
        product_id=row["product_id"],
        name=row["name"],
        sku=row["sku"] or "",
        price_gross_cents=int(row["price_gross_cents"]),
        tax_rate=Decimal(row["tax_rate"]),
        synced_at=datetime.fromisoformat(row["synced_at"]),
    )


class CatalogCache:
    """
    Local mirror of the last successful GET /products.

    Only a fallback: callers fetch remotely first and read from here when the backend
    is unreachable. Staleness is reported through `synced_at`, not enforced.
    """

    def __init__(self, db: LocalDatabase, now: Callable[[], datetime] = utcnow):
        self.db = db
        self._now = now

    def refresh(self, products: Iterable) -> int:
        synced_at = self._now().isoformat()
        count = 0
        with self.db.connect() as conn:
            for p in products or []:
                if not isinstance(p, CatalogProduct):
                    p = CatalogProduct.model_validate(p)
                conn.execute(
                    """
                    INSERT INTO product_cache (product_id, name, sku, price_gross_cents, tax_rate, synced_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(product_id) DO UPDATE SET
                      name=excluded.name,
                      sku=excluded.sku,
                      price_gross_cents=excluded.price_gross_cents,
                      tax_rate=excluded.tax_rate,
                      synced_at=excluded.synced_at
                    """,
                    (p.product_id, p.name, p.sku, p.price_gross_cents, str(p.tax_rate), synced_at),
                )
                count += 1
        return count

    def read_all(self) -> List[CatalogCacheEntry]:
        with self.db.connect() as conn:
            rows = conn.execute("SELECT * FROM product_cache ORDER BY name, product_id").fetchall()
        return [_row_to_entry(r) for r in rows]

    def get(self, product_id: str) -> Optional[CatalogCacheEntry]:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM product_cache WHERE product_id = ?", (product_id,)).fetchone()
        return _row_to_entry(row) if row else None

    def last_synced_at(self) -> Optional[datetime]:
        with self.db.connect() as conn:
            row = conn.execute("SELECT MAX(synced_at) FROM product_cache").fetchone()
        raw = row[0] if row else None
        return datetime.fromisoformat(raw) if raw else None
