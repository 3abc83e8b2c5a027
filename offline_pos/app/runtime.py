from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional

from offline_pos.workers.product_lookup import ProductLookup
from offline_pos.workers.reachability import watch_reachability
from offline_pos.workers.sales_api import SalesApiClient
from offline_pos.workers.sync_coordinator import SyncCoordinator, run_periodic_sync

from .cart import Cart, CartSnapshotStore
from .catalog_cache import CatalogCache
from .checkout import CheckoutService
from .config import Settings, settings as default_settings
from .db import LocalDatabase
from .pending_sales import PendingSaleStore
from .sync_state import SyncState, SyncStatusBoard


@dataclass
class Runtime:
    """Process-wide objects: one database, one queue, one coordinator, one cart per session."""

    settings: Settings
    db: LocalDatabase
    cart: Cart
    catalog: CatalogCache
    store: PendingSaleStore
    client: SalesApiClient
    coordinator: SyncCoordinator
    checkout: CheckoutService
    products: ProductLookup
    _stop: Optional[asyncio.Event] = field(default=None, init=False)
    _tasks: List[asyncio.Task] = field(default_factory=list, init=False)

    def start_background(self):
        """Start the reachability watcher and the periodic drain timer on the running loop."""
        self._stop = asyncio.Event()
        self._tasks = [
            asyncio.create_task(
                watch_reachability(
                    self.client,
                    self.coordinator,
                    self.settings.probe_interval_s,
                    self._stop,
                    timeout_s=self.settings.health_timeout_s,
                )
            ),
            asyncio.create_task(run_periodic_sync(self.coordinator, self.settings.sync_interval_s, self._stop)),
        ]

    async def stop_background(self):
        if self._stop is not None:
            self._stop.set()
        for task in self._tasks:
            try:
                await asyncio.wait_for(task, timeout=max(1.0, self.settings.submit_timeout_s))
            except asyncio.TimeoutError:
                task.cancel()
        self._tasks = []


def build_runtime(cfg: Optional[Settings] = None) -> Runtime:
    cfg = cfg or default_settings
    db = LocalDatabase(cfg.db_path)
    db.init_schema()

    store = PendingSaleStore(db)
    client = SalesApiClient(
        cfg.api_base_url,
        device_id=cfg.device_id,
        device_token=cfg.device_token,
        timeout_s=cfg.submit_timeout_s,
    )
    # Sales queued before a restart count as pending right away.
    board = SyncStatusBoard(SyncState(pending_count=store.count()))
    coordinator = SyncCoordinator(store, client, board, submit_timeout_s=cfg.submit_timeout_s)
    cart = Cart.restore(cfg.session_id, CartSnapshotStore(db), location_id=cfg.location_id)
    catalog = CatalogCache(db)
    return Runtime(
        settings=cfg,
        db=db,
        cart=cart,
        catalog=catalog,
        store=store,
        client=client,
        coordinator=coordinator,
        checkout=CheckoutService(cart, client, store, coordinator, submit_timeout_s=cfg.submit_timeout_s),
        products=ProductLookup(client, catalog),
    )
