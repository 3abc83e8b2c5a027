from __future__ import annotations

import asyncio
from typing import Optional

from offline_pos.app.logs import json_log


class ReachabilityEdge:
    """
    Turns level observations ("online"/"offline") into offline->online edges.

    Starts offline, so the first online observation after process start is an edge
    and drains whatever survived the restart.
    """

    def __init__(self, online: bool = False):
        self._online = online

    @property
    def online(self) -> bool:
        return self._online

    def observe(self, online: bool) -> bool:
        was_online = self._online
        self._online = bool(online)
        return self._online and not was_online


async def watch_reachability(client, coordinator, interval_s: float, stop: asyncio.Event, timeout_s: Optional[float] = None):
    """Probe GET /health every `interval_s` and feed the result to the coordinator."""
    while not stop.is_set():
        try:
            online = await client.health(timeout_s=timeout_s)
        except Exception as ex:
            # A health check that cannot even be sent (bad base URL, ...) counts as offline.
            json_log("error", "sync.reachability.health_failed", error=f"{type(ex).__name__}: {ex}")
            online = False
        try:
            await coordinator.notify_reachability(online)
        except Exception as ex:
            # Store errors are already recorded in SyncState by the coordinator; keep probing.
            json_log("error", "sync.reachability.drain_failed", error=str(ex))
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_s)
        except asyncio.TimeoutError:
            pass
