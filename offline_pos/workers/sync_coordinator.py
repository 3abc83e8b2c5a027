"""
Drains the pending-sales queue against POST /sales.

Per record:   QUEUED -> SUBMITTING -> ACKED (removed) | FAILED (back to QUEUED, attempts + 1)
Coordinator:  IDLE -> DRAINING -> IDLE

Records are submitted one at a time in enqueue order. A failing record is marked and
skipped so the sales behind it still go out; so is a record whose row cannot be read,
which is reported in SyncState.last_error and left in the table. Client errors and
timeouts never leave this module; store errors are recorded in SyncState and re-raised.
"""
from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from offline_pos.app.errors import StoreCorruption, SubmissionFailure
from offline_pos.app.logs import json_log
from offline_pos.app.pending_sales import PendingSale, PendingSaleStore
from offline_pos.app.schemas import utcnow
from offline_pos.app.sync_state import SyncStatusBoard, SyncStatusView

from .reachability import ReachabilityEdge


class CoordinatorState(str, enum.Enum):
    IDLE = "idle"
    DRAINING = "draining"


class RecordState(str, enum.Enum):
    QUEUED = "queued"
    SUBMITTING = "submitting"
    ACKED = "acked"
    FAILED = "failed"


@dataclass
class DrainReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    acked: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    unreadable: List[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.acked) + len(self.failed)


class SyncCoordinator:
    def __init__(
        self,
        store: PendingSaleStore,
        client,
        board: Optional[SyncStatusBoard] = None,
        submit_timeout_s: float = 10.0,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.client = client
        self._board = board or SyncStatusBoard()
        self.submit_timeout_s = submit_timeout_s
        self._now = now
        self._edge = ReachabilityEdge()
        self._lock = asyncio.Lock()
        self.state = CoordinatorState.IDLE

    @property
    def status(self) -> SyncStatusView:
        return self._board.view()

    @property
    def is_online(self) -> bool:
        return self._edge.online

    async def notify_reachability(self, online: bool) -> Optional[DrainReport]:
        """Feed a reachability observation; only an offline->online edge starts a drain."""
        if not self._edge.observe(online):
            return None
        json_log("info", "sync.reachability.online")
        return await self.drain()

    async def retry_sync(self) -> Optional[DrainReport]:
        """Manual "retry sync" from the UI; same drain as the automatic trigger."""
        return await self.drain()

    async def refresh_pending_count(self) -> int:
        count = await asyncio.to_thread(self.store.count)
        self._board.update(pending_count=count)
        return count

    async def drain(self) -> Optional[DrainReport]:
        if self._lock.locked():
            json_log("info", "sync.drain.skipped", reason="already draining")
            return None
        async with self._lock:
            self.state = CoordinatorState.DRAINING
            self._board.update(is_syncing=True)
            report = DrainReport(started_at=self._now())
            try:
                records, unreadable = await asyncio.to_thread(self.store.scan_pending)
                self._board.update(pending_count=len(records) + len(unreadable))
                json_log("info", "sync.drain.start", pending=len(records), unreadable=len(unreadable))
                for sale_id, reason in unreadable:
                    report.unreadable.append(sale_id)
                    json_log("error", "sync.record.unreadable", sale_id=sale_id, error=reason)
                for rec in records:
                    if await self._submit_one(rec):
                        report.acked.append(rec.id)
                    else:
                        report.failed.append(rec.id)
                # Sales queued by checkout while we were draining are picked up next pass.
                remaining = await asyncio.to_thread(self.store.count)
                report.finished_at = self._now()
                # Unreadable rows stay queued and keep being reported until someone repairs them.
                last_error = unreadable[0][1] if unreadable else None
                if len(unreadable) > 1:
                    last_error = f"{last_error} (+{len(unreadable) - 1} more unreadable)"
                self._board.update(last_sync_at=report.finished_at, pending_count=remaining, last_error=last_error)
                json_log(
                    "info",
                    "sync.drain.done",
                    acked=len(report.acked),
                    failed=len(report.failed),
                    unreadable=len(report.unreadable),
                    remaining=remaining,
                )
                return report
            except StoreCorruption as ex:
                self._board.update(last_error=str(ex))
                json_log("error", "sync.drain.store_error", error=str(ex))
                raise
            finally:
                self._board.update(is_syncing=False)
                self.state = CoordinatorState.IDLE

    async def _submit_one(self, rec: PendingSale) -> bool:
        json_log("info", "sync.record.state", sale_id=rec.id, state=RecordState.SUBMITTING.value, attempts=rec.attempts)
        error = None
        try:
            await asyncio.wait_for(self.client.submit_sale(rec.id, rec.payload), timeout=self.submit_timeout_s)
        except asyncio.TimeoutError:
            # Outcome unknown; the stable id lets the backend drop the duplicate on retry.
            error = f"timeout after {self.submit_timeout_s}s"
        except SubmissionFailure as ex:
            error = str(ex) or "submission failed"
        except Exception as ex:
            # Anything else the client throws is still a failed attempt for this record only.
            error = f"{type(ex).__name__}: {ex}"

        if error is not None:
            await asyncio.to_thread(self.store.mark_attempt, rec.id, error)
            json_log(
                "warning",
                "sync.record.failed",
                sale_id=rec.id,
                state=RecordState.FAILED.value,
                attempts=rec.attempts + 1,
                error=error,
            )
            return False

        await asyncio.to_thread(self.store.remove, rec.id)
        self._board.update(pending_count=self._board.state.pending_count - 1)
        json_log("info", "sync.record.acked", sale_id=rec.id, state=RecordState.ACKED.value)
        return True


async def run_periodic_sync(coordinator: SyncCoordinator, interval_s: float, stop: asyncio.Event):
    """Timer-driven drain for sales queued while already online (no reachability edge)."""
    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_s)
            return
        except asyncio.TimeoutError:
            pass
        snap = coordinator.status.snapshot
        if not coordinator.is_online or snap.is_syncing or snap.pending_count <= 0:
            continue
        try:
            await coordinator.drain()
        except StoreCorruption as ex:
            json_log("error", "sync.periodic.store_error", error=str(ex))
        except Exception as ex:
            json_log("error", "sync.periodic.drain_failed", error=f"{type(ex).__name__}: {ex}")
