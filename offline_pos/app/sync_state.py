from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, List, Optional


@dataclass(frozen=True)
class SyncState:
    is_syncing: bool = False
    last_sync_at: Optional[datetime] = None
    pending_count: int = 0
    last_error: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "is_syncing": self.is_syncing,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "pending_count": self.pending_count,
            "last_error": self.last_error,
        }


Listener = Callable[[SyncState], None]


class SyncStatusView:
    """Read-only handle given to the UI: current snapshot plus change notifications."""

    def __init__(self, board: "SyncStatusBoard"):
        self._board = board

    @property
    def snapshot(self) -> SyncState:
        return self._board.state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self._board.subscribe(listener)


class SyncStatusBoard:
    """
    Owner of the process-wide SyncState.

    Only the sync coordinator holds the board; everything else gets a SyncStatusView.
    """

    def __init__(self, initial: Optional[SyncState] = None):
        self._state = initial or SyncState()
        self._listeners: List[Listener] = []

    @property
    def state(self) -> SyncState:
        return self._state

    def view(self) -> SyncStatusView:
        return SyncStatusView(self)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def update(self, **changes) -> SyncState:
        if "pending_count" in changes:
            changes["pending_count"] = max(0, int(changes["pending_count"]))
        new_state = replace(self._state, **changes)
        if new_state == self._state:
            return self._state
        self._state = new_state
        for listener in list(self._listeners):
            listener(new_state)
        return new_state
