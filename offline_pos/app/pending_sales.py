"""
Durable queue of sales that could not be submitted immediately.

A record is visible from enqueue() until remove(); remove() is only called once the
backend acknowledged the sale. The id is stable across retries so the backend can
deduplicate a sale that was stored before an ambiguous failure (e.g. a timeout).
"""
from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from .db import LocalDatabase
from .errors import StoreCorruption
from .schemas import SalePayload, load_sale_payload, utcnow


@dataclass(frozen=True)
class PendingSale:
    id: str
    payload: SalePayload
    created_at: datetime
    attempts: int = 0
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None


def _parse_ts(raw) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    text = str(raw)
    if text.isdigit():
        return datetime.fromtimestamp(int(text) / 1000, tz=timezone.utc)
    return datetime.fromisoformat(text)


def _row_to_pending(row) -> PendingSale:
    sale_id = row["id"]
    try:
        payload = load_sale_payload(row["payload_json"])
        created_at = _parse_ts(row["created_at"])
        last_attempt_at = _parse_ts(row["last_attempt_at"])
    except ValueError as ex:
        raise StoreCorruption(f"pending sale {sale_id} is unreadable: {ex}") from ex
    return PendingSale(
        id=sale_id,
        payload=payload,
        created_at=created_at,
        attempts=int(row["attempts"] or 0),
        last_error=row["last_error"],
        last_attempt_at=last_attempt_at,
    )


class PendingSaleStore:
    def __init__(self, db: LocalDatabase, now: Callable[[], datetime] = utcnow):
        self.db = db
        self._now = now

    def enqueue(self, payload, sale_id: Optional[str] = None, last_error: Optional[str] = None) -> PendingSale:
        if not isinstance(payload, SalePayload):
            payload = load_sale_payload(payload)
        # Must be a UUID string; the backend keys idempotency on it.
        sale_id = str(uuid.UUID(str(sale_id))) if sale_id else str(uuid.uuid4())
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO pending_sales (id, payload_json, created_at, attempts, last_error)
                VALUES (?, ?, ?, 0, ?)
                ON CONFLICT(id) DO NOTHING
                """,
                (sale_id, json.dumps(payload.to_wire()), self._now().isoformat(), last_error),
            )
            row = conn.execute("SELECT * FROM pending_sales WHERE id = ?", (sale_id,)).fetchone()
        if row is None:
            raise StoreCorruption(f"pending sale {sale_id} was not persisted")
        return _row_to_pending(row)

    def _fifo_rows(self):
        with self.db.connect() as conn:
            return conn.execute(
                """
                SELECT id, payload_json, created_at, attempts, last_error, last_attempt_at
                FROM pending_sales
                ORDER BY created_at ASC, rowid ASC
                """
            ).fetchall()

    def list_pending(self) -> List[PendingSale]:
        return [_row_to_pending(r) for r in self._fifo_rows()]

    def scan_pending(self) -> Tuple[List[PendingSale], List[Tuple[str, str]]]:
        """
        FIFO records for the drain, plus `(id, error)` for rows that cannot be read.

        Unreadable rows stay in the table untouched so they can be inspected and
        repaired; they never hold back the readable sales behind them.
        """
        records = []
        unreadable = []
        for r in self._fifo_rows():
            try:
                records.append(_row_to_pending(r))
            except StoreCorruption as ex:
                unreadable.append((r["id"], str(ex)))
        return records, unreadable

    def get(self, sale_id: str) -> Optional[PendingSale]:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM pending_sales WHERE id = ?", (sale_id,)).fetchone()
        return _row_to_pending(row) if row else None

    def count(self) -> int:
        with self.db.connect() as conn:
            row = conn.execute("SELECT COUNT(1) FROM pending_sales").fetchone()
        return int(row[0] if row else 0)

    def mark_attempt(self, sale_id: str, error: Optional[str] = None) -> bool:
        with self.db.connect() as conn:
            cur = conn.execute(
                """
                UPDATE pending_sales
                SET attempts = attempts + 1,
                    last_attempt_at = ?,
                    last_error = COALESCE(?, last_error)
                WHERE id = ?
                """,
                (self._now().isoformat(), (error or None) and str(error)[:1000], sale_id),
            )
            return cur.rowcount > 0

    def remove(self, sale_id: str) -> bool:
        with self.db.connect() as conn:
            cur = conn.execute("DELETE FROM pending_sales WHERE id = ?", (sale_id,))
            return cur.rowcount > 0
