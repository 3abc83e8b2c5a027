import os
import sqlite3
from contextlib import contextmanager

from .errors import StoreCorruption

SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "sqlite_schema.sql")

# Columns added after the first release of each table. CREATE TABLE IF NOT EXISTS
# does not add new columns, so older local databases are patched on startup.
_COLUMN_MIGRATIONS = {
    "pending_sales": {
        "attempts": "INTEGER NOT NULL DEFAULT 0",
        "last_error": "TEXT",
        "last_attempt_at": "TEXT",
    },
}


class LocalDatabase:
    """A SQLite file holding the cart, the pending sales queue and the product cache."""

    def __init__(self, path: str, timeout_s: float = 5.0):
        self.path = path
        self.timeout_s = timeout_s

    @contextmanager
    def connect(self):
        """
        Yield a connection that commits on success and rolls back on error.

        Every sqlite3 failure is re-raised as StoreCorruption: a store that cannot be
        read or written threatens queued sales and must be surfaced, not retried blindly.
        """
        try:
            conn = sqlite3.connect(self.path, timeout=self.timeout_s)
        except sqlite3.Error as ex:
            raise StoreCorruption(f"cannot open local store {self.path}: {ex}") from ex
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as ex:
            raise StoreCorruption(f"local store error: {ex}") from ex
        finally:
            conn.close()

    def init_schema(self):
        if not os.path.exists(SCHEMA_PATH):
            raise RuntimeError(f"Missing schema file: {SCHEMA_PATH}")
        with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
            schema = f.read()
        folder = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(folder, exist_ok=True)
        with self.connect() as conn:
            conn.executescript(schema)
            # The first queue layout stored the payload in a `data` column with epoch-ms timestamps.
            pending_cols = {r[1] for r in conn.execute("PRAGMA table_info(pending_sales)").fetchall()}
            if "payload_json" not in pending_cols and "data" in pending_cols:
                conn.execute("ALTER TABLE pending_sales RENAME TO pending_sales_v0")
                conn.execute("DROP INDEX IF EXISTS idx_pending_sales_created_at")
                conn.executescript(schema)
                conn.execute(
                    """
                    INSERT INTO pending_sales (id, payload_json, created_at, attempts)
                    SELECT id, data, strftime('%Y-%m-%dT%H:%M:%f+00:00', created_at / 1000.0, 'unixepoch'), 0
                    FROM pending_sales_v0
                    """
                )
                conn.execute("DROP TABLE pending_sales_v0")
            for table, wanted in _COLUMN_MIGRATIONS.items():
                cols = {r[1] for r in conn.execute(f"PRAGMA table_info({table})").fetchall()}
                for col, ddl in wanted.items():
                    if col not in cols:
                        conn.execute(f"ALTER TABLE {table} ADD COLUMN {col} {ddl}")
