import json
import sqlite3
import uuid
from decimal import Decimal

import pytest

from offline_pos.app.db import LocalDatabase
from offline_pos.app.errors import StoreCorruption
from offline_pos.app.pending_sales import PendingSaleStore

LEGACY_PAYLOAD = {
    "items": [{"productId": "p1", "name": "Yerba", "unitPriceCents": 1000, "quantity": 3, "taxRate": 0.21}],
    "discountCents": 300,
    "paymentMethod": "Cash",
    "customerName": "Ana",
    "createdAt": 1700000000000,
}


def test_enqueue_then_list_round_trip(db, clock, make_payload):
    store = PendingSaleStore(db, now=clock)
    payload = make_payload()
    rec = store.enqueue(payload)
    pending = store.list_pending()
    assert len(pending) == 1
    assert pending[0].id == rec.id
    assert pending[0].attempts == 0
    assert pending[0].last_error is None
    assert pending[0].payload.to_wire() == payload.to_wire()
    assert uuid.UUID(rec.id)


def test_list_pending_is_fifo(db, clock, make_payload):
    store = PendingSaleStore(db, now=clock)
    ids = [store.enqueue(make_payload(gross_cents=100 * (i + 1))).id for i in range(4)]
    assert [r.id for r in store.list_pending()] == ids
    assert store.count() == 4


def test_mark_attempt_and_remove(db, clock, make_payload):
    store = PendingSaleStore(db, now=clock)
    rec = store.enqueue(make_payload())
    assert store.mark_attempt(rec.id, "http 503") is True
    assert store.mark_attempt(rec.id) is True
    got = store.get(rec.id)
    assert got.attempts == 2
    assert got.last_error == "http 503"
    assert got.last_attempt_at is not None
    assert store.remove(rec.id) is True
    assert store.remove(rec.id) is False
    assert store.mark_attempt(rec.id, "x") is False
    assert store.list_pending() == []


def test_enqueue_same_id_does_not_duplicate(db, clock, make_payload):
    store = PendingSaleStore(db, now=clock)
    sale_id = str(uuid.uuid4())
    first = store.enqueue(make_payload(), sale_id=sale_id, last_error="timeout")
    again = store.enqueue(make_payload(gross_cents=5), sale_id=sale_id)
    assert store.count() == 1
    assert again.id == first.id
    assert again.payload.total_cents == 1000
    assert again.last_error == "timeout"


def test_enqueue_rejects_non_uuid_id(db, make_payload):
    store = PendingSaleStore(db)
    with pytest.raises(ValueError):
        store.enqueue(make_payload(), sale_id="sale-1")


def test_untagged_payload_is_migrated_on_enqueue(db, clock):
    store = PendingSaleStore(db, now=clock)
    rec = store.enqueue(LEGACY_PAYLOAD)
    p = rec.payload
    assert p.kind == "sale" and p.schema_version == 1
    assert (p.subtotal_cents, p.discount_cents, p.total_cents, p.tax_cents) == (3000, 300, 2700, 469)
    assert p.discount_percent == Decimal("10.00")
    assert p.payment_method == "cash"
    assert p.customer.name == "Ana"


def test_legacy_queue_table_is_migrated(tmp_path):
    path = str(tmp_path / "old.sqlite")
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE pending_sales (id TEXT PRIMARY KEY, data TEXT NOT NULL, created_at INTEGER NOT NULL)")
    conn.execute("INSERT INTO pending_sales VALUES (?, ?, ?)", ("legacy-2", json.dumps(LEGACY_PAYLOAD), 1700000005000))
    conn.execute("INSERT INTO pending_sales VALUES (?, ?, ?)", ("legacy-1", json.dumps(LEGACY_PAYLOAD), 1700000001000))
    conn.commit()
    conn.close()

    db = LocalDatabase(path)
    db.init_schema()
    db.init_schema()
    store = PendingSaleStore(db)
    pending = store.list_pending()
    assert [r.id for r in pending] == ["legacy-1", "legacy-2"]
    assert pending[0].created_at.year == 2023
    assert pending[0].attempts == 0
    assert pending[0].payload.total_cents == 2700


def test_unknown_payload_version_is_rejected(db):
    store = PendingSaleStore(db)
    with pytest.raises(ValueError):
        store.enqueue({"kind": "sale", "schema_version": 7})


def test_unreadable_record_raises_store_corruption(db):
    with db.connect() as conn:
        conn.execute(
            "INSERT INTO pending_sales (id, payload_json, created_at) VALUES (?, ?, ?)",
            (str(uuid.uuid4()), "{broken", "2026-01-01T00:00:00+00:00"),
        )
    store = PendingSaleStore(db)
    with pytest.raises(StoreCorruption):
        store.list_pending()


def test_unopenable_database_raises_store_corruption(tmp_path):
    db = LocalDatabase(str(tmp_path / "missing-dir" / "nested" / "pos.sqlite"))
    with pytest.raises(StoreCorruption):
        PendingSaleStore(db).count()


def test_scan_pending_separates_unreadable_rows(db, clock, make_payload):
    store = PendingSaleStore(db, now=clock)
    first = store.enqueue(make_payload())
    bad_id = str(uuid.uuid4())
    with db.connect() as conn:
        conn.execute(
            "INSERT INTO pending_sales (id, payload_json, created_at) VALUES (?, ?, ?)",
            (bad_id, '{"schema_version": 9}', clock().isoformat()),
        )
    last = store.enqueue(make_payload(gross_cents=250))

    records, unreadable = store.scan_pending()

    assert [r.id for r in records] == [first.id, last.id]
    assert [sale_id for sale_id, _ in unreadable] == [bad_id]
    assert "unsupported sale payload version" in unreadable[0][1]
    assert store.count() == 3
