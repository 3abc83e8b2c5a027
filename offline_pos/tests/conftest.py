import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest


# Allow running pytest from either the repo root or from within `offline_pos/`.
# Tests import `offline_pos.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from offline_pos.app.db import LocalDatabase
from offline_pos.app.errors import SubmissionFailure
from offline_pos.app.money import tax_from_gross_price
from offline_pos.app.schemas import SaleLine, SalePayload


class FakeClock:
    """Strictly increasing clock: every call advances one second."""

    def __init__(self, start=None):
        self.current = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.current = self.current + timedelta(seconds=1)
        return self.current


class FakeSalesClient:
    """
    Scripted stand-in for SalesApiClient.

    `script[sale_id]` is a list of outcomes consumed one per submission:
    "ok", "fail" (SubmissionFailure), "boom" (an unexpected client error) or
    "hang" (never answers in time).
    """

    def __init__(self, online=True, script=None):
        self.online = online
        self.script = script or {}
        self.calls = []
        self.default = "ok"

    async def submit_sale(self, sale_id, payload):
        self.calls.append(sale_id)
        steps = self.script.get(sale_id)
        outcome = steps.pop(0) if steps else self.default
        if outcome == "fail":
            raise SubmissionFailure("http 503 Service Unavailable", status_code=503)
        if outcome == "boom":
            raise RuntimeError("boom")
        if outcome == "hang":
            await asyncio.sleep(30)
        return {"id": f"srv-{sale_id}", "client_sale_id": sale_id}

    async def health(self, timeout_s=None):
        return self.online


def sale_payload(gross_cents=1000, quantity=1, tax_rate="0.21", product_id="p1") -> SalePayload:
    line_total = gross_cents * quantity
    tax = tax_from_gross_price(line_total, Decimal(tax_rate))
    return SalePayload(
        lines=[
            SaleLine(
                product_id=product_id,
                name="Item",
                quantity=quantity,
                unit_gross_price_cents=gross_cents,
                tax_rate=tax_rate,
                line_total_cents=line_total,
                tax_cents=tax,
            )
        ],
        subtotal_cents=line_total,
        tax_cents=tax,
        total_cents=line_total,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path):
    d = LocalDatabase(str(tmp_path / "pos.sqlite"))
    d.init_schema()
    return d


@pytest.fixture
def fake_client():
    return FakeSalesClient()


@pytest.fixture
def make_payload():
    return sale_payload
