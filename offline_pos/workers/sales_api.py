"""
Backend client used by checkout, the sync coordinator and the product lookup.

Every sale carries its client-generated id both in the body (`client_sale_id`) and in
the `Idempotency-Key` header, so re-submitting a sale the backend already stored has
no further effect.
"""
from __future__ import annotations

from typing import List, Optional

import httpx

from offline_pos.app.errors import SubmissionFailure
from offline_pos.app.schemas import CatalogProduct, SalePayload


def _failure_from_response(resp: httpx.Response) -> SubmissionFailure:
    body = resp.text or ""
    msg = f"http {resp.status_code} {resp.reason_phrase or ''}".strip()
    if body:
        msg = f"{msg}: {body[:1000]}"
    return SubmissionFailure(msg, status_code=resp.status_code)


def _duplicate_ack(resp: httpx.Response, sale_id: str) -> Optional[dict]:
    """
    A 409 is an ack only when the backend says it already holds this client_sale_id,
    either by echoing the id or by returning the existing record. Any other conflict
    (stock, business rules) is a failed submission.
    """
    try:
        data = resp.json() if resp.content else None
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    for candidate in (data, data.get("data"), data.get("existing"), data.get("sale")):
        if isinstance(candidate, dict) and str(candidate.get("client_sale_id") or "") == sale_id:
            return {"id": candidate.get("id"), "client_sale_id": sale_id, "duplicate": True}
    return None


class SalesApiClient:
    def __init__(
        self,
        base_url: str,
        device_id: str = "",
        device_token: str = "",
        timeout_s: float = 10.0,
    ):
        self.base_url = (base_url or "").strip().rstrip("/")
        self.device_id = device_id
        self.device_token = device_token
        self.timeout_s = timeout_s

    def device_headers(self) -> dict:
        return {
            "X-Device-Id": self.device_id or "",
            "X-Device-Token": self.device_token or "",
        }

    async def submit_sale(self, sale_id: str, payload: SalePayload) -> dict:
        """POST /sales. Returns the backend's record; raises SubmissionFailure otherwise."""
        if not self.base_url:
            raise SubmissionFailure("missing api_base_url")
        body = {"client_sale_id": sale_id, **payload.to_wire()}
        headers = {**self.device_headers(), "Idempotency-Key": sale_id}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                resp = await client.post(f"{self.base_url}/sales", json=body, headers=headers)
        except httpx.TimeoutException as ex:
            raise SubmissionFailure(f"timeout: {ex}") from ex
        except httpx.HTTPError as ex:
            raise SubmissionFailure(f"network error: {ex}") from ex

        if resp.status_code == 409:
            ack = _duplicate_ack(resp, sale_id)
            if ack is not None:
                return ack
            raise _failure_from_response(resp)
        if resp.status_code >= 400:
            raise _failure_from_response(resp)
        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = {"raw": resp.text}
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        return data if isinstance(data, dict) else {"raw": data}

    async def fetch_products(self) -> List[CatalogProduct]:
        """GET /products. Accepts a bare list or {"products": [...]} / {"data": [...]}."""
        if not self.base_url:
            raise SubmissionFailure("missing api_base_url")
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                resp = await client.get(f"{self.base_url}/products", headers=self.device_headers())
        except httpx.HTTPError as ex:
            raise SubmissionFailure(f"network error: {ex}") from ex
        if resp.status_code >= 400:
            raise _failure_from_response(resp)
        try:
            data = resp.json()
        except ValueError as ex:
            raise SubmissionFailure(f"invalid catalog response: {ex}") from ex
        rows = data
        if isinstance(data, dict):
            rows = data.get("products") or data.get("data") or []
        if not isinstance(rows, list):
            raise SubmissionFailure("invalid catalog response: expected a list of products")
        try:
            return [CatalogProduct.model_validate(r) for r in rows]
        except ValueError as ex:
            raise SubmissionFailure(f"invalid catalog response: {ex}") from ex

    async def health(self, timeout_s: Optional[float] = None) -> bool:
        if not self.base_url:
            return False
        try:
            async with httpx.AsyncClient(timeout=timeout_s or self.timeout_s) as client:
                resp = await client.get(f"{self.base_url}/health")
        except (httpx.HTTPError, httpx.InvalidURL):
            return False
        if resp.status_code >= 400:
            return False
        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            return True
        return bool((data or {}).get("ok", True)) if isinstance(data, dict) else True
