"""
Error taxonomy for the transaction core.

Caller mistakes (bad discounts, bad line items, empty carts) are ValueErrors and are
rejected at the cart/checkout boundary. Network problems become SubmissionFailure and
stay inside the sync path. StoreCorruption is the one error that must reach the user:
if the local store cannot be read or written, queued sales are at risk.
"""
from typing import Optional


class PosCoreError(Exception):
    pass


class InvalidDiscount(PosCoreError, ValueError):
    pass


class InvalidLineItem(PosCoreError, ValueError):
    pass


class EmptyCart(PosCoreError, ValueError):
    pass


class InvalidTender(PosCoreError, ValueError):
    pass


class InsufficientStock(PosCoreError):
    # Raised by the inventory collaborator; the cart never bounds quantities itself.
    def __init__(self, product_id: str, requested: int, available: int):
        super().__init__(f"insufficient stock for {product_id}: requested {requested}, available {available}")
        self.product_id = product_id
        self.requested = requested
        self.available = available


class SubmissionFailure(PosCoreError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StoreCorruption(PosCoreError):
    pass
