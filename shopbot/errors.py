"""
Error taxonomy shared by the order model, the shop and the adapters.

Every error carries a message that can be shown to the buyer as-is.
"""
from __future__ import annotations
from typing import Optional


class ShopError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidItem(ShopError):
    pass


class InvalidIdentity(ShopError):
    pass


class IncompleteOrder(ShopError):
    pass


class AlreadyPaid(ShopError):
    def __init__(self, message: str = "Already paid - the order can no "
                                      "longer be changed.") -> None:
        super().__init__(message)


class NotFound(ShopError):
    pass


class Forbidden(ShopError):
    pass


class GatewayError(ShopError):
    pass


class FulfillmentError(ShopError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class CatalogError(ShopError):
    pass


class Rejected(ShopError):
    """Session registry refused to open a new ticket."""

    def __init__(self, message: str, *, existing: Optional[str] = None,
                 retry_after: float = 0.0) -> None:
        super().__init__(message)
        self.existing = existing
        self.retry_after = retry_after
