# payments/__init__.py
import os
from typing import Optional
import httpx

from ._base import (
    PaymentAdapter, CreateOrderResult,
    STATUS_CREATED, STATUS_APPROVED, STATUS_COMPLETED, STATUS_VOIDED,
)
from ._mock import MockPay
from ._paypal import PayPal

BACKEND = os.getenv("PAYMENT_BACKEND", "mock").lower()  # 'mock' | 'paypal'


def must(name: str) -> str:
    v = os.environ.get(name)
    if not v:
        raise RuntimeError(f"missing {name} in environment")
    return v


# Factory keeps server.py simple and constructor-agnostic:
def new_gateway(*, http: Optional[httpx.AsyncClient] = None) -> PaymentAdapter:
    if BACKEND == "paypal":
        if http is None:
            raise RuntimeError("PayPal gateway requires http=httpx.AsyncClient")
        return PayPal(
            http,
            client_id=must("PAYPAL_CLIENT_ID"),
            secret=must("PAYPAL_SECRET"),
            mode=os.getenv("PAYPAL_MODE", "sandbox").lower(),
            brand_name=os.getenv("PAYPAL_BRAND_NAME", "Shop"),
        )
    return MockPay()


__all__ = [
    "PaymentAdapter", "CreateOrderResult", "MockPay", "PayPal",
    "new_gateway", "BACKEND",
    "STATUS_CREATED", "STATUS_APPROVED", "STATUS_COMPLETED", "STATUS_VOIDED",
]
