"""Pytest fixtures for the shop core: catalog, fake collaborators, shop."""
import asyncio
from typing import Any, Dict, List, Optional

import pytest

from shopbot.audit import AuditLog
from shopbot.catalog import CatalogStore, parse_catalog
from shopbot.errors import FulfillmentError, GatewayError
from shopbot.model.sessions._memory import SessionRegistry
from shopbot.payments import PaymentAdapter
from shopbot.shop import Shop

CATALOG_JSON = """
{
  "currency": "PLN",
  "products": [
    {"id": "key", "name": "Key", "price": 5.00, "minQty": 1, "maxQty": 10,
     "commands": ["give {player} key {amount}"]},
    {"id": "vip", "name": "VIP rank", "price": 19.99, "minQty": 1,
     "maxQty": 1,
     "commands": ["lp user {player} parent add vip", "say {player} is VIP"]},
    {"id": "gems", "name": "Gems", "price": 0.35, "minQty": 5,
     "maxQty": 500, "commands": ["eco give {player} {amount}"]}
  ]
}
"""


class ScriptedGateway(PaymentAdapter):
    """Payment processor whose answers are set by the test."""

    mode = "test"

    def __init__(self) -> None:
        self.status = "CREATED"
        self.capture_status = "COMPLETED"
        self.fail_with: Optional[str] = None
        self.created: List[Dict[str, Any]] = []
        self.get_calls = 0
        self.capture_calls = 0
        # set to an asyncio.Event to hold get_order() open
        self.gate: Optional[asyncio.Event] = None

    async def create_order(self, amount, description, reference, currency):
        if self.fail_with:
            raise GatewayError(self.fail_with)
        order_id = f"PO-{len(self.created) + 1}"
        self.created.append({
            "order_id": order_id, "amount": amount,
            "description": description, "reference": reference,
            "currency": currency,
        })
        return {"order_id": order_id,
                "approval_link": f"https://pay.example/{order_id}"}

    async def get_order(self, order_id):
        self.get_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with:
            raise GatewayError(self.fail_with)
        return {"id": order_id, "status": self.status}

    async def capture_order(self, order_id):
        self.capture_calls += 1
        return {"id": order_id, "status": self.capture_status}


class RecordingExecutor:
    """Fulfillment executor that records every attempt."""

    enabled = True

    def __init__(self) -> None:
        self.attempts: List[List[str]] = []
        self.fail_reason: Optional[str] = None

    async def execute(self, commands):
        self.attempts.append(list(commands))
        if self.fail_reason:
            raise FulfillmentError(self.fail_reason)


class FakeClock:
    def __init__(self, t: float = 1_700_000_000.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


@pytest.fixture
def catalog():
    return parse_catalog(CATALOG_JSON)


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def audit() -> AuditLog:
    return AuditLog()


@pytest.fixture
def sessions() -> SessionRegistry:
    return SessionRegistry(cooldown_seconds=60)


@pytest.fixture
def shop(catalog, sessions, gateway, executor, audit, clock) -> Shop:
    return Shop(
        CatalogStore("products.json", catalog=catalog),
        sessions, gateway, executor, audit,
        clock=clock,
    )
