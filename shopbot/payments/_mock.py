from decimal import Decimal
from typing import Any, Dict
import uuid

from ..errors import GatewayError, NotFound
from ..helpers import now_ts
from ._base import (
    PaymentAdapter, CreateOrderResult,
    STATUS_CREATED, STATUS_APPROVED, STATUS_COMPLETED, STATUS_VOIDED,
)

# what the mockpay screen may emit -> resulting processor status
EMIT_KINDS = {
    "approved": STATUS_APPROVED,
    "completed": STATUS_COMPLETED,
    "voided": STATUS_VOIDED,
}


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentAdapter):
    """In-process payment processor; the buyer is simulated via emit()."""

    mode = "mock"

    def __init__(self) -> None:
        self.orders: Dict[str, Dict[str, Any]] = {}

    async def create_order(
            self, amount: Decimal, description: str, reference: str,
            currency: str,
    ) -> CreateOrderResult:
        psid = f"mock_{uuid.uuid4().hex}"
        self.orders[psid] = {
            "id": psid,
            "status": STATUS_CREATED,
            "amount": str(amount),
            "currency": currency,
            "description": description,
            "reference": reference,
            "created_at": now_ts(),
        }
        return {"order_id": psid, "approval_link": f"/mockpay/{psid}"}

    def _get(self, psid: str) -> Dict[str, Any]:
        po = self.orders.get(psid)
        if po is None:
            raise GatewayError(f"MockPay: unknown order {psid}")
        return po

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        return dict(self._get(order_id))

    async def capture_order(self, order_id: str) -> Dict[str, Any]:
        po = self._get(order_id)
        if po["status"] == STATUS_APPROVED:
            po["status"] = STATUS_COMPLETED
        return {"id": order_id, "status": po["status"]}

    def emit(self, psid: str, kind: str) -> Dict[str, Any]:
        po = self.orders.get(psid)
        if po is None:
            raise NotFound("payment session not found")
        if kind not in EMIT_KINDS:
            raise ValueError(f"invalid kind: {kind}")
        po["status"] = EMIT_KINDS[kind]
        return dict(po)
