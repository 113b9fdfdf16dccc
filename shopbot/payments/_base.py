from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, Optional, TypedDict

# processor order statuses the shop acts on; everything else is "pending"
STATUS_CREATED = "CREATED"
STATUS_APPROVED = "APPROVED"
STATUS_COMPLETED = "COMPLETED"
STATUS_VOIDED = "VOIDED"


class CreateOrderResult(TypedDict):
    order_id: str
    approval_link: Optional[str]


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class PaymentAdapter(ABC):
    mode: str = "mock"

    @abstractmethod
    async def create_order(
            self, amount: Decimal, description: str, reference: str,
            currency: str,
    ) -> CreateOrderResult: ...

    # -> {"id": ..., "status": ...}
    @abstractmethod
    async def get_order(self, order_id: str) -> Dict[str, Any]: ...

    # -> {"id": ..., "status": ...}; "COMPLETED" means captured
    @abstractmethod
    async def capture_order(self, order_id: str) -> Dict[str, Any]: ...
