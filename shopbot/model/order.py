"""
Order model: one immutable record per ticket plus the pure transitions.

Every transition takes the current Order and returns a new one, or raises a
ShopError and leaves the caller's record untouched. No I/O happens here; the
Shop performs the gateway / fulfillment calls and feeds their results back
through payment_created(), mark_paid(), mark_delivered() and
mark_delivery_failed().

Payment and delivery are modelled as nested variants instead of independent
flags:

    checkout    -- processor order issued, not paid yet (None when no link)
    settlement  -- set once paid; carries the delivery state

so a delivered-but-unpaid order cannot be expressed.
"""
from __future__ import annotations
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from ..catalog import Catalog, CatalogItem
from ..errors import (
    AlreadyPaid, IncompleteOrder, InvalidIdentity, InvalidItem, NotFound,
)
from ..helpers import clamp, is_valid_identity, money
from ..payments._base import STATUS_APPROVED, STATUS_COMPLETED


class PaymentState(str, Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"


class DeliveryState(str, Enum):
    NOT_ATTEMPTED = "NOT_ATTEMPTED"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


class OrderPhase(str, Enum):
    EMPTY = "EMPTY"
    CONFIGURING = "CONFIGURING"
    PRICED = "PRICED"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PAID_UNDELIVERED = "PAID_UNDELIVERED"
    FAILED_DELIVERY = "FAILED_DELIVERY"
    DELIVERED = "DELIVERED"
    CLOSED = "CLOSED"


# processor status -> what check_payment has to do next
NEXT_PENDING = "pending"
NEXT_CAPTURE = "capture"
NEXT_SETTLE = "settle"


@dataclass(frozen=True, slots=True)
class PaymentRequest:
    amount: Decimal
    description: str
    reference: str


@dataclass(frozen=True, slots=True)
class Checkout:
    ref: str
    reference: str
    amount: Decimal
    approval_link: Optional[str]
    created_at: float


@dataclass(frozen=True, slots=True)
class Delivery:
    state: DeliveryState = DeliveryState.NOT_ATTEMPTED
    reason: Optional[str] = None
    at: Optional[float] = None


@dataclass(frozen=True, slots=True)
class Settlement:
    ref: str
    amount: Decimal
    paid_at: float
    delivery: Delivery = field(default_factory=Delivery)


@dataclass(frozen=True, slots=True)
class Order:
    owner: str
    item: Optional[CatalogItem] = None
    qty: int = 1
    identity: Optional[str] = None
    checkout: Optional[Checkout] = None
    settlement: Optional[Settlement] = None
    closed: bool = False

    @property
    def payment_state(self) -> PaymentState:
        if self.settlement is not None:
            return PaymentState.PAID
        return PaymentState.UNPAID

    @property
    def paid(self) -> bool:
        return self.settlement is not None

    @property
    def payment_ref(self) -> Optional[str]:
        if self.settlement is not None:
            return self.settlement.ref
        if self.checkout is not None:
            return self.checkout.ref
        return None

    @property
    def paid_at(self) -> Optional[float]:
        return self.settlement.paid_at if self.settlement else None

    @property
    def delivery(self) -> Delivery:
        if self.settlement is None:
            return Delivery()
        return self.settlement.delivery

    @property
    def delivered_at(self) -> Optional[float]:
        return self.delivery.at

    @property
    def phase(self) -> OrderPhase:
        if self.closed:
            return OrderPhase.CLOSED
        if self.settlement is not None:
            state = self.settlement.delivery.state
            if state is DeliveryState.DELIVERED:
                return OrderPhase.DELIVERED
            if state is DeliveryState.FAILED:
                return OrderPhase.FAILED_DELIVERY
            return OrderPhase.PAID_UNDELIVERED
        if self.checkout is not None:
            return OrderPhase.AWAITING_PAYMENT
        if self.item is not None and self.identity is not None:
            return OrderPhase.PRICED
        if self.item is not None or self.identity is not None:
            return OrderPhase.CONFIGURING
        return OrderPhase.EMPTY

    @property
    def total(self) -> Optional[Decimal]:
        if self.item is None:
            return None
        return money(self.item.price * self.qty)


def new_order(owner: str) -> Order:
    return Order(owner=owner)


# ----------------------------
# Guards
# ----------------------------
def _ensure_open(order: Order) -> None:
    if order.closed:
        raise NotFound("This ticket is closed.")


def _ensure_unpaid(order: Order) -> None:
    _ensure_open(order)
    if order.paid:
        raise AlreadyPaid()


# ----------------------------
# Cart transitions (unpaid only; each one drops the stale checkout)
# ----------------------------
def select_item(order: Order, catalog: Catalog, item_id: str) -> Order:
    _ensure_unpaid(order)
    item = catalog.get(item_id)
    if item is None:
        raise InvalidItem(f"Unknown item: {item_id}")
    return replace(
        order,
        item=item,
        qty=clamp(order.qty, item.min_qty, item.max_qty),
        checkout=None,
    )


def adjust_quantity(order: Order, delta: int) -> Order:
    _ensure_unpaid(order)
    if order.item is None:
        raise IncompleteOrder("Pick an item first.")
    item = order.item
    return replace(
        order,
        qty=clamp(order.qty + delta, item.min_qty, item.max_qty),
        checkout=None,
    )


def set_identity(order: Order, raw: Optional[str]) -> Order:
    _ensure_unpaid(order)
    identity = (raw or "").strip()
    if not is_valid_identity(identity):
        raise InvalidIdentity(
            "Invalid nick. Allowed: 3-16 characters, letters, digits and _."
        )
    return replace(order, identity=identity, checkout=None)


def reset_payment(order: Order) -> Order:
    _ensure_unpaid(order)
    return replace(order, checkout=None)


def reset_cart(order: Order) -> Order:
    _ensure_unpaid(order)
    return Order(owner=order.owner)


def close(order: Order) -> Order:
    return replace(order, closed=True)


# ----------------------------
# Payment
# ----------------------------
def payment_request(order: Order, reference: str) -> PaymentRequest:
    _ensure_unpaid(order)
    if order.item is None:
        raise IncompleteOrder("Pick an item first.")
    if order.identity is None:
        raise IncompleteOrder("Enter your nick first.")
    return PaymentRequest(
        amount=order.total,
        description=f"{order.item.name} x{order.qty} for {order.identity}",
        reference=reference,
    )


def payment_created(order: Order, request: PaymentRequest, ref: str,
                    approval_link: Optional[str], now: float) -> Order:
    # a second call simply supersedes the previous processor order
    _ensure_unpaid(order)
    return replace(order, checkout=Checkout(
        ref=ref,
        reference=request.reference,
        amount=request.amount,
        approval_link=approval_link,
        created_at=now,
    ))


def ensure_checkable(order: Order) -> Checkout:
    _ensure_open(order)
    if order.checkout is None:
        raise IncompleteOrder("There is no payment to check.")
    return order.checkout


def next_step(status: Optional[str]) -> str:
    if status == STATUS_COMPLETED:
        return NEXT_SETTLE
    if status == STATUS_APPROVED:
        return NEXT_CAPTURE
    return NEXT_PENDING


def mark_paid(order: Order, now: float) -> Order:
    _ensure_unpaid(order)
    checkout = ensure_checkable(order)
    return replace(order, checkout=None, settlement=Settlement(
        ref=checkout.ref,
        amount=checkout.amount,
        paid_at=now,
    ))


# ----------------------------
# Delivery (paid only)
# ----------------------------
def delivery_commands(order: Order) -> List[str]:
    _ensure_open(order)
    if not order.paid:
        raise IncompleteOrder("Pay first.")
    return order.item.render_commands(order.identity, order.qty)


def ensure_retryable(order: Order) -> None:
    _ensure_open(order)
    if not order.paid:
        raise IncompleteOrder("Pay first.")
    if order.delivery.state is DeliveryState.DELIVERED:
        raise IncompleteOrder("Already delivered.")


def mark_delivered(order: Order, now: float) -> Order:
    return replace(order, settlement=replace(
        order.settlement,
        delivery=Delivery(state=DeliveryState.DELIVERED, at=now),
    ))


def mark_delivery_failed(order: Order, reason: str) -> Order:
    return replace(order, settlement=replace(
        order.settlement,
        delivery=Delivery(state=DeliveryState.FAILED, reason=reason),
    ))
