"""
Shop: owns the live tickets and drives the order transitions.

Each ticket holds one Order and one asyncio.Lock. Every operation on a
ticket runs under that lock, so two overlapping check_payment() calls on the
same ticket run one after the other: the second one sees PAID and returns
"already_paid" without touching the processor or the game server again.
Different tickets never wait on each other.

Stages per operation:
  1) pure transition from shopbot.model.order (may raise, nothing changed)
  2) collaborator call (gateway / executor / audit)
  3) the new Order replaces the old one on the ticket
"""
from __future__ import annotations
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .audit import AuditLog, AuditRecord
from .catalog import CatalogStore
from .errors import FulfillmentError, NotFound
from .fulfillment import FulfillmentExecutor
from .helpers import now_ts, ticket_name
from .infra.timings import timeit
from .model import order as om
from .model.order import Order
from .payments import PaymentAdapter

logger = logging.getLogger(__name__)

# check_payment outcomes
PENDING = "pending"
CAPTURE_FAILED = "capture_failed"
PAID = "paid"
ALREADY_PAID = "already_paid"


@dataclass
class Ticket:
    id: str
    name: str
    order: Order
    created_at: float
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


@dataclass(frozen=True)
class PaymentCheck:
    outcome: str
    status: Optional[str]
    order: Order


class Shop:
    def __init__(
        self,
        catalog: CatalogStore,
        sessions,
        gateway: PaymentAdapter,
        executor: FulfillmentExecutor,
        audit: AuditLog,
        *,
        ticket_prefix: str = "shop",
        reference_prefix: str = "shop",
        clock: Callable[[], float] = now_ts,
    ) -> None:
        self.catalog = catalog
        self.sessions = sessions
        self.gateway = gateway
        self.executor = executor
        self.audit = audit
        self.ticket_prefix = ticket_prefix
        self.reference_prefix = reference_prefix
        self.clock = clock
        self.tickets: Dict[str, Ticket] = {}

    @property
    def currency(self) -> str:
        return self.catalog.catalog.currency

    # ----------------------------
    # Ticket lifecycle
    # ----------------------------
    async def open_ticket(self, user_id: str,
                          username: Optional[str] = None) -> Ticket:
        now = self.clock()
        await self.sessions.try_reserve(user_id, now)

        ticket = Ticket(
            id=uuid.uuid4().hex,
            name=ticket_name(self.ticket_prefix, username or user_id),
            order=om.new_order(user_id),
            created_at=now,
        )
        self.tickets[ticket.id] = ticket
        try:
            await self.sessions.bind(user_id, ticket.id)
        except BaseException:
            self.tickets.pop(ticket.id, None)
            await self.sessions.release(user_id)
            raise
        logger.info("ticket %s opened for %s", ticket.id, user_id)
        return ticket

    def get(self, ticket_id: str) -> Ticket:
        ticket = self.tickets.get(ticket_id)
        if ticket is None:
            raise NotFound("This is not a shop ticket.")
        return ticket

    def all_tickets(self) -> List[Ticket]:
        return list(self.tickets.values())

    async def close(self, ticket_id: str) -> Order:
        ticket = self.get(ticket_id)
        async with ticket.lock:
            if self.tickets.pop(ticket_id, None) is None:
                raise NotFound("This is not a shop ticket.")
            try:
                ticket.order = om.close(ticket.order)
            finally:
                await self.sessions.release(ticket.order.owner)
        logger.info("ticket %s closed", ticket_id)
        return ticket.order

    async def _locked(self, ticket_id: str) -> Ticket:
        # re-resolve after waiting: the ticket may have been closed meanwhile
        ticket = self.get(ticket_id)
        await ticket.lock.acquire()
        if self.tickets.get(ticket_id) is not ticket:
            ticket.lock.release()
            raise NotFound("This is not a shop ticket.")
        return ticket

    async def _apply(self, ticket_id: str, fn) -> Order:
        ticket = await self._locked(ticket_id)
        try:
            ticket.order = fn(ticket.order)
            return ticket.order
        finally:
            ticket.lock.release()

    # ----------------------------
    # Cart
    # ----------------------------
    async def select_item(self, ticket_id: str, item_id: str) -> Order:
        catalog = self.catalog.catalog
        return await self._apply(
            ticket_id, lambda o: om.select_item(o, catalog, item_id)
        )

    async def adjust_quantity(self, ticket_id: str, delta: int) -> Order:
        return await self._apply(
            ticket_id, lambda o: om.adjust_quantity(o, delta)
        )

    async def set_identity(self, ticket_id: str, raw: Optional[str]) -> Order:
        return await self._apply(
            ticket_id, lambda o: om.set_identity(o, raw)
        )

    async def reset_payment(self, ticket_id: str) -> Order:
        return await self._apply(ticket_id, om.reset_payment)

    async def reset_cart(self, ticket_id: str) -> Order:
        return await self._apply(ticket_id, om.reset_cart)

    # ----------------------------
    # Payment
    # ----------------------------
    def _reference(self, ticket: Ticket) -> str:
        # unique per attempt so a retried payment never collides
        return (f"{self.reference_prefix}_{ticket.id}_{ticket.order.owner}_"
                f"{uuid.uuid4().hex[:12]}")

    async def initiate_payment(self, ticket_id: str) -> Order:
        ticket = await self._locked(ticket_id)
        try:
            request = om.payment_request(ticket.order, self._reference(ticket))
            async with timeit("gateway.create"):
                created = await self.gateway.create_order(
                    request.amount, request.description, request.reference,
                    self.currency,
                )
            ticket.order = om.payment_created(
                ticket.order, request, created["order_id"],
                created.get("approval_link"), self.clock(),
            )
            logger.info("ticket %s: processor order %s for %s",
                        ticket.id, created["order_id"], request.amount)
            return ticket.order
        finally:
            ticket.lock.release()

    async def check_payment(self, ticket_id: str) -> PaymentCheck:
        ticket = await self._locked(ticket_id)
        try:
            order = ticket.order
            if order.paid:
                return PaymentCheck(ALREADY_PAID, None, order)
            checkout = om.ensure_checkable(order)

            async with timeit("gateway.get"):
                po = await self.gateway.get_order(checkout.ref)
            status = po.get("status")
            step = om.next_step(status)
            if step == om.NEXT_PENDING:
                return PaymentCheck(PENDING, status, order)

            if step == om.NEXT_CAPTURE:
                async with timeit("gateway.capture"):
                    cap = await self.gateway.capture_order(checkout.ref)
                status = cap.get("status")
                if om.next_step(status) != om.NEXT_SETTLE:
                    logger.warning("ticket %s: capture of %s returned %s",
                                   ticket.id, checkout.ref, status)
                    return PaymentCheck(CAPTURE_FAILED, status, order)

            ticket.order = om.mark_paid(order, self.clock())
            logger.info("ticket %s: payment %s confirmed",
                        ticket.id, checkout.ref)
            commands = om.delivery_commands(ticket.order)
            await self._publish_audit(ticket, commands)
            await self._deliver(ticket, commands)
            return PaymentCheck(PAID, status, ticket.order)
        finally:
            ticket.lock.release()

    async def _publish_audit(self, ticket: Ticket, commands: List[str]) -> None:
        order = ticket.order
        record = AuditRecord(
            ticket_id=ticket.id,
            owner=order.owner,
            item_id=order.item.id,
            item_name=order.item.name,
            qty=order.qty,
            identity=order.identity,
            payment_ref=order.payment_ref,
            amount=order.settlement.amount,
            currency=self.currency,
            paid_at=order.paid_at,
            commands=list(commands),
        )
        async with timeit("audit.publish"):
            await self.audit.publish(record)

    # ----------------------------
    # Delivery
    # ----------------------------
    async def _deliver(self, ticket: Ticket, commands: List[str]) -> None:
        try:
            async with timeit("fulfillment.execute"):
                await self.executor.execute(commands)
        except FulfillmentError as e:
            ticket.order = om.mark_delivery_failed(ticket.order, e.reason)
            logger.warning("ticket %s: delivery failed: %s",
                           ticket.id, e.reason)
            return
        ticket.order = om.mark_delivered(ticket.order, self.clock())
        logger.info("ticket %s: delivered %d command(s)",
                    ticket.id, len(commands))

    async def retry_delivery(self, ticket_id: str) -> Order:
        ticket = await self._locked(ticket_id)
        try:
            om.ensure_retryable(ticket.order)
            await self._deliver(ticket, om.delivery_commands(ticket.order))
            return ticket.order
        finally:
            ticket.lock.release()
