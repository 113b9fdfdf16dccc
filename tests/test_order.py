"""Tests for the pure order transitions."""
from decimal import Decimal

import pytest

from shopbot.errors import (
    AlreadyPaid, IncompleteOrder, InvalidIdentity, InvalidItem,
)
from shopbot.model import order as om
from shopbot.model.order import DeliveryState, OrderPhase, PaymentState

NOW = 1_700_000_000.0


def _priced(catalog, item_id="key", identity="Player1"):
    o = om.new_order("u1")
    o = om.select_item(o, catalog, item_id)
    return om.set_identity(o, identity)


def _awaiting(catalog):
    o = _priced(catalog)
    req = om.payment_request(o, "ref-1")
    return om.payment_created(o, req, "PO-1", "https://pay/PO-1", NOW)


def _paid(catalog):
    return om.mark_paid(_awaiting(catalog), NOW + 5)


def test_new_order_is_empty():
    o = om.new_order("u1")
    assert o.phase is OrderPhase.EMPTY
    assert o.qty == 1
    assert o.payment_state is PaymentState.UNPAID
    assert o.delivery.state is DeliveryState.NOT_ATTEMPTED
    assert o.payment_ref is None


def test_phases_follow_the_cart(catalog):
    o = om.new_order("u1")
    o = om.select_item(o, catalog, "key")
    assert o.phase is OrderPhase.CONFIGURING
    o = om.set_identity(o, "Player1")
    assert o.phase is OrderPhase.PRICED
    o = om.payment_created(o, om.payment_request(o, "r"), "PO-1", None, NOW)
    assert o.phase is OrderPhase.AWAITING_PAYMENT
    o = om.mark_paid(o, NOW)
    assert o.phase is OrderPhase.PAID_UNDELIVERED
    failed = om.mark_delivery_failed(o, "connection refused")
    assert failed.phase is OrderPhase.FAILED_DELIVERY
    assert om.mark_delivered(failed, NOW).phase is OrderPhase.DELIVERED
    assert om.close(o).phase is OrderPhase.CLOSED


def test_select_unknown_item_fails(catalog):
    o = om.new_order("u1")
    with pytest.raises(InvalidItem):
        om.select_item(o, catalog, "nope")


def test_select_item_clamps_quantity_into_bounds(catalog):
    o = om.select_item(om.new_order("u1"), catalog, "gems")
    assert o.qty == 5
    o = om.adjust_quantity(o, 100)
    o = om.select_item(o, catalog, "vip")
    assert o.qty == 1


@pytest.mark.parametrize("delta", [-100, -1, 0, 1, 3, 9, 10, 1000])
def test_adjust_quantity_stays_within_bounds(catalog, delta):
    o = om.select_item(om.new_order("u1"), catalog, "key")
    o = om.adjust_quantity(o, delta)
    assert 1 <= o.qty <= 10


def test_adjust_quantity_below_minimum_clamps_to_one(catalog):
    o = om.select_item(om.new_order("u1"), catalog, "key")
    assert om.adjust_quantity(o, -100).qty == 1


def test_adjust_quantity_needs_an_item():
    with pytest.raises(IncompleteOrder):
        om.adjust_quantity(om.new_order("u1"), 1)


@pytest.mark.parametrize("raw", ["ab", "x" * 17, "bad nick", "nick!", "", None])
def test_invalid_identity_rejected(raw):
    with pytest.raises(InvalidIdentity):
        om.set_identity(om.new_order("u1"), raw)


def test_identity_is_trimmed():
    o = om.set_identity(om.new_order("u1"), "  Steve_99 ")
    assert o.identity == "Steve_99"


@pytest.mark.parametrize("mutate", [
    lambda o, c: om.select_item(o, c, "vip"),
    lambda o, c: om.adjust_quantity(o, 1),
    lambda o, c: om.set_identity(o, "Other_1"),
])
def test_cart_changes_drop_the_payment_reference(catalog, mutate):
    o = _awaiting(catalog)
    assert o.payment_ref == "PO-1"
    changed = mutate(o, catalog)
    assert changed.payment_ref is None
    assert changed.phase is not OrderPhase.AWAITING_PAYMENT


@pytest.mark.parametrize("mutate", [
    lambda o, c: om.select_item(o, c, "vip"),
    lambda o, c: om.adjust_quantity(o, 1),
    lambda o, c: om.set_identity(o, "Other_1"),
    lambda o, c: om.reset_cart(o),
    lambda o, c: om.reset_payment(o),
])
def test_paid_order_cannot_change(catalog, mutate):
    o = _paid(catalog)
    with pytest.raises(AlreadyPaid):
        mutate(o, catalog)


def test_payment_request_needs_item_and_identity(catalog):
    with pytest.raises(IncompleteOrder):
        om.payment_request(om.new_order("u1"), "r")
    o = om.select_item(om.new_order("u1"), catalog, "key")
    with pytest.raises(IncompleteOrder):
        om.payment_request(o, "r")


def test_payment_request_total_is_rounded_half_up(catalog):
    o = om.adjust_quantity(_priced(catalog, "gems"), 2)  # 7 x 0.35
    req = om.payment_request(o, "r")
    assert req.amount == Decimal("2.45")
    assert req.description == "Gems x7 for Player1"


def test_new_payment_supersedes_the_old_one(catalog):
    o = _awaiting(catalog)
    o = om.payment_created(o, om.payment_request(o, "ref-2"), "PO-2", None,
                           NOW + 1)
    assert o.payment_ref == "PO-2"
    assert o.checkout.reference == "ref-2"


def test_reset_payment_and_cart(catalog):
    o = _awaiting(catalog)
    o = om.reset_payment(o)
    assert o.payment_ref is None
    assert o.item is not None
    o = om.reset_cart(o)
    assert o == om.new_order("u1")


def test_mark_paid_needs_a_checkout(catalog):
    with pytest.raises(IncompleteOrder):
        om.mark_paid(_priced(catalog), NOW)


def test_mark_paid_records_timestamp_and_keeps_reference(catalog):
    o = _paid(catalog)
    assert o.payment_state is PaymentState.PAID
    assert o.paid_at == NOW + 5
    assert o.payment_ref == "PO-1"
    assert o.delivered_at is None


def test_next_step_policy():
    assert om.next_step("CREATED") == om.NEXT_PENDING
    assert om.next_step("VOIDED") == om.NEXT_PENDING
    assert om.next_step(None) == om.NEXT_PENDING
    assert om.next_step("APPROVED") == om.NEXT_CAPTURE
    assert om.next_step("COMPLETED") == om.NEXT_SETTLE


def test_delivery_commands_render_identity_and_quantity(catalog):
    o = om.adjust_quantity(_priced(catalog), 2)
    o = om.payment_created(o, om.payment_request(o, "r"), "PO-1", None, NOW)
    o = om.mark_paid(o, NOW)
    assert om.delivery_commands(o) == ["give Player1 key 3"]


def test_delivery_needs_payment(catalog):
    with pytest.raises(IncompleteOrder):
        om.delivery_commands(_awaiting(catalog))
    with pytest.raises(IncompleteOrder):
        om.ensure_retryable(_awaiting(catalog))


def test_retry_not_allowed_once_delivered(catalog):
    o = om.mark_delivered(_paid(catalog), NOW)
    with pytest.raises(IncompleteOrder):
        om.ensure_retryable(o)
    om.ensure_retryable(om.mark_delivery_failed(_paid(catalog), "x"))
