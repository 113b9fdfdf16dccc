"""
Presentation: renders an Order into the text a buyer sees in the ticket.
Pure functions of state; re-run after every transition.
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional

from jinja2 import Environment, DictLoader, StrictUndefined

from .catalog import Catalog
from .helpers import format_money
from .model.order import DeliveryState, Order

# ----------------------------
# Jinja2 in-memory templates (no files needed)
# ----------------------------
TEMPLATES = {
    "storefront.txt": """\
Shop
Purchase:
1) Open a ticket
2) Pick an item and quantity
3) Enter your nick
4) Pay -> after confirmation the bot delivers in game{% if not rcon %} \
(delivery is manual, commands go to the staff log){% endif %}

{% for item in catalog.items %}
- {{ item.name }}: {{ item.price|money(catalog.currency) }} / pc
{% endfor %}

One ticket per person.
Delivery: {{ "automatic" if rcon else "manual" }} | Payments: {{ mode|upper }}
""",

    "ticket.txt": """\
Purchase ticket
Steps:
1) Pick an item
2) Set the quantity (+ / -)
3) Enter your nick
4) Pay

{{ payment_line }}

Item: {{ order.item.name if order.item else "-" }}
Quantity: {{ order.qty }}
Nick: {{ order.identity or "-" }}
{% if order.item %}
Total: {{ order.total|money(currency) }}
{% endif %}
{% if order.checkout %}
OrderID: {{ order.checkout.ref }}
{% endif %}
{% if order.paid %}
Delivery: {{ delivery_line }}
{% endif %}
""",

    "payment.txt": """\
Payment
Item: {{ order.item.name }}
Quantity: {{ order.qty }}
Nick: {{ order.identity }}
Amount: {{ order.checkout.amount|money(currency) }}

1) Open the link and pay
2) Come back and press "Check payment"
Link: {{ order.checkout.approval_link or "no link - try again" }}
""",
}

_env = Environment(
    loader=DictLoader(TEMPLATES),
    undefined=StrictUndefined,
    trim_blocks=True,
    keep_trailing_newline=False,
)
_env.filters["money"] = format_money


def _fmt_ts(ts: Optional[float]) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime(
        "%Y-%m-%d %H:%M:%S UTC"
    )


def payment_line(order: Order) -> str:
    if order.paid:
        return "Payment: ACCEPTED"
    if order.checkout is not None:
        return "Payment: PENDING (you have a payment link)"
    return "Payment: PENDING"


def delivery_line(order: Order) -> str:
    if not order.paid:
        return "-"
    delivery = order.delivery
    if delivery.state is DeliveryState.DELIVERED:
        return f"OK ({_fmt_ts(delivery.at)})"
    if delivery.state is DeliveryState.FAILED:
        return f"FAILED ({delivery.reason})"
    return "NOT ATTEMPTED"


def render_panel(order: Order, currency: str) -> str:
    return _env.get_template("ticket.txt").render(
        order=order,
        currency=currency,
        payment_line=payment_line(order),
        delivery_line=delivery_line(order),
    )


def render_payment_prompt(order: Order, currency: str) -> str:
    return _env.get_template("payment.txt").render(
        order=order, currency=currency,
    )


def render_storefront(catalog: Catalog, *, rcon: bool, mode: str) -> str:
    return _env.get_template("storefront.txt").render(
        catalog=catalog, rcon=rcon, mode=mode,
    )


def check_message(outcome: str, status: Optional[str], order: Order) -> str:
    if outcome == "already_paid":
        return "Already paid."
    if outcome == "pending":
        return f"Not paid yet. Status: {status}"
    if outcome == "capture_failed":
        return f"Capture failed. Status: {status}"
    if order.delivery.state is DeliveryState.DELIVERED:
        return "Payment accepted and delivered in game."
    return (
        "Payment accepted, but automatic delivery failed: "
        f"{order.delivery.reason}\nThe commands are in the staff log."
    )
