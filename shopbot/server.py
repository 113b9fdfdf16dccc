from __future__ import annotations
import os
from typing import Any, Dict

import httpx
import redis.asyncio as redis
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import ORJSONResponse

from .audit import new_audit_log
from .catalog import CatalogStore
from .errors import (
    AlreadyPaid, CatalogError, Forbidden, GatewayError, IncompleteOrder,
    InvalidIdentity, InvalidItem, NotFound, Rejected, ShopError,
)
from .fulfillment import new_executor
from .helpers import ct_equal, to_iso
from .infra.timings import aggregates
from .model.sessions import new_registry, BACKEND as SESSION_BACKEND
from .panel import (
    check_message, render_panel, render_payment_prompt, render_storefront,
)
from .payments import MockPay, new_gateway
from .shop import Shop, Ticket

# ----------------------------
# Config & Constants
# ----------------------------
CATALOG_PATH = os.environ.get("CATALOG_PATH", "products.json")
ADMIN_TOKEN = os.environ.get("ADMIN_TOKEN", "dev-admin-token")
TICKET_PREFIX = os.environ.get("TICKET_PREFIX", "shop").lower()
PAYMENT_REFERENCE_PREFIX = os.environ.get("PAYMENT_REFERENCE_PREFIX", "shop")
# when set, only members holding this role (or staff) may open tickets
ALLOWED_ROLE = os.environ.get("SHOP_ALLOWED_ROLE") or None

ERROR_STATUS = {
    InvalidItem: 400,
    InvalidIdentity: 400,
    IncompleteOrder: 400,
    CatalogError: 400,
    Forbidden: 403,
    NotFound: 404,
    AlreadyPaid: 409,
    Rejected: 409,
    GatewayError: 502,
}

app = FastAPI(
    title="shopbot",
    default_response_class=ORJSONResponse,
)


def get_shop() -> Shop:
    shop = getattr(app.state, "shop", None)
    if shop is None:
        raise RuntimeError("Shop not initialized")
    return shop


def build_shop() -> Shop:
    return Shop(
        CatalogStore(CATALOG_PATH),
        new_registry(r=getattr(app.state, "redis", None)),
        new_gateway(http=app.state.http),
        new_executor(),
        new_audit_log(http=app.state.http),
        ticket_prefix=TICKET_PREFIX,
        reference_prefix=PAYMENT_REFERENCE_PREFIX,
    )


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _http_client_start():
    if getattr(app.state, "http", None) is None:
        app.state.http = httpx.AsyncClient(timeout=10.0)


@app.on_event("startup")
async def _redis_start():
    if SESSION_BACKEND == "redis":
        REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379")
        app.state.redis = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )


@app.on_event("startup")
async def _shop_start():
    # tests may install a ready-made shop before startup
    if getattr(app.state, "shop", None) is None:
        app.state.shop = build_shop()
    shop = app.state.shop
    print('\n' * 2)
    print('=' * 50)
    print('shopbot is starting up...')
    print(f'   - Payments:  {shop.gateway.mode}')
    print(f'   - Delivery:  {"RCON" if shop.executor.enabled else "manual"}')
    print(f'   - Sessions:  {SESSION_BACKEND}')
    print(f'   - Catalog:   {len(shop.catalog.catalog)} item(s)')
    print('=' * 50)
    print('\n' * 2)


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.aclose()
        app.state.redis = None


@app.on_event("shutdown")
async def _shop_stop():
    app.state.shop = None


# ----------------------------
# Errors
# ----------------------------
@app.exception_handler(ShopError)
async def _shop_error(request: Request, exc: ShopError):
    status = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)),
        400,
    )
    body: Dict[str, Any] = {"detail": exc.message}
    if isinstance(exc, Rejected):
        body["existing"] = exc.existing
        body["retry_after"] = exc.retry_after
    return ORJSONResponse(body, status_code=status)


# ----------------------------
# Helpers
# ----------------------------
def is_staff(request: Request) -> bool:
    token = request.headers.get("x-admin-token")
    return bool(token) and ct_equal(token, ADMIN_TOKEN)


def require_staff(request: Request) -> None:
    if not is_staff(request):
        raise Forbidden("Staff only.")


def has_allowed_role(request: Request) -> bool:
    if ALLOWED_ROLE is None:
        return True
    roles = request.headers.get("x-user-roles") or ""
    return ALLOWED_ROLE in {r.strip() for r in roles.split(",")} \
        or is_staff(request)


def actor_id(request: Request) -> str:
    user_id = (request.headers.get("x-user-id") or "").strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="missing x-user-id header")
    return user_id


def ticket_for(request: Request, ticket_id: str) -> Ticket:
    # owner or staff only
    ticket = get_shop().get(ticket_id)
    if is_staff(request):
        return ticket
    if actor_id(request) != ticket.order.owner:
        raise Forbidden("This is not your ticket.")
    return ticket


def order_view(ticket: Ticket) -> Dict[str, Any]:
    shop = get_shop()
    o = ticket.order
    return {
        "ticket_id": ticket.id,
        "name": ticket.name,
        "owner": o.owner,
        "phase": o.phase.value,
        "item_id": o.item.id if o.item else None,
        "item_name": o.item.name if o.item else None,
        "qty": o.qty,
        "identity": o.identity,
        "total": str(o.total) if o.total is not None else None,
        "currency": shop.currency,
        "payment_state": o.payment_state.value,
        "payment_ref": o.payment_ref,
        "approval_link": o.checkout.approval_link if o.checkout else None,
        "paid_at": to_iso(o.paid_at),
        "delivery_state": o.delivery.state.value,
        "delivery_reason": o.delivery.reason,
        "delivered_at": to_iso(o.delivered_at),
        "panel": render_panel(o, shop.currency),
    }


# ----------------------------
# Info
# ----------------------------
@app.get("/health")
async def health():
    shop = get_shop()
    return {
        "ok": True,
        "payment_mode": shop.gateway.mode,
        "rcon": shop.executor.enabled,
        "products": len(shop.catalog.catalog),
    }


@app.get("/products")
async def products():
    return get_shop().catalog.catalog.to_json()


@app.get("/storefront")
async def storefront():
    shop = get_shop()
    return {"text": render_storefront(
        shop.catalog.catalog, rcon=shop.executor.enabled,
        mode=shop.gateway.mode,
    )}


# ----------------------------
# Tickets
# ----------------------------
@app.post("/api/tickets", status_code=201)
async def open_ticket(request: Request, payload: Dict[str, Any] | None = None):
    payload = payload or {}
    user_id = actor_id(request)
    if not has_allowed_role(request):
        raise Forbidden("You are not allowed to shop here (role required).")
    ticket = await get_shop().open_ticket(
        user_id, username=payload.get("username"),
    )
    return order_view(ticket)


@app.get("/api/tickets/{ticket_id}")
async def get_ticket(ticket_id: str, request: Request):
    return order_view(ticket_for(request, ticket_id))


@app.post("/api/tickets/{ticket_id}/item")
async def select_item(ticket_id: str, payload: Dict[str, Any],
                      request: Request):
    ticket = ticket_for(request, ticket_id)
    await get_shop().select_item(ticket.id, str(payload.get("item_id", "")))
    return order_view(ticket)


@app.post("/api/tickets/{ticket_id}/quantity")
async def adjust_quantity(ticket_id: str, payload: Dict[str, Any],
                          request: Request):
    ticket = ticket_for(request, ticket_id)
    delta = payload.get("delta", 0)
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise HTTPException(400, detail="delta must be an integer")
    await get_shop().adjust_quantity(ticket.id, delta)
    return order_view(ticket)


@app.post("/api/tickets/{ticket_id}/identity")
async def set_identity(ticket_id: str, payload: Dict[str, Any],
                       request: Request):
    ticket = ticket_for(request, ticket_id)
    await get_shop().set_identity(ticket.id, payload.get("identity"))
    return order_view(ticket)


@app.post("/api/tickets/{ticket_id}/pay")
async def pay(ticket_id: str, request: Request):
    shop = get_shop()
    ticket = ticket_for(request, ticket_id)
    order = await shop.initiate_payment(ticket.id)
    view = order_view(ticket)
    view["prompt"] = render_payment_prompt(order, shop.currency)
    return view


@app.post("/api/tickets/{ticket_id}/check")
async def check_payment(ticket_id: str, request: Request):
    ticket = ticket_for(request, ticket_id)
    result = await get_shop().check_payment(ticket.id)
    view = order_view(ticket)
    view["outcome"] = result.outcome
    view["status"] = result.status
    view["message"] = check_message(result.outcome, result.status,
                                    result.order)
    return view


@app.post("/api/tickets/{ticket_id}/retry-delivery")
async def retry_delivery(ticket_id: str, request: Request):
    ticket = ticket_for(request, ticket_id)
    await get_shop().retry_delivery(ticket.id)
    return order_view(ticket)


@app.post("/api/tickets/{ticket_id}/reset-payment")
async def reset_payment(ticket_id: str, request: Request):
    ticket = ticket_for(request, ticket_id)
    await get_shop().reset_payment(ticket.id)
    return order_view(ticket)


@app.post("/api/tickets/{ticket_id}/reset")
async def reset_cart(ticket_id: str, request: Request):
    ticket = ticket_for(request, ticket_id)
    await get_shop().reset_cart(ticket.id)
    return order_view(ticket)


@app.post("/api/tickets/{ticket_id}/close")
async def close_ticket(ticket_id: str, request: Request):
    ticket = ticket_for(request, ticket_id)
    order = await get_shop().close(ticket.id)
    return {"ticket_id": ticket.id, "phase": order.phase.value}


# ----------------------------
# Admin
# ----------------------------
@app.post("/api/admin/reload-products")
async def reload_products(request: Request):
    require_staff(request)
    catalog = get_shop().catalog.reload()
    return {"ok": True, "products": len(catalog)}


@app.get("/api/admin/tickets")
async def admin_tickets(request: Request):
    require_staff(request)
    return {"items": [order_view(t) for t in get_shop().all_tickets()]}


@app.get("/api/admin/audit")
async def admin_audit(request: Request, limit: int = 100):
    require_staff(request)
    records = list(get_shop().audit.records)[-max(1, min(limit, 500)):]
    return {"items": [r.to_json() for r in reversed(records)]}


@app.get("/api/admin/timings")
async def admin_timings(request: Request):
    require_staff(request)
    return {"items": aggregates()}


# ----------------------------
# MockPay (buyer simulation, mock backend only)
# ----------------------------
def get_mockpay() -> MockPay:
    gateway = get_shop().gateway
    if not isinstance(gateway, MockPay):
        raise HTTPException(404, detail="mock payments disabled")
    return gateway


@app.get("/mockpay/{psid}")
async def mockpay_screen(psid: str):
    po = get_mockpay().orders.get(psid)
    if po is None:
        raise HTTPException(404, "payment session not found")
    return po


@app.post("/mockpay/{psid}/emit")
async def mockpay_emit(psid: str, payload: Dict[str, Any]):
    kind = payload.get("t")  # approved|completed|voided
    try:
        po = get_mockpay().emit(psid, kind)
    except ValueError:
        raise HTTPException(400, detail="invalid kind")
    return {"ok": True, "status": po["status"]}
