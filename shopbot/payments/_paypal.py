from __future__ import annotations
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from ..errors import GatewayError
from ..helpers import now_ts, money
from ._base import PaymentAdapter, CreateOrderResult

logger = logging.getLogger(__name__)

PAYPAL_LIVE = "https://api-m.paypal.com"
PAYPAL_SANDBOX = "https://api-m.sandbox.paypal.com"

# refresh the access token this long before PayPal expires it
TOKEN_SLACK_SECONDS = 60


class PayPal(PaymentAdapter):
    """PayPal Orders v2 over a shared httpx.AsyncClient."""

    def __init__(self, http: httpx.AsyncClient, client_id: str, secret: str,
                 mode: str = "sandbox", brand_name: str = "Shop") -> None:
        self.http = http
        self.client_id = client_id
        self.secret = secret
        self.mode = "live" if mode == "live" else "sandbox"
        self.base_url = PAYPAL_LIVE if self.mode == "live" else PAYPAL_SANDBOX
        self.brand_name = brand_name
        self._token: Optional[str] = None
        self._token_expires = 0.0

    async def _access_token(self) -> str:
        if self._token is not None and now_ts() < self._token_expires:
            return self._token
        try:
            r = await self.http.post(
                f"{self.base_url}/v1/oauth2/token",
                auth=(self.client_id, self.secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise GatewayError(f"PayPal token error: {e}")
        if r.is_error:
            raise GatewayError(f"PayPal token error: {r.status_code} {r.text}")
        j = r.json()
        self._token = j["access_token"]
        expires_in = int(j.get("expires_in", 0))
        self._token_expires = now_ts() + max(0, expires_in - TOKEN_SLACK_SECONDS)
        return self._token

    async def _call(self, what: str, method: str, path: str,
                    payload: Optional[dict] = None) -> Dict[str, Any]:
        token = await self._access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        try:
            r = await self.http.request(
                method, f"{self.base_url}{path}", json=payload, headers=headers,
            )
        except httpx.HTTPError as e:
            raise GatewayError(f"PayPal {what} error: {e}")
        if r.status_code == 401:
            # token revoked early; next call fetches a fresh one
            self._token = None
        if r.is_error:
            raise GatewayError(f"PayPal {what} error: {r.status_code} {r.text}")
        return r.json()

    async def create_order(
            self, amount: Decimal, description: str, reference: str,
            currency: str,
    ) -> CreateOrderResult:
        payload = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": reference,
                "custom_id": reference,
                "description": description,
                "amount": {
                    "currency_code": currency,
                    "value": str(money(amount)),
                },
            }],
            "application_context": {
                "brand_name": self.brand_name,
                "landing_page": "LOGIN",
                "user_action": "PAY_NOW",
            },
        }
        j = await self._call("create order", "POST", "/v2/checkout/orders",
                             payload)
        approve = next(
            (link.get("href") for link in j.get("links", [])
             if link.get("rel") == "approve"),
            None,
        )
        logger.info("paypal order %s created for %s", j.get("id"), reference)
        return {"order_id": j["id"], "approval_link": approve}

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        return await self._call("get order", "GET",
                                f"/v2/checkout/orders/{order_id}")

    async def capture_order(self, order_id: str) -> Dict[str, Any]:
        return await self._call("capture", "POST",
                                f"/v2/checkout/orders/{order_id}/capture")
