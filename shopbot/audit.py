"""
Audit sink: every confirmed payment is recorded together with the exact
commands it should trigger, so staff can deliver by hand when automation
fails.
"""
from __future__ import annotations
import logging
import os
from collections import deque
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Deque, Dict, List, Optional

import httpx

from .helpers import format_money, to_iso

logger = logging.getLogger(__name__)

RECENT_RECORDS = 500
EMBED_COLOR_PAID = 0x2ECC71


@dataclass(frozen=True, slots=True)
class AuditRecord:
    ticket_id: str
    owner: str
    item_id: str
    item_name: str
    qty: int
    identity: str
    payment_ref: str
    amount: Decimal
    currency: str
    paid_at: float
    commands: List[str]

    def to_json(self) -> Dict[str, Any]:
        d = asdict(self)
        d["amount"] = str(self.amount)
        d["paid_at"] = to_iso(self.paid_at)
        return d


class AuditLog:
    """Logs every record and keeps the most recent ones for the admin view."""

    def __init__(self, maxlen: int = RECENT_RECORDS) -> None:
        self.records: Deque[AuditRecord] = deque(maxlen=maxlen)

    async def publish(self, record: AuditRecord) -> None:
        self.records.append(record)
        logger.info(
            "payment confirmed ticket=%s user=%s item=%s qty=%d nick=%s "
            "ref=%s commands=%r",
            record.ticket_id, record.owner, record.item_id, record.qty,
            record.identity, record.payment_ref, record.commands,
        )


def webhook_payload(record: AuditRecord) -> Dict[str, Any]:
    return {
        "embeds": [{
            "title": "Payment confirmed - commands",
            "color": EMBED_COLOR_PAID,
            "fields": [
                {"name": "User", "value": f"<@{record.owner}>",
                 "inline": True},
                {"name": "Item", "value": record.item_name, "inline": True},
                {"name": "Quantity", "value": str(record.qty),
                 "inline": True},
                {"name": "Nick", "value": f"`{record.identity}`",
                 "inline": True},
                {"name": "Amount",
                 "value": format_money(record.amount, record.currency),
                 "inline": True},
                {"name": "OrderID", "value": f"`{record.payment_ref}`"},
                {"name": "Commands",
                 "value": "```" + "\n".join(record.commands) + "```"},
            ],
        }],
    }


class WebhookAuditLog(AuditLog):
    """Also posts each record to a chat webhook (e.g. a staff log channel)."""

    def __init__(self, http: httpx.AsyncClient, url: str,
                 maxlen: int = RECENT_RECORDS) -> None:
        super().__init__(maxlen=maxlen)
        self.http = http
        self.url = url

    async def publish(self, record: AuditRecord) -> None:
        await super().publish(record)
        try:
            r = await self.http.post(self.url, json=webhook_payload(record))
            r.raise_for_status()
        except httpx.HTTPError as e:
            # the log line above is still there for manual delivery
            logger.warning("audit webhook delivery failed for %s: %s",
                           record.ticket_id, e)


def new_audit_log(*, http: Optional[httpx.AsyncClient] = None) -> AuditLog:
    url = os.getenv("AUDIT_WEBHOOK_URL")
    if url and http is not None:
        return WebhookAuditLog(http, url)
    return AuditLog()
