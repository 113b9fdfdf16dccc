import time
import re
import hmac
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional


CENTS = Decimal("0.01")

IDENTITY_RE = re.compile(r"^[a-zA-Z0-9_]{3,16}$")


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def is_valid_identity(identity: Optional[str]) -> bool:
    # in-game nick: 3-16 chars, letters/digits/underscore
    if not identity:
        return False
    return IDENTITY_RE.match(identity) is not None


def clamp(n: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, n))


def money(amount: Decimal) -> Decimal:
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def format_money(amount: Decimal, currency: str) -> str:
    return f"{money(amount)} {currency}"


def ticket_name(prefix: str, username: Optional[str]) -> str:
    base = re.sub(r"[^a-z0-9\-]", "", f"{prefix}-{username or ''}".lower())
    return base[:90] or f"{prefix}-user"


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())
