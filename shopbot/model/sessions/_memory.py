from __future__ import annotations
import logging
import math
from typing import Dict, Optional

from ...errors import Rejected

logger = logging.getLogger(__name__)


def cooldown_rejection(remaining: float) -> Rejected:
    return Rejected(
        f"Please wait {math.ceil(remaining)}s before opening a new ticket.",
        retry_after=remaining,
    )


def active_rejection(existing: str) -> Rejected:
    return Rejected(
        f"You already have an open ticket: {existing}",
        existing=existing,
    )


class SessionRegistry:
    """
    user -> active ticket, user -> last reservation time.

    There is no await between reading and writing a key, so every method is
    atomic on the event loop; no per-key lock is needed here.
    """

    def __init__(self, cooldown_seconds: float = 60) -> None:
        self.cooldown = float(cooldown_seconds)
        self._active: Dict[str, str] = {}
        self._last: Dict[str, float] = {}

    async def try_reserve(self, user_id: str, now: float) -> None:
        # an open ticket is reported even inside the cooldown window
        existing = self._active.get(user_id)
        if existing is not None:
            logger.info("reserve rejected for %s: active ticket %s",
                        user_id, existing)
            raise active_rejection(existing)

        self._prune(now)
        last = self._last.get(user_id)
        if last is not None:
            remaining = self.cooldown - (now - last)
            logger.info("reserve rejected for %s: cooldown %.1fs",
                        user_id, remaining)
            raise cooldown_rejection(remaining)

        self._last[user_id] = now

    def _prune(self, now: float) -> None:
        # only timestamps still inside their cooldown are kept
        expired = [uid for uid, ts in self._last.items()
                   if now - ts >= self.cooldown]
        for uid in expired:
            del self._last[uid]

    async def bind(self, user_id: str, location: str) -> None:
        self._active[user_id] = location

    async def release(self, user_id: str) -> None:
        self._active.pop(user_id, None)

    async def active(self, user_id: str) -> Optional[str]:
        return self._active.get(user_id)
