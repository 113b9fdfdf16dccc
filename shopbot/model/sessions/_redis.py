from __future__ import annotations
import asyncio
import logging
import math
import weakref
from typing import Optional
import redis.asyncio as redis

from ._memory import active_rejection, cooldown_rejection

logger = logging.getLogger(__name__)


# ---- keys
def k_active(user_id: str) -> str: return f"ticket:active:{user_id}"
def k_cooldown(user_id: str) -> str: return f"ticket:cooldown:{user_id}"


class SessionRegistry:
    """
    Same contract as the in-memory registry, kept in redis.

    try_reserve() reads then writes, so it is serialized per user key with an
    in-process lock. The cooldown key carries the reservation timestamp; its
    TTL only cleans it up, the comparison against `now` decides.
    """

    def __init__(self, r: redis.Redis, cooldown_seconds: float = 60) -> None:
        self.r = r
        self.cooldown = float(cooldown_seconds)
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def try_reserve(self, user_id: str, now: float) -> None:
        async with self._lock(user_id):
            last, existing = await self.r.mget(
                [k_cooldown(user_id), k_active(user_id)]
            )
            if existing is not None:
                logger.info("reserve rejected for %s: active ticket %s",
                            user_id, existing)
                raise active_rejection(existing)

            if last is not None:
                elapsed = now - float(last)
                if elapsed < self.cooldown:
                    remaining = self.cooldown - elapsed
                    logger.info("reserve rejected for %s: cooldown %.1fs",
                                user_id, remaining)
                    raise cooldown_rejection(remaining)

            await self.r.set(
                k_cooldown(user_id), str(now),
                ex=max(1, math.ceil(self.cooldown)),
            )

    async def bind(self, user_id: str, location: str) -> None:
        async with self._lock(user_id):
            await self.r.set(k_active(user_id), location)

    async def release(self, user_id: str) -> None:
        async with self._lock(user_id):
            await self.r.delete(k_active(user_id))

    async def active(self, user_id: str) -> Optional[str]:
        return await self.r.get(k_active(user_id))
