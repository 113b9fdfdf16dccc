# model/sessions/__init__.py
import os
from typing import Optional
import redis.asyncio as redis

BACKEND = os.getenv("SESSION_BACKEND", "memory").lower()  # 'memory' | 'redis'

if BACKEND == "redis":
    from ._redis import SessionRegistry as _SessionRegistry
else:
    from ._memory import SessionRegistry as _SessionRegistry

COOLDOWN_SECONDS = float(os.getenv("TICKET_COOLDOWN_SECONDS", "60"))


# Factory keeps server.py simple and constructor-agnostic:
def new_registry(*, r: Optional[redis.Redis] = None,
                 cooldown_seconds: float = COOLDOWN_SECONDS):
    if BACKEND == "redis":
        if r is None:
            raise RuntimeError(
                "SessionRegistry(redis) requires r=redis.Redis"
            )
        return _SessionRegistry(r=r, cooldown_seconds=cooldown_seconds)
    return _SessionRegistry(cooldown_seconds=cooldown_seconds)


SessionRegistry = _SessionRegistry
__all__ = ["SessionRegistry", "new_registry", "BACKEND", "COOLDOWN_SECONDS"]
