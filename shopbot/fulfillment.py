"""
Fulfillment executors: send the rendered commands of one order to the game
server. One call is one attempt; any failure fails the whole attempt, even
if some commands already went through.
"""
from __future__ import annotations
import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Sequence

from rcon.exceptions import EmptyResponse, SessionTimeout, WrongPassword
from rcon.source import rcon

from .errors import FulfillmentError

logger = logging.getLogger(__name__)

DISABLED_REASON = "RCON disabled - deliver manually from the audit log."


class FulfillmentExecutor(ABC):
    enabled: bool = True

    # raises FulfillmentError(reason) on any failure
    @abstractmethod
    async def execute(self, commands: Sequence[str]) -> None: ...


class RconExecutor(FulfillmentExecutor):
    """Source RCON (the remote console Minecraft speaks) via the rcon package."""

    def __init__(self, host: str, port: int, password: str,
                 timeout: float = 5.0) -> None:
        self.host = host
        self.port = port
        self.password = password
        self.timeout = timeout

    async def _send(self, cmd: str) -> str:
        # sent exactly as configured, no leading slash
        return await asyncio.wait_for(
            rcon(cmd, host=self.host, port=self.port, passwd=self.password),
            self.timeout,
        )

    async def execute(self, commands: Sequence[str]) -> None:
        try:
            for cmd in commands:
                reply = await self._send(cmd)
                logger.info("rcon> %s | %s", cmd, reply.strip())
        except asyncio.TimeoutError:
            raise FulfillmentError("RCON timeout")
        except WrongPassword:
            raise FulfillmentError("RCON authentication failed")
        except (SessionTimeout, EmptyResponse) as e:
            raise FulfillmentError(
                f"RCON session error: {e.__class__.__name__}"
            )
        except OSError as e:
            raise FulfillmentError(str(e) or e.__class__.__name__)


class DisabledExecutor(FulfillmentExecutor):
    enabled = False

    async def execute(self, commands: Sequence[str]) -> None:
        raise FulfillmentError(DISABLED_REASON)


def new_executor() -> FulfillmentExecutor:
    host = os.getenv("RCON_HOST")
    port = os.getenv("RCON_PORT")
    password = os.getenv("RCON_PASSWORD")
    if not (host and port and password):
        return DisabledExecutor()
    return RconExecutor(
        host, int(port), password,
        timeout=float(os.getenv("RCON_TIMEOUT", "5.0")),
    )
