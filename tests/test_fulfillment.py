"""Fulfillment executors against an in-process fake RCON server."""
import asyncio
import struct

import pytest

from shopbot.errors import FulfillmentError
from shopbot.fulfillment import (
    DISABLED_REASON, DisabledExecutor, RconExecutor, new_executor,
)

PASSWORD = "hunter2"

AUTH = 3
AUTH_RESPONSE = 2
RESPONSE_VALUE = 0


def _packet(req_id, kind, body):
    payload = body.encode("utf-8") + b"\x00\x00"
    return struct.pack("<iii", 8 + len(payload), req_id, kind) + payload


class FakeRconServer:
    """Speaks just enough Source RCON: login, then echo every command."""

    def __init__(self, password=PASSWORD, silent=False) -> None:
        self.password = password
        self.silent = silent
        self.commands = []
        self.server = None
        self._stop = None

    async def __aenter__(self):
        self._stop = asyncio.Event()
        self.server = await asyncio.start_server(self.handle, "127.0.0.1", 0)
        return self

    async def __aexit__(self, *exc):
        self._stop.set()
        self.server.close()
        await self.server.wait_closed()

    @property
    def port(self) -> int:
        return self.server.sockets[0].getsockname()[1]

    async def _read(self, reader):
        (size,) = struct.unpack("<i", await reader.readexactly(4))
        data = await reader.readexactly(size)
        req_id, kind = struct.unpack_from("<ii", data)
        return req_id, kind, data[8:-2].decode("utf-8")

    async def handle(self, reader, writer):
        try:
            req_id, kind, body = await self._read(reader)
            assert kind == AUTH
            if self.silent:
                await self._stop.wait()
                return
            # real servers send an empty response value first
            writer.write(_packet(req_id, RESPONSE_VALUE, ""))
            ok = body == self.password
            writer.write(_packet(req_id if ok else -1, AUTH_RESPONSE, ""))
            await writer.drain()
            if not ok:
                return
            while True:
                req_id, kind, body = await self._read(reader)
                self.commands.append(body)
                writer.write(_packet(req_id, RESPONSE_VALUE, f"ok: {body}"))
                await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()


def test_executor_sends_commands_in_order():
    async def go():
        async with FakeRconServer() as srv:
            ex = RconExecutor("127.0.0.1", srv.port, PASSWORD, timeout=2.0)
            await ex.execute(["lp user Steve parent add vip",
                              "say Steve is VIP"])
            assert srv.commands == ["lp user Steve parent add vip",
                                    "say Steve is VIP"]

    asyncio.run(go())


def test_executor_auth_failure():
    async def go():
        async with FakeRconServer() as srv:
            ex = RconExecutor("127.0.0.1", srv.port, "wrong", timeout=2.0)
            with pytest.raises(FulfillmentError) as exc:
                await ex.execute(["say hi"])
            assert exc.value.reason == "RCON authentication failed"
            assert srv.commands == []

    asyncio.run(go())


def test_executor_timeout():
    async def go():
        async with FakeRconServer(silent=True) as srv:
            ex = RconExecutor("127.0.0.1", srv.port, PASSWORD, timeout=0.2)
            with pytest.raises(FulfillmentError) as exc:
                await ex.execute(["say hi"])
            assert exc.value.reason == "RCON timeout"

    asyncio.run(go())


def test_executor_connection_refused():
    async def go():
        async with FakeRconServer() as srv:
            port = srv.port
        ex = RconExecutor("127.0.0.1", port, PASSWORD, timeout=2.0)
        with pytest.raises(FulfillmentError):
            await ex.execute(["say hi"])

    asyncio.run(go())


def test_disabled_executor():
    async def go():
        ex = DisabledExecutor()
        assert not ex.enabled
        with pytest.raises(FulfillmentError) as exc:
            await ex.execute(["say hi"])
        assert exc.value.reason == DISABLED_REASON

    asyncio.run(go())


def test_new_executor_needs_full_config(monkeypatch):
    monkeypatch.delenv("RCON_PASSWORD", raising=False)
    monkeypatch.setenv("RCON_HOST", "127.0.0.1")
    monkeypatch.setenv("RCON_PORT", "25575")
    assert isinstance(new_executor(), DisabledExecutor)

    monkeypatch.setenv("RCON_PASSWORD", PASSWORD)
    ex = new_executor()
    assert isinstance(ex, RconExecutor)
    assert (ex.host, ex.port, ex.timeout) == ("127.0.0.1", 25575, 5.0)
