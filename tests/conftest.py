"""Shared fakes and fixtures for the rahl test suite."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

from rahl.connection import ConnectionSupervisor, TransportEvent
from rahl.credentials import LocalCredentialStore, SessionCredential

SESSION_ID = "lord-rahl-bot"
ADMIN = "15550000000@s.whatsapp.net"
BOT_IDENTITY = "15559990000:12@s.whatsapp.net"

REQUIRED_KEYS = {f"pre-key-{i}": {"keyPair": {"public": f"pub{i}", "private": f"priv{i}"}} for i in range(1, 6)}


def logged_in_credential(revision: int = 1) -> SessionCredential:
    return SessionCredential(
        creds={"me": {"id": BOT_IDENTITY, "name": "Rahl"}, "platform": "android"},
        keys=dict(REQUIRED_KEYS),
        revision=revision,
    )


# ===========================================================================
# Transport fake
# ===========================================================================


class FakeTransport:
    """In-memory transport client recording everything the supervisor does."""

    def __init__(self, session_id: str, credential: SessionCredential | None):
        self.session_id = session_id
        self.credential = credential
        self.handlers: dict[TransportEvent, Any] = {}
        self.sent: list[tuple[str, str]] = []
        self.pairing_requests: list[str] = []
        self.connected = False
        self.closed = False
        self.connect_error: Exception | None = None
        self.connect_gate: asyncio.Event | None = None
        self.send_error: Exception | None = None
        self.pairing_code = "WXYZ-1234"

    def on(self, event, handler) -> None:
        self.handlers[TransportEvent(event)] = handler

    async def connect(self) -> None:
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def send_text(self, identity: str, text: str) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((identity, text))
        return f"msg-{len(self.sent)}"

    async def request_pairing_code(self, phone_number: str) -> str:
        self.pairing_requests.append(phone_number)
        return self.pairing_code

    async def close(self) -> None:
        self.closed = True

    # -- helpers driving the supervisor --

    async def emit(self, event: TransportEvent, payload: Any) -> None:
        await self.handlers[event](payload)

    async def open(self) -> None:
        await self.emit(TransportEvent.CONNECTION_UPDATE, {"connection": "open"})

    async def drop(self, reason: int) -> None:
        await self.emit(TransportEvent.CONNECTION_UPDATE, {"connection": "close", "closeReason": reason})

    async def deliver(self, sender: str, text: str, **extra: Any) -> None:
        payload = {"sender": sender, "text": text, **extra}
        await self.emit(TransportEvent.MESSAGE, payload)


class FakeTransportFactory:
    """Transport factory that remembers every client it built."""

    def __init__(self):
        self.clients: list[FakeTransport] = []
        self.connect_error: Exception | None = None
        self.connect_gate: asyncio.Event | None = None

    def __call__(self, session_id: str, credential: SessionCredential | None) -> FakeTransport:
        client = FakeTransport(session_id, credential)
        client.connect_error = self.connect_error
        client.connect_gate = self.connect_gate
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeTransport:
        return self.clients[-1]


# ===========================================================================
# Redis fake
# ===========================================================================


class FakeRedis:
    """Async dict standing in for redis.asyncio.Redis (get/set/delete/eval).

    ``eval`` only understands the store's save-if-newer script.
    """

    def __init__(self):
        self.data: dict[str, str] = {}
        self.calls: list[str] = []
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("connection refused")

    async def get(self, name: str):
        self._check()
        self.calls.append("get")
        return self.data.get(name)

    async def set(self, name: str, value: str):
        self._check()
        self.calls.append("set")
        self.data[name] = value
        return True

    async def delete(self, *names: str) -> int:
        self._check()
        self.calls.append("delete")
        return sum(1 for n in names if self.data.pop(n, None) is not None)

    async def eval(self, script: str, numkeys: int, *keys_and_args):
        self._check()
        self.calls.append("eval")
        key, revision, blob = keys_and_args
        current = self.data.get(key)
        if current is not None:
            try:
                stored = json.loads(current)
            except ValueError:
                stored = None
            if isinstance(stored, dict) and int(stored.get("revision") or 0) > int(revision):
                return 0
        self.data[key] = blob
        return 1

    async def aclose(self) -> None:
        self.closed = True


# ===========================================================================
# Fixtures
# ===========================================================================


@pytest.fixture
def store(tmp_path) -> LocalCredentialStore:
    return LocalCredentialStore(tmp_path / "sessions")


@pytest.fixture
def factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest_asyncio.fixture
async def supervisor(store, factory):
    sup = ConnectionSupervisor(
        SESSION_ID,
        store,
        factory,
        reconnect_delay=0.01,
        send_timeout=0.5,
        admin_identity=ADMIN,
    )
    yield sup
    await sup.stop()
