"""Tests for the rahl HTTP interface (rahl.main + rahl.api.routes)."""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import SESSION_ID, logged_in_credential
from rahl import __version__
from rahl.config.settings import Settings
from rahl.connection import DisconnectReason
from rahl.credentials import PersistenceError, RedisCredentialStore
from rahl.main import create_app
from rahl.runtime import BotRuntime


# ===========================================================================
# Fixtures
# ===========================================================================


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        SESSIONS_DIR=str(tmp_path / "sessions"),
        RECONNECT_DELAY_SECONDS=0.01,
        SEND_TIMEOUT_SECONDS=0.5,
        NOTIFY_ADMIN_ON_CONNECT=False,
    )


@pytest_asyncio.fixture
async def runtime(settings, factory):
    rt = BotRuntime.from_settings(settings, transport_factory=factory)
    yield rt
    await rt.stop()


@pytest_asyncio.fixture
async def client(runtime):
    app = create_app(runtime=runtime)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


# ===========================================================================
# Pairing codes
# ===========================================================================


class TestGenerateCode:
    @pytest.mark.asyncio
    async def test_generate(self, client, runtime):
        r = await client.post("/generate-code", json={"phoneNumber": "+15551234567"})
        assert r.status_code == 200
        body = r.json()
        assert len(body["code"]) == 8
        assert body["expiresIn"] == 600
        assert runtime.registry.status(body["code"]).user_id == "+15551234567"

    @pytest.mark.asyncio
    async def test_generate_with_user_id(self, client, runtime):
        r = await client.post("/generate-code", json={"phoneNumber": "+1555", "userId": "u-1"})
        assert runtime.registry.status(r.json()["code"]).user_id == "u-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{}, {"phoneNumber": ""}, {"userId": "u-1"}])
    async def test_missing_phone(self, client, body):
        r = await client.post("/generate-code", json=body)
        assert r.status_code == 400
        assert r.json() == {"error": "Phone number is required"}


class TestValidateAndStatus:
    @pytest.mark.asyncio
    async def test_validate(self, client):
        code = (await client.post("/generate-code", json={"phoneNumber": "+1555"})).json()["code"]
        r = await client.get(f"/validate-code/{code}")
        assert r.status_code == 200
        assert r.json() == {"valid": True, "userId": "+1555", "phoneNumber": "+1555"}

    @pytest.mark.asyncio
    async def test_validate_unknown(self, client):
        r = await client.get("/validate-code/00000000")
        assert r.status_code == 404
        assert r.json() == {"valid": False, "message": "Code not found"}

    @pytest.mark.asyncio
    async def test_status(self, client):
        code = (await client.post("/generate-code", json={"phoneNumber": "+1555"})).json()["code"]
        r = await client.get(f"/pairing-status/{code}")
        assert r.json() == {"status": "pending"}

    @pytest.mark.asyncio
    async def test_status_unknown(self, client):
        r = await client.get("/pairing-status/00000000")
        assert r.status_code == 404
        assert r.json() == {"status": "invalid"}


class TestCompletePairing:
    @pytest.mark.asyncio
    async def test_complete(self, client):
        code = (await client.post("/generate-code", json={"phoneNumber": "+1555"})).json()["code"]

        r = await client.post(f"/complete-pairing/{code}")
        assert r.status_code == 200
        assert r.json() == {"success": True, "userId": "+1555"}

        status = await client.get(f"/pairing-status/{code}")
        assert status.json() == {"status": "completed"}

    @pytest.mark.asyncio
    async def test_complete_twice(self, client):
        code = (await client.post("/generate-code", json={"phoneNumber": "+1555"})).json()["code"]
        await client.post(f"/complete-pairing/{code}")
        r = await client.post(f"/complete-pairing/{code}")
        assert r.status_code == 409
        assert r.json()["success"] is False

    @pytest.mark.asyncio
    async def test_complete_unknown(self, client):
        r = await client.post("/complete-pairing/00000000")
        assert r.status_code == 404
        assert r.json() == {"success": False, "message": "Code not found"}


# ===========================================================================
# Transport-issued linking codes
# ===========================================================================


class TestLinkingCode:
    @pytest.mark.asyncio
    async def test_generate_pairing_code(self, client, factory):
        r = await client.post("/api/generate-pairing-code", json={"phoneNumber": "+1 555 123 4567"})
        assert r.status_code == 200
        assert r.json() == {"success": True, "code": "WXYZ-1234"}
        assert factory.last.pairing_requests == ["15551234567"]

    @pytest.mark.asyncio
    async def test_missing_phone(self, client):
        r = await client.post("/api/generate-pairing-code", json={})
        assert r.status_code == 400

    @pytest.mark.asyncio
    async def test_no_transport(self, settings):
        rt = BotRuntime.from_settings(settings)
        app = create_app(runtime=rt)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            r = await c.post("/api/generate-pairing-code", json={"phoneNumber": "15551234567"})
        assert r.status_code == 503
        assert r.json()["success"] is False

    @pytest.mark.asyncio
    async def test_already_linked(self, client, runtime, factory):
        await runtime.supervisor.start()
        await factory.last.open()
        r = await client.post("/api/generate-pairing-code", json={"phoneNumber": "15551234567"})
        assert r.status_code == 502

    @pytest.mark.asyncio
    async def test_logged_out(self, client, runtime, factory):
        await runtime.supervisor.start()
        await factory.last.drop(DisconnectReason.LOGGED_OUT)
        r = await client.post("/api/generate-pairing-code", json={"phoneNumber": "15551234567"})
        assert r.status_code == 409


# ===========================================================================
# Session
# ===========================================================================


class TestSession:
    @pytest.mark.asyncio
    async def test_status_without_session(self, client):
        r = await client.get("/session-status")
        assert r.status_code == 200
        assert r.json() == {
            "hasValidSession": False,
            "sessionInfo": None,
            "isConnected": False,
            "connectionState": {"status": "idle", "reason": None, "terminal": False},
        }

    @pytest.mark.asyncio
    async def test_status_connected(self, client, runtime, factory):
        await runtime.store.save(SESSION_ID, logged_in_credential())
        await runtime.supervisor.start()
        await factory.last.open()

        body = (await client.get("/session-status")).json()
        assert body["hasValidSession"] is True
        assert body["isConnected"] is True
        assert body["sessionInfo"]["phone"] == "15559990000@s.whatsapp.net"
        assert body["connectionState"]["status"] == "open"

    @pytest.mark.asyncio
    async def test_clear_session(self, client, runtime, factory):
        """clear-session removes the credential and forces the connection idle."""
        await runtime.store.save(SESSION_ID, logged_in_credential())
        await runtime.supervisor.start()
        await factory.last.open()

        r = await client.post("/clear-session")
        assert r.status_code == 200
        assert r.json() == {"success": True}

        body = (await client.get("/session-status")).json()
        assert body["hasValidSession"] is False
        assert body["isConnected"] is False
        assert body["connectionState"]["status"] == "idle"

    @pytest.mark.asyncio
    async def test_session_status_storage_outage(self, settings, factory, fake_redis):
        """An unreachable store is a 500, not a missing session."""
        fake_redis.fail = True
        rt = BotRuntime.from_settings(
            settings, store=RedisCredentialStore(fake_redis), transport_factory=factory
        )
        app = create_app(runtime=rt)
        try:
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
                r = await c.get("/session-status")
        finally:
            await rt.stop()
        assert r.status_code == 500
        assert "connection refused" in r.json()["error"]

    @pytest.mark.asyncio
    async def test_clear_session_persistence_failure(self, client, runtime, monkeypatch):
        async def failing_clear(session_id):
            raise PersistenceError(session_id, "clear", "read-only file system")

        monkeypatch.setattr(runtime.store, "clear", failing_clear)
        r = await client.post("/clear-session")
        assert r.status_code == 500
        assert "read-only file system" in r.json()["error"]


# ===========================================================================
# Health / middleware
# ===========================================================================


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        r = await client.get("/api/health")
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "ok"
        assert body["version"] == __version__
        assert body["session"] == SESSION_ID
        assert body["transportConfigured"] is True

    @pytest.mark.asyncio
    async def test_request_id_header(self, client):
        r = await client.get("/api/health")
        assert r.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_request_id_propagated(self, client):
        r = await client.get("/api/health", headers={"X-Request-ID": "abc-123"})
        assert r.headers["X-Request-ID"] == "abc-123"
