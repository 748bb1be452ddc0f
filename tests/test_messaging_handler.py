"""End-to-end tests for inbound message handling.

A BotRuntime is wired with a fake transport; messages are delivered as
transport events and replies are read back from the fake's sent list.
"""

from __future__ import annotations

import pytest
import pytest_asyncio

from conftest import ADMIN, BOT_IDENTITY
from rahl.commands import GENERIC_ERROR_REPLY
from rahl.config.settings import Settings
from rahl.messaging import INVALID_CODE_REPLY, USED_CODE_REPLY
from rahl.pairing import PairingStatus
from rahl.runtime import BotRuntime

USER_A = "15557654321@s.whatsapp.net"
USER_B = "15558887777@s.whatsapp.net"


# ===========================================================================
# Fixtures
# ===========================================================================


@pytest_asyncio.fixture
async def runtime(tmp_path, factory):
    settings = Settings(
        _env_file=None,
        SESSIONS_DIR=str(tmp_path / "sessions"),
        ADMIN_IDENTITY=ADMIN,
        RECONNECT_DELAY_SECONDS=0.01,
        SEND_TIMEOUT_SECONDS=0.5,
        NOTIFY_ADMIN_ON_CONNECT=False,
    )
    rt = BotRuntime.from_settings(settings, transport_factory=factory)
    await rt.supervisor.start()
    await factory.last.open()
    yield rt
    await rt.stop()


def _replies_to(factory, identity: str) -> list[str]:
    return [text for to, text in factory.last.sent if to == identity]


# ===========================================================================
# Pairing by chat message
# ===========================================================================


class TestPairingScenario:
    @pytest.mark.asyncio
    async def test_generate_redeem_then_reuse(self, runtime, factory):
        """Code redeemed by A completes the request; a second use is rejected."""
        request = await runtime.registry.generate("+15551234567")
        assert len(request.code) == 8 and request.code.isdigit()
        assert request.expires_in == 600

        await factory.last.deliver(USER_A, request.code, displayName="Ann")

        stored = runtime.registry.status(request.code)
        assert stored.status == PairingStatus.COMPLETED
        assert stored.linked_identity == USER_A
        assert _replies_to(factory, USER_A) == [
            "Session established! Welcome to RAHL XMD, +15551234567."
        ]
        assert _replies_to(factory, ADMIN) == [
            f"User +15551234567 paired successfully as {USER_A}"
        ]

        await factory.last.deliver(USER_B, request.code)

        after = runtime.registry.status(request.code)
        assert after.linked_identity == USER_A
        assert after.completed_at == stored.completed_at
        assert _replies_to(factory, USER_B) == [USED_CODE_REPLY]

    @pytest.mark.asyncio
    async def test_unknown_code(self, runtime, factory):
        await factory.last.deliver(USER_A, "99999999")
        assert _replies_to(factory, USER_A) == [INVALID_CODE_REPLY]

    @pytest.mark.asyncio
    async def test_phrase_with_code(self, runtime, factory):
        request = await runtime.registry.generate("+15551234567", user_id="ann")
        await factory.last.deliver(USER_A, f"Lord Rahl {request.code}")
        assert runtime.registry.status(request.code).status == PairingStatus.COMPLETED
        assert _replies_to(factory, USER_A) == ["Session established! Welcome to RAHL XMD, ann."]


# ===========================================================================
# Commands and fallbacks
# ===========================================================================


class TestCommands:
    @pytest.mark.asyncio
    async def test_user_command(self, runtime, factory):
        await factory.last.deliver(USER_A, ".ping")
        assert _replies_to(factory, USER_A) == ["Pong!"]

    @pytest.mark.asyncio
    async def test_unknown_command(self, runtime, factory):
        await factory.last.deliver(USER_A, ".frobnicate")
        assert _replies_to(factory, USER_A) == [
            "Unknown command: .frobnicate. Type .menu to see available commands."
        ]

    @pytest.mark.asyncio
    async def test_admin_command_hidden_from_users(self, runtime, factory):
        """Non-admins get the unknown-command reply for admin commands."""
        await factory.last.deliver(USER_A, ".codes")
        assert _replies_to(factory, USER_A) == [
            "Unknown command: .codes. Type .menu to see available commands."
        ]

    @pytest.mark.asyncio
    async def test_admin_command(self, runtime, factory):
        await factory.last.deliver(ADMIN, ".gencode +15551234567")
        reply = _replies_to(factory, ADMIN)[0]
        assert reply.startswith("Pairing code for +15551234567: ")
        assert len(runtime.registry) == 1

    @pytest.mark.asyncio
    async def test_owner(self, runtime, factory):
        await factory.last.deliver(USER_A, ".owner")
        assert _replies_to(factory, USER_A) == ["Owner: +15550000000"]

    @pytest.mark.asyncio
    async def test_failing_command_does_not_affect_connection(self, runtime, factory):
        async def broken(ctx):
            raise RuntimeError("boom")

        runtime.dispatcher.command("broken", "fails")(broken)
        await factory.last.deliver(USER_A, ".broken")

        assert _replies_to(factory, USER_A) == [GENERIC_ERROR_REPLY]
        assert runtime.supervisor.is_connected

    @pytest.mark.asyncio
    async def test_greeting(self, runtime, factory):
        await factory.last.deliver(USER_A, "Hello!", displayName="Ann")
        assert _replies_to(factory, USER_A) == [
            "Hello Ann! I'm RAHL XMD. Type .menu to see what I can do."
        ]

    @pytest.mark.asyncio
    async def test_other_plain_text_ignored(self, runtime, factory):
        await factory.last.deliver(USER_A, "what's up with the weather")
        assert factory.last.sent == []


class TestIgnored:
    @pytest.mark.asyncio
    async def test_from_self(self, runtime, factory):
        await factory.last.deliver(USER_A, ".ping", fromSelf=True)
        assert factory.last.sent == []

    @pytest.mark.asyncio
    async def test_own_identity(self, runtime, factory):
        from rahl.connection import TransportEvent

        await factory.last.emit(
            TransportEvent.CREDENTIALS_UPDATE, {"creds": {"me": {"id": BOT_IDENTITY}}}
        )
        await factory.last.deliver("15559990000@s.whatsapp.net", ".ping")
        assert factory.last.sent == []

    @pytest.mark.asyncio
    async def test_reply_failure_swallowed(self, runtime, factory):
        factory.last.send_error = RuntimeError("socket gone")
        reply = await runtime.handler.handle({"sender": USER_A, "text": ".ping"})
        assert reply == "Pong!"
        assert runtime.supervisor.is_connected
