"""Wiring of one bot session: store, registry, commands, router, supervisor."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from rahl.commands import CommandDispatcher, register_builtin_commands
from rahl.config.settings import Settings
from rahl.connection import ConnectionSupervisor, TransportError, TransportFactory, load_transport_factory
from rahl.credentials import CredentialStore, LocalCredentialStore, RedisCredentialStore
from rahl.messaging import MessageHandler, MessageRouter
from rahl.pairing import PairingRegistry

logger = logging.getLogger(__name__)


def create_store(settings: Settings) -> CredentialStore:
    """Build the credential store selected by ``CREDENTIAL_BACKEND``."""
    if settings.CREDENTIAL_BACKEND == "redis":
        return RedisCredentialStore.from_url(settings.REDIS_URL, namespace=settings.REDIS_NAMESPACE)
    return LocalCredentialStore(settings.SESSIONS_DIR, required_files=settings.REQUIRED_KEY_FILES)


@dataclass
class BotRuntime:
    """
    Everything needed to run one session.

    Built once per process (or per test) and kept on ``app.state``; nothing
    here is a module global.
    """

    settings: Settings
    store: CredentialStore
    registry: PairingRegistry
    dispatcher: CommandDispatcher
    router: MessageRouter
    supervisor: ConnectionSupervisor
    handler: MessageHandler
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        store: CredentialStore | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> "BotRuntime":
        """
        Construct a runtime from settings.

        Args:
            settings: Loaded settings.
            store: Credential store override (defaults to ``create_store``).
            transport_factory: Transport factory override; otherwise loaded
                from ``TRANSPORT_FACTORY`` when set.

        Raises:
            ValueError / ImportError: If ``TRANSPORT_FACTORY`` cannot be loaded.
        """
        if transport_factory is None and settings.TRANSPORT_FACTORY:
            transport_factory = load_transport_factory(settings.TRANSPORT_FACTORY)

        store = store or create_store(settings)
        started_at = datetime.now(timezone.utc)
        admin = settings.ADMIN_IDENTITY or None

        registry = PairingRegistry(ttl_seconds=settings.PAIRING_CODE_TTL_SECONDS)
        dispatcher = register_builtin_commands(CommandDispatcher(prefix=settings.COMMAND_PREFIX))
        router = MessageRouter(
            command_prefix=settings.COMMAND_PREFIX,
            admin_identity=admin,
            pairing_phrase=settings.PAIRING_PHRASE,
        )
        supervisor = ConnectionSupervisor(
            settings.SESSION_ID,
            store,
            transport_factory,
            reconnect_delay=settings.RECONNECT_DELAY_SECONDS,
            send_timeout=settings.SEND_TIMEOUT_SECONDS,
            admin_identity=admin,
            notify_admin_on_open=settings.NOTIFY_ADMIN_ON_CONNECT,
            bot_name=settings.BOT_NAME,
        )
        handler = MessageHandler(
            supervisor,
            router,
            registry,
            dispatcher,
            bot_name=settings.BOT_NAME,
            settings=settings,
            started_at=started_at,
        )
        supervisor.on_message(handler.handle)

        return cls(
            settings=settings,
            store=store,
            registry=registry,
            dispatcher=dispatcher,
            router=router,
            supervisor=supervisor,
            handler=handler,
            started_at=started_at,
        )

    async def start(self) -> None:
        """Start the expiry sweeper and, if a transport is configured, connect."""
        self.registry.start_sweeper(self.settings.PAIRING_SWEEP_INTERVAL_SECONDS)
        if not self.supervisor.has_transport:
            logger.warning("No TRANSPORT_FACTORY configured; running without a chat connection")
            return
        try:
            await self.supervisor.start()
        except TransportError as e:
            logger.error("Could not start connection: %s", e)

    async def stop(self) -> None:
        await self.supervisor.stop()
        await self.registry.stop_sweeper()
        if isinstance(self.store, RedisCredentialStore):
            await self.store.aclose()
