"""Connection supervisor: owns the transport client for one session.

The supervisor opens the transport with the stored credential, persists
every credential update, relays pairing material, routes inbound messages
to subscribers and reconnects after a fixed delay when the connection drops.
An explicit logout is terminal: the session must be cleared and paired again
before the supervisor will connect.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable

from rahl.credentials import CredentialStore, PersistenceError, SessionCredential

from .state import (
    IDLE,
    ConnectionState,
    ConnectionStatus,
    TerminalLogout,
    TransportError,
    TransportUnavailable,
)
from .transport import (
    ConnectionPhase,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    PairingMaterial,
    TransportClient,
    TransportEvent,
    TransportFactory,
)

logger = logging.getLogger(__name__)

MessageListener = Callable[[Any], Awaitable[None]]
PairingListener = Callable[[PairingMaterial], Awaitable[None]]

DEFAULT_RECONNECT_DELAY = 3.0
DEFAULT_SEND_TIMEOUT = 15.0


class ConnectionSupervisor:
    """
    Lifecycle owner of one session's transport connection.

    State machine::

        IDLE -> CONNECTING -> OPEN -> CLOSED(reason) -> CONNECTING ...
                                            \\-> CLOSED(logged_out), terminal

    A session has at most one in-flight connection attempt and at most one
    scheduled reconnect. Events from a transport client that has since been
    replaced are dropped, so a late event can never overwrite current state.

    Example:
        supervisor = ConnectionSupervisor("lord-rahl-bot", store, factory)
        supervisor.on_message(handler.handle)
        await supervisor.start()
        ...
        await supervisor.send("15551234567@s.whatsapp.net", "hello")
    """

    def __init__(
        self,
        session_id: str,
        store: CredentialStore,
        transport_factory: TransportFactory | None,
        *,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
        admin_identity: str | None = None,
        notify_admin_on_open: bool = True,
        bot_name: str = "RAHL XMD",
    ) -> None:
        """
        Initialize the supervisor.

        Args:
            session_id: The session this supervisor owns.
            store: Credential store for load/save/clear.
            transport_factory: Builds a transport client from a credential.
                None means no transport is configured.
            reconnect_delay: Fixed delay in seconds before reconnecting.
            send_timeout: Default bound on a single send or pairing request.
            admin_identity: Chat identity notified on connect and pairing.
            notify_admin_on_open: Whether to message the admin when OPEN.
            bot_name: Name used in notifications.
        """
        self._session_id = session_id
        self._store = store
        self._factory = transport_factory
        self._reconnect_delay = reconnect_delay
        self._send_timeout = send_timeout
        self._admin_identity = admin_identity or None
        self._notify_admin_on_open = notify_admin_on_open
        self._bot_name = bot_name

        self._state: ConnectionState = IDLE
        self._client: TransportClient | None = None
        self._credential: SessionCredential | None = None
        self._connect_lock = asyncio.Lock()
        self._reconnect_task: asyncio.Task | None = None
        self._reconnect_sleeping = False
        self._reconnect_again = False
        self._stopped = False
        # Bumped by stop(); a start() that began under an older value gives up
        self._generation = 0
        self._open_event = asyncio.Event()

        self._pairing_material: PairingMaterial | None = None
        self._pairing_waiters: list[asyncio.Future] = []
        self._pairing_listeners: list[PairingListener] = []
        self._message_listeners: list[MessageListener] = []

        self.reconnect_attempts = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def store(self) -> CredentialStore:
        return self._store

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state.is_open and self._client is not None

    @property
    def has_transport(self) -> bool:
        return self._factory is not None

    @property
    def pairing_material(self) -> PairingMaterial | None:
        return self._pairing_material

    @property
    def self_identity(self) -> str | None:
        """The bot's own chat identity, once the credential names it."""
        if self._credential is None:
            return None
        return self._credential.me_id

    @property
    def admin_identity(self) -> str | None:
        return self._admin_identity

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_message(self, listener: MessageListener) -> None:
        """Subscribe to inbound message events."""
        self._message_listeners.append(listener)

    def on_pairing_material(self, listener: PairingListener) -> None:
        """Subscribe to pairing material (QR tokens, linking codes)."""
        self._pairing_listeners.append(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Open the transport with the stored credential.

        Does nothing if a connection is already open or being opened. A
        ``stop()`` that lands while this is waiting wins: the attempt is
        abandoned and any client it built is closed.

        Raises:
            TransportUnavailable: If no transport factory is configured.
            TerminalLogout: If the session was logged out and not cleared.
        """
        if self._factory is None:
            raise TransportUnavailable("No transport configured")
        if self._state.terminal:
            raise TerminalLogout(
                f"Session '{self._session_id}' was logged out; clear it and pair again"
            )

        generation = self._generation
        async with self._connect_lock:
            if generation != self._generation:
                logger.debug("Start superseded by stop, not connecting")
                return
            if self._client is not None and self._state.status in (
                ConnectionStatus.CONNECTING,
                ConnectionStatus.OPEN,
            ):
                return

            self._stopped = False
            self._set_state(ConnectionState(ConnectionStatus.CONNECTING))

            try:
                credential = await self._store.load(self._session_id)
            except PersistenceError as e:
                if generation != self._generation:
                    return
                logger.error("Could not load credentials: %s", e)
                self._set_state(ConnectionState(ConnectionStatus.CLOSED, DisconnectReason.UNKNOWN))
                self._schedule_reconnect()
                return

            if generation != self._generation:
                logger.debug("Start superseded by stop, not connecting")
                return

            if credential is None:
                logger.info("No stored session for %s, waiting for pairing", self._session_id)
            else:
                logger.info("Found stored session for %s, reconnecting", self._session_id)
            self._credential = credential or SessionCredential()

            try:
                client = self._factory(self._session_id, credential)
            except Exception:
                logger.exception("Transport factory failed")
                self._set_state(ConnectionState(ConnectionStatus.CLOSED, DisconnectReason.UNKNOWN))
                self._schedule_reconnect()
                return

            self._client = client
            self._subscribe(client)

            try:
                await client.connect()
            except Exception:
                logger.exception("Transport failed to connect")
                if self._client is client:
                    await self._handle_close(client, DisconnectReason.CONNECTION_CLOSED)
                return

            if generation != self._generation:
                # stop() already detached this client; make sure it is closed
                if self._client is client:
                    self._client = None
                await self._close_client(client)

    async def stop(self) -> None:
        """Close the transport and return to IDLE without reconnecting."""
        self._stopped = True
        self._generation += 1
        task = self._reconnect_task
        self._reset_reconnect()
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        client, self._client = self._client, None
        self._open_event.clear()
        if client is not None:
            await self._close_client(client)

        self._fail_pairing_waiters("Connection stopped")
        # A logout stays terminal until the session is cleared
        if not self._state.terminal:
            self._set_state(IDLE)

    async def restart(self) -> None:
        await self.stop()
        await self.start()

    async def clear_session(self) -> bool:
        """
        Stop the connection and remove the stored credential.

        Also lifts a terminal logout, so a fresh pairing can follow.

        Raises:
            PersistenceError: If the store cannot remove the session.
        """
        await self.stop()
        cleared = await self._store.clear(self._session_id)
        self._credential = None
        self._pairing_material = None
        self.reconnect_attempts = 0
        self._set_state(IDLE)
        return cleared

    async def wait_until_open(self, timeout: float | None = None) -> bool:
        """Wait for the connection to open; False on timeout."""
        try:
            await asyncio.wait_for(self._open_event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send(self, identity: str, text: str, timeout: float | None = None) -> str:
        """
        Send a text message and wait for the transport's acknowledgement.

        Fails fast instead of queuing when the connection is not open.

        Returns:
            The transport's message id.

        Raises:
            TransportUnavailable: If the connection is not open.
            TransportError: If the transport fails or does not ack in time.
        """
        client = self._client
        if client is None or not self._state.is_open:
            raise TransportUnavailable(f"Connection is {self._state}")

        try:
            return await asyncio.wait_for(
                client.send_text(identity, text),
                timeout if timeout is not None else self._send_timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransportError(f"Send to {identity} timed out") from e
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"Send to {identity} failed: {e}") from e

    async def notify_admin(self, text: str) -> bool:
        """Best-effort message to the configured administrator."""
        if not self._admin_identity:
            return False
        try:
            await self.send(self._admin_identity, text)
        except TransportError as e:
            logger.warning("Could not notify administrator: %s", e)
            return False
        return True

    async def request_pairing_code(self, phone_number: str) -> str:
        """
        Ask the transport for a linking code for ``phone_number``.

        This is the transport-issued pairing path, independent of the
        PairingRegistry's self-issued codes. A connection is started if
        none is in progress.

        Raises:
            ValueError: If the phone number has no digits.
            TransportUnavailable: If no transport connection can be made.
            TransportError: If the session is already linked or the
                transport rejects the request.
        """
        digits = re.sub(r"\D", "", phone_number or "")
        if not digits:
            raise ValueError("Phone number is required")
        if self._state.is_open:
            raise TransportError("Session is already linked")

        if self._client is None:
            await self.start()
        client = self._client
        if client is None:
            raise TransportUnavailable(f"Connection is {self._state}")

        try:
            code = await asyncio.wait_for(
                client.request_pairing_code(digits), self._send_timeout
            )
        except asyncio.TimeoutError as e:
            raise TransportError("Pairing code request timed out") from e
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"Pairing code request failed: {e}") from e

        logger.info("Transport issued a linking code for %s", digits)
        await self._publish_pairing_material(PairingMaterial(kind="code", value=code))
        return code

    async def wait_for_pairing_material(self, timeout: float | None = None) -> PairingMaterial:
        """
        Return current pairing material, or wait for the transport to emit it.

        Raises:
            asyncio.TimeoutError: If nothing arrives within ``timeout``.
            TransportUnavailable: If the connection stops or logs out first.
        """
        if self._pairing_material is not None:
            return self._pairing_material

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pairing_waiters.append(future)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            if future in self._pairing_waiters:
                self._pairing_waiters.remove(future)

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    def _subscribe(self, client: TransportClient) -> None:
        handlers = {
            TransportEvent.CONNECTION_UPDATE: self._on_connection_update,
            TransportEvent.CREDENTIALS_UPDATE: self._on_credentials_update,
            TransportEvent.PAIRING_MATERIAL: self._on_pairing_material,
            TransportEvent.MESSAGE: self._on_message,
        }
        for event, handler in handlers.items():
            client.on(event, self._bind(client, handler))

    def _bind(self, client: TransportClient, handler):
        async def dispatch(payload: Any) -> None:
            if client is not self._client:
                logger.debug("Dropping event from superseded transport client")
                return
            await handler(client, payload)

        return dispatch

    async def _on_connection_update(self, client: TransportClient, payload: Any) -> None:
        update = ConnectionUpdate.from_payload(payload)

        if update.phase == ConnectionPhase.CONNECTING:
            self._set_state(ConnectionState(ConnectionStatus.CONNECTING))

        elif update.phase == ConnectionPhase.OPEN:
            self._set_state(ConnectionState(ConnectionStatus.OPEN))
            self.reconnect_attempts = 0
            self._pairing_material = None
            self._open_event.set()
            logger.info("Connected to the messaging service as %s", self.self_identity or "unknown")
            if self._notify_admin_on_open:
                await self.notify_admin(f"{self._bot_name} connected successfully!")

        elif update.phase == ConnectionPhase.CLOSE:
            await self._handle_close(client, update.close_reason or DisconnectReason.UNKNOWN)

    async def _handle_close(self, client: TransportClient, reason: DisconnectReason) -> None:
        self._client = None
        self._open_event.clear()
        await self._close_client(client)

        if reason.is_terminal:
            self._set_state(ConnectionState(ConnectionStatus.CLOSED, reason, terminal=True))
            self._fail_pairing_waiters("Session was logged out")
            logger.warning(
                "Session %s was logged out; clear the session and pair again",
                self._session_id,
            )
            return

        self._set_state(ConnectionState(ConnectionStatus.CLOSED, reason))
        if self._stopped:
            return
        logger.warning(
            "Connection closed (%s), reconnecting in %.1fs",
            reason.name.lower(),
            self._reconnect_delay,
        )
        self._schedule_reconnect()

    async def _on_credentials_update(self, client: TransportClient, payload: Any) -> None:
        update = CredentialsUpdate.from_payload(payload)
        current = self._credential or SessionCredential()

        keys = dict(current.keys)
        for name, record in update.keys.items():
            if record is None:
                keys.pop(name, None)
            else:
                keys[name] = record

        self._credential = SessionCredential(
            creds=update.creds if update.creds is not None else current.creds,
            keys=keys,
            revision=current.revision + 1,
        )

        snapshot = self._credential.copy()
        try:
            await self._store.save(self._session_id, snapshot)
        except PersistenceError as e:
            # The next update rewrites the whole credential, so nothing is lost for good
            logger.error("Credential save failed, continuing with in-memory copy: %s", e)

    async def _on_pairing_material(self, client: TransportClient, payload: Any) -> None:
        material = PairingMaterial.from_payload(payload)
        logger.info("Pairing material available (%s)", material.kind)
        await self._publish_pairing_material(material)

    async def _on_message(self, client: TransportClient, payload: Any) -> None:
        for listener in list(self._message_listeners):
            try:
                await listener(payload)
            except Exception:
                logger.exception("Message listener failed")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if state != self._state:
            logger.debug("Connection state %s -> %s", self._state, state)
        self._state = state

    def _schedule_reconnect(self) -> bool:
        """Schedule a single delayed reconnect; False if one is already pending."""
        if self.reconnect_pending:
            if self._reconnect_sleeping or self._reconnect_again:
                return False
            # The running reconnect is inside start(); it goes round once more
            self._reconnect_again = True
        else:
            self._reconnect_sleeping = True
            self._reconnect_task = asyncio.create_task(self._reconnect_later())
        self.reconnect_attempts += 1
        return True

    async def _reconnect_later(self) -> None:
        # Stays registered as _reconnect_task until start() returns, so stop() can cancel it
        try:
            while True:
                await asyncio.sleep(self._reconnect_delay)
                self._reconnect_sleeping = False
                if self._stopped:
                    return
                logger.info("Reconnecting (attempt %d)", self.reconnect_attempts)
                try:
                    await self.start()
                except TransportError as e:
                    logger.error("Reconnect aborted: %s", e)
                    return
                if not self._reconnect_again:
                    return
                self._reconnect_again = False
                self._reconnect_sleeping = True
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reset_reconnect()

    def _reset_reconnect(self) -> None:
        self._reconnect_task = None
        self._reconnect_sleeping = False
        self._reconnect_again = False

    async def _publish_pairing_material(self, material: PairingMaterial) -> None:
        self._pairing_material = material
        for future in self._pairing_waiters:
            if not future.done():
                future.set_result(material)
        for listener in list(self._pairing_listeners):
            try:
                await listener(material)
            except Exception:
                logger.exception("Pairing material listener failed")

    def _fail_pairing_waiters(self, reason: str) -> None:
        for future in self._pairing_waiters:
            if not future.done():
                future.set_exception(TransportUnavailable(reason))

    async def _close_client(self, client: TransportClient) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.debug("Error closing transport client: %s", e)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} session={self._session_id} state={self._state}>"
