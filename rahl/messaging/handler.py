"""Inbound message handling: classification to effect.

MessageHandler is the supervisor's message listener. It classifies each
inbound event, redeems pairing codes, dispatches commands, and sends the
reply back through the supervisor. Nothing raised while handling one message
escapes to the supervisor.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from rahl.commands import CommandContext, CommandDispatcher
from rahl.connection import TransportError
from rahl.pairing import CodeAlreadyUsed, CodeNotFound, PairingRegistry

from .router import Classification, ClassificationKind, InboundMessage, MessageRouter

if TYPE_CHECKING:
    from rahl.connection import ConnectionSupervisor

logger = logging.getLogger(__name__)

GREETINGS = frozenset({"hi", "hello", "hey", "hola", "salut", "good morning", "good evening"})

INVALID_CODE_REPLY = "Invalid pairing code. Please generate a new code."
USED_CODE_REPLY = "This pairing code has already been used."


class MessageHandler:
    """
    Routes classified inbound messages to the registry or the dispatcher.

    Example:
        handler = MessageHandler(supervisor, router, registry, dispatcher)
        supervisor.on_message(handler.handle)
    """

    def __init__(
        self,
        supervisor: ConnectionSupervisor,
        router: MessageRouter,
        registry: PairingRegistry,
        dispatcher: CommandDispatcher,
        *,
        bot_name: str = "RAHL XMD",
        settings: Any = None,
        started_at: datetime | None = None,
    ) -> None:
        self._supervisor = supervisor
        self._router = router
        self._registry = registry
        self._dispatcher = dispatcher
        self._bot_name = bot_name
        self._settings = settings
        self._started_at = started_at or datetime.now(timezone.utc)

    async def handle(self, raw: dict[str, Any]) -> str | None:
        """
        Handle one inbound event.

        Returns:
            The reply text that was sent (or attempted), None if none.
        """
        self._router.self_identity = self._supervisor.self_identity
        classification = self._router.classify(raw)
        if classification.kind == ClassificationKind.IGNORED:
            return None

        message = classification.message
        try:
            reply = await self._respond(classification, message)
        except Exception:
            logger.exception("Failed to handle message from %s", message.sender)
            return None

        if reply:
            await self._reply(message.sender, reply)
        return reply

    async def _respond(self, classification: Classification, message: InboundMessage) -> str | None:
        if classification.kind == ClassificationKind.PAIRING:
            return await self._redeem(classification.code, message)
        if classification.is_command:
            return await self._run_command(classification, message)
        return self._fallback(message)

    async def _redeem(self, code: str, message: InboundMessage) -> str:
        try:
            result = await self._registry.redeem(code, message.sender, message.display_name)
        except CodeNotFound:
            logger.info("Rejected unknown pairing code from %s", message.sender)
            return INVALID_CODE_REPLY
        except CodeAlreadyUsed:
            logger.info("Rejected reused pairing code from %s", message.sender)
            return USED_CODE_REPLY

        await self._supervisor.notify_admin(
            f"User {result.owner_phone_number} paired successfully as {message.sender}"
        )
        return f"Session established! Welcome to {self._bot_name}, {result.user_id or 'user'}."

    async def _run_command(self, classification: Classification, message: InboundMessage) -> str | None:
        name, args = self._dispatcher.parse(classification.text)
        if not name:
            return None

        context = CommandContext(
            sender=message.sender,
            args=args,
            is_admin=classification.kind == ClassificationKind.ADMIN_COMMAND,
            display_name=message.display_name,
            text=classification.text,
            prefix=self._dispatcher.prefix,
            supervisor=self._supervisor,
            registry=self._registry,
            dispatcher=self._dispatcher,
            settings=self._settings,
            started_at=self._started_at,
        )
        result = await self._dispatcher.dispatch(name, args, context)
        if not result.handled:
            prefix = self._dispatcher.prefix
            return f"Unknown command: {prefix}{name}. Type {prefix}menu to see available commands."
        return result.reply

    def _fallback(self, message: InboundMessage) -> str | None:
        if message.text.lower().strip("!. ") not in GREETINGS:
            return None
        name = message.display_name or "there"
        prefix = self._dispatcher.prefix
        return f"Hello {name}! I'm {self._bot_name}. Type {prefix}menu to see what I can do."

    async def _reply(self, identity: str, text: str) -> None:
        try:
            await self._supervisor.send(identity, text)
        except TransportError as e:
            logger.warning("Could not reply to %s: %s", identity, e)
