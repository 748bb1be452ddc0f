"""
Command registry and dispatch for rahl.

Commands are tagged handler records registered once at startup and looked
up by name (case-insensitive) when a chat message starts with the command
prefix. Admin-only commands are invisible to everyone else: invoking one as
a non-admin looks exactly like invoking a name that was never registered.

Usage:
    dispatcher = CommandDispatcher(prefix=".")

    @dispatcher.command("ping", "Check the bot is responsive", category="general")
    async def ping(ctx: CommandContext) -> str:
        return "pong"

    name, args = dispatcher.parse(".ping")
    result = await dispatcher.dispatch(name, args, ctx)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

if TYPE_CHECKING:
    from rahl.config.settings import Settings
    from rahl.connection import ConnectionSupervisor
    from rahl.pairing import PairingRegistry

logger = logging.getLogger(__name__)

GENERIC_ERROR_REPLY = "Something went wrong while running that command. Please try again."


class Privilege(str, Enum):
    PUBLIC = "public"
    ADMIN_ONLY = "admin_only"


CommandHandler = Callable[["CommandContext"], Awaitable[str | None]]


@dataclass(frozen=True)
class CommandDescriptor:
    """
    A registered command.

    Attributes:
        name: Lookup name (stored lower-case, without prefix).
        description: One-line help text.
        category: Menu section the command is listed under.
        privilege: Who may invoke it.
        handler: Coroutine taking a CommandContext, returning reply text.
        aliases: Extra names resolving to the same command.
        usage: Argument hint shown in the menu (e.g. "<expression>").
    """

    name: str
    description: str
    category: str
    privilege: Privilege
    handler: CommandHandler
    aliases: tuple[str, ...] = ()
    usage: str = ""

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Command name cannot be empty")
        if any(ch.isspace() for ch in self.name):
            raise ValueError(f"Command name '{self.name}' cannot contain whitespace")
        object.__setattr__(self, "name", self.name.strip().lower())
        object.__setattr__(self, "aliases", tuple(a.lower() for a in self.aliases))

    @property
    def admin_only(self) -> bool:
        return self.privilege == Privilege.ADMIN_ONLY


@dataclass
class CommandContext:
    """
    Everything a handler may need about one invocation.

    Attributes:
        sender: Chat identity of the invoker.
        args: Whitespace-separated arguments after the command name.
        is_admin: Whether the invoker is the configured administrator.
        display_name: Invoker's display name, if known.
        text: Full original message text.
        prefix: Command prefix in use.
        supervisor: Connection supervisor of the session.
        registry: Pairing registry.
        dispatcher: The dispatcher running the command (for menus).
        settings: Runtime settings.
        started_at: When the bot process started.
    """

    sender: str
    args: list[str] = field(default_factory=list)
    is_admin: bool = False
    display_name: str | None = None
    text: str = ""
    prefix: str = "."
    supervisor: ConnectionSupervisor | None = None
    registry: PairingRegistry | None = None
    dispatcher: CommandDispatcher | None = None
    settings: Settings | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def arg_text(self) -> str:
        return " ".join(self.args)


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of a dispatch: ``handled`` False means "no such command"."""

    handled: bool
    command: str
    reply: str | None = None
    failed: bool = False


class CommandDispatcher:
    """
    Registry of named commands.

    Duplicate registrations overwrite: the last descriptor registered under
    a name wins, and a warning is logged so the override is never silent.

    Attributes:
        prefix: Text that marks a message as a command.
    """

    def __init__(self, prefix: str = ".") -> None:
        if not prefix:
            raise ValueError("prefix cannot be empty")
        self.prefix = prefix
        self._commands: dict[str, CommandDescriptor] = {}
        self._aliases: dict[str, str] = {}

    def register(self, descriptor: CommandDescriptor) -> None:
        """Register a command; replaces any command with the same name."""
        if descriptor.name in self._commands:
            logger.warning("Command '%s' re-registered; last registration wins", descriptor.name)
            self.unregister(descriptor.name)
        self._commands[descriptor.name] = descriptor
        for alias in descriptor.aliases:
            if alias in self._commands:
                logger.warning("Alias '%s' shadowed by command of the same name", alias)
                continue
            self._aliases[alias] = descriptor.name

    def command(
        self,
        name: str,
        description: str,
        *,
        category: str = "general",
        privilege: Privilege = Privilege.PUBLIC,
        aliases: tuple[str, ...] = (),
        usage: str = "",
    ) -> Callable[[CommandHandler], CommandHandler]:
        """Decorator form of ``register``."""

        def decorator(handler: CommandHandler) -> CommandHandler:
            self.register(
                CommandDescriptor(
                    name=name,
                    description=description,
                    category=category,
                    privilege=privilege,
                    handler=handler,
                    aliases=aliases,
                    usage=usage,
                )
            )
            return handler

        return decorator

    def unregister(self, name: str) -> bool:
        descriptor = self._commands.pop(name.lower(), None)
        if descriptor is None:
            return False
        for alias in [a for a, target in self._aliases.items() if target == descriptor.name]:
            del self._aliases[alias]
        return True

    def get(self, name: str) -> CommandDescriptor | None:
        """Look up a command by name or alias, case-insensitively."""
        key = name.lower()
        if key in self._commands:
            return self._commands[key]
        target = self._aliases.get(key)
        return self._commands.get(target) if target else None

    def commands(self, include_admin: bool = False) -> list[CommandDescriptor]:
        """Registered commands sorted by category then name."""
        visible = [
            d for d in self._commands.values()
            if include_admin or not d.admin_only
        ]
        return sorted(visible, key=lambda d: (d.category, d.name))

    def parse(self, text: str) -> tuple[str, list[str]]:
        """
        Split command text into (name, args).

        Returns:
            ("", []) if ``text`` is not a command.
        """
        if not text.startswith(self.prefix):
            return "", []
        parts = text[len(self.prefix):].strip().split()
        if not parts:
            return "", []
        return parts[0].lower(), parts[1:]

    async def dispatch(self, name: str, args: list[str], context: CommandContext) -> DispatchResult:
        """
        Invoke a command.

        Handler exceptions are caught here and turned into a generic error
        reply; they never propagate to the caller.
        """
        descriptor = self.get(name) if name else None
        if descriptor is None or (descriptor.admin_only and not context.is_admin):
            return DispatchResult(handled=False, command=name.lower())

        context.args = list(args)
        context.dispatcher = context.dispatcher or self
        try:
            reply = await descriptor.handler(context)
        except Exception:
            logger.exception("Command '%s' failed", descriptor.name)
            return DispatchResult(
                handled=True, command=descriptor.name, reply=GENERIC_ERROR_REPLY, failed=True
            )

        logger.debug("Command '%s' handled for %s", descriptor.name, context.sender)
        return DispatchResult(handled=True, command=descriptor.name, reply=reply)

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __len__(self) -> int:
        return len(self._commands)
