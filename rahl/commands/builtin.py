"""Built-in chat commands.

Public commands cover liveness and utilities; admin-only commands expose
pairing and connection state to the configured administrator.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from .calculator import CalculationError, evaluate, format_result
from .dispatcher import CommandContext, CommandDispatcher, Privilege

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    """Format a duration as e.g. ``1d 2h 3m 4s``."""
    seconds = int(max(seconds, 0))
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    parts = [f"{days}d"] if days else []
    if days or hours:
        parts.append(f"{hours}h")
    if days or hours or minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{secs}s")
    return " ".join(parts)


def _uptime(ctx: CommandContext) -> str:
    return format_duration((datetime.now(timezone.utc) - ctx.started_at).total_seconds())


def _bot_name(ctx: CommandContext) -> str:
    return ctx.settings.BOT_NAME if ctx.settings is not None else "RAHL XMD"


# ---------------------------------------------------------------------------
# Public commands
# ---------------------------------------------------------------------------


async def ping(ctx: CommandContext) -> str:
    return "Pong!"


async def alive(ctx: CommandContext) -> str:
    return f"{_bot_name(ctx)} is alive. Uptime: {_uptime(ctx)}"


async def runtime(ctx: CommandContext) -> str:
    return f"Runtime: {_uptime(ctx)}"


async def current_time(ctx: CommandContext) -> str:
    now = datetime.now(timezone.utc)
    return f"Current time: {now:%Y-%m-%d %H:%M:%S} UTC"


async def owner(ctx: CommandContext) -> str:
    admin = ctx.supervisor.admin_identity if ctx.supervisor is not None else None
    if not admin:
        return "No owner is configured for this bot."
    return f"Owner: +{admin.split('@', 1)[0]}"


async def calc(ctx: CommandContext) -> str:
    expression = ctx.arg_text
    if not expression:
        return f"Usage: {ctx.prefix}calc <expression>  e.g. {ctx.prefix}calc (2+3)*4"
    try:
        result = evaluate(expression)
    except CalculationError as e:
        return f"Cannot calculate that: {e}"
    return f"{expression} = {format_result(result)}"


async def menu(ctx: CommandContext) -> str:
    dispatcher = ctx.dispatcher
    if dispatcher is None:
        return "No commands available."

    if ctx.args:
        descriptor = dispatcher.get(ctx.args[0])
        if descriptor is None or (descriptor.admin_only and not ctx.is_admin):
            return f"Unknown command: {ctx.args[0]}"
        usage = f" {descriptor.usage}" if descriptor.usage else ""
        return f"{ctx.prefix}{descriptor.name}{usage}\n{descriptor.description}"

    lines = [f"*{_bot_name(ctx)} commands*"]
    category = None
    for descriptor in dispatcher.commands(include_admin=ctx.is_admin):
        if descriptor.category != category:
            category = descriptor.category
            lines.append("")
            lines.append(f"*{category.title()}*")
        usage = f" {descriptor.usage}" if descriptor.usage else ""
        lines.append(f"{ctx.prefix}{descriptor.name}{usage} - {descriptor.description}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Admin commands
# ---------------------------------------------------------------------------


async def active_codes(ctx: CommandContext) -> str:
    if ctx.registry is None:
        return "Pairing registry unavailable."
    entries = ctx.registry.list()
    if not entries:
        return "No active pairing codes."
    now = datetime.now(timezone.utc)
    lines = [f"Active pairing codes ({len(entries)}):"]
    for code, request in entries:
        remaining = format_duration((request.expires_at - now).total_seconds())
        lines.append(
            f"{code} - {request.owner_phone_number} - {request.status.value} - {remaining} left"
        )
    return "\n".join(lines)


async def generate_code(ctx: CommandContext) -> str:
    if ctx.registry is None:
        return "Pairing registry unavailable."
    if not ctx.args:
        return f"Usage: {ctx.prefix}gencode <phone number>"
    request = await ctx.registry.generate(ctx.args[0])
    return (
        f"Pairing code for {request.owner_phone_number}: {request.code}\n"
        f"Expires in {request.expires_in}s"
    )


async def session(ctx: CommandContext) -> str:
    supervisor = ctx.supervisor
    if supervisor is None:
        return "No connection supervisor."
    lines = [
        f"Session: {supervisor.session_id}",
        f"State: {supervisor.state}",
        f"Identity: {supervisor.self_identity or 'unknown'}",
        f"Reconnect attempts: {supervisor.reconnect_attempts}",
    ]
    if supervisor.pairing_material is not None:
        lines.append(f"Pending pairing material: {supervisor.pairing_material.kind}")
    return "\n".join(lines)


def register_builtin_commands(dispatcher: CommandDispatcher) -> CommandDispatcher:
    """Register every built-in command on ``dispatcher``."""
    general = [
        ("ping", "Check the bot is responsive", ping, (), ""),
        ("alive", "Show that the bot is running", alive, (), ""),
        ("menu", "List available commands", menu, ("help",), "[command]"),
        ("runtime", "Show how long the bot has been running", runtime, ("uptime",), ""),
        ("owner", "Show the bot owner", owner, (), ""),
    ]
    for name, description, handler, aliases, usage in general:
        dispatcher.command(name, description, category="general", aliases=aliases, usage=usage)(handler)

    dispatcher.command("time", "Show the current time", category="utility")(current_time)
    dispatcher.command(
        "calc", "Evaluate an arithmetic expression", category="utility", usage="<expression>"
    )(calc)

    dispatcher.command(
        "codes", "List active pairing codes", category="admin", privilege=Privilege.ADMIN_ONLY
    )(active_codes)
    dispatcher.command(
        "gencode",
        "Generate a pairing code for a phone number",
        category="admin",
        privilege=Privilege.ADMIN_ONLY,
        usage="<phone>",
    )(generate_code)
    dispatcher.command(
        "session", "Show connection and session state", category="admin", privilege=Privilege.ADMIN_ONLY
    )(session)

    logger.debug("Registered %d built-in commands", len(dispatcher))
    return dispatcher
