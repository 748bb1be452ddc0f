"""
rahl - Command Line Interface

Operate the pairing and connection service from the shell. Built with Typer
for commands and Rich for output.

Usage:
    $ rahl --help
    $ rahl serve --port 3000
    $ rahl session status
    $ rahl session clear --yes
    $ rahl config show

Sub-command Groups:
    session - Inspect or clear the stored session credential
    config  - Configuration inspection
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional

import typer
from rich.logging import RichHandler
from rich.panel import Panel

from rahl import __version__
from rahl.cli.output import console, print_error, print_json, print_key_value, print_success, print_warning
from rahl.config.settings import Settings
from rahl.credentials import CredentialStore, PersistenceError

app = typer.Typer(
    name="rahl",
    help="rahl - device pairing and connection supervision for a chat bot",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

session_app = typer.Typer(
    name="session",
    help="Inspect or clear the stored session credential",
    no_args_is_help=True,
)

config_app = typer.Typer(
    name="config",
    help="Configuration inspection commands",
    no_args_is_help=True,
)

app.add_typer(session_app, name="session")
app.add_typer(config_app, name="config")

_SECRET_IN_URL = re.compile(r"(://[^:/@]*:)[^@]*@")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"rahl version {__version__}")
        raise typer.Exit()


def verbose_callback(value: bool) -> None:
    """Set verbose mode."""
    if value:
        configure_logging("DEBUG")


def _load_settings() -> Settings:
    return Settings()


def _store(settings: Settings) -> CredentialStore:
    from rahl.runtime import create_store

    return create_store(settings)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        callback=verbose_callback,
        help="Enable verbose output.",
    ),
) -> None:
    """
    rahl - device pairing and connection supervision for a chat bot.

    Use --help on any subcommand for detailed information.
    """
    pass


@app.command()
def serve(
    host: Optional[str] = typer.Option(
        None,
        "--host",
        "-h",
        help="Host to bind to (default: HOST setting).",
    ),
    port: Optional[int] = typer.Option(
        None,
        "--port",
        "-p",
        help="Port to bind to (default: PORT setting).",
    ),
    reload: bool = typer.Option(
        False,
        "--reload",
        "-r",
        help="Enable auto-reload for development.",
    ),
) -> None:
    """
    Start the HTTP server and the chat connection.
    """
    import uvicorn

    settings = _load_settings()
    host = host or settings.HOST
    port = port or settings.PORT

    if not logging.getLogger().handlers:
        configure_logging(settings.LOG_LEVEL)

    console.print(Panel.fit(
        f"Starting {settings.BOT_NAME} on [cyan]http://{host}:{port}[/cyan]",
        title="Server",
    ))
    if not settings.TRANSPORT_FACTORY:
        print_warning("TRANSPORT_FACTORY is not set; the chat connection will stay idle")

    uvicorn.run("rahl.main:app", host=host, port=port, reload=reload, log_config=None)


# ---------------------------------------------------------------------------
# session
# ---------------------------------------------------------------------------


async def _session_status(store: CredentialStore, session_id: str) -> dict:
    return {
        "sessionId": session_id,
        "hasValidSession": await store.is_valid(session_id),
        "sessionInfo": await store.session_info(session_id),
    }


@session_app.command("status")
def session_status(
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format: table, json.",
    ),
) -> None:
    """
    Show whether a valid session credential is stored.
    """
    settings = _load_settings()
    try:
        data = asyncio.run(_session_status(_store(settings), settings.SESSION_ID))
    except PersistenceError as e:
        print_error(str(e), hint="Check that the session storage is reachable")
        raise typer.Exit(1)

    if format == "json":
        print_json(data)
        return

    info = data["sessionInfo"] or {}
    print_key_value(
        [
            ("Session", data["sessionId"]),
            ("Backend", settings.CREDENTIAL_BACKEND),
            ("Valid", "yes" if data["hasValidSession"] else "no"),
            ("Phone", info.get("phone") or "-"),
            ("Platform", info.get("platform") or "-"),
        ],
        title="Session",
    )


@session_app.command("clear")
def session_clear(
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Do not ask for confirmation.",
    ),
) -> None:
    """
    Delete the stored session credential; the bot must be paired again.
    """
    settings = _load_settings()
    if not yes:
        typer.confirm(f"Clear session '{settings.SESSION_ID}'?", abort=True)

    try:
        asyncio.run(_store(settings).clear(settings.SESSION_ID))
    except PersistenceError as e:
        print_error(str(e), hint="Check that the session storage is reachable")
        raise typer.Exit(1)

    print_success(f"Session '{settings.SESSION_ID}' cleared")


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format: table, json.",
    ),
) -> None:
    """
    Display the effective configuration (secrets in URLs are masked).
    """
    data = _load_settings().model_dump()
    data["REDIS_URL"] = _SECRET_IN_URL.sub(r"\1***@", data["REDIS_URL"])

    if format == "json":
        print_json(data)
    else:
        print_key_value(sorted(data.items()), title="Configuration")
