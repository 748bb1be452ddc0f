"""
rahl CLI - Rich Output Helpers

Small helpers for consistent command-line output using Rich.

Functions:
    print_json      - Print formatted JSON
    print_error     - Print error message
    print_success   - Print success message
    print_warning   - Print warning message
    print_key_value - Print aligned key/value pairs
"""

from __future__ import annotations

import json
from typing import Any, Optional

from rich.console import Console
from rich.json import JSON

console = Console()
err_console = Console(stderr=True)


def print_json(data: dict | list, indent: int = 2, highlight: bool = True) -> None:
    """Print formatted JSON."""
    json_str = json.dumps(data, indent=indent, default=str)
    if highlight:
        console.print(JSON(json_str), soft_wrap=True)
    else:
        console.print(json_str, soft_wrap=True)


def print_error(message: str, hint: Optional[str] = None) -> None:
    """
    Print error message.

    Args:
        message: Error message
        hint: Optional hint for resolving the error
    """
    err_console.print(f"[bold red]Error:[/bold red] {message}")
    if hint:
        err_console.print(f"[yellow]Hint:[/yellow] {hint}")


def print_success(message: str, details: Optional[str] = None) -> None:
    console.print(f"[bold green]Success:[/bold green] {message}")
    if details:
        console.print(f"[dim]{details}[/dim]")


def print_warning(message: str, details: Optional[str] = None) -> None:
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")
    if details:
        console.print(f"[dim]{details}[/dim]")


def print_key_value(
    items: list[tuple[str, Any]],
    title: Optional[str] = None,
    key_style: str = "cyan",
) -> None:
    """
    Print key-value pairs in a formatted list.

    Args:
        items: List of (key, value) tuples
        title: Optional title
        key_style: Style for keys
    """
    if title:
        console.print(f"[bold]{title}[/bold]")
        console.print()

    max_key_len = max(len(str(k)) for k, _ in items) if items else 0
    for key, value in items:
        padded_key = str(key).ljust(max_key_len)
        console.print(f"  [{key_style}]{padded_key}[/{key_style}]: {value}", highlight=False)
