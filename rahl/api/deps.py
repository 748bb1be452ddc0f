"""FastAPI dependencies."""

from __future__ import annotations

from fastapi import Request

from rahl.runtime import BotRuntime


def get_runtime(request: Request) -> BotRuntime:
    """The BotRuntime bound to this application."""
    return request.app.state.runtime
