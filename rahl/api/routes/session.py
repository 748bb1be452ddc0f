"""Session status and reset endpoints."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from rahl.api.deps import get_runtime
from rahl.runtime import BotRuntime

router = APIRouter(tags=["session"])


class SessionStatusResponse(BaseModel):
    hasValidSession: bool
    sessionInfo: Optional[dict[str, Any]] = None
    isConnected: bool
    connectionState: dict[str, Any]


class ClearSessionResponse(BaseModel):
    success: bool


@router.get("/session-status", response_model=SessionStatusResponse)
async def session_status(runtime: BotRuntime = Depends(get_runtime)) -> SessionStatusResponse:
    supervisor = runtime.supervisor
    return SessionStatusResponse(
        hasValidSession=await runtime.store.is_valid(supervisor.session_id),
        sessionInfo=await runtime.store.session_info(supervisor.session_id),
        isConnected=supervisor.is_connected,
        connectionState=supervisor.state.to_dict(),
    )


@router.post("/clear-session", response_model=ClearSessionResponse)
async def clear_session(runtime: BotRuntime = Depends(get_runtime)) -> ClearSessionResponse:
    """Drop the stored credential and force the connection back to idle."""
    return ClearSessionResponse(success=await runtime.supervisor.clear_session())
