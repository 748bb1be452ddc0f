"""Health check endpoint."""

from fastapi import APIRouter, Depends

from rahl import __version__
from rahl.api.deps import get_runtime
from rahl.runtime import BotRuntime

router = APIRouter(tags=["health"])


@router.get("/api/health")
async def health_check(runtime: BotRuntime = Depends(get_runtime)) -> dict:
    supervisor = runtime.supervisor
    return {
        "status": "ok",
        "version": __version__,
        "session": supervisor.session_id,
        "connection": supervisor.state.to_dict(),
        "transportConfigured": supervisor.has_transport,
        "activeCodes": len(runtime.registry),
    }
