"""Pairing endpoints: self-issued codes and transport-issued linking codes."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from rahl.api.deps import get_runtime
from rahl.connection import TerminalLogout, TransportError, TransportUnavailable
from rahl.pairing import CodeAlreadyUsed, CodeNotFound, PairingStatus
from rahl.runtime import BotRuntime

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pairing"])


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class GenerateCodeRequest(BaseModel):
    phoneNumber: Optional[str] = None
    userId: Optional[str] = None


class GenerateCodeResponse(BaseModel):
    code: str
    expiresIn: int


class ValidateCodeResponse(BaseModel):
    valid: bool
    userId: Optional[str] = None
    phoneNumber: Optional[str] = None


class CompletePairingResponse(BaseModel):
    success: bool
    userId: Optional[str] = None


class PairingStatusResponse(BaseModel):
    status: str


class LinkingCodeRequest(BaseModel):
    phoneNumber: Optional[str] = None


class LinkingCodeResponse(BaseModel):
    success: bool
    code: str


# ---------------------------------------------------------------------------
# Self-issued codes
# ---------------------------------------------------------------------------

@router.post("/generate-code", response_model=GenerateCodeResponse)
async def generate_code(
    body: GenerateCodeRequest,
    runtime: BotRuntime = Depends(get_runtime),
):
    if not body.phoneNumber or not body.phoneNumber.strip():
        return JSONResponse(status_code=400, content={"error": "Phone number is required"})

    request = await runtime.registry.generate(body.phoneNumber, body.userId)
    return GenerateCodeResponse(code=request.code, expiresIn=request.expires_in)


@router.get("/validate-code/{code}", response_model=ValidateCodeResponse)
async def validate_code(code: str, runtime: BotRuntime = Depends(get_runtime)):
    request = runtime.registry.status(code)
    if request is None:
        return JSONResponse(status_code=404, content={"valid": False, "message": "Code not found"})
    return ValidateCodeResponse(
        valid=True,
        userId=request.user_id,
        phoneNumber=request.owner_phone_number,
    )


@router.post("/complete-pairing/{code}", response_model=CompletePairingResponse)
async def complete_pairing(code: str, runtime: BotRuntime = Depends(get_runtime)):
    try:
        result = await runtime.registry.complete(code)
    except CodeNotFound:
        return JSONResponse(status_code=404, content={"success": False, "message": "Code not found"})
    except CodeAlreadyUsed:
        return JSONResponse(
            status_code=409, content={"success": False, "message": "Code already used"}
        )
    return CompletePairingResponse(success=True, userId=result.user_id)


@router.get("/pairing-status/{code}", response_model=PairingStatusResponse)
async def pairing_status(code: str, runtime: BotRuntime = Depends(get_runtime)):
    request = runtime.registry.status(code)
    if request is None:
        return JSONResponse(status_code=404, content={"status": PairingStatus.INVALID.value})
    return PairingStatusResponse(status=request.status.value)


# ---------------------------------------------------------------------------
# Transport-issued linking codes
# ---------------------------------------------------------------------------

@router.post("/api/generate-pairing-code", response_model=LinkingCodeResponse)
async def generate_pairing_code(
    body: LinkingCodeRequest,
    runtime: BotRuntime = Depends(get_runtime),
):
    if not body.phoneNumber or not body.phoneNumber.strip():
        return JSONResponse(
            status_code=400, content={"success": False, "error": "Phone number is required"}
        )

    try:
        code = await runtime.supervisor.request_pairing_code(body.phoneNumber)
    except TransportUnavailable as e:
        return JSONResponse(status_code=503, content={"success": False, "error": str(e)})
    except TerminalLogout as e:
        return JSONResponse(status_code=409, content={"success": False, "error": str(e)})
    except TransportError as e:
        logger.warning("Linking code request failed: %s", e)
        return JSONResponse(status_code=502, content={"success": False, "error": str(e)})
    return LinkingCodeResponse(success=True, code=code)
