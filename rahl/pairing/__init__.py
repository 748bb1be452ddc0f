"""
Self-issued pairing codes for rahl.

Public API:
    - PairingStatus: Enum of pairing request states
    - PairingRequest: A pairing request keyed by its code
    - RedeemResult: Owner metadata returned by a successful redemption
    - PairingRegistry: Issues, expires and redeems codes
    - PairingError: Base pairing exception
    - CodeNotFound: Code absent or expired
    - CodeAlreadyUsed: Code already redeemed
"""

from .registry import (
    CODE_LENGTH,
    DEFAULT_TTL_SECONDS,
    CodeAlreadyUsed,
    CodeNotFound,
    PairingError,
    PairingRegistry,
    PairingRequest,
    PairingStatus,
    RedeemResult,
)

__all__ = [
    "CODE_LENGTH",
    "DEFAULT_TTL_SECONDS",
    "CodeAlreadyUsed",
    "CodeNotFound",
    "PairingError",
    "PairingRegistry",
    "PairingRequest",
    "PairingStatus",
    "RedeemResult",
]
