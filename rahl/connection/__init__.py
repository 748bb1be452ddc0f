"""
Transport connection supervision for rahl.

Public API:
    - ConnectionSupervisor: Owns one session's transport lifecycle
    - ConnectionState / ConnectionStatus: Current lifecycle value
    - TransportClient: Protocol the external transport implements
    - TransportEvent: Event classes a transport emits
    - ConnectionUpdate / CredentialsUpdate / PairingMaterial: Event payloads
    - DisconnectReason: Close reasons; LOGGED_OUT is terminal
    - TransportError / TransportUnavailable / TerminalLogout: Errors
"""

from .state import (
    IDLE,
    ConnectionState,
    ConnectionStatus,
    TerminalLogout,
    TransportError,
    TransportUnavailable,
)
from .supervisor import ConnectionSupervisor
from .transport import (
    ConnectionPhase,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    PairingMaterial,
    TransportClient,
    TransportEvent,
    TransportFactory,
    load_transport_factory,
)

__all__ = [
    "IDLE",
    "ConnectionPhase",
    "ConnectionState",
    "ConnectionStatus",
    "ConnectionSupervisor",
    "ConnectionUpdate",
    "CredentialsUpdate",
    "DisconnectReason",
    "PairingMaterial",
    "TerminalLogout",
    "TransportClient",
    "TransportError",
    "TransportEvent",
    "TransportFactory",
    "TransportUnavailable",
    "load_transport_factory",
]
