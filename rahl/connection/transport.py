"""Transport client contract consumed by the connection supervisor.

The messaging transport (protocol, encryption, framing and the pairing
cryptography) lives outside rahl. This module only describes what rahl
needs from it: a client that can connect, emit events, send text and issue
a linking code, plus the payloads it emits.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol

if TYPE_CHECKING:
    from rahl.credentials import SessionCredential


class TransportEvent(str, Enum):
    """Event classes a transport client emits."""

    CONNECTION_UPDATE = "connection.update"
    CREDENTIALS_UPDATE = "creds.update"
    PAIRING_MATERIAL = "pairing.material"
    MESSAGE = "messages.upsert"


class ConnectionPhase(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


class DisconnectReason(IntEnum):
    """Close reasons reported by the transport (HTTP-like status codes)."""

    CONNECTION_LOST = 408
    CONNECTION_CLOSED = 428
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    FORBIDDEN = 403
    MULTIDEVICE_MISMATCH = 411
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    UNAVAILABLE_SERVICE = 503
    UNKNOWN = 0

    @classmethod
    def parse(cls, value: Any) -> "DisconnectReason":
        """Map a raw status code (or None) onto a reason."""
        if isinstance(value, cls):
            return value
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        """An explicit logout revokes the credential; reconnecting would loop."""
        return self is DisconnectReason.LOGGED_OUT


@dataclass(frozen=True)
class ConnectionUpdate:
    phase: ConnectionPhase
    close_reason: DisconnectReason | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "ConnectionUpdate":
        """Accept either an instance or a ``{"connection", "closeReason"}`` dict."""
        if isinstance(payload, cls):
            return payload
        phase = ConnectionPhase(payload.get("phase") or payload.get("connection"))
        reason = payload.get("close_reason", payload.get("closeReason"))
        return cls(
            phase=phase,
            close_reason=DisconnectReason.parse(reason) if phase == ConnectionPhase.CLOSE else None,
        )


@dataclass(frozen=True)
class CredentialsUpdate:
    """
    A credential change emitted by the transport.

    ``creds`` replaces the root record when given. ``keys`` is merged into
    the key records; a None value deletes that record.
    """

    creds: dict[str, Any] | None = None
    keys: dict[str, Any | None] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "CredentialsUpdate":
        if isinstance(payload, cls):
            return payload
        return cls(creds=payload.get("creds"), keys=payload.get("keys") or {})


@dataclass(frozen=True)
class PairingMaterial:
    """One-time linking material emitted during first-time pairing.

    Attributes:
        kind: ``"qr"`` for a scannable token, ``"code"`` for a linking code.
        value: The token or code.
    """

    kind: str
    value: str

    @classmethod
    def from_payload(cls, payload: Any) -> "PairingMaterial":
        if isinstance(payload, cls):
            return payload
        if "qr" in payload:
            return cls(kind="qr", value=payload["qr"])
        return cls(kind=payload.get("kind", "code"), value=payload["value"])


EventHandler = Callable[[Any], Awaitable[None]]


class TransportClient(Protocol):
    """Protocol for the external messaging transport.

    This protocol defines the interface for transport operations,
    allowing for dependency injection and testing.
    """

    def on(self, event: TransportEvent, handler: EventHandler) -> None:
        """Subscribe a coroutine handler to an event class."""
        ...

    async def connect(self) -> None:
        """Begin opening the connection; progress arrives as events."""
        ...

    async def send_text(self, identity: str, text: str) -> str:
        """Send a text message; returns the message id once acknowledged."""
        ...

    async def request_pairing_code(self, phone_number: str) -> str:
        """Ask the service for a linking code for a digits-only phone number."""
        ...

    async def close(self) -> None:
        """Close the connection and release resources."""
        ...


TransportFactory = Callable[[str, "SessionCredential | None"], TransportClient]


def load_transport_factory(path: str) -> TransportFactory:
    """
    Import a transport factory from a ``"package.module:callable"`` path.

    Raises:
        ValueError: If the path is malformed or does not name a callable.
        ImportError: If the module cannot be imported.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Invalid transport factory path '{path}', expected 'module:callable'")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ValueError(f"'{path}' is not callable")
    return factory
