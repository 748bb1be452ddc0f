"""Connection state values and errors for the supervisor."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .transport import DisconnectReason


class ConnectionStatus(str, Enum):
    """Lifecycle status of the session's transport connection."""

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class ConnectionState:
    """
    Current connection state of one session.

    Attributes:
        status: Lifecycle status.
        reason: Why the connection closed (CLOSED only).
        terminal: True when the close cannot be recovered by reconnecting.
    """

    status: ConnectionStatus = ConnectionStatus.IDLE
    reason: DisconnectReason | None = None
    terminal: bool = False

    @property
    def is_open(self) -> bool:
        return self.status == ConnectionStatus.OPEN

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "reason": self.reason.name.lower() if self.reason is not None else None,
            "terminal": self.terminal,
        }

    def __str__(self) -> str:
        if self.status == ConnectionStatus.CLOSED and self.reason is not None:
            return f"closed({self.reason.name.lower()})"
        return self.status.value


IDLE = ConnectionState()


class TransportError(Exception):
    """Base exception for transport and connection errors."""
    pass


class TransportUnavailable(TransportError):
    """Raised when the connection is not open (or no transport is configured)."""
    pass


class TerminalLogout(TransportError):
    """Raised when the session was logged out and must be cleared and re-paired."""
    pass
