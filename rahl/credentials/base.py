"""
Credential persistence abstraction for rahl.

This module defines the session credential value and the storage contract
shared by the local (file) and remote (Redis) backends. The credential
itself is opaque: rahl never interprets it beyond the ``me`` record used to
decide whether the session is logged in.
"""

from __future__ import annotations

import asyncio
import copy
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class SessionCredential:
    """
    Authentication material for one session.

    Attributes:
        creds: Root credential record as emitted by the transport.
        keys: Auxiliary key records, by record name (e.g. ``pre-key-1``).
        revision: Monotonic counter bumped on every update.
    """

    creds: dict[str, Any] = field(default_factory=dict)
    keys: dict[str, Any] = field(default_factory=dict)
    revision: int = 0

    @property
    def me_id(self) -> str | None:
        me = self.creds.get("me") or {}
        return me.get("id") or None

    @property
    def is_logged_in(self) -> bool:
        """True when the root record names a linked, not logged-out, device."""
        return is_logged_in(self.creds)

    def session_info(self) -> dict[str, Any]:
        me = self.creds.get("me") or {}
        me_id = me.get("id")
        return {
            "phone": re.sub(r":\d+@", "@", me_id) if me_id else "Unknown",
            "platform": self.creds.get("platform") or me.get("platform") or "Unknown",
            "isLoggedIn": self.is_logged_in,
        }

    def copy(self) -> "SessionCredential":
        return SessionCredential(
            creds=copy.deepcopy(self.creds),
            keys=copy.deepcopy(self.keys),
            revision=self.revision,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert the credential to a dictionary for serialization."""
        return {"creds": self.creds, "keys": self.keys, "revision": self.revision}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionCredential":
        """Create a credential from a dictionary."""
        return cls(
            creds=data.get("creds") or {},
            keys=data.get("keys") or {},
            revision=int(data.get("revision", 0)),
        )


def is_logged_in(creds: dict[str, Any] | None) -> bool:
    """
    Validity predicate on a root credential record.

    A device id ending in ``:0`` is the transport's logged-out marker; a
    record without any ``me`` is an unauthenticated placeholder.
    """
    if not creds:
        return False
    me_id = (creds.get("me") or {}).get("id")
    if not me_id:
        return False
    return not me_id.split("@", 1)[0].endswith(":0")


class CredentialStoreError(Exception):
    """Base exception for credential storage errors."""
    pass


class PersistenceError(CredentialStoreError):
    """Raised when a read or write against the backing storage fails."""

    def __init__(self, session_id: str, operation: str, reason: str):
        self.session_id = session_id
        self.operation = operation
        super().__init__(f"Failed to {operation} credentials for '{session_id}': {reason}")


class CredentialStore(ABC):
    """
    Abstract base class for credential storage backends.

    Implementations persist one SessionCredential per session id. All
    methods are async; missing sessions are never an error: ``load``
    returns None and ``clear`` succeeds.

    Writes are serialized per session id (not globally) and must be atomic
    relative to readers. A save whose revision is older than the stored one
    is skipped, so persistence never regresses to stale data.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def _get_lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    @abstractmethod
    async def load(self, session_id: str) -> SessionCredential | None:
        """
        Load the stored credential.

        Args:
            session_id: The session identifier.

        Returns:
            The credential, or None if nothing is stored.

        Raises:
            PersistenceError: If the storage cannot be read.
        """
        pass

    @abstractmethod
    async def save(self, session_id: str, credential: SessionCredential) -> bool:
        """
        Persist a credential, replacing whatever was stored.

        Args:
            session_id: The session identifier.
            credential: The credential to persist.

        Returns:
            True if written, False if skipped because it was stale.

        Raises:
            PersistenceError: If the write fails.
        """
        pass

    @abstractmethod
    async def clear(self, session_id: str) -> bool:
        """
        Remove every trace of a session.

        Returns:
            True once nothing is stored for the session.

        Raises:
            PersistenceError: If the removal fails.
        """
        pass

    async def is_valid(self, session_id: str) -> bool:
        """
        True only if a logged-in credential is stored.

        Raises:
            PersistenceError: If the storage cannot be read.
        """
        credential = await self.load(session_id)
        return credential is not None and credential.is_logged_in

    async def session_info(self, session_id: str) -> dict[str, Any] | None:
        """Summary of the stored credential (phone, platform, login state)."""
        credential = await self.load(session_id)
        if credential is None or not credential.creds:
            return None
        return credential.session_info()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"
