"""
Redis-backed credential store.

The whole credential is serialized as one JSON blob under a namespaced key
(``session:<session_id>`` by default), so load, save and clear are each a
single round-trip and a reader only ever sees a complete value. The stale
revision check runs server-side in the same script as the write, so it
holds across processes sharing one Redis.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .base import CredentialStore, PersistenceError, SessionCredential

logger = logging.getLogger(__name__)

# KEYS[1]: session key. ARGV[1]: incoming revision. ARGV[2]: serialized blob.
# Returns 1 when written, 0 when the stored revision is newer.
SAVE_IF_NEWER = """
local current = redis.call("GET", KEYS[1])
if current then
    local ok, stored = pcall(cjson.decode, current)
    if ok and type(stored) == "table" and tonumber(stored["revision"] or 0) > tonumber(ARGV[1]) then
        return 0
    end
end
redis.call("SET", KEYS[1], ARGV[2])
return 1
"""


class KeyValueClient(Protocol):
    """The subset of the async Redis client the store relies on."""

    async def get(self, name: str) -> Any:
        ...

    async def set(self, name: str, value: str) -> Any:
        ...

    async def delete(self, *names: str) -> int:
        ...

    async def eval(self, script: str, numkeys: int, *keys_and_args: Any) -> Any:
        ...


class RedisCredentialStore(CredentialStore):
    """
    Credential store keeping one serialized blob per session in Redis.

    Attributes:
        namespace: Key prefix for session blobs.

    Example:
        store = RedisCredentialStore.from_url("redis://localhost:6379/0")
        credential = await store.load("lord-rahl-bot")
    """

    def __init__(self, client: KeyValueClient, namespace: str = "session") -> None:
        """
        Initialize the store.

        Args:
            client: Async Redis client (or any object with get/set/delete/eval).
            namespace: Key prefix for session blobs.
        """
        super().__init__()
        self._client = client
        self.namespace = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str = "session") -> "RedisCredentialStore":
        return cls(Redis.from_url(url, decode_responses=True), namespace=namespace)

    def key(self, session_id: str) -> str:
        return f"{self.namespace}:{session_id}"

    async def load(self, session_id: str) -> SessionCredential | None:
        try:
            raw = await self._client.get(self.key(session_id))
        except RedisError as e:
            raise PersistenceError(session_id, "load", str(e)) from e
        if raw is None:
            return None
        try:
            return SessionCredential.from_dict(json.loads(raw))
        except (TypeError, ValueError) as e:
            raise PersistenceError(session_id, "load", f"corrupt blob: {e}") from e

    async def save(self, session_id: str, credential: SessionCredential) -> bool:
        async with self._get_lock(session_id):
            try:
                blob = json.dumps(credential.to_dict(), ensure_ascii=False)
                written = await self._client.eval(
                    SAVE_IF_NEWER, 1, self.key(session_id), credential.revision, blob
                )
            except (RedisError, TypeError, ValueError) as e:
                raise PersistenceError(session_id, "save", str(e)) from e

        if not int(written):
            logger.warning(
                "Skipped stale credential write for %s (revision %d)",
                session_id,
                credential.revision,
            )
            return False

        logger.debug(
            "Saved credentials for %s (revision %d)", session_id, credential.revision
        )
        return True

    async def clear(self, session_id: str) -> bool:
        async with self._get_lock(session_id):
            try:
                await self._client.delete(self.key(session_id))
            except RedisError as e:
                raise PersistenceError(session_id, "clear", str(e)) from e
        logger.info("Cleared session %s", session_id)
        return True

    async def aclose(self) -> None:
        """Close the underlying client if it supports it."""
        close = getattr(self._client, "aclose", None)
        if close is not None:
            await close()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} namespace={self.namespace}>"
