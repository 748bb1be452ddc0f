"""
Local multi-file credential store.

Each session gets its own directory holding one JSON file per credential
sub-record::

    sessions/<session_id>/
        creds.json        root record + revision + manifest of key files
        pre-key-1.json    auxiliary key material, one file per record
        ...

Every file is written to a temporary sibling and renamed into place. Key
files are written before ``creds.json``, and ``creds.json`` lists the key
records belonging to its revision, so the root file doubles as the
completion marker. Reads and writes of one session share a lock, so a
reader never assembles key files from a half-finished save.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Sequence

from .base import CredentialStore, PersistenceError, SessionCredential, is_logged_in

logger = logging.getLogger(__name__)

ROOT_FILE = "creds.json"
DEFAULT_REQUIRED_FILES = tuple(f"pre-key-{i}.json" for i in range(1, 6))


def key_file_name(name: str) -> str:
    """Map a key record name onto a safe file name."""
    safe = name.replace("/", "__").replace(":", "-")
    file_name = f"{safe}.json"
    if file_name == ROOT_FILE:
        raise ValueError(f"Key record name '{name}' collides with the root file")
    return file_name


def _write_atomic(path: Path, data: Any) -> None:
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
    tmp.replace(path)


class LocalCredentialStore(CredentialStore):
    """
    Credential store keeping one directory per session on local disk.

    Attributes:
        base_dir: Directory containing all session directories.
        required_files: Key files that must exist for ``is_valid``.

    Example:
        store = LocalCredentialStore("sessions")
        await store.save("lord-rahl-bot", credential)
        assert await store.is_valid("lord-rahl-bot")
    """

    def __init__(
        self,
        base_dir: str | Path,
        required_files: Sequence[str] = DEFAULT_REQUIRED_FILES,
    ) -> None:
        super().__init__()
        self.base_dir = Path(base_dir)
        self.required_files = tuple(required_files)

    def session_path(self, session_id: str) -> Path:
        if not session_id or "/" in session_id or session_id in (".", ".."):
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self.base_dir / session_id

    async def load(self, session_id: str) -> SessionCredential | None:
        path = self.session_path(session_id)
        # Key files are replaced in place, so reads wait for any save in flight
        async with self._get_lock(session_id):
            try:
                return await asyncio.to_thread(self._read, path)
            except (OSError, ValueError) as e:
                raise PersistenceError(session_id, "load", str(e)) from e

    async def save(self, session_id: str, credential: SessionCredential) -> bool:
        path = self.session_path(session_id)
        async with self._get_lock(session_id):
            try:
                written = await asyncio.to_thread(self._write, path, credential)
            except (OSError, TypeError, ValueError) as e:
                raise PersistenceError(session_id, "save", str(e)) from e

        if written:
            logger.debug(
                "Saved credentials for %s (revision %d)", session_id, credential.revision
            )
        else:
            logger.warning(
                "Skipped stale credential write for %s (revision %d)",
                session_id,
                credential.revision,
            )
        return written

    async def clear(self, session_id: str) -> bool:
        path = self.session_path(session_id)
        async with self._get_lock(session_id):
            try:
                await asyncio.to_thread(self._remove, path)
            except OSError as e:
                raise PersistenceError(session_id, "clear", str(e)) from e
        logger.info("Cleared session %s", session_id)
        return True

    async def is_valid(self, session_id: str) -> bool:
        path = self.session_path(session_id)
        async with self._get_lock(session_id):
            try:
                return await asyncio.to_thread(self._check_valid, path)
            except (OSError, ValueError) as e:
                raise PersistenceError(session_id, "load", str(e)) from e

    # Private methods

    def _read_root(self, path: Path) -> dict[str, Any] | None:
        root = path / ROOT_FILE
        if not root.is_file():
            return None
        data = json.loads(root.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{root} does not contain an object")
        return data

    def _read(self, path: Path) -> SessionCredential | None:
        root = self._read_root(path)
        if root is None:
            return None

        keys: dict[str, Any] = {}
        for name in root.get("keys", []):
            key_path = path / key_file_name(name)
            keys[name] = json.loads(key_path.read_text(encoding="utf-8"))

        return SessionCredential(
            creds=root.get("creds") or {},
            keys=keys,
            revision=int(root.get("revision", 0)),
        )

    def _write(self, path: Path, credential: SessionCredential) -> bool:
        path.mkdir(parents=True, exist_ok=True)

        try:
            current = self._read_root(path)
        except ValueError:
            current = None
        if current is not None and int(current.get("revision", 0)) > credential.revision:
            return False

        # Key files first; the root file commits the revision
        wanted = {ROOT_FILE}
        for name, record in credential.keys.items():
            file_name = key_file_name(name)
            _write_atomic(path / file_name, record)
            wanted.add(file_name)

        _write_atomic(
            path / ROOT_FILE,
            {
                "revision": credential.revision,
                "keys": sorted(credential.keys),
                "creds": credential.creds,
            },
        )

        for leftover in path.iterdir():
            if leftover.name not in wanted:
                leftover.unlink(missing_ok=True)
        return True

    def _remove(self, path: Path) -> None:
        if not path.exists():
            return
        # Root file goes first so a concurrent reader sees "no session", not a torn one
        (path / ROOT_FILE).unlink(missing_ok=True)
        for entry in path.iterdir():
            entry.unlink(missing_ok=True)
        path.rmdir()

    def _check_valid(self, path: Path) -> bool:
        if not path.is_dir():
            return False
        present = {entry.name for entry in path.iterdir()}
        if ROOT_FILE not in present:
            return False
        if any(name not in present for name in self.required_files):
            return False
        root = self._read_root(path)
        return root is not None and is_logged_in(root.get("creds"))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} base_dir={self.base_dir}>"
