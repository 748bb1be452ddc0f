"""
Session credential storage for rahl.

Public API:
    - SessionCredential: Opaque credential plus revision counter
    - CredentialStore: Abstract storage backend
    - LocalCredentialStore: One directory per session, one file per record
    - RedisCredentialStore: One serialized blob per session in Redis
    - CredentialStoreError: Base storage exception
    - PersistenceError: Backend read/write failure
"""

from .base import (
    CredentialStore,
    CredentialStoreError,
    PersistenceError,
    SessionCredential,
    is_logged_in,
)
from .local import DEFAULT_REQUIRED_FILES, ROOT_FILE, LocalCredentialStore
from .remote import RedisCredentialStore

__all__ = [
    "CredentialStore",
    "CredentialStoreError",
    "DEFAULT_REQUIRED_FILES",
    "LocalCredentialStore",
    "PersistenceError",
    "ROOT_FILE",
    "RedisCredentialStore",
    "SessionCredential",
    "is_logged_in",
]
