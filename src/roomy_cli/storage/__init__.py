"""File-backed persistence for the Roomy CLI."""

from .lock import LockHeldError, RuntimeLock
from .models import LockMarker, ReadResult, ReadStatus
from .records import ExpiringRecordStore, RecordStore
from .vault import (
    CredentialVault,
    KeyringSecretBackend,
    SecretBackend,
    resolve_secret_backend,
    system_keyring,
)

__all__ = [
    "CredentialVault",
    "ExpiringRecordStore",
    "KeyringSecretBackend",
    "LockHeldError",
    "LockMarker",
    "ReadResult",
    "ReadStatus",
    "RecordStore",
    "RuntimeLock",
    "SecretBackend",
    "resolve_secret_backend",
    "system_keyring",
]
