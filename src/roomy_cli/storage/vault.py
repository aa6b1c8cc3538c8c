"""Secret backends: the platform keychain, and an owner-only credential file fallback."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

import keyring
from keyring.backend import KeyringBackend
from keyring.backends import fail, null
from keyring.errors import NoKeyringError, PasswordDeleteError

from .records import RecordStore

logger = logging.getLogger(__name__)

VAULT_FILE_NAME = ".credentials"


@runtime_checkable
class SecretBackend(Protocol):
    """Minimal keychain API used for storing secrets by (service, account)."""

    def get_password(self, service: str, account: str) -> str | None:
        ...

    def set_password(self, service: str, account: str, password: str) -> None:
        ...

    def delete_password(self, service: str, account: str) -> None:
        ...


class CredentialVault(RecordStore):
    """Secrets stored as ``{service: {account: secret}}`` in a 0600 JSON file."""

    def __init__(self, path: Path) -> None:
        super().__init__(path)

    @classmethod
    def in_directory(cls, directory: Path) -> "CredentialVault":
        return cls(Path(directory) / VAULT_FILE_NAME)

    def get_password(self, service: str, account: str) -> str | None:
        accounts = self.get(service)
        if not isinstance(accounts, dict):
            return None
        secret = accounts.get(account)
        return secret if isinstance(secret, str) else None

    def set_password(self, service: str, account: str, password: str) -> None:
        entries = self.load().entries
        accounts = entries.get(service)
        if not isinstance(accounts, dict):
            accounts = {}
        accounts[account] = password
        entries[service] = accounts
        self._write(entries)

    def delete_password(self, service: str, account: str) -> None:
        result = self.load()
        accounts = result.entries.get(service)
        if not isinstance(accounts, dict) or account not in accounts:
            return
        del accounts[account]
        if not accounts:
            del result.entries[service]
        self._write(result.entries)

    def accounts(self, service: str) -> list[str]:
        accounts = self.get(service)
        return sorted(accounts) if isinstance(accounts, dict) else []


class KeyringSecretBackend:
    """Secrets stored in the platform keychain through :mod:`keyring`."""

    def __init__(self, backend: KeyringBackend) -> None:
        self._backend = backend

    @property
    def backend(self) -> KeyringBackend:
        return self._backend

    def get_password(self, service: str, account: str) -> str | None:
        return self._backend.get_password(service, account)

    def set_password(self, service: str, account: str, password: str) -> None:
        self._backend.set_password(service, account, password)

    def delete_password(self, service: str, account: str) -> None:
        try:
            self._backend.delete_password(service, account)
        except PasswordDeleteError:
            logger.debug("No keychain entry to delete", extra={"service": service, "account": account})


def system_keyring() -> KeyringSecretBackend | None:
    """Return the platform keychain, or ``None`` when only a placeholder backend is installed."""

    try:
        backend = keyring.get_keyring()
    except NoKeyringError:
        return None
    if isinstance(backend, (fail.Keyring, null.Keyring)):
        return None
    return KeyringSecretBackend(backend)


def resolve_secret_backend(
    directory: Path,
    keychain: SecretBackend | None = None,
    *,
    use_system_keyring: bool = False,
) -> SecretBackend:
    """Pick where secrets live.

    An explicit ``keychain`` wins. Otherwise, with ``use_system_keyring``, the
    platform keychain is used when a real backend is available. The file vault
    in ``directory`` is the fallback.
    """

    if keychain is not None:
        return keychain
    if use_system_keyring:
        system = system_keyring()
        if system is not None:
            logger.debug(
                "Using platform keychain",
                extra={"backend": type(system.backend).__name__},
            )
            return system
    vault = CredentialVault.in_directory(directory)
    logger.debug("Using file credential vault", extra={"path": str(vault.path)})
    return vault


__all__ = [
    "CredentialVault",
    "KeyringSecretBackend",
    "SecretBackend",
    "VAULT_FILE_NAME",
    "resolve_secret_backend",
    "system_keyring",
]
