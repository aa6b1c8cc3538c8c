"""Seam between the session layer and an AT Protocol OAuth client."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol

from ..storage import ExpiringRecordStore, RecordStore, RuntimeLock
from .models import OAuthAuthorization, OAuthClientMetadata


class OAuthUnavailableError(RuntimeError):
    """Raised when no OAuth client has been configured for this installation."""


@dataclass(slots=True)
class OAuthStores:
    """Persistence handed to the OAuth client.

    ``sessions`` holds token sets by subject DID, ``states`` holds one-time
    CSRF/PKCE state for in-flight authorizations, and ``lock`` serializes
    token refreshes between processes.
    """

    sessions: RecordStore
    states: ExpiringRecordStore
    lock: RuntimeLock
    metadata: OAuthClientMetadata


class OAuthClient(Protocol):
    """The subset of an AT Protocol OAuth client the session layer drives."""

    def authorize(self, handle: str) -> OAuthAuthorization:
        """Run the interactive authorization flow for ``handle``."""
        ...

    def callback(self, params: Mapping[str, str]) -> OAuthAuthorization:
        ...

    def restore(self, subject_id: str) -> Any:
        """Return an authenticated agent, refreshing tokens when needed."""
        ...

    def revoke(self, subject_id: str) -> None:
        """Drop the token set stored for ``subject_id``."""
        ...


OAuthClientFactory = Callable[[OAuthStores], OAuthClient]


def unavailable_oauth_client_factory(stores: OAuthStores) -> OAuthClient:
    raise OAuthUnavailableError(
        "No AT Protocol OAuth client is configured for this installation"
    )


__all__ = [
    "OAuthClient",
    "OAuthClientFactory",
    "OAuthStores",
    "OAuthUnavailableError",
    "unavailable_oauth_client_factory",
]
