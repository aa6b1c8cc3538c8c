"""Session lifecycle and credential collaborators."""

from .keyserver import CredentialRetrievalError, KeyserverClient
from .metadata import ClientMetadataLoadError, load_client_metadata
from .models import (
    CliSessionData,
    OAuthAuthorization,
    OAuthClientMetadata,
    OAuthSessionData,
    WorkerCredential,
    WorkerSessionData,
)
from .oauth import OAuthClient, OAuthStores, OAuthUnavailableError
from .session import (
    CurrentSession,
    NoSessionError,
    SessionActiveError,
    SessionManager,
    SyncCredentials,
)

__all__ = [
    "CliSessionData",
    "ClientMetadataLoadError",
    "CredentialRetrievalError",
    "CurrentSession",
    "KeyserverClient",
    "NoSessionError",
    "OAuthAuthorization",
    "OAuthClient",
    "OAuthClientMetadata",
    "OAuthSessionData",
    "OAuthStores",
    "OAuthUnavailableError",
    "SessionActiveError",
    "SessionManager",
    "SyncCredentials",
    "WorkerCredential",
    "WorkerSessionData",
    "load_client_metadata",
]
