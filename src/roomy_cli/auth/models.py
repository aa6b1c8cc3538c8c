"""Session and credential models for the Roomy CLI."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union
from urllib.parse import quote

from pydantic import BaseModel, Field, TypeAdapter, field_validator

WORKER_SUBJECT_PREFIX = "worker:"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkerCredential(BaseModel):
    """A headless identity usable by the sync client without an OAuth login."""

    worker_id: str = Field(..., description="Sync account identifier of the worker.")
    public_name: str = Field(..., description="Display name of the worker account.")
    secret: str | None = Field(
        default=None,
        description="Account secret; only populated after hydration from the secret backend.",
    )
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("worker_id", "public_name")
    @classmethod
    def _require_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Worker id and name must not be empty")
        return normalized

    def public_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"secret"})


class OAuthSessionData(BaseModel):
    """Application session backed by an AT Protocol OAuth token set."""

    session_kind: Literal["oauth"] = "oauth"
    subject_id: str = Field(..., description="DID of the authenticated account.")
    display_handle: str = Field(..., description="Handle the user logged in with.")
    derived_secret: str | None = Field(
        default=None,
        description="Sync passphrase from the keyserver; hydrated, never written to the index.",
    )

    def index_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"derived_secret"})


class WorkerSessionData(BaseModel):
    """Application session for a registered worker credential."""

    session_kind: Literal["worker"] = "worker"
    subject_id: str = Field(..., description="Synthetic identifier, ``worker:<worker_id>``.")
    display_handle: str
    worker_ref: WorkerCredential

    @classmethod
    def for_worker(cls, worker: WorkerCredential) -> "WorkerSessionData":
        return cls(
            subject_id=worker_subject_id(worker.worker_id),
            display_handle=worker.public_name,
            worker_ref=worker,
        )

    def index_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"worker_ref": {"secret"}})


CliSessionData = Annotated[
    Union[OAuthSessionData, WorkerSessionData],
    Field(discriminator="session_kind"),
]

cli_session_adapter: TypeAdapter[OAuthSessionData | WorkerSessionData] = TypeAdapter(CliSessionData)


def worker_subject_id(worker_id: str) -> str:
    return f"{WORKER_SUBJECT_PREFIX}{worker_id}"


class OAuthAuthorization(BaseModel):
    """Result of a completed OAuth authorization as reported by the OAuth collaborator."""

    subject_id: str
    token_set: dict[str, Any] = Field(default_factory=dict)

    @property
    def access_token(self) -> str | None:
        token = self.token_set.get("access_token")
        return token if isinstance(token, str) and token else None


class OAuthClientMetadata(BaseModel):
    """Client metadata presented to the AT Protocol authorization server."""

    client_name: str = "Roomy CLI"
    client_uri: str = "https://roomy.space"
    redirect_uri: str = "http://127.0.0.1:8080/callback"
    scope: str = "atproto transition:generic transition:chat.bsky"
    handle_resolver: str = "https://resolver.roomy.chat"

    @field_validator("redirect_uri")
    @classmethod
    def _require_loopback(cls, value: str) -> str:
        if not value.startswith(("http://127.0.0.1", "http://[::1]", "http://localhost")):
            raise ValueError("redirect_uri must be a loopback http URL")
        return value

    @field_validator("scope")
    @classmethod
    def _require_atproto_scope(cls, value: str) -> str:
        scopes = value.split()
        if "atproto" not in scopes:
            raise ValueError("scope must include 'atproto'")
        return " ".join(scopes)

    @property
    def client_id(self) -> str:
        """Loopback client id carrying the redirect URI and scope as query parameters."""

        return (
            "http://localhost/"
            f"?redirect_uri={quote(self.redirect_uri, safe='')}"
            f"&scope={quote(self.scope, safe='')}"
        )


__all__ = [
    "CliSessionData",
    "OAuthAuthorization",
    "OAuthClientMetadata",
    "OAuthSessionData",
    "WorkerCredential",
    "WorkerSessionData",
    "cli_session_adapter",
    "worker_subject_id",
]
