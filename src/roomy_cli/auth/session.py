"""Session lifecycle for the Roomy CLI.

A local installation has at most one *current* session, persisted in the
``cli-session.json`` index. It is either an OAuth session (a DID whose token
set lives in ``oauth-sessions.json``) or a worker session (a headless sync
account registered with ``register_worker``). Secrets are kept out of the
index: OAuth-derived passphrases and worker secrets live in the secret
backend and are hydrated by :meth:`SessionManager.load_session`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from ..config import RoomySettings
from ..storage import (
    ExpiringRecordStore,
    RecordStore,
    RuntimeLock,
    SecretBackend,
    resolve_secret_backend,
)
from ..storage.records import utcnow
from .keyserver import KeyserverClient
from .metadata import load_client_metadata
from .models import (
    CliSessionData,
    OAuthClientMetadata,
    OAuthSessionData,
    WorkerCredential,
    WorkerSessionData,
    cli_session_adapter,
    worker_subject_id,
)
from .oauth import (
    OAuthClient,
    OAuthClientFactory,
    OAuthStores,
    OAuthUnavailableError,
    unavailable_oauth_client_factory,
)

logger = logging.getLogger(__name__)

SESSION_INDEX_FILE = "cli-session.json"
OAUTH_SESSIONS_FILE = "oauth-sessions.json"
OAUTH_STATES_FILE = "oauth-states.json"
WORKERS_FILE = "workers.json"
SESSION_LOCK_KEY = "cli-session"

DEFAULT_KEYSERVER_URL = "https://jazz.keyserver.roomy.chat"


class NoSessionError(RuntimeError):
    """Raised when an operation needs a session and none is current."""


class SessionActiveError(RuntimeError):
    """Raised when logging in while a different session is already current."""

    def __init__(self, current: CliSessionData) -> None:
        super().__init__(f"Already logged in as {current.display_handle}")
        self.current = current


@dataclass(slots=True)
class CurrentSession:
    cli: CliSessionData
    oauth: dict[str, Any] | None = None


@dataclass(slots=True)
class SyncCredentials:
    """Account id and secret the sync client is initialized with."""

    account_id: str
    secret: str


class SessionManager:
    """Compose the file stores into login, load, save and clear operations."""

    def __init__(
        self,
        config_dir: Path,
        *,
        oauth_client_factory: OAuthClientFactory | None = None,
        keyserver: KeyserverClient | None = None,
        secrets: SecretBackend | None = None,
        secret_service: str = "roomy-cli",
        client_metadata: OAuthClientMetadata | None = None,
        state_ttl: timedelta | float = timedelta(hours=1),
        lock_stale_after: timedelta | float = timedelta(seconds=45),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config_dir = Path(config_dir)
        self._clock = clock or utcnow
        self._oauth_client_factory = oauth_client_factory or unavailable_oauth_client_factory
        self._oauth_client: OAuthClient | None = None
        self._keyserver = keyserver or KeyserverClient(DEFAULT_KEYSERVER_URL)
        self._secrets = secrets or resolve_secret_backend(self._config_dir)
        self._worker_service = f"{secret_service}-worker"
        self._passphrase_service = f"{secret_service}-passphrase"

        self._index = RecordStore(self._config_dir / SESSION_INDEX_FILE)
        self._workers = RecordStore(self._config_dir / WORKERS_FILE)
        self._lock = RuntimeLock(self._config_dir, stale_after=lock_stale_after, clock=self._clock)
        self._oauth_stores = OAuthStores(
            sessions=RecordStore(self._config_dir / OAUTH_SESSIONS_FILE),
            states=ExpiringRecordStore(
                self._config_dir / OAUTH_STATES_FILE, ttl=state_ttl, clock=self._clock
            ),
            lock=self._lock,
            metadata=client_metadata or OAuthClientMetadata(),
        )

    @classmethod
    def from_settings(
        cls,
        settings: RoomySettings,
        *,
        oauth_client_factory: OAuthClientFactory | None = None,
        keychain: SecretBackend | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> "SessionManager":
        config_dir = settings.config_dir
        return cls(
            config_dir,
            oauth_client_factory=oauth_client_factory,
            keyserver=KeyserverClient(
                settings.keyserver_url,
                proxy=settings.keyserver_proxy,
                timeout=settings.keyserver_timeout,
            ),
            secrets=resolve_secret_backend(
                config_dir, keychain, use_system_keyring=settings.use_keyring
            ),
            secret_service=settings.secret_service,
            client_metadata=load_client_metadata(config_dir),
            state_ttl=settings.state_ttl_seconds,
            lock_stale_after=settings.lock_stale_seconds,
            clock=clock,
        )

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    @property
    def oauth_stores(self) -> OAuthStores:
        return self._oauth_stores

    @property
    def session_index(self) -> RecordStore:
        return self._index

    @property
    def lock(self) -> RuntimeLock:
        return self._lock

    def _ensure_oauth_client(self) -> OAuthClient:
        if self._oauth_client is None:
            self._oauth_client = self._oauth_client_factory(self._oauth_stores)
        return self._oauth_client

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def login(self, handle: str, *, replace: bool = False) -> OAuthSessionData:
        """Authorize ``handle`` via OAuth, fetch its sync passphrase and make it current.

        Raises :class:`SessionActiveError` when a different session is current
        and ``replace`` is false.
        """

        handle = handle.strip()
        if not handle:
            raise ValueError("Handle is required")

        current = self._current_indexed()
        if current is not None and not replace:
            raise SessionActiveError(current)

        logger.info("Starting OAuth login", extra={"handle": handle})
        authorization = self._ensure_oauth_client().authorize(handle)
        passphrase = self._keyserver.fetch_passphrase(authorization.access_token)

        session = OAuthSessionData(
            subject_id=authorization.subject_id,
            display_handle=handle,
            derived_secret=passphrase,
        )
        with self._lock.hold(SESSION_LOCK_KEY):
            self._replace_others(session.subject_id)
            self._persist(session)

        logger.info("Login complete", extra={"handle": handle, "subject_id": session.subject_id})
        return session

    def register_worker(self, worker_id: str, public_name: str, secret: str) -> WorkerSessionData:
        """Store a worker credential and make its session current."""

        if not secret:
            raise ValueError("Worker secret must not be empty")

        worker = WorkerCredential(
            worker_id=worker_id,
            public_name=public_name,
            secret=secret,
            created_at=self._clock(),
        )
        session = WorkerSessionData.for_worker(worker)
        with self._lock.hold(SESSION_LOCK_KEY):
            self._replace_others(session.subject_id)
            self._persist(session)

        logger.info(
            "Registered worker",
            extra={"worker_id": worker.worker_id, "public_name": worker.public_name},
        )
        return session

    def save_session(self, session: CliSessionData) -> None:
        with self._lock.hold(SESSION_LOCK_KEY):
            self._persist(session)

    def load_session(self) -> CliSessionData | None:
        """Return the current session with its secrets hydrated, or ``None``."""

        current = self._current_indexed()
        if current is None:
            return None
        return self._hydrate(current)

    def clear_session(self) -> CliSessionData | None:
        """Log out of the current session; return it, or ``None`` when there was none."""

        with self._lock.hold(SESSION_LOCK_KEY):
            current = self._current_indexed()
            if current is None:
                logger.info("No active session found")
                return None
            self._drop(current)

        logger.info("Session cleared", extra={"subject_id": current.subject_id})
        return current

    def get_current_session(self) -> CurrentSession | None:
        session = self.load_session()
        if session is None:
            return None
        if isinstance(session, WorkerSessionData):
            return CurrentSession(cli=session)

        token_record = self._oauth_stores.sessions.get(session.subject_id)
        if token_record is None:
            return None
        return CurrentSession(cli=session, oauth=token_record)

    def get_agent(self) -> Any:
        """Return an authenticated agent for the current OAuth session."""

        session = self.load_session()
        if session is None:
            raise NoSessionError("No valid session found")
        if isinstance(session, WorkerSessionData):
            raise NoSessionError("Worker sessions have no AT Protocol agent")
        return self._ensure_oauth_client().restore(session.subject_id)

    def sync_credentials(self) -> SyncCredentials:
        session = self.load_session()
        if session is None:
            raise NoSessionError("No valid session found")
        if isinstance(session, WorkerSessionData):
            account_id, secret = session.worker_ref.worker_id, session.worker_ref.secret
        else:
            account_id, secret = session.subject_id, session.derived_secret
        if not secret:
            raise NoSessionError(f"No stored secret for {session.display_handle}")
        return SyncCredentials(account_id=account_id, secret=secret)

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def list_workers(self) -> list[WorkerCredential]:
        """Return registered workers without their secrets, oldest first."""

        workers: list[WorkerCredential] = []
        for worker_id, record in self._workers.all().items():
            try:
                workers.append(WorkerCredential.model_validate(record))
            except ValidationError:
                logger.warning("Skipping malformed worker record", extra={"worker_id": worker_id})
        workers.sort(key=lambda worker: worker.created_at)
        return workers

    def get_worker(self, worker_id_or_name: str) -> WorkerCredential | None:
        """Look a worker up by id, falling back to its public name; secret included."""

        workers = self.list_workers()
        match = next((w for w in workers if w.worker_id == worker_id_or_name), None)
        if match is None:
            match = next((w for w in workers if w.public_name == worker_id_or_name), None)
        if match is None:
            return None
        secret = self._secrets.get_password(self._worker_service, match.worker_id)
        return match.model_copy(update={"secret": secret})

    def remove_worker(self, worker_id: str) -> bool:
        """Delete a worker's record, secret and session; return whether it existed."""

        with self._lock.hold(SESSION_LOCK_KEY):
            existed = (
                self._workers.get(worker_id) is not None
                or self._secrets.get_password(self._worker_service, worker_id) is not None
            )
            self._workers.delete(worker_id)
            self._secrets.delete_password(self._worker_service, worker_id)
            self._index.delete(worker_subject_id(worker_id))

        if existed:
            logger.info("Removed worker", extra={"worker_id": worker_id})
        return existed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _indexed_sessions(self) -> list[CliSessionData]:
        sessions: list[CliSessionData] = []
        for session_id, record in self._index.all().items():
            try:
                sessions.append(cli_session_adapter.validate_python(record))
            except ValidationError:
                logger.warning("Skipping malformed session record", extra={"session_id": session_id})
        return sessions

    def _current_indexed(self) -> CliSessionData | None:
        sessions = self._indexed_sessions()
        if not sessions:
            return None
        if len(sessions) > 1:
            logger.warning(
                "Session index holds more than one session; using the first",
                extra={"session_ids": [session.subject_id for session in sessions]},
            )
        return sessions[0]

    def _hydrate(self, session: CliSessionData) -> CliSessionData:
        if isinstance(session, WorkerSessionData):
            worker = session.worker_ref
            record = self._workers.get(worker.worker_id)
            if record is not None:
                try:
                    worker = WorkerCredential.model_validate(record)
                except ValidationError:
                    logger.warning(
                        "Ignoring malformed worker record", extra={"worker_id": worker.worker_id}
                    )
            secret = self._secrets.get_password(self._worker_service, worker.worker_id)
            if secret is None:
                logger.warning("Worker secret is missing", extra={"worker_id": worker.worker_id})
            return session.model_copy(update={"worker_ref": worker.model_copy(update={"secret": secret})})

        secret = self._secrets.get_password(self._passphrase_service, session.subject_id)
        return session.model_copy(update={"derived_secret": secret})

    def _persist(self, session: CliSessionData) -> None:
        if isinstance(session, WorkerSessionData):
            worker = session.worker_ref
            self._workers.set(worker.worker_id, worker.public_record())
            if worker.secret:
                self._secrets.set_password(self._worker_service, worker.worker_id, worker.secret)
        elif session.derived_secret:
            self._secrets.set_password(
                self._passphrase_service, session.subject_id, session.derived_secret
            )
        self._index.set(session.subject_id, session.index_record())

    def _replace_others(self, subject_id: str) -> None:
        for other in self._indexed_sessions():
            if other.subject_id != subject_id:
                logger.info("Replacing current session", extra={"subject_id": other.subject_id})
                self._drop(other)

    def _drop(self, session: CliSessionData) -> None:
        self._index.delete(session.subject_id)
        if isinstance(session, OAuthSessionData):
            self._secrets.delete_password(self._passphrase_service, session.subject_id)
            self._drop_token_set(session.subject_id)

    def _drop_token_set(self, subject_id: str) -> None:
        try:
            client = self._ensure_oauth_client()
        except OAuthUnavailableError:
            self._oauth_stores.sessions.delete(subject_id)
            return
        client.revoke(subject_id)


__all__ = [
    "CurrentSession",
    "NoSessionError",
    "SessionActiveError",
    "SessionManager",
    "SyncCredentials",
]
