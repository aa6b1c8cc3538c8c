"""Seam between the session layer and the CRDT sync client."""

from __future__ import annotations

import logging
from typing import Any, Protocol, Sequence

from .auth.session import SessionManager

logger = logging.getLogger(__name__)


class SyncClient(Protocol):
    """Async API of the sync client; payloads are opaque to this package."""

    async def initialize(self, account_id: str, secret: str) -> None:
        ...

    async def load_spaces(self) -> Sequence[Any]:
        ...

    async def load_channels(self, space_id: str) -> Sequence[Any]:
        ...

    async def send_message(self, channel_id: str, text: str, **options: Any) -> Any:
        ...

    async def disconnect(self) -> None:
        ...


async def connect_sync_client(manager: SessionManager, client: SyncClient) -> SyncClient:
    """Initialize ``client`` with the current session's account id and secret.

    Raises :class:`~roomy_cli.auth.session.NoSessionError` when nobody is logged in.
    """

    credentials = manager.sync_credentials()
    logger.debug("Initializing sync client", extra={"account_id": credentials.account_id})
    await client.initialize(credentials.account_id, credentials.secret)
    return client


__all__ = ["SyncClient", "connect_sync_client"]
