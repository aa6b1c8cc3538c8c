from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from roomy_cli.auth import NoSessionError, SessionManager
from roomy_cli.sync import connect_sync_client


class FakeSyncClient:
    def __init__(self) -> None:
        self.initialized: list[tuple[str, str]] = []

    async def initialize(self, account_id: str, secret: str) -> None:
        self.initialized.append((account_id, secret))

    async def load_spaces(self):
        return []

    async def load_channels(self, space_id: str):
        return []

    async def send_message(self, channel_id: str, text: str, **options):
        return None

    async def disconnect(self) -> None:
        return None


def test_connect_with_worker_session(tmp_path: Path) -> None:
    manager = SessionManager(tmp_path)
    manager.register_worker("co_z1", "Bot", "sealerSecret_z")
    client = FakeSyncClient()

    connected = asyncio.run(connect_sync_client(manager, client))

    assert connected is client
    assert client.initialized == [("co_z1", "sealerSecret_z")]


def test_connect_requires_session(tmp_path: Path) -> None:
    client = FakeSyncClient()

    with pytest.raises(NoSessionError):
        asyncio.run(connect_sync_client(SessionManager(tmp_path), client))

    assert client.initialized == []
