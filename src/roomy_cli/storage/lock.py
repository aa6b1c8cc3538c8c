"""Cross-process advisory locks backed by marker files."""

from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterator, TypeVar
from urllib.parse import quote

from pydantic import ValidationError

from .models import LockMarker
from .records import (
    DIR_MODE,
    FILE_MODE,
    read_json_document,
    remove_file,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LockHeldError(RuntimeError):
    """Raised when another process holds a fresh marker for the requested key."""

    def __init__(self, key: str, *, pid: int | None = None, age_seconds: float | None = None) -> None:
        super().__init__(f"Lock already exists for key: {key}")
        self.key = key
        self.pid = pid
        self.age_seconds = age_seconds


class RuntimeLock:
    """Mutual exclusion between separate CLI processes sharing a config directory.

    A lock is a ``lock-<key>.json`` marker, with the key percent-encoded,
    holding the acquisition time and the holder's pid. Markers older than
    ``stale_after`` are considered abandoned and are reclaimed by the next
    acquirer; liveness of the recorded pid is not checked. Acquisition never
    waits: contention raises :class:`LockHeldError`.
    """

    def __init__(
        self,
        directory: Path,
        *,
        stale_after: timedelta | float = timedelta(seconds=45),
        clock: Callable[[], datetime] | None = None,
        pid: int | None = None,
    ) -> None:
        self._directory = Path(directory)
        self._stale_after = (
            stale_after if isinstance(stale_after, timedelta) else timedelta(seconds=stale_after)
        )
        self._clock = clock or utcnow
        self._pid = pid if pid is not None else os.getpid()

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def stale_after(self) -> timedelta:
        return self._stale_after

    def marker_path(self, key: str) -> Path:
        # percent-encoding keeps distinct keys on distinct files
        return self._directory / f"lock-{quote(key, safe='')}.json"

    def read_marker(self, key: str) -> LockMarker | None:
        """Return the current marker for ``key``, or ``None`` if absent or unreadable."""

        return self._read_marker_file(self.marker_path(key))

    def markers(self) -> list[tuple[Path, LockMarker | None]]:
        """List every marker file in the directory with its decoded contents."""

        if not self._directory.is_dir():
            return []
        return [
            (path, self._read_marker_file(path))
            for path in sorted(self._directory.glob("lock-*.json"))
        ]

    def is_stale(self, marker: LockMarker) -> bool:
        return marker.age_seconds(self._clock()) >= self._stale_after.total_seconds()

    @staticmethod
    def _read_marker_file(path: Path) -> LockMarker | None:
        result = read_json_document(path)
        if not result.found:
            return None
        try:
            return LockMarker.model_validate(result.entries)
        except ValidationError:
            logger.warning("Ignoring malformed lock marker", extra={"path": str(path)})
            return None

    def acquire(self, key: str) -> LockMarker:
        """Write a marker for ``key`` or raise :class:`LockHeldError`."""

        path = self.marker_path(key)
        existing = self._read_marker_file(path)
        now = self._clock()

        if existing is not None:
            age = existing.age_seconds(now)
            if age < self._stale_after.total_seconds():
                raise LockHeldError(key, pid=existing.pid, age_seconds=age)
            logger.warning(
                "Reclaiming stale lock",
                extra={"key": key, "previous_pid": existing.pid, "age_seconds": age},
            )

        marker = LockMarker(key=key, acquired_at=now, pid=self._pid)
        document = marker.model_dump(mode="json")

        if existing is not None or path.exists():
            # a reclaimer racing us for the same stale marker loses on the exclusive create
            remove_file(path)
        self._create_exclusive(path, key, document)

        logger.debug("Acquired lock", extra={"key": key, "pid": self._pid})
        return marker

    def _create_exclusive(self, path: Path, key: str, document: dict) -> None:
        self._directory.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, FILE_MODE)
        except FileExistsError:
            # another process created the marker between our check and create
            raced = self._read_marker_file(path)
            raise LockHeldError(
                key,
                pid=raced.pid if raced else None,
                age_seconds=raced.age_seconds(self._clock()) if raced else None,
            ) from None
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(json.dumps(document, indent=2) + "\n")

    def release(self, marker: LockMarker) -> None:
        """Remove ``marker``'s file unless another process has since reclaimed it."""

        path = self.marker_path(marker.key)
        current = self._read_marker_file(path)
        if current is not None and (current.pid, current.acquired_at) != (
            marker.pid,
            marker.acquired_at,
        ):
            logger.warning(
                "Lock was reclaimed by another process; leaving its marker in place",
                extra={"key": marker.key, "holder_pid": current.pid},
            )
            return
        try:
            remove_file(path)
        except OSError as exc:
            logger.debug("Could not remove lock marker", extra={"key": marker.key, "error": str(exc)})
            return
        logger.debug("Released lock", extra={"key": marker.key, "pid": marker.pid})

    @contextmanager
    def hold(self, key: str) -> Iterator[LockMarker]:
        """Hold the lock for ``key`` for the duration of the ``with`` block."""

        marker = self.acquire(key)
        try:
            yield marker
        finally:
            self.release(marker)

    def with_lock(self, key: str, fn: Callable[[], T]) -> T:
        """Run ``fn`` while holding the lock for ``key`` and return its result."""

        with self.hold(key):
            return fn()


__all__ = ["LockHeldError", "RuntimeLock"]
