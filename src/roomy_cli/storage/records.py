"""JSON record files with read-modify-write semantics."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Mapping

from .models import ReadResult, ReadStatus

logger = logging.getLogger(__name__)

FILE_MODE = 0o600
DIR_MODE = 0o700
STORED_AT_FIELD = "stored_at"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def read_json_document(path: Path) -> ReadResult:
    """Read a JSON object from ``path`` without ever raising on bad content."""

    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ReadResult(ReadStatus.ABSENT)
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Unreadable record file, treating as empty", extra={"path": str(path), "error": str(exc)})
        return ReadResult(ReadStatus.CORRUPT_RECOVERED)

    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Corrupt record file, treating as empty", extra={"path": str(path), "error": str(exc)})
        return ReadResult(ReadStatus.CORRUPT_RECOVERED)

    if not isinstance(document, dict):
        logger.warning(
            "Record file does not hold a JSON object, treating as empty",
            extra={"path": str(path), "type": type(document).__name__},
        )
        return ReadResult(ReadStatus.CORRUPT_RECOVERED)

    return ReadResult(ReadStatus.FOUND, document)


def write_json_document(path: Path, document: Mapping[str, Any]) -> None:
    """Atomically replace ``path`` with pretty-printed JSON readable only by the owner."""

    payload = json.dumps(document, indent=2) + "\n"
    path.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        try:
            os.chmod(temp_path, FILE_MODE)
        except NotImplementedError:  # pragma: no cover - platform without chmod
            pass
        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def remove_file(path: Path) -> bool:
    """Delete ``path``; return whether a file was actually removed."""

    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


class RecordStore:
    """File-backed mapping from string keys to JSON-serializable values.

    Every operation reads the whole file, mutates the decoded mapping and
    writes it back. A missing or undecodable file reads as an empty mapping
    and is overwritten by the next successful write. The file never exists
    without entries. No locking happens here; wrap multi-step updates in
    :class:`~roomy_cli.storage.lock.RuntimeLock` when they must not race.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> ReadResult:
        """Return the decoded file contents and whether they were found, absent or corrupt."""

        return read_json_document(self._path)

    def all(self) -> dict[str, Any]:
        return self.load().entries

    def get(self, key: str, default: Any = None) -> Any:
        return self.load().entries.get(key, default)

    def set(self, key: str, value: Any) -> None:
        entries = self.load().entries
        entries[key] = value
        self._write(entries)

    def delete(self, key: str) -> None:
        result = self.load()
        if not result.found or key not in result.entries:
            return
        del result.entries[key]
        self._write(result.entries)

    def clear(self) -> None:
        if remove_file(self._path):
            logger.debug("Cleared record file", extra={"path": str(self._path)})

    def _write(self, entries: dict[str, Any]) -> None:
        if not entries:
            self.clear()
            return
        write_json_document(self._path, entries)


class ExpiringRecordStore(RecordStore):
    """Record store whose entries expire ``ttl`` after they were written.

    Values must be JSON objects; the capture time is merged into the stored
    object as ``stored_at`` and stripped again on read. Expired entries are
    dropped lazily: all of them on ``set``, the requested one on ``get``.
    """

    def __init__(
        self,
        path: Path,
        *,
        ttl: timedelta | float = timedelta(hours=1),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(path)
        self._ttl = ttl if isinstance(ttl, timedelta) else timedelta(seconds=ttl)
        self._clock = clock or utcnow

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def _is_expired(self, entry: Any, now: datetime) -> bool:
        if not isinstance(entry, dict):
            return True
        stored_raw = entry.get(STORED_AT_FIELD)
        if not isinstance(stored_raw, str):
            return True
        try:
            stored_at = datetime.fromisoformat(stored_raw)
        except ValueError:
            return True
        if stored_at.tzinfo is None:
            stored_at = stored_at.replace(tzinfo=timezone.utc)
        return now - stored_at > self._ttl

    @staticmethod
    def _strip(entry: dict[str, Any]) -> dict[str, Any]:
        return {name: value for name, value in entry.items() if name != STORED_AT_FIELD}

    def live_entries(self) -> dict[str, dict[str, Any]]:
        """Return unexpired values without modifying the file.

        Use :meth:`load` to inspect the raw document, expired entries included.
        """

        now = self._clock()
        return {
            key: self._strip(entry)
            for key, entry in self.load().entries.items()
            if not self._is_expired(entry, now)
        }

    def all(self) -> dict[str, dict[str, Any]]:
        return self.live_entries()

    def get(self, key: str, default: Any = None) -> Any:
        entry = self.load().entries.get(key)
        if entry is None:
            return default
        if self._is_expired(entry, self._clock()):
            logger.debug("Dropping expired entry", extra={"path": str(self.path), "key": key})
            self.delete(key)
            return default
        return self._strip(entry)

    def set(self, key: str, value: Mapping[str, Any]) -> None:
        if not isinstance(value, Mapping):
            raise TypeError("ExpiringRecordStore values must be JSON objects")

        now = self._clock()
        entries = {
            name: entry
            for name, entry in self.load().entries.items()
            if not self._is_expired(entry, now)
        }
        entries[key] = {**value, STORED_AT_FIELD: now.isoformat()}
        self._write(entries)


__all__ = [
    "ExpiringRecordStore",
    "RecordStore",
    "read_json_document",
    "remove_file",
    "write_json_document",
]
