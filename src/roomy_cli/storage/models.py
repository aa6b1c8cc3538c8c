"""Data models for file-backed persistence."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ReadStatus(str, Enum):
    """Outcome of reading a record file."""

    FOUND = "found"
    ABSENT = "absent"
    CORRUPT_RECOVERED = "corrupt_recovered"


@dataclass(slots=True)
class ReadResult:
    """Decoded contents of a record file together with how they were obtained.

    ``entries`` is always a fresh mapping; for ``ABSENT`` and
    ``CORRUPT_RECOVERED`` it is empty.
    """

    status: ReadStatus
    entries: dict[str, Any] = field(default_factory=dict)

    @property
    def found(self) -> bool:
        return self.status is ReadStatus.FOUND


class LockMarker(BaseModel):
    """Evidence that a critical section is in progress in some process."""

    key: str = Field(..., description="Lock key the marker guards.")
    acquired_at: datetime = Field(..., description="UTC time the lock was taken.")
    pid: int = Field(..., description="Process identifier of the holder.")

    def age_seconds(self, now: datetime) -> float:
        return (now - self.acquired_at).total_seconds()


__all__ = ["LockMarker", "ReadResult", "ReadStatus"]
