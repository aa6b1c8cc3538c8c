from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

import roomy_cli.storage.lock as lock_module
from roomy_cli.storage import LockHeldError, LockMarker, RuntimeLock


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def write_marker(lock: RuntimeLock, key: str, *, acquired_at: datetime, pid: int) -> Path:
    path = lock.marker_path(key)
    path.parent.mkdir(parents=True, exist_ok=True)
    marker = LockMarker(key=key, acquired_at=acquired_at, pid=pid)
    path.write_text(json.dumps(marker.model_dump(mode="json")), encoding="utf-8")
    return path


def test_with_lock_returns_result_and_releases(tmp_path: Path) -> None:
    lock = RuntimeLock(tmp_path, clock=Clock(), pid=111)
    seen: list[LockMarker | None] = []

    def critical() -> str:
        seen.append(lock.read_marker("job"))
        return "done"

    assert lock.with_lock("job", critical) == "done"
    assert seen[0] is not None and seen[0].pid == 111
    assert not lock.marker_path("job").exists()


def test_marker_file_layout(tmp_path: Path) -> None:
    lock = RuntimeLock(tmp_path, clock=Clock(), pid=111)

    with lock.hold("job"):
        document = json.loads((tmp_path / "lock-job.json").read_text(encoding="utf-8"))

    assert document["key"] == "job"
    assert document["pid"] == 111
    assert datetime.fromisoformat(document["acquired_at"].replace("Z", "+00:00")) == datetime(
        2025, 1, 1, tzinfo=timezone.utc
    )


def test_second_acquirer_fails_while_first_runs(tmp_path: Path) -> None:
    clock = Clock()
    first = RuntimeLock(tmp_path, clock=clock, pid=111)
    second = RuntimeLock(tmp_path, clock=clock, pid=222)

    def critical() -> None:
        clock.advance(seconds=10)
        with pytest.raises(LockHeldError) as excinfo:
            second.with_lock("job", lambda: None)
        assert excinfo.value.key == "job"
        assert excinfo.value.pid == 111
        assert excinfo.value.age_seconds == pytest.approx(10)

    first.with_lock("job", critical)
    assert not first.marker_path("job").exists()


def test_fresh_marker_blocks_acquisition(tmp_path: Path) -> None:
    clock = Clock()
    lock = RuntimeLock(tmp_path, clock=clock, pid=222)
    write_marker(lock, "job", acquired_at=clock.now - timedelta(seconds=44), pid=111)
    called = []

    with pytest.raises(LockHeldError, match="Lock already exists for key: job"):
        lock.with_lock("job", lambda: called.append(True))

    assert called == []
    assert lock.read_marker("job").pid == 111


def test_stale_marker_is_reclaimed(tmp_path: Path) -> None:
    clock = Clock()
    lock = RuntimeLock(tmp_path, clock=clock, pid=222)
    write_marker(lock, "job", acquired_at=clock.now - timedelta(seconds=46), pid=111)

    def critical() -> int:
        marker = lock.read_marker("job")
        assert marker is not None
        return marker.pid

    assert lock.with_lock("job", critical) == 222
    assert not lock.marker_path("job").exists()


def test_unreadable_marker_is_treated_as_absent(tmp_path: Path) -> None:
    lock = RuntimeLock(tmp_path, clock=Clock(), pid=222)
    path = lock.marker_path("job")
    path.write_text("{not json", encoding="utf-8")

    assert lock.with_lock("job", lambda: 42) == 42
    assert not path.exists()


def test_marker_removed_when_critical_section_raises(tmp_path: Path) -> None:
    lock = RuntimeLock(tmp_path, clock=Clock(), pid=111)

    def critical() -> None:
        assert lock.marker_path("job").exists()
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        lock.with_lock("job", critical)

    assert not lock.marker_path("job").exists()


def test_release_tolerates_missing_marker(tmp_path: Path) -> None:
    lock = RuntimeLock(tmp_path, clock=Clock(), pid=111)

    with lock.hold("job") as marker:
        lock.marker_path("job").unlink()

    assert marker.key == "job"
    assert not lock.marker_path("job").exists()


def test_release_leaves_marker_reclaimed_by_another_process(tmp_path: Path) -> None:
    clock = Clock()
    slow = RuntimeLock(tmp_path, clock=clock, pid=111)
    other = RuntimeLock(tmp_path, clock=clock, pid=222)

    with slow.hold("job"):
        clock.advance(seconds=60)
        other.acquire("job")

    marker = other.read_marker("job")
    assert marker is not None and marker.pid == 222


def test_keys_are_independent(tmp_path: Path) -> None:
    lock = RuntimeLock(tmp_path, clock=Clock(), pid=111)

    with lock.hold("a"):
        assert lock.with_lock("b", lambda: "inner") == "inner"


def test_unsafe_key_characters_are_encoded(tmp_path: Path) -> None:
    lock = RuntimeLock(tmp_path, clock=Clock(), pid=111)

    path = lock.marker_path("did:plc:abc/../x")

    assert path.parent == tmp_path
    assert path.name == "lock-did%3Aplc%3Aabc%2F..%2Fx.json"
    with lock.hold("did:plc:abc/../x") as marker:
        assert lock.read_marker("did:plc:abc/../x") == marker


def test_similar_keys_use_distinct_markers(tmp_path: Path) -> None:
    lock = RuntimeLock(tmp_path, clock=Clock(), pid=111)

    assert lock.marker_path("a/b") != lock.marker_path("a_b")
    with lock.hold("a/b"):
        with lock.hold("a_b"):
            assert {path.name for path, _ in lock.markers()} == {"lock-a%2Fb.json", "lock-a_b.json"}


def test_concurrent_reclaim_of_stale_marker_has_one_winner(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    clock = Clock()
    slow = RuntimeLock(tmp_path, clock=clock, pid=111)
    fast = RuntimeLock(tmp_path, clock=clock, pid=222)
    write_marker(slow, "job", acquired_at=clock.now - timedelta(minutes=5), pid=1)
    original_remove = lock_module.remove_file

    def remove_then_lose_race(path: Path) -> bool:
        removed = original_remove(path)
        fast.acquire("job")
        return removed

    monkeypatch.setattr(lock_module, "remove_file", remove_then_lose_race)

    with pytest.raises(LockHeldError) as excinfo:
        slow.acquire("job")

    assert excinfo.value.pid == 222
    assert slow.read_marker("job").pid == 222


def test_markers_lists_and_flags_staleness(tmp_path: Path) -> None:
    clock = Clock()
    lock = RuntimeLock(tmp_path, stale_after=45, clock=clock, pid=111)
    write_marker(lock, "fresh", acquired_at=clock.now, pid=1)
    write_marker(lock, "old", acquired_at=clock.now - timedelta(minutes=5), pid=2)

    listed = {path.name: marker for path, marker in lock.markers()}

    assert set(listed) == {"lock-fresh.json", "lock-old.json"}
    assert not lock.is_stale(listed["lock-fresh.json"])
    assert lock.is_stale(listed["lock-old.json"])
