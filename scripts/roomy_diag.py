"""Roomy CLI diagnostics for the local configuration directory."""

from __future__ import annotations

import argparse
import json

from roomy_cli.auth import SessionManager
from roomy_cli.config import RoomySettings
from roomy_cli.storage import RuntimeLock
from roomy_cli.storage.records import utcnow


def load_manager(settings: RoomySettings) -> SessionManager:
    return SessionManager.from_settings(settings)


def _lock_rows(lock: RuntimeLock) -> list[dict[str, object]]:
    now = utcnow()
    rows: list[dict[str, object]] = []
    for path, marker in lock.markers():
        if marker is None:
            rows.append({"file": path.name, "key": None, "pid": None, "age_seconds": None, "stale": True})
            continue
        rows.append(
            {
                "file": path.name,
                "key": marker.key,
                "pid": marker.pid,
                "age_seconds": round(marker.age_seconds(now), 3),
                "stale": lock.is_stale(marker),
            }
        )
    return rows


def cmd_locks(args: argparse.Namespace) -> None:
    manager = load_manager(RoomySettings())
    print(json.dumps(_lock_rows(manager.lock), indent=2))


def cmd_prune_locks(args: argparse.Namespace) -> None:
    manager = load_manager(RoomySettings())
    removed: list[str] = []
    for path, marker in manager.lock.markers():
        if marker is None or manager.lock.is_stale(marker):
            path.unlink(missing_ok=True)
            removed.append(path.name)
    print(json.dumps({"removed": removed}, indent=2))


def cmd_sessions(args: argparse.Namespace) -> None:
    manager = load_manager(RoomySettings())
    result = manager.session_index.load()
    payload = {
        "status": result.status.value,
        "sessions": list(result.entries.values()),
        "workers": [worker.public_record() for worker in manager.list_workers()],
    }
    print(json.dumps(payload, indent=2))


def cmd_states(args: argparse.Namespace) -> None:
    manager = load_manager(RoomySettings())
    states = manager.oauth_stores.states
    result = states.load()
    live = states.live_entries()
    payload = {
        "status": result.status.value,
        "stored": len(result.entries),
        "live": len(live),
        "expired": len(result.entries) - len(live),
        "ttl_seconds": states.ttl.total_seconds(),
    }
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Roomy CLI diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_locks = sub.add_parser("locks", help="List lock markers with their age")
    p_locks.set_defaults(func=cmd_locks)

    p_prune = sub.add_parser("prune-locks", help="Delete stale or unreadable lock markers")
    p_prune.set_defaults(func=cmd_prune_locks)

    p_sessions = sub.add_parser("sessions", help="Show the session index and workers")
    p_sessions.set_defaults(func=cmd_sessions)

    p_states = sub.add_parser("states", help="Count pending OAuth states")
    p_states.set_defaults(func=cmd_states)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
