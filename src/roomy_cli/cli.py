"""Command-line entry point for the Roomy CLI."""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import sys

from . import __version__
from .auth import (
    CliSessionData,
    ClientMetadataLoadError,
    CredentialRetrievalError,
    NoSessionError,
    OAuthUnavailableError,
    SessionActiveError,
    SessionManager,
    WorkerSessionData,
)
from .config import RoomySettings, get_settings
from .storage import LockHeldError

LOGIN_FIX = "Run 'roomy login' to authenticate"


def configure_logging(level: str) -> None:
    """Configure root logging for CLI invocations."""

    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def build_session_manager(settings: RoomySettings) -> SessionManager:
    return SessionManager.from_settings(settings)


def _fail(message: str, fix: str | None = None) -> int:
    print(f"ERROR: {message}", file=sys.stderr)
    if fix:
        print(f"FIX: {fix}", file=sys.stderr)
    return 1


def _describe(session: CliSessionData) -> dict[str, object]:
    payload: dict[str, object] = {
        "session_kind": session.session_kind,
        "subject_id": session.subject_id,
        "handle": session.display_handle,
    }
    if isinstance(session, WorkerSessionData):
        payload["worker_id"] = session.worker_ref.worker_id
        payload["has_secret"] = session.worker_ref.secret is not None
    else:
        payload["has_secret"] = session.derived_secret is not None
    return payload


def _prompt_handle() -> str:
    handle = input("Enter your AT Protocol handle: ").strip()
    if not handle:
        raise ValueError("Handle is required")
    if "." not in handle:
        raise ValueError("Handle must be a domain (e.g., user.bsky.social)")
    return handle


def cmd_login(manager: SessionManager, args: argparse.Namespace) -> int:
    handle = args.handle or _prompt_handle()
    session = manager.login(handle, replace=args.replace)
    print(f"Logged in as {session.display_handle} ({session.subject_id})")
    return 0


def cmd_logout(manager: SessionManager, args: argparse.Namespace) -> int:
    cleared = manager.clear_session()
    if cleared is None:
        print("No active session found")
        return 0
    print(f"Logged out {cleared.display_handle}")
    return 0


def cmd_whoami(manager: SessionManager, args: argparse.Namespace) -> int:
    session = manager.load_session()
    if session is None:
        raise NoSessionError("Not logged in")
    print(json.dumps(_describe(session), indent=2))
    return 0


def cmd_register_worker(manager: SessionManager, args: argparse.Namespace) -> int:
    secret = args.secret or os.environ.get("ROOMY_WORKER_SECRET") or getpass.getpass("Worker secret: ")
    session = manager.register_worker(args.id, args.name, secret)
    print(f"Registered worker {session.display_handle} ({session.worker_ref.worker_id})")
    return 0


def cmd_workers(manager: SessionManager, args: argparse.Namespace) -> int:
    workers = [worker.public_record() for worker in manager.list_workers()]
    print(json.dumps(workers, indent=2))
    return 0


def cmd_remove_worker(manager: SessionManager, args: argparse.Namespace) -> int:
    if not manager.remove_worker(args.worker_id):
        return _fail(f"Worker '{args.worker_id}' not found", fix="Run 'roomy workers' to list workers")
    print(f"Removed worker {args.worker_id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="roomy", description="Roomy command-line client")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="cmd")

    p_login = sub.add_parser("login", help="Log in with an AT Protocol handle")
    p_login.add_argument("--handle", help="AT Protocol handle (e.g., user.bsky.social)")
    p_login.add_argument(
        "--replace",
        action="store_true",
        help="Replace the current session instead of refusing",
    )
    p_login.set_defaults(func=cmd_login)

    p_logout = sub.add_parser("logout", help="Clear the current session")
    p_logout.set_defaults(func=cmd_logout)

    p_whoami = sub.add_parser("whoami", help="Show the current session")
    p_whoami.set_defaults(func=cmd_whoami)

    p_register = sub.add_parser("register-worker", help="Store a worker credential and use it")
    p_register.add_argument("--id", required=True, help="Worker account id")
    p_register.add_argument("--name", required=True, help="Worker display name")
    p_register.add_argument(
        "--secret",
        help="Worker secret (defaults to $ROOMY_WORKER_SECRET, then a prompt)",
    )
    p_register.set_defaults(func=cmd_register_worker)

    p_workers = sub.add_parser("workers", help="List registered workers")
    p_workers.set_defaults(func=cmd_workers)

    p_remove = sub.add_parser("remove-worker", help="Delete a registered worker")
    p_remove.add_argument("worker_id")
    p_remove.set_defaults(func=cmd_remove_worker)

    return parser


def run(argv: list[str] | None = None, *, settings: RoomySettings | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    settings = settings or get_settings()
    configure_logging(settings.log_level)

    try:
        manager = build_session_manager(settings)
        return args.func(manager, args)
    except NoSessionError as exc:
        return _fail(str(exc), fix=LOGIN_FIX)
    except SessionActiveError as exc:
        return _fail(str(exc), fix="Run 'roomy logout' first or pass --replace")
    except LockHeldError as exc:
        return _fail(str(exc), fix="Another roomy command is running; retry in a moment")
    except CredentialRetrievalError as exc:
        return _fail(str(exc), fix="Check your network connection and log in again")
    except OAuthUnavailableError as exc:
        return _fail(str(exc), fix="Use 'roomy register-worker' for headless access")
    except ClientMetadataLoadError as exc:
        return _fail(str(exc), fix="Fix or remove oauth-client.yaml in the config directory")
    except ValueError as exc:
        return _fail(str(exc))


def main(argv: list[str] | None = None) -> None:
    exit_code = run(argv)
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
