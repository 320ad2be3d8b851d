"""Command-line interface for the task board service."""

from __future__ import annotations

import argparse
import logging
import sys
from getpass import getpass
from pathlib import Path
from typing import Sequence

from taskboard.application import TaskBoard, build_taskboard
from taskboard.config import Settings, load_settings
from taskboard.errors import TaskboardError

logger = logging.getLogger("taskboard.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Task board utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: TASKBOARD_CONFIG or config/taskboard.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the task board database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the API")
    serve_parser.add_argument("--port", type=int, default=5000, help="Port for the API (default: 5000)")

    user_parser = subparsers.add_parser("create-user", help="Register a new user account")
    user_parser.add_argument("username", help="Display name for the user")
    user_parser.add_argument("email", help="Unique email address for login")

    subparsers.add_parser(
        "audit",
        help="Report users whose affiliation disagrees with group membership and orphaned tasks",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "create-user", "audit"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first == "--config" and len(args_list) >= 2:
            remainder = args_list[2:]
            if not remainder or remainder[0] not in known_commands:
                remainder = ["serve", *remainder]
            args_list = [*args_list[:2], *remainder]
        elif first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _load(args: argparse.Namespace) -> Settings:
    config_path = Path(args.config).expanduser() if args.config else None
    return load_settings(config_path)


def _serve(*, settings: Settings, board: TaskBoard, host: str, port: int) -> None:
    from taskboard.service import create_app
    import uvicorn

    logger.info("Starting task board API on http://%s:%s", host, port)
    app = create_app(settings=settings, board=board)
    uvicorn.run(app, host=host, port=port, log_level="info")


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass("Password (min 6 characters): ")
        if len(password) < 6:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def _create_user(board: TaskBoard, username: str, email: str) -> int:
    password = _prompt_for_password()
    if password is None:
        print("Aborted creating user.", file=sys.stderr)
        return 1
    try:
        user = board.identity.register(username, email, password)
    except TaskboardError as exc:
        print(f"Failed to create user: {exc}", file=sys.stderr)
        return 1
    print(f"Created user #{user.id}: {user.username} <{user.email}>")
    return 0


def _audit(board: TaskBoard) -> int:
    violations = board.coordinator.audit()
    orphaned = board.tasks.find_orphaned_tasks()

    if not violations:
        print("Memberships are consistent.")
    else:
        print(f"{len(violations)} membership problem(s) found:")
        for violation in violations:
            user = f"user #{violation.user_id}" if violation.user_id is not None else "-"
            group = f"group #{violation.group_id}" if violation.group_id is not None else "-"
            print(f"  {user:<12} {group:<12} {violation.reason}")

    if orphaned:
        print(f"{len(orphaned)} task(s) reference a dissolved group:")
        for task in orphaned:
            print(f"  task #{task.id} {task.title!r} (group #{task.group_id})")
    else:
        print("No orphaned tasks.")

    return 1 if violations or orphaned else 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    args = _parse_args(argv)
    settings = _load(args)
    board = build_taskboard(settings)
    logger.info("Database initialised at %s", settings.database_path)

    if args.command == "serve":
        _serve(settings=settings, board=board, host=args.host, port=args.port)
    elif args.command == "init-db":
        print("Database initialisation complete.")
    elif args.command == "create-user":
        return _create_user(board, args.username, args.email)
    elif args.command == "audit":
        return _audit(board)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
