import argparse
import getpass
import sys
from dataclasses import replace
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from taskboard.application import build_taskboard
from taskboard.config import load_settings
from taskboard.database import resolve_database_path
from taskboard.errors import TaskboardError


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a task board user")
    parser.add_argument("username", help="Display name for the user")
    parser.add_argument("email", help="Unique email address for login")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to TASKBOARD_DB_PATH or data/taskboard.sqlite3)",
    )
    return parser.parse_args()


def prompt_for_password() -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < 6:
            print("Password must be at least 6 characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def main() -> int:
    args = parse_args()
    password = prompt_for_password()

    settings = load_settings()
    if args.db_path:
        settings = replace(settings, database_path=resolve_database_path(args.db_path))
    board = build_taskboard(settings)

    try:
        user = board.identity.register(args.username, args.email, password)
    except TaskboardError as exc:  # duplicates, invalid email, etc.
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.username} <{user.email}>")
    print("The account is not in any group yet; create or join one through the API.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
