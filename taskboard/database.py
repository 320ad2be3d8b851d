"""SQLite-backed persistence for users, groups, and tasks."""
from __future__ import annotations

import logging
import sqlite3
from contextlib import closing, contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger("taskboard.database")


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "taskboard.sqlite3").resolve(strict=False)


def current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def serialize_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def coerce_datetime(value: object) -> Optional[datetime]:
    """Accept ``datetime``, ``date`` or ISO-8601 text and return a ``datetime``."""

    if value is None or isinstance(value, datetime):
        return value  # type: ignore[return-value]
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text)
    raise TypeError(f"Unsupported date value: {value!r}")


class Database:
    """Simple wrapper around SQLite for persisting users, groups and tasks."""

    def __init__(self, path: Path, *, timeout: float = 30.0) -> None:
        _ensure_directory(path)
        self._path = path
        self._timeout = timeout

    def _connect(self, *, autocommit: bool = False) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._path,
            timeout=self._timeout,
            check_same_thread=False,
            isolation_level=None if autocommit else "",
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with closing(self._connect()) as conn, conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    group_id INTEGER,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS groups (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS group_members (
                    group_id INTEGER NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
                    user_id INTEGER NOT NULL UNIQUE REFERENCES users(id),
                    joined_at TEXT NOT NULL,
                    PRIMARY KEY (group_id, user_id)
                );

                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    description TEXT,
                    status TEXT NOT NULL DEFAULT 'To Do',
                    due_date TEXT,
                    group_id INTEGER NOT NULL,
                    created_by INTEGER NOT NULL REFERENCES users(id),
                    assigned_to INTEGER REFERENCES users(id),
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS task_attachments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    reference TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_users_group_id ON users(group_id);
                CREATE INDEX IF NOT EXISTS idx_tasks_group_id ON tasks(group_id);
                CREATE INDEX IF NOT EXISTS idx_task_attachments_task_id ON task_attachments(task_id);
                """
            )
        logger.debug("Schema ready in %s", self._path)

    @contextmanager
    def _begin(self, statement: str) -> Iterator[sqlite3.Connection]:
        conn = self._connect(autocommit=True)
        try:
            conn.execute(statement)
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection for read-only queries.

        The block runs inside a deferred transaction, so every statement in it
        reads the same committed snapshot even while writers commit alongside.
        """

        with self._begin("BEGIN") as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements as one write transaction.

        The transaction takes SQLite's reserved lock up front so no other writer
        can interleave between the checks and the writes of the caller. Any
        exception rolls back every statement issued inside the block.
        """

        with self._begin("BEGIN IMMEDIATE") as conn:
            yield conn


__all__ = [
    "Database",
    "coerce_datetime",
    "current_timestamp",
    "parse_datetime",
    "resolve_database_path",
    "serialize_datetime",
]
