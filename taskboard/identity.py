"""User accounts and their single group affiliation."""
from __future__ import annotations

import logging
import re
import sqlite3
from typing import Iterable, List, Optional

from .coordinator import ConsistencyCoordinator
from .credentials import CredentialService
from .database import current_timestamp, parse_datetime, serialize_datetime
from .errors import ConflictError, NotFoundError, UnauthenticatedError, ValidationError
from .models import User, UserSummary

logger = logging.getLogger("taskboard.identity")

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30
PASSWORD_MIN_LENGTH = 6
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalise_email(email: str) -> str:
    value = email.strip().lower()
    if not _EMAIL_PATTERN.fullmatch(value):
        raise ValidationError("Email address is not valid")
    return value


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=int(row["id"]),
        username=str(row["username"]),
        email=str(row["email"]),
        group_id=row["group_id"],
        created_at=parse_datetime(str(row["created_at"])),
    )


def _row_to_summary(row: sqlite3.Row) -> UserSummary:
    return UserSummary(id=int(row["id"]), username=str(row["username"]), email=str(row["email"]))


def fetch_user(conn: sqlite3.Connection, user_id: int) -> Optional[User]:
    row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        return None
    return _row_to_user(row)


def fetch_summaries(conn: sqlite3.Connection, user_ids: Iterable[int]) -> dict[int, UserSummary]:
    ids = sorted({user_id for user_id in user_ids if user_id is not None})
    if not ids:
        return {}
    placeholders = ", ".join("?" for _ in ids)
    rows = conn.execute(
        f"SELECT id, username, email FROM users WHERE id IN ({placeholders})",
        ids,
    ).fetchall()
    return {int(row["id"]): _row_to_summary(row) for row in rows}


class IdentityStore:
    """Registration, login, and affiliation lookups for user accounts."""

    def __init__(self, coordinator: ConsistencyCoordinator, credentials: CredentialService) -> None:
        self._coordinator = coordinator
        self._database = coordinator.database
        self._credentials = credentials

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def register(self, username: str, email: str, password: str) -> User:
        """Create a new account with no group affiliation."""

        normalised_username = username.strip()
        if not USERNAME_MIN_LENGTH <= len(normalised_username) <= USERNAME_MAX_LENGTH:
            raise ValidationError(
                f"Username must be between {USERNAME_MIN_LENGTH} and {USERNAME_MAX_LENGTH} characters"
            )
        normalised_email = normalise_email(email)
        if len(password) < PASSWORD_MIN_LENGTH:
            raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")

        password_hash = self._credentials.hash(password)
        created_at = current_timestamp()

        with self._coordinator.mutation() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (username, email, password_hash, group_id, created_at)
                    VALUES (?, ?, ?, NULL, ?)
                    """,
                    (normalised_username, normalised_email, password_hash, serialize_datetime(created_at)),
                )
            except sqlite3.IntegrityError as exc:
                raise ConflictError("A user with that email already exists") from exc
            user_id = int(cursor.lastrowid)

        logger.info("Registered user #%s (%s)", user_id, normalised_email)
        return User(
            id=user_id,
            username=normalised_username,
            email=normalised_email,
            group_id=None,
            created_at=created_at,
        )

    def login(self, email: str, password: str) -> str:
        """Check the password for ``email`` and return a fresh access token."""

        normalised_email = normalise_email(email)
        with self._database.connection() as conn:
            row = conn.execute(
                "SELECT id, password_hash FROM users WHERE email = ?",
                (normalised_email,),
            ).fetchone()
        if row is None:
            raise NotFoundError("User not found")
        if not self._credentials.check(password, str(row["password_hash"])):
            logger.warning("Rejected login for %s", normalised_email)
            raise UnauthenticatedError("Invalid credentials")
        return self._credentials.issue(int(row["id"]))

    def authenticate(self, token: str) -> User:
        """Resolve a bearer token to an existing user."""

        user_id = self._credentials.verify(token)
        user = self.find_user(user_id)
        if user is None:
            raise UnauthenticatedError("Token refers to an unknown user")
        return user

    def find_user(self, user_id: int) -> Optional[User]:
        with self._database.connection() as conn:
            return fetch_user(conn, user_id)

    def get_user(self, user_id: int) -> User:
        user = self.find_user(user_id)
        if user is None:
            raise NotFoundError("User not found", details={"user_id": user_id})
        return user

    def list_available(self) -> List[UserSummary]:
        """Return users who do not currently belong to any group."""

        with self._database.connection() as conn:
            rows = conn.execute(
                "SELECT id, username, email FROM users WHERE group_id IS NULL ORDER BY username, id"
            ).fetchall()
        return [_row_to_summary(row) for row in rows]

    # ------------------------------------------------------------------
    # Affiliation
    # ------------------------------------------------------------------
    def get_affiliation(self, user_id: int) -> Optional[int]:
        return self.get_user(user_id).group_id

    def set_affiliation(self, user_id: int, group_id: Optional[int]) -> None:
        """Overwrite a single user's affiliation column.

        This writes only the user record. Membership changes that must keep the
        group side in step go through :class:`~taskboard.groups.GroupRegistry`.
        """

        with self._coordinator.mutation() as conn:
            cursor = conn.execute("UPDATE users SET group_id = ? WHERE id = ?", (group_id, user_id))
            if cursor.rowcount == 0:
                raise NotFoundError("User not found", details={"user_id": user_id})


__all__ = ["IdentityStore", "fetch_summaries", "fetch_user", "normalise_email"]
