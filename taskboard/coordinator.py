"""Cross-entity write protocol for users, groups, and memberships.

Every operation that touches more than one of the identity, group, or task
collections runs inside :meth:`ConsistencyCoordinator.mutation`. The block
holds a process-wide writer lock and a single SQLite transaction, so callers
validate all preconditions first and then apply every write; a failure at any
point rolls the whole block back and other operations never observe a user
whose affiliation disagrees with a group's member set.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional

from .database import Database, current_timestamp, serialize_datetime
from .models import ConsistencyViolation

logger = logging.getLogger("taskboard.coordinator")


class ConsistencyCoordinator:
    """Serialises multi-entity mutations and keeps both sides of a membership in step."""

    def __init__(self, database: Database) -> None:
        self._database = database
        self._lock = threading.Lock()

    @property
    def database(self) -> Database:
        return self._database

    @contextmanager
    def mutation(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside the writer critical section."""

        with self._lock:
            with self._database.transaction() as conn:
                yield conn

    # ------------------------------------------------------------------
    # Membership primitives (caller must hold ``mutation()``)
    # ------------------------------------------------------------------
    def attach(self, conn: sqlite3.Connection, group_id: int, user_ids: Iterable[int]) -> List[int]:
        """Add users to a group and point their affiliation at it."""

        joined_at = serialize_datetime(current_timestamp())
        attached: List[int] = []
        for user_id in user_ids:
            conn.execute(
                "INSERT INTO group_members (group_id, user_id, joined_at) VALUES (?, ?, ?)",
                (group_id, user_id, joined_at),
            )
            conn.execute("UPDATE users SET group_id = ? WHERE id = ?", (group_id, user_id))
            attached.append(user_id)
        return attached

    def detach(self, conn: sqlite3.Connection, group_id: int, user_ids: Iterable[int]) -> List[int]:
        """Remove users from a group and clear their affiliation.

        Users whose affiliation names a different group are left untouched.
        """

        detached: List[int] = []
        for user_id in user_ids:
            conn.execute(
                "DELETE FROM group_members WHERE group_id = ? AND user_id = ?",
                (group_id, user_id),
            )
            cursor = conn.execute(
                "UPDATE users SET group_id = NULL WHERE id = ? AND group_id = ?",
                (user_id, group_id),
            )
            if cursor.rowcount:
                detached.append(user_id)
        return detached

    def member_count(self, conn: sqlite3.Connection, group_id: int) -> int:
        row = conn.execute(
            "SELECT COUNT(*) AS total FROM group_members WHERE group_id = ?",
            (group_id,),
        ).fetchone()
        return int(row["total"])

    def dissolve_if_empty(self, conn: sqlite3.Connection, group_id: int) -> bool:
        """Delete the group when it has no members left. Returns ``True`` if deleted."""

        if self.member_count(conn, group_id) > 0:
            return False
        row = conn.execute("SELECT name FROM groups WHERE id = ?", (group_id,)).fetchone()
        conn.execute("DELETE FROM groups WHERE id = ?", (group_id,))
        if row is not None:
            logger.info('Group "%s" (#%s) has been deleted as it has no members.', row["name"], group_id)
        return True

    # ------------------------------------------------------------------
    # Auditing
    # ------------------------------------------------------------------
    def audit(self) -> List[ConsistencyViolation]:
        """Report affiliations that disagree with group membership, and empty groups."""

        violations: List[ConsistencyViolation] = []
        with self._lock, self._database.connection() as conn:
            rows = conn.execute(
                """
                SELECT u.id AS user_id, u.group_id AS affiliation, m.group_id AS member_of,
                       g.id AS group_exists
                  FROM users u
                  LEFT JOIN group_members m ON m.user_id = u.id
                  LEFT JOIN groups g ON g.id = u.group_id
                """
            ).fetchall()
            for row in rows:
                affiliation: Optional[int] = row["affiliation"]
                member_of: Optional[int] = row["member_of"]
                if affiliation is not None and row["group_exists"] is None:
                    violations.append(
                        ConsistencyViolation(row["user_id"], affiliation, "affiliation names a missing group")
                    )
                elif affiliation != member_of:
                    violations.append(
                        ConsistencyViolation(
                            row["user_id"],
                            affiliation if affiliation is not None else member_of,
                            "affiliation does not match group membership",
                        )
                    )

            empty = conn.execute(
                """
                SELECT g.id FROM groups g
                 WHERE NOT EXISTS (SELECT 1 FROM group_members m WHERE m.group_id = g.id)
                """
            ).fetchall()
            for row in empty:
                violations.append(ConsistencyViolation(None, row["id"], "group has no members"))
        return violations


__all__ = ["ConsistencyCoordinator"]
