"""Groups, their member sets, and the membership lifecycle."""
from __future__ import annotations

import logging
import sqlite3
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .coordinator import ConsistencyCoordinator
from .database import current_timestamp, parse_datetime, serialize_datetime
from .errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from .identity import fetch_summaries, fetch_user
from .models import Group, GroupDetail, GroupUpdate, User, UserSummary

logger = logging.getLogger("taskboard.groups")

_MAX_NAME_LENGTH = 100


def _normalise_name(name: str) -> str:
    value = name.strip()
    if not value:
        raise ValidationError("Group name must not be empty")
    if len(value) > _MAX_NAME_LENGTH:
        raise ValidationError("Group name is too long")
    return value


def _unique_ids(user_ids: Iterable[int]) -> List[int]:
    seen: List[int] = []
    for user_id in user_ids:
        if user_id not in seen:
            seen.append(user_id)
    return seen


def fetch_group(conn: sqlite3.Connection, group_id: int) -> Optional[Group]:
    row = conn.execute("SELECT * FROM groups WHERE id = ?", (group_id,)).fetchone()
    if row is None:
        return None
    members = conn.execute(
        "SELECT user_id FROM group_members WHERE group_id = ? ORDER BY joined_at, rowid",
        (group_id,),
    ).fetchall()
    return Group(
        id=int(row["id"]),
        name=str(row["name"]),
        members=tuple(int(member["user_id"]) for member in members),
        created_at=parse_datetime(str(row["created_at"])),
    )


def _member_summaries(conn: sqlite3.Connection, group: Group) -> Tuple[UserSummary, ...]:
    summaries: Dict[int, UserSummary] = fetch_summaries(conn, group.members)
    return tuple(summaries[user_id] for user_id in group.members)


class GroupRegistry:
    """Creates, mutates and dissolves groups while keeping affiliations in step."""

    def __init__(self, coordinator: ConsistencyCoordinator) -> None:
        self._coordinator = coordinator
        self._database = coordinator.database

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def create_group(self, name: str, member_ids: Sequence[int]) -> Group:
        """Create a group whose initial members are all currently unaffiliated."""

        return self.create_group_with_members(name, member_ids).group

    def create_group_with_members(self, name: str, member_ids: Sequence[int]) -> GroupDetail:
        normalised_name = _normalise_name(name)
        members = _unique_ids(member_ids)
        if not members:
            raise ValidationError("A group needs at least one member")

        with self._coordinator.mutation() as conn:
            users = {user_id: fetch_user(conn, user_id) for user_id in members}
            missing = [user_id for user_id, user in users.items() if user is None]
            if missing:
                raise NotFoundError("Some users do not exist", details={"missing_members": missing})
            existing = [user_id for user_id, user in users.items() if user.group_id is not None]
            if existing:
                raise ConflictError(
                    "Some users are already in a group",
                    details={"existing_members": existing},
                )

            cursor = conn.execute(
                "INSERT INTO groups (name, created_at) VALUES (?, ?)",
                (normalised_name, serialize_datetime(current_timestamp())),
            )
            group_id = int(cursor.lastrowid)
            self._coordinator.attach(conn, group_id, members)
            group = fetch_group(conn, group_id)
            summaries = _member_summaries(conn, group)

        logger.info('Created group "%s" (#%s) with members %s', normalised_name, group_id, members)
        return GroupDetail(group=group, members=summaries)

    def join_group(self, group_id: int, user_id: int) -> Group:
        return self.join_group_with_members(group_id, user_id).group

    def join_group_with_members(self, group_id: int, user_id: int) -> GroupDetail:
        with self._coordinator.mutation() as conn:
            user = fetch_user(conn, user_id)
            if user is None:
                raise NotFoundError("User not found", details={"user_id": user_id})
            if user.group_id is not None:
                raise ConflictError("You are already in a group", details={"group_id": user.group_id})
            if fetch_group(conn, group_id) is None:
                raise NotFoundError("Group not found", details={"group_id": group_id})

            self._coordinator.attach(conn, group_id, [user_id])
            group = fetch_group(conn, group_id)
            summaries = _member_summaries(conn, group)

        logger.info("User #%s joined group #%s", user_id, group_id)
        return GroupDetail(group=group, members=summaries)

    def leave_group(self, user_id: int) -> GroupUpdate:
        """Remove the user from their group, dissolving it if they were the last member."""

        with self._coordinator.mutation() as conn:
            user = fetch_user(conn, user_id)
            if user is None:
                raise NotFoundError("User not found", details={"user_id": user_id})
            if user.group_id is None:
                raise InvalidStateError("You are not in a group")

            group_id = int(user.group_id)
            if fetch_group(conn, group_id) is None:
                logger.warning(
                    "User #%s was affiliated with missing group #%s; clearing affiliation",
                    user_id,
                    group_id,
                )
                conn.execute("UPDATE users SET group_id = NULL WHERE id = ?", (user_id,))
                return GroupUpdate(group_id=group_id, group=None, deleted=True)

            self._coordinator.detach(conn, group_id, [user_id])
            deleted = self._coordinator.dissolve_if_empty(conn, group_id)
            group = None if deleted else fetch_group(conn, group_id)
            summaries = _member_summaries(conn, group) if group is not None else ()

        logger.info("User #%s left group #%s", user_id, group_id)
        return GroupUpdate(group_id=group_id, group=group, deleted=deleted, members=summaries)

    def update_group(
        self,
        group_id: int,
        *,
        name: Optional[str] = None,
        add_members: Optional[Sequence[int]] = None,
        remove_members: Optional[Sequence[int]] = None,
    ) -> GroupUpdate:
        """Rename a group and/or change its members.

        Requested additions of users who already belong to a group (or who do
        not exist) are skipped rather than rejected and reported in
        ``GroupUpdate.skipped``. If the member set ends up empty the group is
        deleted and ``GroupUpdate.deleted`` is set.
        """

        normalised_name = _normalise_name(name) if name is not None else None
        additions = _unique_ids(add_members or ())
        removals = _unique_ids(remove_members or ())

        with self._coordinator.mutation() as conn:
            group = fetch_group(conn, group_id)
            if group is None:
                raise NotFoundError("Group not found", details={"group_id": group_id})

            skipped: Tuple[int, ...] = ()
            if additions:
                eligible: List[int] = []
                for user_id in additions:
                    user = fetch_user(conn, user_id)
                    if user is not None and user.group_id is None:
                        eligible.append(user_id)
                skipped = tuple(user_id for user_id in additions if user_id not in eligible)
                self._coordinator.attach(conn, group_id, eligible)

            if removals:
                self._coordinator.detach(conn, group_id, removals)

            deleted = self._coordinator.dissolve_if_empty(conn, group_id)
            if not deleted and normalised_name is not None:
                conn.execute("UPDATE groups SET name = ? WHERE id = ?", (normalised_name, group_id))
            refreshed = None if deleted else fetch_group(conn, group_id)
            summaries = _member_summaries(conn, refreshed) if refreshed is not None else ()

        if skipped:
            logger.info("Skipped adding users %s to group #%s", list(skipped), group_id)
        return GroupUpdate(
            group_id=group_id,
            group=refreshed,
            deleted=deleted,
            skipped=skipped,
            members=summaries,
        )

    # ------------------------------------------------------------------
    # Read-only projections
    # ------------------------------------------------------------------
    def list_groups(self) -> List[Group]:
        with self._database.connection() as conn:
            rows = conn.execute("SELECT id FROM groups ORDER BY id").fetchall()
            return [fetch_group(conn, int(row["id"])) for row in rows]

    def list_groups_with_members(self) -> List[Tuple[Group, List[UserSummary]]]:
        with self._database.connection() as conn:
            rows = conn.execute("SELECT id FROM groups ORDER BY id").fetchall()
            groups = [fetch_group(conn, int(row["id"])) for row in rows]
            summaries = fetch_summaries(conn, (user_id for group in groups for user_id in group.members))
        return [(group, [summaries[user_id] for user_id in group.members]) for group in groups]

    def get_group(self, group_id: int) -> Group:
        with self._database.connection() as conn:
            group = fetch_group(conn, group_id)
        if group is None:
            raise NotFoundError("Group not found", details={"group_id": group_id})
        return group

    def get_group_with_members(self, group_id: int) -> GroupDetail:
        with self._database.connection() as conn:
            group = fetch_group(conn, group_id)
            if group is None:
                raise NotFoundError("Group not found", details={"group_id": group_id})
            return GroupDetail(group=group, members=_member_summaries(conn, group))

    def get_members(self, group_id: int) -> List[UserSummary]:
        return list(self.get_group_with_members(group_id).members)

    def get_user_with_group(self, user_id: int) -> Tuple[User, Optional[GroupDetail]]:
        """Return a user and the group they belong to, read from one snapshot.

        The group is ``None`` when the user is unaffiliated or their affiliation
        points at a group that no longer exists.
        """

        with self._database.connection() as conn:
            user = fetch_user(conn, user_id)
            if user is None:
                raise NotFoundError("User not found", details={"user_id": user_id})
            group = fetch_group(conn, user.group_id) if user.group_id is not None else None
            if group is None:
                return user, None
            return user, GroupDetail(group=group, members=_member_summaries(conn, group))


__all__ = ["GroupRegistry", "fetch_group"]
