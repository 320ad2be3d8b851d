"""Group-scoped tasks and their attachment references."""
from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional

from .coordinator import ConsistencyCoordinator
from .database import coerce_datetime, current_timestamp, parse_datetime, serialize_datetime
from .errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from .identity import fetch_summaries, fetch_user
from .models import Task, TaskStatus, TaskView

logger = logging.getLogger("taskboard.tasks")

_MAX_TITLE_LENGTH = 200
_UPDATABLE_FIELDS = ("title", "description", "status", "due_date", "assigned_to")


def parse_status(value: object) -> TaskStatus:
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(value)
    except ValueError as exc:
        allowed = ", ".join(status.value for status in TaskStatus)
        raise ValidationError(
            f"Invalid status {value!r}; expected one of: {allowed}",
            details={"status": value},
        ) from exc


def _normalise_title(title: object) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Task title is required")
    value = title.strip()
    if len(value) > _MAX_TITLE_LENGTH:
        raise ValidationError("Task title is too long")
    return value


def _normalise_description(description: object) -> Optional[str]:
    if description is None:
        return None
    if not isinstance(description, str):
        raise ValidationError("Task description must be text")
    return description.strip() or None


def _normalise_due_date(value: object) -> Optional[datetime]:
    try:
        return coerce_datetime(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid due date {value!r}") from exc


def fetch_task(conn: sqlite3.Connection, task_id: int) -> Optional[Task]:
    row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
    if row is None:
        return None
    return _row_to_task(conn, row)


def _row_to_task(conn: sqlite3.Connection, row: sqlite3.Row) -> Task:
    attachments = conn.execute(
        "SELECT reference FROM task_attachments WHERE task_id = ? ORDER BY id",
        (row["id"],),
    ).fetchall()
    return Task(
        id=int(row["id"]),
        title=str(row["title"]),
        description=row["description"],
        status=TaskStatus(row["status"]),
        due_date=parse_datetime(row["due_date"]),
        group_id=int(row["group_id"]),
        created_by=int(row["created_by"]),
        assigned_to=row["assigned_to"],
        attachments=tuple(str(item["reference"]) for item in attachments),
        created_at=parse_datetime(row["created_at"]),
    )


def _resolve_views(conn: sqlite3.Connection, tasks: List[Task]) -> List[TaskView]:
    people = fetch_summaries(
        conn,
        [task.created_by for task in tasks] + [task.assigned_to for task in tasks if task.assigned_to is not None],
    )
    return [
        TaskView(
            task=task,
            creator=people.get(task.created_by),
            assignee=people.get(task.assigned_to) if task.assigned_to is not None else None,
        )
        for task in tasks
    ]


class TaskLedger:
    """Stores tasks that always belong to the group of the user who created them."""

    def __init__(self, coordinator: ConsistencyCoordinator) -> None:
        self._coordinator = coordinator
        self._database = coordinator.database

    def create_task(
        self,
        creator_id: int,
        *,
        title: str,
        description: Optional[str] = None,
        status: Optional[str] = None,
        due_date: object = None,
        assigned_to: Optional[int] = None,
    ) -> Task:
        """Create a task in the creator's current group."""

        normalised_title = _normalise_title(title)
        normalised_description = _normalise_description(description)
        normalised_status = TaskStatus.TODO if status is None else parse_status(status)
        normalised_due = _normalise_due_date(due_date)

        with self._coordinator.mutation() as conn:
            creator = fetch_user(conn, creator_id)
            if creator is None:
                raise NotFoundError("User not found", details={"user_id": creator_id})
            if creator.group_id is None:
                raise InvalidStateError("You must be part of a group to create a task")
            if assigned_to is not None and fetch_user(conn, assigned_to) is None:
                raise NotFoundError("Assignee not found", details={"assigned_to": assigned_to})

            cursor = conn.execute(
                """
                INSERT INTO tasks (
                    title, description, status, due_date, group_id, created_by, assigned_to, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    normalised_title,
                    normalised_description,
                    normalised_status.value,
                    serialize_datetime(normalised_due),
                    creator.group_id,
                    creator_id,
                    assigned_to,
                    serialize_datetime(current_timestamp()),
                ),
            )
            task = fetch_task(conn, int(cursor.lastrowid))

        logger.info("User #%s created task #%s in group #%s", creator_id, task.id, task.group_id)
        return task

    def list_tasks_for_group(self, user_id: int) -> List[TaskView]:
        """Return every task of the caller's current group."""

        with self._database.connection() as conn:
            user = fetch_user(conn, user_id)
            if user is None:
                raise NotFoundError("User not found", details={"user_id": user_id})
            if user.group_id is None:
                raise ForbiddenError("You are not part of any group")
            rows = conn.execute(
                "SELECT * FROM tasks WHERE group_id = ? ORDER BY id",
                (user.group_id,),
            ).fetchall()
            tasks = [_row_to_task(conn, row) for row in rows]
            return _resolve_views(conn, tasks)

    def get_task(self, task_id: int, *, viewer_id: Optional[int] = None) -> TaskView:
        """Return a task with resolved people.

        When ``viewer_id`` is given the viewer must currently belong to the
        task's group.
        """

        with self._database.connection() as conn:
            task = fetch_task(conn, task_id)
            if task is None:
                raise NotFoundError("Task not found", details={"task_id": task_id})
            if viewer_id is not None:
                viewer = fetch_user(conn, viewer_id)
                if viewer is None or viewer.group_id != task.group_id:
                    raise ForbiddenError("Task belongs to a group you are not part of")
            return _resolve_views(conn, [task])[0]

    def update_task(self, task_id: int, **fields: Any) -> Task:
        """Apply a partial update to a task's mutable fields."""

        unknown = sorted(set(fields) - set(_UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Cannot update task fields: {', '.join(unknown)}")

        updates: Dict[str, object] = {}
        if "title" in fields:
            updates["title"] = _normalise_title(fields["title"])
        if "description" in fields:
            updates["description"] = _normalise_description(fields["description"])
        if "status" in fields:
            updates["status"] = parse_status(fields["status"]).value
        if "due_date" in fields:
            updates["due_date"] = serialize_datetime(_normalise_due_date(fields["due_date"]))
        if "assigned_to" in fields:
            updates["assigned_to"] = fields["assigned_to"]

        with self._coordinator.mutation() as conn:
            if fetch_task(conn, task_id) is None:
                raise NotFoundError("Task not found", details={"task_id": task_id})
            assignee = updates.get("assigned_to")
            if assignee is not None and fetch_user(conn, int(assignee)) is None:
                raise NotFoundError("Assignee not found", details={"assigned_to": assignee})
            if updates:
                assignments = ", ".join(f"{column} = ?" for column in updates)
                conn.execute(
                    f"UPDATE tasks SET {assignments} WHERE id = ?",
                    [*updates.values(), task_id],
                )
            task = fetch_task(conn, task_id)

        logger.info("Updated task #%s (%s)", task_id, ", ".join(updates) or "no changes")
        return task

    def delete_task(self, task_id: int) -> None:
        with self._coordinator.mutation() as conn:
            cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            if cursor.rowcount == 0:
                raise NotFoundError("Task not found", details={"task_id": task_id})
        logger.info("Deleted task #%s", task_id)

    def add_attachment(self, task_id: int, reference: str) -> Task:
        """Append an opaque blob reference to the task's attachments."""

        with self._coordinator.mutation() as conn:
            if fetch_task(conn, task_id) is None:
                raise NotFoundError("Task not found", details={"task_id": task_id})
            conn.execute(
                "INSERT INTO task_attachments (task_id, reference, created_at) VALUES (?, ?, ?)",
                (task_id, reference, serialize_datetime(current_timestamp())),
            )
            task = fetch_task(conn, task_id)
        return task

    def find_orphaned_tasks(self) -> List[Task]:
        """Return tasks whose owning group has since been dissolved."""

        with self._database.connection() as conn:
            rows = conn.execute(
                """
                SELECT t.* FROM tasks t
                 WHERE NOT EXISTS (SELECT 1 FROM groups g WHERE g.id = t.group_id)
                 ORDER BY t.id
                """
            ).fetchall()
            return [_row_to_task(conn, row) for row in rows]


__all__ = ["TaskLedger", "fetch_task", "parse_status"]
