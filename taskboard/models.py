"""Domain models for users, groups, and group-scoped tasks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class TaskStatus(str, Enum):
    """Workflow columns a task may sit in. Any status may move to any other."""

    TODO = "To Do"
    IN_PROGRESS = "In Progress"
    IN_REVIEW = "In Review"
    DONE = "Done"


@dataclass(frozen=True)
class User:
    """Represents a registered account and its current group affiliation."""

    id: int
    username: str
    email: str
    group_id: Optional[int]
    created_at: datetime


@dataclass(frozen=True)
class UserSummary:
    id: int
    username: str
    email: str


@dataclass(frozen=True)
class Group:
    """A named set of members. Never persisted with an empty member set."""

    id: int
    name: str
    members: Tuple[int, ...]
    created_at: datetime


@dataclass(frozen=True)
class Task:
    """A unit of work owned by exactly one group."""

    id: int
    title: str
    description: Optional[str]
    status: TaskStatus
    due_date: Optional[datetime]
    group_id: int
    created_by: int
    assigned_to: Optional[int]
    attachments: Tuple[str, ...] = ()
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class TaskView:
    """A task with its creator and assignee resolved to user summaries."""

    task: Task
    creator: Optional[UserSummary]
    assignee: Optional[UserSummary]


@dataclass(frozen=True)
class GroupDetail:
    """A group together with its member summaries, read from one snapshot."""

    group: Group
    members: Tuple[UserSummary, ...]


@dataclass(frozen=True)
class GroupUpdate:
    """Outcome of :meth:`GroupRegistry.update_group`.

    ``group`` is ``None`` when the update emptied and therefore deleted the
    group. ``skipped`` lists requested additions that were ignored because the
    user already belonged to a group. ``members`` holds the summaries of the
    remaining members as of the same transaction.
    """

    group_id: int
    group: Optional[Group]
    deleted: bool
    skipped: Tuple[int, ...] = ()
    members: Tuple[UserSummary, ...] = ()


@dataclass(frozen=True)
class ConsistencyViolation:
    user_id: Optional[int]
    group_id: Optional[int]
    reason: str


__all__ = [
    "ConsistencyViolation",
    "Group",
    "GroupDetail",
    "GroupUpdate",
    "Task",
    "TaskStatus",
    "TaskView",
    "User",
    "UserSummary",
]
