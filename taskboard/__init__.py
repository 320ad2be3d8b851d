"""Core utilities for the group-scoped task board."""

from __future__ import annotations

from typing import Any

from .application import TaskBoard, build_taskboard
from .database import Database, resolve_database_path


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the HTTP application."""

    from .service import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Database",
    "TaskBoard",
    "build_taskboard",
    "create_app",
    "resolve_database_path",
]
