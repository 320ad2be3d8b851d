"""Error taxonomy shared by the core and the HTTP layer."""

from __future__ import annotations

from typing import Any, Dict, Optional


class TaskboardError(Exception):
    """Base class for every failure surfaced by a core operation."""

    status_code = 500
    code = "TASKBOARD_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(TaskboardError, LookupError):
    """A referenced user, group, or task does not exist."""

    status_code = 404
    code = "NOT_FOUND"


class ConflictError(TaskboardError):
    """An exclusivity precondition failed, e.g. the user is already in a group."""

    status_code = 409
    code = "CONFLICT"


class InvalidStateError(TaskboardError):
    """The operation is not valid for the entity's current state."""

    status_code = 400
    code = "INVALID_STATE"


class ValidationError(TaskboardError, ValueError):
    status_code = 422
    code = "VALIDATION_ERROR"


class UnauthenticatedError(TaskboardError):
    status_code = 401
    code = "UNAUTHENTICATED"


class ForbiddenError(TaskboardError, PermissionError):
    status_code = 403
    code = "FORBIDDEN"


__all__ = [
    "ConflictError",
    "ForbiddenError",
    "InvalidStateError",
    "NotFoundError",
    "TaskboardError",
    "UnauthenticatedError",
    "ValidationError",
]
