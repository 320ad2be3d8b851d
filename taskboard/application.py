"""Wiring for the task board components."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .blobs import BlobStore
from .config import Settings
from .coordinator import ConsistencyCoordinator
from .credentials import CredentialService
from .database import Database
from .groups import GroupRegistry
from .identity import IdentityStore
from .tasks import TaskLedger


@dataclass(frozen=True)
class TaskBoard:
    """The set of collaborating stores that make up one task board instance."""

    database: Database
    coordinator: ConsistencyCoordinator
    credentials: CredentialService
    identity: IdentityStore
    groups: GroupRegistry
    tasks: TaskLedger
    blobs: BlobStore


def build_taskboard(
    settings: Settings,
    *,
    database: Optional[Database] = None,
    credentials: Optional[CredentialService] = None,
    blobs: Optional[BlobStore] = None,
) -> TaskBoard:
    """Create (and initialise) every component from ``settings``."""

    db = database or Database(settings.database_path)
    db.initialize()
    coordinator = ConsistencyCoordinator(db)
    credential_service = credentials or CredentialService(settings.secret, token_ttl=settings.token_ttl)
    return TaskBoard(
        database=db,
        coordinator=coordinator,
        credentials=credential_service,
        identity=IdentityStore(coordinator, credential_service),
        groups=GroupRegistry(coordinator),
        tasks=TaskLedger(coordinator),
        blobs=blobs or BlobStore(settings.upload_dir),
    )


__all__ = ["TaskBoard", "build_taskboard"]
