from __future__ import annotations

from pathlib import Path

import pytest

from taskboard.application import TaskBoard, build_taskboard
from taskboard.config import Settings
from taskboard.models import User

PASSWORD = "secret-pass"


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_path=tmp_path / "taskboard.sqlite3",
        upload_dir=tmp_path / "uploads",
        secret="tests-secret-key",
    )


@pytest.fixture()
def board(settings: Settings) -> TaskBoard:
    return build_taskboard(settings)


@pytest.fixture()
def make_user(board: TaskBoard):
    counter = {"value": 0}

    def factory(username: str | None = None) -> User:
        counter["value"] += 1
        name = username or f"user{counter['value']}"
        return board.identity.register(name, f"{name.lower()}@example.com", PASSWORD)

    return factory
