from __future__ import annotations

from pathlib import Path

import pytest

import main
from main import _parse_args
from taskboard.application import build_taskboard
from taskboard.config import load_settings


def test_default_command_invokes_serve() -> None:
    args = _parse_args([])
    assert args.command == "serve"


def test_default_command_accepts_options_without_subcommand() -> None:
    args = _parse_args(["--host", "0.0.0.0", "--port", "8080"])
    assert args.command == "serve"
    assert args.host == "0.0.0.0"
    assert args.port == 8080


def test_config_flag_before_implicit_serve() -> None:
    args = _parse_args(["--config", "board.yaml", "--port", "9000"])
    assert args.command == "serve"
    assert args.config == "board.yaml"
    assert args.port == 9000


def test_other_subcommands_still_available() -> None:
    assert _parse_args(["audit"]).command == "audit"
    args = _parse_args(["create-user", "alice", "alice@example.com"])
    assert args.command == "create-user"
    assert args.username == "alice"


@pytest.fixture()
def env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("TASKBOARD_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.setenv("TASKBOARD_DB_PATH", str(tmp_path / "cli.sqlite3"))
    monkeypatch.setenv("TASKBOARD_UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("TASKBOARD_SECRET", "cli-secret")
    return tmp_path


def test_init_db_creates_database(env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main.main(["init-db"]) == 0
    assert (env / "cli.sqlite3").exists()
    assert "Database initialisation complete." in capsys.readouterr().out


def test_create_user_prompts_for_password(
    env: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(main, "getpass", lambda prompt="": "hunter22")

    assert main.main(["create-user", "alice", "alice@example.com"]) == 0
    assert "Created user #1: alice <alice@example.com>" in capsys.readouterr().out

    assert main.main(["create-user", "alice", "alice@example.com"]) == 1
    assert "already exists" in capsys.readouterr().err


def test_audit_reports_orphaned_tasks(env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    board = build_taskboard(load_settings())
    alice = board.identity.register("alice", "alice@example.com", "hunter22")
    board.groups.create_group("Alpha", [alice.id])
    assert main.main(["audit"]) == 0
    assert "Memberships are consistent." in capsys.readouterr().out

    board.tasks.create_task(alice.id, title="Left behind")
    board.groups.leave_group(alice.id)

    assert main.main(["audit"]) == 1
    output = capsys.readouterr().out
    assert "1 task(s) reference a dissolved group" in output
    assert "'Left behind'" in output
