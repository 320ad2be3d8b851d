"""Configuration loading for the task board service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .credentials import DEFAULT_TOKEN_TTL
from .database import resolve_database_path

logger = logging.getLogger("taskboard.config")


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the HTTP service and CLI."""

    database_path: Path
    upload_dir: Path
    secret: Optional[str] = None
    token_ttl: timedelta = DEFAULT_TOKEN_TTL
    scope_task_reads: bool = True

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw dictionary data."""

        unknown = set(data) - {"database_path", "upload_dir", "secret", "token_ttl_seconds", "scope_task_reads"}
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        database_path = _resolve_path(data.get("database_path"), base_path)
        upload_dir = _resolve_path(data.get("upload_dir"), base_path)
        ttl_raw = data.get("token_ttl_seconds")
        return Settings(
            database_path=database_path or resolve_database_path(None),
            upload_dir=upload_dir or default_upload_dir(),
            secret=str(data["secret"]) if data.get("secret") is not None else None,
            token_ttl=_parse_ttl(ttl_raw) if ttl_raw is not None else DEFAULT_TOKEN_TTL,
            scope_task_reads=bool(data.get("scope_task_reads", True)),
        )


def _resolve_path(value: object, base_path: Path | None) -> Optional[Path]:
    if not value:
        return None
    raw = Path(str(value)).expanduser()
    if not raw.is_absolute() and base_path is not None:
        raw = base_path / raw
    return raw.resolve(strict=False)


def _parse_ttl(value: object) -> timedelta:
    try:
        seconds = int(str(value))
    except ValueError as exc:
        raise ValueError(f"Token lifetime must be a whole number of seconds, got {value!r}") from exc
    if seconds <= 0:
        raise ValueError("Token lifetime must be positive")
    return timedelta(seconds=seconds)


def default_upload_dir() -> Path:
    return (Path(__file__).resolve().parent.parent / "uploads").resolve(strict=False)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path(__file__).resolve().parent.parent / "config" / "taskboard.yaml").resolve(strict=False)


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from YAML (when present) and apply environment overrides."""

    env: Mapping[str, str] = os.environ if environ is None else environ
    path = config_path or resolve_config_path(env.get("TASKBOARD_CONFIG"))

    raw: Dict[str, object] = {}
    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        raw = loaded
        logger.info("Loaded configuration from %s", path)

    settings = Settings.from_dict(raw, base_path=path.parent)

    overrides: Dict[str, object] = {}
    if env.get("TASKBOARD_DB_PATH"):
        overrides["database_path"] = resolve_database_path(env["TASKBOARD_DB_PATH"])
    if env.get("TASKBOARD_UPLOAD_DIR"):
        overrides["upload_dir"] = Path(env["TASKBOARD_UPLOAD_DIR"]).expanduser().resolve(strict=False)
    if env.get("TASKBOARD_SECRET"):
        overrides["secret"] = env["TASKBOARD_SECRET"]
    if env.get("TASKBOARD_TOKEN_TTL"):
        overrides["token_ttl"] = _parse_ttl(env["TASKBOARD_TOKEN_TTL"])
    if overrides:
        settings = replace(settings, **overrides)
    return settings


__all__ = ["Settings", "default_upload_dir", "load_settings", "resolve_config_path"]
