"""Local-disk storage for task attachments."""
from __future__ import annotations

import logging
import re
import time
from pathlib import Path

logger = logging.getLogger("taskboard.blobs")

_UNSAFE_CHARACTERS = re.compile(r"[^A-Za-z0-9._-]+")
_MAX_FILENAME_LENGTH = 120


def sanitise_filename(filename: str) -> str:
    name = Path(filename.replace("\\", "/")).name
    cleaned = _UNSAFE_CHARACTERS.sub("_", name).strip("._")
    if not cleaned:
        cleaned = "attachment"
    return cleaned[-_MAX_FILENAME_LENGTH:]


class BlobStore:
    """Write uploaded files to a directory and hand back a public reference path."""

    def __init__(self, directory: Path, *, url_prefix: str = "/uploads") -> None:
        self._directory = directory
        self._url_prefix = "/" + url_prefix.strip("/")

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def url_prefix(self) -> str:
        return self._url_prefix

    def ensure_directory(self) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)

    def store(self, filename: str, data: bytes) -> str:
        """Persist ``data`` and return the reference under which it is served."""

        self.ensure_directory()
        stem = f"{int(time.time() * 1000)}-{sanitise_filename(filename)}"
        target = self._directory / stem
        counter = 1
        while True:
            try:
                with target.open("xb") as handle:
                    handle.write(data)
            except FileExistsError:
                target = self._directory / f"{counter}-{stem}"
                counter += 1
                continue
            break
        logger.info("Stored attachment %s (%d bytes)", target.name, len(data))
        return f"{self._url_prefix}/{target.name}"

    def discard(self, reference: str) -> None:
        """Remove a stored file by the reference :meth:`store` returned."""

        prefix = f"{self._url_prefix}/"
        if not reference.startswith(prefix):
            raise ValueError(f"Not a reference of this store: {reference!r}")
        target = self._directory / sanitise_filename(reference[len(prefix):])
        target.unlink(missing_ok=True)
        logger.info("Discarded attachment %s", target.name)


__all__ = ["BlobStore", "sanitise_filename"]
