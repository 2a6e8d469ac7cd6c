"""Artifact storage collaborator.

The state machine only needs "write at a deterministic path" and "delete if
present". ``LocalArtifactStorage`` keeps files under ``STORAGE_ROOT``.
"""
import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


def build_relative_path(year: int, agency_code: str, consecutivo: int, filename: str) -> str:
    """Deterministic storage key, always "/"-separated."""
    return f"{year}/{agency_code}/{consecutivo}/{filename}"


class ArtifactStorage(Protocol):
    def write(self, relative_path: str, data: bytes) -> None: ...

    def delete_if_exists(self, relative_path: str) -> None: ...


class LocalArtifactStorage:
    """Filesystem storage rooted at a directory."""

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def absolute_path(self, relative_path: str) -> Path:
        full = self.root.joinpath(*relative_path.split("/")).resolve()
        if self.root not in full.parents:
            raise ValueError(f"Path escapes storage root: {relative_path}")
        return full

    def write(self, relative_path: str, data: bytes) -> None:
        full = self.absolute_path(relative_path)
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_bytes(data)
        logger.info("Stored artifact %s (%d bytes)", relative_path, len(data))

    def delete_if_exists(self, relative_path: str) -> None:
        full = self.absolute_path(relative_path)
        full.unlink(missing_ok=True)
        logger.info("Deleted artifact %s", relative_path)
