"""File store used to purge superseded uploads."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from .logging_config import get_logger

logger = get_logger(__name__)


class FileStore(Protocol):
    def exists(self, path: str) -> bool: ...

    def delete(self, path: str) -> None: ...


class LocalFileStore:
    """Files kept under a local upload root; stored paths are relative to it."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        resolved = candidate.resolve()
        if not resolved.is_relative_to(self.root.resolve()):
            raise ValueError(f"Path escapes upload root: {path}")
        return resolved

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        target.unlink(missing_ok=True)
        logger.debug("file_deleted", path=str(target))
