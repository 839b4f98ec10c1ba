"""Filesystem queries used for staleness checks."""

from __future__ import annotations

from pathlib import Path


class FileSystem:
    """Answers existence and modification-time questions relative to a root.

    The executor and resolver only ever ask these two questions, so tests can
    substitute a fake with fixed timestamps.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def _path(self, name: str) -> Path:
        path = Path(name)
        return path if path.is_absolute() else self.root / path

    def exists(self, name: str) -> bool:
        return self._path(name).exists()

    def mtime(self, name: str) -> float | None:
        """Modification time of name, or None if it does not exist."""
        try:
            return self._path(name).stat().st_mtime
        except (OSError, ValueError):
            return None
