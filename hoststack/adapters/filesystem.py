"""
Filesystem adapter — creates paths and records them for cleanup.

A path is tracked only if this run created it. Pre-existing
directories are never handed to the tracker, so rollback cannot delete
something the operator already had. A pre-existing file that gets
overwritten is copied aside first and a restore is registered before
the write.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from hoststack.core.models.compensation import RestoreFile, Tier

if TYPE_CHECKING:
    from hoststack.core.engine.registry import CompensationRegistry
    from hoststack.core.engine.tracker import ResourceTracker

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".hoststack-bak"


class FileOps:
    def __init__(self, tracker: ResourceTracker, registry: CompensationRegistry | None = None):
        self._tracker = tracker
        self._registry = registry
        self._guarded: set[Path] = set()

    def create_dir(self, path: Path, mode: int = 0o755) -> Path:
        """mkdir -p, tracking the outermost directory that did not exist."""
        missing = [p for p in (path, *path.parents) if not p.exists()]
        if missing:
            self._tracker.track_path(missing[-1])
            path.mkdir(parents=True, exist_ok=True)
            for p in reversed(missing):
                p.chmod(mode)
        return path

    def preserve(self, path: Path) -> None:
        """Make a path about to be written undoable.

        New paths are tracked for removal. An existing file is copied aside
        and a restore is registered, once per run.
        """
        if path in self._guarded:
            return
        self._guarded.add(path)
        if not path.exists():
            self._tracker.track_path(path)
            return
        if self._registry is None:
            return
        backup = self.backup_file(path)
        if backup:
            self._registry.register(
                f"Restore {path}",
                RestoreFile(path=str(path), backup=str(backup)),
                Tier.CLEANUP,
            )

    def write_file(self, path: Path, content: str | bytes, mode: int = 0o644) -> Path:
        """Write a file, tracking it if new and backing it up if not.

        Parent dirs are created.
        """
        self.create_dir(path.parent)
        self.preserve(path)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        data = content.encode("utf-8") if isinstance(content, str) else content
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        path.chmod(mode)
        logger.debug("Wrote %s (mode %o)", path, mode)
        return path

    def write_secure_file(self, path: Path, content: str | bytes) -> Path:
        """Credential or key file: owner read/write only."""
        return self.write_file(path, content, mode=0o600)

    def backup_file(self, path: Path) -> Path | None:
        """Copy an existing file aside before overwriting it."""
        if not path.is_file():
            return None
        backup = path.with_name(path.name + BACKUP_SUFFIX)
        shutil.copy2(path, backup)
        self._tracker.track_path(backup)
        return backup


def remove_path(path: Path) -> bool:
    """Remove a file or directory tree. Returns False if it was already gone."""
    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    if path.is_dir():
        shutil.rmtree(path)
        return True
    return False
