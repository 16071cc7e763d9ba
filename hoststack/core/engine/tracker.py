"""
Resource tracker — paths and services created by this run.

Two flat lists, kept in registration order. On rollback, services are
stopped before any compensation runs and paths are removed after all
of them have. On success both lists are simply discarded.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from hoststack.adapters.filesystem import remove_path

if TYPE_CHECKING:
    from hoststack.adapters.services import SystemdServices

logger = logging.getLogger(__name__)


class ResourceTracker:
    def __init__(self) -> None:
        self._paths: list[Path] = []
        self._services: list[str] = []

    @property
    def paths(self) -> tuple[Path, ...]:
        return tuple(self._paths)

    @property
    def services(self) -> tuple[str, ...]:
        return tuple(self._services)

    def track_path(self, path: Path | str) -> None:
        path = Path(path)
        if path not in self._paths:
            self._paths.append(path)
            logger.debug("Tracking path %s", path)

    def track_service(self, name: str) -> None:
        if name not in self._services:
            self._services.append(name)
            logger.debug("Tracking service %s", name)

    def stop_services(self, services: SystemdServices) -> list[str]:
        """Stop and disable every tracked service. Returns failure messages."""
        failures = []
        for name in self._services:
            logger.info("↺ Stopping service %s", name)
            for result in (services.stop(name), services.disable(name)):
                if not result.ok:
                    logger.warning("Could not stop/disable %s: %s", name, result.describe())
                    failures.append(f"service {name}: {result.describe()}")
        return failures

    def remove_paths(self) -> list[str]:
        """Remove every tracked path that still exists. Returns failure messages."""
        failures = []
        for path in self._paths:
            try:
                if remove_path(path):
                    logger.info("↺ Removed %s", path)
            except OSError as e:
                logger.warning("Could not remove %s: %s", path, e)
                failures.append(f"path {path}: {e}")
        return failures

    def discard(self) -> None:
        self._paths.clear()
        self._services.clear()
