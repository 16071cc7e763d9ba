"""
Rollback executor — undo everything the run registered.

Order:
    1. stop tracked services (nothing keeps mutating state meanwhile)
    2. drain critical, normal, cleanup tiers, each newest-first
    3. remove tracked paths

Best effort throughout: a failing action is logged and the next one
runs. ``run`` never raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from hoststack.adapters.host import HostOps
from hoststack.core.engine.compensations import apply_compensation
from hoststack.core.engine.registry import CompensationRegistry
from hoststack.core.engine.tracker import ResourceTracker
from hoststack.core.models.compensation import TIER_ORDER

logger = logging.getLogger(__name__)


@dataclass
class RollbackReport:
    executed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {"executed": self.executed, "failed": self.failed, "clean": self.clean}


class RollbackExecutor:
    def __init__(self, registry: CompensationRegistry, tracker: ResourceTracker, host: HostOps):
        self._registry = registry
        self._tracker = tracker
        self._host = host

    def run(self) -> RollbackReport:
        report = RollbackReport()

        try:
            report.failed.extend(self._tracker.stop_services(self._host.services))
        except Exception as e:
            logger.warning("Stopping tracked services failed: %s", e)
            report.failed.append(f"services: {e}")

        for tier in TIER_ORDER:
            entries = self._registry.drain(tier)
            if entries:
                logger.info("Executing %s rollback actions (%d)", tier.value, len(entries))
            for entry in entries:
                logger.info("↺ [%s] %s", tier.value, entry.description)
                try:
                    apply_compensation(entry.action, self._host)
                except Exception as e:
                    logger.warning("Rollback action failed: %s: %s", entry.description, e)
                    report.failed.append(f"{entry.description}: {e}")
                else:
                    report.executed.append(entry.description)

        try:
            report.failed.extend(self._tracker.remove_paths())
        except Exception as e:
            logger.warning("Removing tracked paths failed: %s", e)
            report.failed.append(f"paths: {e}")

        if report.clean:
            logger.info("Rollback completed: %d action(s) executed", len(report.executed))
        else:
            logger.warning(
                "Rollback completed with %d failure(s); %d action(s) executed",
                len(report.failed), len(report.executed),
            )
        return report
