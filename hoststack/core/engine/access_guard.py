"""
Administrative-access guard — never lock the operator out.

Before the firewall's incoming policy becomes deny, the rule allowing
the remote-access port must be confirmed by BOTH inspection paths:

    1. structured listing   ``ufw show added``
    2. raw rule store       /etc/ufw/user.rules, user6.rules

If either path is missing the rule, the guard adds it once and checks
again. If it is still not confirmed by both, the deny switch is
refused and nothing about the default policy is changed.

The guard's own compensation (restore the saved firewall config and
re-allow the access port) is registered at the critical tier before
any other firewall mutation, so under LIFO it is the last critical
action rollback runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from hoststack.adapters.firewall import UfwFirewall
from hoststack.core.engine.registry import CompensationRegistry
from hoststack.core.models.compensation import RestoreFirewallSnapshot, Tier

logger = logging.getLogger(__name__)


@dataclass
class GuardResult:
    ok: bool
    port: int
    listing: bool = False
    store: bool = False
    added: bool = False
    message: str = ""


class AccessGuard:
    def __init__(self, firewall: UfwFirewall, access_port: int, backup_root: Path):
        self._fw = firewall
        self.access_port = access_port
        self._backup_root = backup_root

    def protect(self, registry: CompensationRegistry) -> Path:
        """Save the current firewall config and register its restore (critical)."""
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        snapshot_dir = self._backup_root / f"ufw-backup-{stamp}"
        was_active = self._fw.is_active()

        registry.register(
            f"Restore firewall configuration from {snapshot_dir}",
            RestoreFirewallSnapshot(
                snapshot_dir=str(snapshot_dir),
                access_port=self.access_port,
                was_active=was_active,
            ),
            Tier.CRITICAL,
        )
        self._fw.snapshot(snapshot_dir)
        logger.info("✓ Firewall configuration backed up to %s", snapshot_dir)
        return snapshot_dir

    def verify(self) -> GuardResult:
        """Check both inspection paths without changing anything."""
        listing = self._fw.listing_allows_port(self.access_port)
        store = self._fw.rules_store_has_port(self.access_port)
        return GuardResult(ok=listing and store, port=self.access_port, listing=listing, store=store)

    def ensure_access_preserved(self) -> GuardResult:
        """Verify the access rule; add it once and re-verify if needed."""
        result = self.verify()
        if result.ok:
            logger.info("✓ Access port %d allowed (listing and rule store agree)", self.access_port)
            return result

        logger.warning(
            "Access port %d not confirmed (listing=%s, store=%s); adding rule",
            self.access_port, result.listing, result.store,
        )
        added = self._fw.allow(self.access_port, "tcp", comment="SSH")
        if not added.ok:
            logger.error("Adding access rule failed: %s", added.describe())

        result = self.verify()
        result.added = True
        if not result.ok:
            result.message = (
                f"access port {self.access_port} could not be confirmed "
                f"(listing={result.listing}, store={result.store}); "
                f"run 'ufw allow {self.access_port}/tcp' manually"
            )
            logger.error("Refusing to enable default-deny: %s", result.message)
        return result

    def enable_default_deny(self) -> GuardResult:
        """Switch incoming policy to deny and enable the firewall, if safe."""
        result = self.ensure_access_preserved()
        if not result.ok:
            return result

        for action in (
            lambda: self._fw.set_default("deny", "incoming"),
            lambda: self._fw.set_default("allow", "outgoing"),
            self._fw.enable,
        ):
            outcome = action()
            if not outcome.ok:
                result.ok = False
                result.message = outcome.describe()
                logger.error("Firewall enable failed: %s", result.message)
                return result

        if not self._fw.is_active():
            result.ok = False
            result.message = "firewall did not become active"
            return result

        logger.info("✓ Firewall enabled, access port %d open", self.access_port)
        return result
