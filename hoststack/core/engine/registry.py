"""
Compensation registry — the tiered undo log of a single run.

Append-only: ``register`` adds, ``drain`` is the only way anything
leaves. Drain order is fixed: callers walk ``TIER_ORDER`` (critical,
normal, cleanup) and each tier comes back newest-first.
"""

from __future__ import annotations

import logging

from hoststack.core.models.compensation import TIER_ORDER, Action, CompensationAction, Tier

logger = logging.getLogger(__name__)


class CompensationRegistry:
    """Per-run registry, owned by the orchestrator and passed to steps."""

    def __init__(self) -> None:
        self._tiers: dict[Tier, list[CompensationAction]] = {tier: [] for tier in TIER_ORDER}

    def register(
        self, description: str, action: Action, tier: Tier = Tier.NORMAL,
    ) -> CompensationAction:
        """Record an undo action. Call before the mutation it undoes."""
        entry = CompensationAction(description=description, action=action, tier=tier)
        return self.add(entry)

    def add(self, entry: CompensationAction) -> CompensationAction:
        self._tiers[entry.tier].append(entry)
        logger.debug("Registered %s compensation: %s", entry.tier.value, entry.description)
        return entry

    def drain(self, tier: Tier) -> list[CompensationAction]:
        """Remove and return a tier's entries, last registered first."""
        entries = self._tiers[tier]
        self._tiers[tier] = []
        return list(reversed(entries))

    def pending(self) -> list[CompensationAction]:
        """Everything still registered, in the order rollback would run it."""
        return [entry for tier in TIER_ORDER for entry in reversed(self._tiers[tier])]

    def discard(self) -> int:
        """Forget every entry (successful run). Returns how many were dropped."""
        count = len(self)
        for tier in TIER_ORDER:
            self._tiers[tier] = []
        return count

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._tiers.values())
