"""
Idempotency prober — decides skip-or-run for each step.

Two sources: the persisted milestone flag and a live probe of the
host. When they disagree the live probe wins and the flag is
corrected, so a stale state file can neither skip missing work nor
force a redo of work that is visibly done.
"""

from __future__ import annotations

import logging

from hoststack.core.engine.step import Step, StepContext
from hoststack.core.models.state import InstallationState

logger = logging.getLogger(__name__)


class IdempotencyProber:
    def __init__(self, ctx: StepContext):
        self._ctx = ctx

    def live(self, step: Step) -> bool:
        """Run the step's probe; a probe that raises means "not done"."""
        try:
            return bool(step.probe(self._ctx))
        except Exception as e:
            logger.warning("Probe for %s failed, assuming not done: %s", step.name, e)
            return False

    def is_done(self, step: Step, state: InstallationState) -> bool:
        flagged = state.is_set(step.flag)
        live = self.live(step)

        if flagged != live:
            logger.warning(
                "State flag %s=%s disagrees with live probe (%s); using live result",
                step.flag, flagged, live,
            )
            state.set_flag(step.flag, live)

        logger.debug("%s: flag=%s live=%s", step.name, flagged, live)
        return live
