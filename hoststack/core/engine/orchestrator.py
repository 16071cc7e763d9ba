"""
Orchestrator — the single place a run is sequenced and rolled back.

Flow:
    preflight → confirmation gates → steps (skip or run) → complete
                                          └─ on failure → rollback

Per-step states: pending → running → succeeded | skipped | degraded | failed
Run states:      not_started → in_progress → completed | rolled_back
                 (aborted when preflight or a gate stops the run)

Nothing before the first step mutates the host, so aborts never roll
back. Once a step has failed no later step runs, and there is no retry
inside the same run; the next invocation resumes via the prober.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from hoststack.adapters.host import HostOps
from hoststack.core.engine.prober import IdempotencyProber
from hoststack.core.engine.registry import CompensationRegistry
from hoststack.core.engine.rollback import RollbackExecutor, RollbackReport
from hoststack.core.engine.step import Prompter, Step, StepContext
from hoststack.core.engine.tracker import ResourceTracker
from hoststack.core.errors import HealthCheckFailure, HoststackError, PreconditionFailure, UserAbort
from hoststack.core.models.config import InstallConfig
from hoststack.core.models.host import HostFacts
from hoststack.core.models.state import InstallationState, RunRecord, RunStatus, StepStatus
from hoststack.core.models.step import StepResult
from hoststack.core.persistence.audit import RunLedger
from hoststack.core.persistence.state_file import load_state, save_state
from hoststack.core.persistence.summary import render_summary, write_summary

logger = logging.getLogger(__name__)


@dataclass
class PreflightReport:
    """What preflight hands to the gates."""

    facts: HostFacts
    busy_ports: list[tuple[str, int]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class RunReport:
    run_id: str = ""
    status: RunStatus = RunStatus.NOT_STARTED
    steps: dict[str, StepStatus] = field(default_factory=dict)
    failed_step: str | None = None
    error: str | None = None
    exit_code: int = 0
    rollback: RollbackReport | None = None
    summary_path: Path | None = None
    outputs: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == RunStatus.COMPLETED

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "steps": {name: status.value for name, status in self.steps.items()},
            "failed_step": self.failed_step,
            "error": self.error,
            "exit_code": self.exit_code,
            "rollback": self.rollback.to_dict() if self.rollback else None,
            "summary_path": str(self.summary_path) if self.summary_path else None,
        }


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class Orchestrator:
    """Drives one installer run."""

    def __init__(
        self,
        config: InstallConfig,
        host: HostOps,
        steps: Sequence[Step],
        *,
        preflight: Callable[[], PreflightReport],
        prompter: Prompter,
        assume_yes: bool = False,
        state_path: Path | None = None,
        ledger: RunLedger | None = None,
        summary_path: Path | None = None,
    ):
        self.config = config
        self.host = host
        self.steps = list(steps)
        self._preflight = preflight
        self._prompter = prompter
        self._assume_yes = assume_yes
        self.state_path = state_path or config.paths.state_dir / "state.json"
        self.ledger = ledger or RunLedger.in_dir(config.paths.state_dir)
        self.summary_path = summary_path or config.paths.summary_file

        self.registry = CompensationRegistry()
        self.tracker = ResourceTracker()

    # ── Public ──────────────────────────────────────────────────

    def run(self) -> RunReport:
        report = RunReport(
            run_id=uuid.uuid4().hex[:12],
            steps={step.name: StepStatus.PENDING for step in self.steps},
        )
        record = RunRecord(run_id=report.run_id, started_at=_now_iso())

        try:
            preflight = self._preflight()
            self._gates(preflight)
        except UserAbort as e:
            logger.info("Installation cancelled: %s", e)
            return self._abort(report, record, e, exit_code=0)
        except PreconditionFailure as e:
            logger.error("Precondition failed: %s", e)
            return self._abort(report, record, e, exit_code=e.exit_code)

        report.status = RunStatus.IN_PROGRESS
        state = load_state(self.state_path)
        ctx = StepContext(
            config=self.config,
            host=self.host,
            facts=preflight.facts,
            registry=self.registry,
            tracker=self.tracker,
        )
        self._sequence(ctx, state, report)

        record.ended_at = _now_iso()
        record.status = report.status.value
        record.failed_step = report.failed_step
        record.error = report.error
        record.steps = {name: status.value for name, status in report.steps.items()}
        state.last_run = record
        self._save(state)
        self.ledger.write(record)
        return report

    # ── Gates ───────────────────────────────────────────────────

    def _gates(self, preflight: PreflightReport) -> None:
        for warning in preflight.warnings:
            logger.warning("%s", warning)

        if preflight.busy_ports:
            listing = ", ".join(f"{port} ({label})" for label, port in preflight.busy_ports)
            logger.warning("Ports already in use: %s", listing)
            if not self._assume_yes and not self._prompter.confirm("Continue anyway?", default=False):
                raise UserAbort("ports in use")

        if not self._assume_yes and not self._prompter.confirm(
            "Proceed with installation?", default=True,
        ):
            raise UserAbort("declined at confirmation")

    def _abort(
        self, report: RunReport, record: RunRecord, error: HoststackError, exit_code: int,
    ) -> RunReport:
        report.status = RunStatus.ABORTED
        report.error = str(error)
        report.exit_code = exit_code
        record.ended_at = _now_iso()
        record.status = report.status.value
        record.error = report.error
        self.ledger.write(record)
        return report

    # ── Sequencing ──────────────────────────────────────────────

    def _sequence(self, ctx: StepContext, state: InstallationState, report: RunReport) -> None:
        prober = IdempotencyProber(ctx)
        executed: list[Step] = []
        total = len(self.steps)

        for index, step in enumerate(self.steps, start=1):
            logger.info("[%d/%d] %s", index, total, step.title or step.name)
            # Probing, resuming and prompting can be interrupted too
            try:
                proceed = self._advance(step, ctx, state, prober, executed, report)
            except KeyboardInterrupt:
                proceed = self._fail(step, "interrupted by operator", state, executed, report)
            except Exception as e:
                logger.exception("Unexpected error around step %s", step.name)
                proceed = self._fail(step, f"unexpected error: {e}", state, executed, report)
            if not proceed:
                return

        self.registry.discard()
        self.tracker.discard()
        report.status = RunStatus.COMPLETED
        report.outputs = dict(ctx.inputs)
        report.summary_path = self._write_summary(ctx)
        logger.info("✓ Installation completed")

    def _advance(
        self,
        step: Step,
        ctx: StepContext,
        state: InstallationState,
        prober: IdempotencyProber,
        executed: list[Step],
        report: RunReport,
    ) -> bool:
        """Skip or run one step. Returns False once the run has been rolled back."""
        label = step.title or step.name

        if prober.is_done(step, state):
            ctx.inputs.update(step.resume_outputs(ctx))
            report.steps[step.name] = StepStatus.SKIPPED
            logger.info("✓ %s already done, skipping", label)
            self._save(state)
            return True

        report.steps[step.name] = StepStatus.RUNNING
        executed.append(step)
        result = self._execute(step, ctx)

        if result.ok:
            ctx.inputs.update(result.outputs)
            state.set_flag(step.flag)
            self._save(state)
            report.steps[step.name] = StepStatus.SUCCEEDED
            logger.info("✓ %s", label)
            return True

        if result.unhealthy and step.allows_degraded:
            logger.error("%s: %s", label, result.error)
            if self._prompter.confirm("Continue despite health check failure?", default=False):
                logger.warning("Continuing with %s degraded", label)
                ctx.inputs.update(result.outputs)
                state.set_flag(step.flag, False)
                report.steps[step.name] = StepStatus.DEGRADED
                return True

        return self._fail(step, result.error or "step failed", state, executed, report)

    def _fail(
        self,
        step: Step,
        error: str,
        state: InstallationState,
        executed: list[Step],
        report: RunReport,
    ) -> bool:
        report.steps[step.name] = StepStatus.FAILED
        report.failed_step = step.name
        report.error = error
        self._roll_back(state, executed, report)
        return False

    def _execute(self, step: Step, ctx: StepContext) -> StepResult:
        try:
            return step.execute(ctx)
        except KeyboardInterrupt:
            return StepResult.failure("interrupted by operator")
        except HealthCheckFailure as e:
            return StepResult.health_failure(e.message)
        except HoststackError as e:
            return StepResult.failure(str(e))
        except Exception as e:
            logger.exception("Unexpected error in step %s", step.name)
            return StepResult.failure(f"unexpected error: {e}")

    def _roll_back(self, state: InstallationState, executed: list[Step], report: RunReport) -> None:
        logger.error("Step %s failed: %s", report.failed_step, report.error)
        logger.error("Installation failed, executing rollback")

        report.rollback = RollbackExecutor(self.registry, self.tracker, self.host).run()
        for step in executed:
            state.set_flag(step.flag, False)

        report.status = RunStatus.ROLLED_BACK
        report.exit_code = 1

    # ── Persistence ─────────────────────────────────────────────

    def _save(self, state: InstallationState) -> None:
        try:
            save_state(state, self.state_path)
        except OSError as e:
            logger.error("Could not persist installation state: %s", e)

    def _write_summary(self, ctx: StepContext) -> Path | None:
        content = render_summary(self.config, ctx.facts, dict(ctx.inputs))
        try:
            return write_summary(self.summary_path, content)
        except OSError as e:
            logger.error("Could not write summary file: %s", e)
            return None
