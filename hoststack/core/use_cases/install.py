"""
Install use case — load config, wire the host adapters, run the orchestrator.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from hoststack.adapters.host import HostOps
from hoststack.core.config.loader import load_config
from hoststack.core.detection.host import run_preflight
from hoststack.core.engine.orchestrator import Orchestrator, RunReport
from hoststack.core.engine.step import Prompter, Step
from hoststack.core.errors import ConfigError
from hoststack.core.models.config import InstallConfig

logger = logging.getLogger(__name__)


@dataclass
class InstallResult:
    config: InstallConfig | None = None
    config_path: Path | None = None
    report: RunReport | None = None
    error: str | None = None

    @property
    def exit_code(self) -> int:
        if self.report is not None:
            return self.report.exit_code
        return 1 if self.error else 0

    def to_dict(self) -> dict:
        if self.report is None:
            return {"error": self.error, "exit_code": self.exit_code}
        return self.report.to_dict()


def run_install(
    prompter: Prompter,
    *,
    config_path: Path | None = None,
    assume_yes: bool = False,
    host: HostOps | None = None,
    steps: Sequence[Step] | None = None,
) -> InstallResult:
    """Run one installation.

    Config problems are reported in ``error`` before anything touches
    the host. Everything after that is the orchestrator's report.
    """
    result = InstallResult(config_path=config_path)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        logger.error("%s", e)
        result.error = str(e)
        return result
    result.config = config

    if host is None:
        host = HostOps.build(ufw_dir=config.paths.ufw_dir)
    if steps is None:
        from hoststack.steps import default_steps

        steps = default_steps()

    orchestrator = Orchestrator(
        config,
        host,
        steps,
        preflight=lambda: run_preflight(config, host),
        prompter=prompter,
        assume_yes=assume_yes,
    )
    result.report = orchestrator.run()
    return result
