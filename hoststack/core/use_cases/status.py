"""
Status use case — milestone flags and recent runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from hoststack.core.config.loader import load_config
from hoststack.core.errors import ConfigError
from hoststack.core.models.state import InstallationState, RunRecord
from hoststack.core.persistence.audit import RunLedger
from hoststack.core.persistence.state_file import default_state_path, load_state


@dataclass
class StatusResult:
    state: InstallationState | None = None
    state_path: Path | None = None
    runs: list[RunRecord] = field(default_factory=list)
    error: str | None = None

    @property
    def complete(self) -> bool:
        return self.state is not None and all(self.state.flags().values())

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        assert self.state is not None
        return {
            "state_path": str(self.state_path),
            "complete": self.complete,
            "flags": self.state.flags(),
            "updated_at": self.state.updated_at,
            "last_run": self.state.last_run.model_dump(),
            "recent_runs": [r.model_dump() for r in self.runs],
        }


def get_status(config_path: Path | None = None, recent: int = 5) -> StatusResult:
    result = StatusResult()
    try:
        config = load_config(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    state_dir = config.paths.state_dir
    result.state_path = default_state_path(state_dir)
    result.state = load_state(result.state_path)
    result.runs = RunLedger.in_dir(state_dir).read_recent(recent)
    return result
