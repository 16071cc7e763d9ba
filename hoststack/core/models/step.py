"""
StepResult — the execution contract between orchestrator and steps.

Steps report results and do not raise for expected failures. The
orchestrator decides what a result means for the run.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class StepResult(BaseModel):
    """Outcome of one step execution.

    ``outputs`` carries typed values (paths, ports, key material) that
    become inputs of later steps. They are never re-parsed from text.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    status: Literal["ok", "failed", "unhealthy"] = "ok"
    outputs: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def unhealthy(self) -> bool:
        return self.status == "unhealthy"

    @classmethod
    def success(cls, **outputs: Any) -> StepResult:
        return cls(status="ok", outputs=outputs)

    @classmethod
    def failure(cls, error: str, **outputs: Any) -> StepResult:
        return cls(status="failed", error=error, outputs=outputs)

    @classmethod
    def health_failure(cls, error: str, **outputs: Any) -> StepResult:
        """Deployed but not healthy in time; outputs are still usable."""
        return cls(status="unhealthy", error=error, outputs=outputs)


class StepInputs(dict):
    """Outputs published so far, keyed by name."""

    def require(self, key: str) -> Any:
        """Fetch an output a previous step must have published."""
        try:
            return self[key]
        except KeyError:
            raise KeyError(f"Missing step input '{key}' (published by an earlier step)") from None
