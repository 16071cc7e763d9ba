"""
InstallationState — what the installer believes is already done.

Serialized to the state file after every completed step and read back
by the next run. It is a claim, not the truth: the idempotency prober
cross-checks every flag against a live probe and corrects it.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StepStatus(StrEnum):
    """Per-step state machine."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"       # already done (idempotent resume)
    DEGRADED = "degraded"     # unhealthy, operator chose to continue
    FAILED = "failed"


class RunStatus(StrEnum):
    """Overall run state machine."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"
    ABORTED = "aborted"       # user decline or precondition failure
    UNINSTALLED = "uninstalled"


class RunRecord(BaseModel):
    """Summary of the last run."""

    run_id: str = ""
    started_at: str = ""
    ended_at: str = ""
    status: str = ""
    failed_step: str | None = None
    error: str | None = None
    steps: dict[str, str] = Field(default_factory=dict)


class InstallationState(BaseModel):
    """Milestone flags, one per major step."""

    schema_version: int = 1

    runtime_ready: bool = False
    network_ready: bool = False
    firewall_ready: bool = False
    certificate_ready: bool = False
    keys_ready: bool = False
    tunnel_ready: bool = False
    dns_service_ready: bool = False
    panel_ready: bool = False
    profiles_ready: bool = False

    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    last_run: RunRecord = Field(default_factory=RunRecord)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def is_set(self, flag: str) -> bool:
        return bool(getattr(self, flag))

    def set_flag(self, flag: str, value: bool = True) -> None:
        """Set a milestone flag by name; unknown names are an error."""
        if flag not in type(self).model_fields or not flag.endswith("_ready"):
            raise KeyError(f"Unknown milestone flag: {flag}")
        setattr(self, flag, value)

    def flags(self) -> dict[str, bool]:
        """All milestone flags in declaration order."""
        return {
            name: getattr(self, name)
            for name in type(self).model_fields
            if name.endswith("_ready")
        }
