"""
Error taxonomy — how a run can end badly (or not at all).

Low-level calls return result objects (``CommandResult``, ``StepResult``)
instead of raising. These exceptions exist for the seams where a run
must stop: preflight, confirmation gates, and the orchestrator's
single rollback decision.

    UserAbort            decline at a pre-mutation gate     exit 0, no rollback
    PreconditionFailure  bad config / platform / resources  exit 1, no rollback
    StepExecutionFailure collaborator failed mid-step       exit 1, full rollback
    HealthCheckFailure   artifact never became healthy      degraded-continue or rollback
    CompensationFailure  an undo action failed              logged, rollback continues
"""

from __future__ import annotations


class HoststackError(Exception):
    """Base class for all installer errors."""

    exit_code: int = 1


class UserAbort(HoststackError):
    """Explicit decline at a pre-mutation confirmation gate."""

    exit_code = 0


class PreconditionFailure(HoststackError):
    """Detected before any mutation; nothing to roll back."""


class ConfigError(PreconditionFailure):
    """Raised when the installer configuration is invalid or missing."""


class StepExecutionFailure(HoststackError):
    """A step's collaborator failed; triggers full rollback."""

    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step
        self.message = message


class HealthCheckFailure(StepExecutionFailure):
    """A deployed artifact did not become healthy within its timeout."""


class CompensationFailure(HoststackError):
    """An undo action failed during rollback."""
