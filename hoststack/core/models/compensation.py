"""
Compensation models — the undo vocabulary of the installer.

Every host mutation a step performs is paired with one of these
actions, registered before the mutation happens. Actions are a closed
tagged union: rollback never re-interprets command text, it dispatches
on ``kind`` (see ``core/engine/compensations.py``).
"""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class Tier(StrEnum):
    """Priority class of a compensation. Drained in declaration order."""

    CRITICAL = "critical"   # access / safety
    NORMAL = "normal"       # general resources
    CLEANUP = "cleanup"     # files


TIER_ORDER: tuple[Tier, ...] = (Tier.CRITICAL, Tier.NORMAL, Tier.CLEANUP)


class _Action(BaseModel):
    model_config = ConfigDict(frozen=True)


class RemovePath(_Action):
    """Delete a file or directory tree if it still exists."""

    kind: Literal["remove_path"] = "remove_path"
    path: str


class RemoveNetworkObject(_Action):
    """Remove a container network."""

    kind: Literal["remove_network"] = "remove_network"
    name: str


class DisableService(_Action):
    """Stop and disable a host service."""

    kind: Literal["disable_service"] = "disable_service"
    name: str


class RestoreFirewallSnapshot(_Action):
    """Reset the firewall to a saved rule set, keeping the access port open."""

    kind: Literal["restore_firewall"] = "restore_firewall"
    snapshot_dir: str
    access_port: int
    was_active: bool = False


class DeleteFirewallRule(_Action):
    """Delete a single allow rule added by the run."""

    kind: Literal["delete_firewall_rule"] = "delete_firewall_rule"
    port: int
    proto: str = "tcp"


class RemovePackages(_Action):
    """Purge packages installed by the run."""

    kind: Literal["remove_packages"] = "remove_packages"
    packages: tuple[str, ...]


class StopComposeProject(_Action):
    """Bring down a compose project."""

    kind: Literal["stop_compose"] = "stop_compose"
    project_dir: str


class RestoreFile(_Action):
    """Move a backup copy back over the original path."""

    kind: Literal["restore_file"] = "restore_file"
    path: str
    backup: str


class RunCallback(_Action):
    """Call an in-process function (e.g. re-push a saved API payload)."""

    kind: Literal["run_callback"] = "run_callback"
    name: str
    callback: Callable[[], object] = Field(exclude=True)


Action = Annotated[
    Union[
        RemovePath,
        RemoveNetworkObject,
        DisableService,
        RestoreFirewallSnapshot,
        DeleteFirewallRule,
        RemovePackages,
        StopComposeProject,
        RestoreFile,
        RunCallback,
    ],
    Field(discriminator="kind"),
]


class CompensationAction(BaseModel):
    """A registered undo operation for one specific mutation."""

    model_config = ConfigDict(frozen=True)

    description: str
    action: Action
    tier: Tier = Tier.NORMAL
