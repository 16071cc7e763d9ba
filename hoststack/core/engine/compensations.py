"""
Compensation dispatcher — executes one tagged undo action.

Dispatch is on the action's ``kind``; there is no command text to
re-parse. Handlers raise ``CompensationFailure`` when the host refuses;
the rollback executor catches, logs and moves on.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Any

from hoststack.adapters.containers import COMPOSE_FILE
from hoststack.adapters.filesystem import remove_path
from hoststack.adapters.host import HostOps
from hoststack.adapters.shell.command import CommandResult
from hoststack.core.errors import CompensationFailure
from hoststack.core.models.compensation import (
    DeleteFirewallRule,
    DisableService,
    RemoveNetworkObject,
    RemovePackages,
    RemovePath,
    RestoreFile,
    RestoreFirewallSnapshot,
    RunCallback,
    StopComposeProject,
)

logger = logging.getLogger(__name__)


def _check(result: CommandResult) -> None:
    if not result.ok:
        raise CompensationFailure(result.describe())


def _remove_path(action: RemovePath, host: HostOps) -> None:
    try:
        remove_path(Path(action.path))
    except OSError as e:
        raise CompensationFailure(f"remove {action.path}: {e}") from e


def _remove_network(action: RemoveNetworkObject, host: HostOps) -> None:
    if host.containers.network_exists(action.name):
        _check(host.containers.remove_network(action.name))


def _disable_service(action: DisableService, host: HostOps) -> None:
    _check(host.services.stop(action.name))
    _check(host.services.disable(action.name))


def _restore_firewall(action: RestoreFirewallSnapshot, host: HostOps) -> None:
    snapshot = Path(action.snapshot_dir)
    if not snapshot.is_dir():
        host.firewall.allow(action.access_port, "tcp", comment="SSH")
        raise CompensationFailure(f"firewall snapshot missing: {snapshot}")
    _check(host.firewall.restore(snapshot))
    # The access rule survives the restore regardless of what the snapshot held
    _check(host.firewall.allow(action.access_port, "tcp", comment="SSH"))
    if action.was_active:
        _check(host.firewall.enable())
    else:
        _check(host.firewall.disable())


def _delete_firewall_rule(action: DeleteFirewallRule, host: HostOps) -> None:
    _check(host.firewall.delete_allow(action.port, action.proto))


def _remove_packages(action: RemovePackages, host: HostOps) -> None:
    _check(host.packages.remove(action.packages))


def _stop_compose(action: StopComposeProject, host: HostOps) -> None:
    project = Path(action.project_dir)
    if (project / COMPOSE_FILE).is_file():
        _check(host.containers.compose_down(project))


def _restore_file(action: RestoreFile, host: HostOps) -> None:
    backup = Path(action.backup)
    if not backup.is_file():
        raise CompensationFailure(f"backup missing: {backup}")
    try:
        shutil.copy2(backup, action.path)
        backup.unlink()
    except OSError as e:
        raise CompensationFailure(f"restore {action.path}: {e}") from e


def _run_callback(action: RunCallback, host: HostOps) -> None:
    action.callback()


_HANDLERS: dict[str, Callable[[Any, HostOps], None]] = {
    "remove_path": _remove_path,
    "remove_network": _remove_network,
    "disable_service": _disable_service,
    "restore_firewall": _restore_firewall,
    "delete_firewall_rule": _delete_firewall_rule,
    "remove_packages": _remove_packages,
    "stop_compose": _stop_compose,
    "restore_file": _restore_file,
    "run_callback": _run_callback,
}


def apply_compensation(action: Any, host: HostOps) -> None:
    """Execute a single compensation action against the host."""
    handler = _HANDLERS.get(action.kind)
    if handler is None:
        raise CompensationFailure(f"no handler for compensation kind {action.kind!r}")
    handler(action, host)
