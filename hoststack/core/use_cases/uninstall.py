"""
Uninstall use case — remove what the installer put on the host.

Removes the two compose projects, the container network, the data
directories and the tunnel tool. The stack's firewall rules and
acme.sh go too unless the operator keeps them. The access port is
detected before anything changes and stays allowed: rule deletes only
happen after the access guard has confirmed it.

Every removal is a compensation action run through the same dispatcher
rollback uses. A removal that fails is logged and reported, and the
rest still run.
"""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from hoststack.adapters.host import HostOps
from hoststack.core.config.loader import load_config
from hoststack.core.detection.host import detect_access_port
from hoststack.core.engine.access_guard import AccessGuard
from hoststack.core.engine.compensations import apply_compensation
from hoststack.core.engine.step import Prompter
from hoststack.core.errors import ConfigError
from hoststack.core.models.compensation import (
    Action,
    DeleteFirewallRule,
    RemoveNetworkObject,
    RemovePath,
    RunCallback,
    StopComposeProject,
)
from hoststack.core.models.config import InstallConfig
from hoststack.core.models.state import InstallationState, RunRecord, RunStatus
from hoststack.core.persistence.audit import RunLedger
from hoststack.core.persistence.state_file import default_state_path, save_state
from hoststack.steps.firewall import required_rules
from hoststack.steps.tunnel import WGCF_BINARY

logger = logging.getLogger(__name__)


@dataclass
class UninstallResult:
    config_path: Path | None = None
    access_port: int | None = None
    status: RunStatus = RunStatus.NOT_STARTED
    removed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    backup_path: Path | None = None
    error: str | None = None

    @property
    def exit_code(self) -> int:
        return 1 if self.error or self.failed else 0

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "access_port": self.access_port,
            "removed": self.removed,
            "failed": self.failed,
            "backup_path": str(self.backup_path) if self.backup_path else None,
            "error": self.error,
            "exit_code": self.exit_code,
        }


def uninstall_plan(
    config: InstallConfig,
    host: HostOps,
    access_port: int,
    *,
    keep_firewall: bool = False,
    keep_certs: bool = False,
) -> list[tuple[str, Action]]:
    """(description, action) pairs in the order they run.

    Containers stop before their network goes; directories go last.
    The access port is never in the firewall part of the plan.
    """
    paths = config.paths
    plan: list[tuple[str, Action]] = [
        ("Stop DNS filter", StopComposeProject(project_dir=str(paths.dns_dir))),
        ("Stop management panel", StopComposeProject(project_dir=str(paths.data_dir))),
        (f"Remove network {config.network.name}", RemoveNetworkObject(name=config.network.name)),
    ]

    if not keep_firewall:
        plan += [
            (f"Delete firewall rule {port}/{proto}", DeleteFirewallRule(port=port, proto=proto))
            for port, proto, _ in required_rules(config)
            if (port, proto) != (access_port, "tcp")
        ]

    if not keep_certs:
        acme = paths.acme_dir / "acme.sh"

        def acme_uninstall() -> None:
            if acme.is_file():
                result = host.runner([str(acme), "--uninstall"], timeout=120)
                if not result.ok:
                    logger.warning("acme.sh --uninstall: %s", result.describe())

        plan += [
            ("Uninstall acme.sh", RunCallback(name="acme_uninstall", callback=acme_uninstall)),
            (f"Remove {paths.acme_dir}", RemovePath(path=str(paths.acme_dir))),
        ]

    plan += [
        (f"Remove {paths.data_dir}", RemovePath(path=str(paths.data_dir))),
        (f"Remove {paths.panel_var_dir}", RemovePath(path=str(paths.panel_var_dir))),
        (f"Remove {paths.tool_bin_dir / WGCF_BINARY}", RemovePath(path=str(paths.tool_bin_dir / WGCF_BINARY))),
    ]
    return plan


def backup_data_dir(config: InstallConfig) -> Path | None:
    """Copy the data dir to an owner-only directory under backup_root."""
    source = config.paths.data_dir
    if not source.is_dir():
        return None
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    dest = config.paths.backup_root / f"marzban-backup-{stamp}"
    shutil.copytree(source, dest, symlinks=True)
    dest.chmod(0o700)
    logger.info("✓ Backup created at %s (contains passwords and keys)", dest)
    return dest


def run_uninstall(
    prompter: Prompter,
    *,
    config_path: Path | None = None,
    assume_yes: bool = False,
    keep_firewall: bool = False,
    keep_certs: bool = False,
    backup: bool = False,
    host: HostOps | None = None,
    env: Mapping[str, str] | None = None,
) -> UninstallResult:
    """Remove the installation, keeping the access port reachable."""
    result = UninstallResult(config_path=config_path)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        logger.error("%s", e)
        result.error = str(e)
        return result

    if host is None:
        host = HostOps.build(ufw_dir=config.paths.ufw_dir)
    access_port, source = detect_access_port(config, host.runner, os.environ if env is None else env)
    result.access_port = access_port
    logger.info("Access port %d (%s) will stay allowed", access_port, source)

    ledger = RunLedger.in_dir(config.paths.state_dir)
    record = RunRecord(run_id=uuid.uuid4().hex[:12], started_at=_now_iso())

    if not assume_yes and not prompter.confirm(
        f"Remove the installation under {config.paths.data_dir}? This cannot be undone.", default=False,
    ):
        logger.info("Uninstall cancelled")
        result.status = RunStatus.ABORTED
        _record(ledger, record, result)
        return result

    if backup:
        try:
            result.backup_path = backup_data_dir(config)
        except OSError as e:
            result.error = f"backup of {config.paths.data_dir} failed: {e}"
            logger.error("%s; nothing was removed", result.error)
            result.status = RunStatus.ABORTED
            _record(ledger, record, result)
            return result

    plan = uninstall_plan(config, host, access_port, keep_firewall=keep_firewall, keep_certs=keep_certs)
    if not keep_firewall:
        if not host.firewall.is_installed():
            logger.info("ufw not installed, no firewall rules to remove")
            keep_rules = True
        else:
            check = AccessGuard(host.firewall, access_port, config.paths.backup_root).ensure_access_preserved()
            keep_rules = not check.ok
            if keep_rules:
                result.failed.append(f"firewall rules kept: {check.message}")
        if keep_rules:
            plan = [(d, a) for d, a in plan if not isinstance(a, DeleteFirewallRule)]

    for description, action in plan:
        logger.info("↺ %s", description)
        try:
            apply_compensation(action, host)
        except Exception as e:
            logger.warning("%s failed: %s", description, e)
            result.failed.append(f"{description}: {e}")
            continue
        result.removed.append(description)

    result.status = RunStatus.UNINSTALLED
    _record(ledger, record, result)
    state = InstallationState(last_run=record)
    try:
        save_state(state, default_state_path(config.paths.state_dir))
    except OSError as e:
        logger.error("Could not reset installation state: %s", e)
    logger.info("✓ Uninstall finished (%d removed, %d failed)", len(result.removed), len(result.failed))
    return result


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _record(ledger: RunLedger, record: RunRecord, result: UninstallResult) -> None:
    record.ended_at = _now_iso()
    record.status = result.status.value
    record.error = result.error or ("; ".join(result.failed) or None)
    ledger.write(record)
