"""
Firewall adapter — ufw.

Two independent ways to ask "is port N allowed?":

    list_added_rules()      structured listing from ``ufw show added``
    rules_store_has_port()  raw iptables rule files under /etc/ufw

Both work while ufw is still inactive, which is exactly when the
access guard needs them.
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

from hoststack.adapters.shell.command import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

_RULE_FILES = ("user.rules", "user6.rules")


class UfwFirewall:
    """Thin wrapper over the ufw CLI and its rule store."""

    def __init__(self, runner: CommandRunner, ufw_dir: Path = Path("/etc/ufw")):
        self._run = runner
        self.ufw_dir = ufw_dir

    # ── State ───────────────────────────────────────────────────

    def is_installed(self) -> bool:
        return self._run(["ufw", "version"], timeout=15).ok

    def is_active(self) -> bool:
        result = self._run(["ufw", "status"], timeout=15)
        return result.ok and "Status: active" in result.stdout

    # ── Rules ───────────────────────────────────────────────────

    def allow(self, port: int, proto: str = "tcp", comment: str = "") -> CommandResult:
        cmd = ["ufw", "allow", f"{port}/{proto}"]
        if comment:
            cmd += ["comment", comment]
        return self._run(cmd, timeout=30)

    def delete_allow(self, port: int, proto: str = "tcp") -> CommandResult:
        return self._run(["ufw", "--force", "delete", "allow", f"{port}/{proto}"], timeout=30)

    def list_added_rules(self) -> list[str]:
        """Rules as listed by ``ufw show added`` (one ``ufw ...`` line each)."""
        result = self._run(["ufw", "show", "added"], timeout=15)
        if not result.ok:
            logger.debug("ufw show added failed: %s", result.describe())
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip().startswith("ufw ")]

    def listing_allows_port(self, port: int, proto: str = "tcp") -> bool:
        return any(rule_allows_port(rule, port, proto) for rule in self.list_added_rules())

    def rules_store_has_port(self, port: int, proto: str = "tcp") -> bool:
        """Look for an ACCEPT on ``--dport port`` in user.rules / user6.rules."""
        pattern = re.compile(rf"-p {proto}\b.*--dport {port}\b.*-j (ACCEPT|ufw-user-limit-accept)\b")
        for name in _RULE_FILES:
            path = self.ufw_dir / name
            try:
                text = path.read_text(encoding="utf-8")
            except OSError:
                continue
            if any(pattern.search(line) for line in text.splitlines()):
                return True
        return False

    # ── Policy ──────────────────────────────────────────────────

    def set_default(self, policy: str, direction: str) -> CommandResult:
        return self._run(["ufw", "default", policy, direction], timeout=30)

    def enable(self) -> CommandResult:
        return self._run(["ufw", "--force", "enable"], timeout=60)

    def disable(self) -> CommandResult:
        return self._run(["ufw", "--force", "disable"], timeout=60)

    def reset(self) -> CommandResult:
        return self._run(["ufw", "--force", "reset"], timeout=60)

    # ── Snapshots ───────────────────────────────────────────────

    def snapshot(self, dest: Path) -> Path:
        """Copy the whole ufw config directory to ``dest``."""
        if self.ufw_dir.is_dir():
            shutil.copytree(self.ufw_dir, dest, dirs_exist_ok=True)
        else:
            dest.mkdir(parents=True, exist_ok=True)
        logger.debug("Firewall config saved to %s", dest)
        return dest

    def restore(self, snapshot_dir: Path) -> CommandResult:
        """Reset ufw, then copy the snapshot back over its config dir."""
        result = self.reset()
        if not result.ok:
            return result
        shutil.copytree(snapshot_dir, self.ufw_dir, dirs_exist_ok=True)
        return result


def rule_allows_port(rule: str, port: int, proto: str = "tcp") -> bool:
    """True if a ``ufw show added`` line allows ``port`` for ``proto``.

    Accepts ``ufw allow 22/tcp``, ``ufw limit 22/tcp``, ``ufw allow 22``
    (any proto) and the long form ``ufw allow proto tcp from any to any port 22``.
    """
    tokens = rule.split()
    if not {"allow", "limit"} & {t.lower() for t in tokens}:
        return False

    for i, token in enumerate(tokens):
        if token in (f"{port}/{proto}", str(port)) and (i == 0 or tokens[i - 1] != "comment"):
            if token == str(port) and i > 0 and tokens[i - 1] == "port":
                other = _long_form_proto(tokens)
                return other in (None, proto)
            return True
    return False


def _long_form_proto(tokens: list[str]) -> str | None:
    if "proto" in tokens:
        idx = tokens.index("proto")
        if idx + 1 < len(tokens):
            return tokens[idx + 1]
    return None
