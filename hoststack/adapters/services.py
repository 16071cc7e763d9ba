"""
Service adapter — systemd units.
"""

from __future__ import annotations

from hoststack.adapters.shell.command import CommandResult, CommandRunner


class SystemdServices:
    def __init__(self, runner: CommandRunner):
        self._run = runner

    def is_active(self, name: str) -> bool:
        return self._run(["systemctl", "is-active", "--quiet", name], timeout=30).ok

    def daemon_reload(self) -> CommandResult:
        return self._run(["systemctl", "daemon-reload"], timeout=60)

    def start(self, name: str) -> CommandResult:
        return self._run(["systemctl", "start", name], timeout=120)

    def enable_now(self, name: str) -> CommandResult:
        return self._run(["systemctl", "enable", "--now", name], timeout=120)

    def stop(self, name: str) -> CommandResult:
        return self._run(["systemctl", "stop", name], timeout=120)

    def disable(self, name: str) -> CommandResult:
        return self._run(["systemctl", "disable", name], timeout=60)
