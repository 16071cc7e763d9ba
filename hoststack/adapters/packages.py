"""
Package adapter — apt / dpkg.

Always non-interactive: a prompt from apt in the middle of a run would
hang the step until its timeout.
"""

from __future__ import annotations

from collections.abc import Sequence

from hoststack.adapters.shell.command import CommandResult, CommandRunner

_APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class AptPackages:
    def __init__(self, runner: CommandRunner):
        self._run = runner

    def is_installed(self, package: str) -> bool:
        result = self._run(["dpkg-query", "-W", "-f=${Status}", package], timeout=30)
        return result.ok and "install ok installed" in result.stdout

    def missing(self, packages: Sequence[str]) -> list[str]:
        return [p for p in packages if not self.is_installed(p)]

    def update(self) -> CommandResult:
        return self._run(["apt-get", "update", "-qq"], timeout=600, env_overrides=_APT_ENV)

    def install(self, packages: Sequence[str]) -> CommandResult:
        return self._run(
            ["apt-get", "install", "-y", "-qq", *packages],
            timeout=1200,
            env_overrides=_APT_ENV,
        )

    def remove(self, packages: Sequence[str]) -> CommandResult:
        return self._run(
            ["apt-get", "purge", "-y", "-qq", *packages],
            timeout=600,
            env_overrides=_APT_ENV,
        )

    def architecture(self) -> str:
        result = self._run(["dpkg", "--print-architecture"], timeout=15)
        return result.stdout.strip() if result.ok else ""
