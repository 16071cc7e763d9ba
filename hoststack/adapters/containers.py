"""
Container runtime adapter — docker CLI and the compose plugin.
"""

from __future__ import annotations

import logging
from pathlib import Path

from hoststack.adapters.shell.command import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

COMPOSE_FILE = "docker-compose.yml"


class DockerRuntime:
    """Docker engine, networks and compose projects."""

    def __init__(self, runner: CommandRunner):
        self._run = runner

    # ── Engine ──────────────────────────────────────────────────

    def is_responsive(self) -> bool:
        return self._run(["docker", "info"], timeout=30).ok

    def has_compose_v2(self) -> bool:
        result = self._run(["docker", "compose", "version"], timeout=30)
        return result.ok and "version v2" in result.stdout.lower()

    def version(self) -> str:
        result = self._run(["docker", "version", "--format", "{{.Server.Version}}"], timeout=30)
        return result.stdout.strip() if result.ok else ""

    # ── Networks ────────────────────────────────────────────────

    def network_exists(self, name: str) -> bool:
        return self._run(["docker", "network", "inspect", name], timeout=30).ok

    def create_network(self, name: str, subnet: str, gateway: str) -> CommandResult:
        return self._run(
            [
                "docker", "network", "create",
                "--driver", "bridge",
                f"--subnet={subnet}",
                f"--gateway={gateway}",
                name,
            ],
            timeout=60,
        )

    def remove_network(self, name: str) -> CommandResult:
        return self._run(["docker", "network", "rm", name], timeout=60)

    # ── Compose projects ────────────────────────────────────────

    def compose_up(self, project_dir: Path) -> CommandResult:
        return self._compose(project_dir, "up", "-d", "--remove-orphans", timeout=600)

    def compose_down(self, project_dir: Path) -> CommandResult:
        return self._compose(project_dir, "down", timeout=300)

    def compose_restart(self, project_dir: Path, service: str) -> CommandResult:
        return self._compose(project_dir, "restart", service, timeout=300)

    def compose_logs(self, project_dir: Path, service: str, tail: int = 100) -> str:
        result = self._compose(project_dir, "logs", "--tail", str(tail), service, timeout=60)
        return result.stdout

    def _compose(self, project_dir: Path, *args: str, timeout: float) -> CommandResult:
        return self._run(
            ["docker", "compose", "-f", str(project_dir / COMPOSE_FILE), *args],
            timeout=timeout,
            cwd=str(project_dir),
        )

    # ── Containers ──────────────────────────────────────────────

    def container_running(self, name: str) -> bool:
        result = self._run(["docker", "inspect", "-f", "{{.State.Running}}", name], timeout=30)
        return result.ok and result.stdout.strip() == "true"

    def container_ip(self, name: str, network: str) -> str:
        """IP address of a container on a network, or "" if unknown."""
        template = f'{{{{(index .NetworkSettings.Networks "{network}").IPAddress}}}}'
        result = self._run(["docker", "inspect", "-f", template, name], timeout=30)
        ip = result.stdout.strip() if result.ok else ""
        return "" if ip in ("", "<no value>") else ip
