"""
HostOps — the bundle of host adapters handed to steps and to rollback.

Every adapter shares one command runner, so swapping the runner for a
``MockRunner`` turns the whole installer into a dry simulation.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from hoststack.adapters.containers import DockerRuntime
from hoststack.adapters.firewall import UfwFirewall
from hoststack.adapters.http import HttpClient
from hoststack.adapters.packages import AptPackages
from hoststack.adapters.services import SystemdServices
from hoststack.adapters.shell.command import CommandRunner, run_command


@dataclass
class HostOps:
    runner: CommandRunner
    firewall: UfwFirewall
    containers: DockerRuntime
    services: SystemdServices
    packages: AptPackages
    http: HttpClient

    @classmethod
    def build(
        cls,
        runner: CommandRunner = run_command,
        *,
        ufw_dir: Path = Path("/etc/ufw"),
        transport: Any = None,
    ) -> HostOps:
        return cls(
            runner=runner,
            firewall=UfwFirewall(runner, ufw_dir),
            containers=DockerRuntime(runner),
            services=SystemdServices(runner),
            packages=AptPackages(runner),
            http=HttpClient(transport),
        )
