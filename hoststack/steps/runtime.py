"""
Runtime step — Docker engine and the compose v2 plugin.

Installs from Docker's upstream apt repository. Every file this step
writes is tracked; the packages are compensated as one unit and the
docker service is tracked so rollback stops it before anything else.
"""

from __future__ import annotations

import json
import logging

from hoststack.core.detection.host import read_os_release
from hoststack.core.engine.step import Step, StepContext
from hoststack.core.models.compensation import CompensationAction, RemovePackages, Tier
from hoststack.core.models.step import StepResult
from hoststack.core.reliability.polling import wait_until

logger = logging.getLogger(__name__)

DOCKER_PACKAGES = (
    "docker-ce",
    "docker-ce-cli",
    "containerd.io",
    "docker-buildx-plugin",
    "docker-compose-plugin",
)
PREREQUISITES = ("ca-certificates", "curl", "gnupg")
CONFLICTING = ("docker.io", "docker-compose", "containerd", "runc")

DAEMON_CONFIG = {
    "log-driver": "json-file",
    "log-opts": {"max-size": "10m", "max-file": "3"},
    "storage-driver": "overlay2",
    "live-restore": True,
    "userland-proxy": False,
    "default-ulimits": {"nofile": {"Name": "nofile", "Hard": 65536, "Soft": 65536}},
}


class RuntimeStep(Step):
    name = "runtime"
    title = "Container runtime"
    flag = "runtime_ready"

    start_timeout: float = 30.0

    def probe(self, ctx: StepContext) -> bool:
        docker = ctx.host.containers
        return docker.is_responsive() and docker.has_compose_v2()

    def resume_outputs(self, ctx: StepContext) -> dict:
        return {"docker_version": ctx.host.containers.version()}

    def compensate(self, ctx: StepContext) -> CompensationAction:
        return CompensationAction(
            description="Remove Docker packages",
            action=RemovePackages(packages=DOCKER_PACKAGES),
            tier=Tier.NORMAL,
        )

    def execute(self, ctx: StepContext) -> StepResult:
        apt = ctx.host.packages

        for package in CONFLICTING:
            if apt.is_installed(package):
                logger.warning("Conflicting package %s installed; docker-ce will replace it", package)

        missing = apt.missing(PREREQUISITES)
        if missing:
            ctx.registry.register(
                f"Remove packages {', '.join(missing)}", RemovePackages(packages=tuple(missing)),
            )
            result = apt.update()
            if result.ok:
                result = apt.install(missing)
            if not result.ok:
                return StepResult.failure(f"installing prerequisites: {result.describe()}")

        error = self._add_repository(ctx)
        if error:
            return StepResult.failure(error)

        # Written before the packages so the daemon's first start uses it
        self._write_daemon_config(ctx)

        ctx.registry.add(self.compensate(ctx))
        ctx.tracker.track_service("docker")
        result = apt.update()
        if result.ok:
            result = apt.install(DOCKER_PACKAGES)
        if not result.ok:
            return StepResult.failure(f"installing Docker: {result.describe()}")

        services = ctx.host.services
        services.daemon_reload()
        result = services.enable_now("docker")
        if not result.ok:
            return StepResult.failure(f"starting docker: {result.describe()}")

        outcome = wait_until(
            ctx.host.containers.is_responsive,
            timeout=self.start_timeout,
            interval=1,
            label="docker daemon",
        )
        if not outcome.ready:
            return StepResult.failure(f"Docker did not respond within {self.start_timeout:.0f}s")
        if not ctx.host.containers.has_compose_v2():
            return StepResult.failure("docker compose v2 plugin not available after install")

        return StepResult.success(docker_version=ctx.host.containers.version())

    def _add_repository(self, ctx: StepContext) -> str | None:
        os_id = ctx.facts.os_id
        apt_dir = ctx.paths.apt_dir
        keyring = apt_dir / "keyrings" / "docker.gpg"
        armored = apt_dir / "keyrings" / "docker.asc"

        ctx.files.create_dir(keyring.parent)
        ctx.files.preserve(armored)
        resp = ctx.host.http.download(f"https://download.docker.com/linux/{os_id}/gpg", armored)
        if not resp.ok:
            return f"downloading Docker GPG key: {resp.error or resp.status}"

        ctx.files.preserve(keyring)
        result = ctx.host.runner(
            ["gpg", "--batch", "--yes", "--dearmor", "-o", str(keyring), str(armored)], timeout=60,
        )
        if not result.ok:
            return f"importing Docker GPG key: {result.describe()}"
        keyring.chmod(0o644)

        codename = _os_codename(ctx)
        arch = ctx.host.packages.architecture() or "amd64"
        line = (
            f"deb [arch={arch} signed-by={keyring}] "
            f"https://download.docker.com/linux/{os_id} {codename} stable\n"
        )
        ctx.files.write_file(apt_dir / "sources.list.d" / "docker.list", line)
        return None

    def _write_daemon_config(self, ctx: StepContext) -> None:
        daemon_json = ctx.paths.docker_etc_dir / "daemon.json"
        ctx.files.write_file(daemon_json, json.dumps(DAEMON_CONFIG, indent=4) + "\n")


def _os_codename(ctx: StepContext) -> str:
    release = read_os_release(ctx.paths.os_release)
    return release.get("VERSION_CODENAME") or release.get("UBUNTU_CODENAME") or "stable"
