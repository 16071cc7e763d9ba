"""
Host detection — facts gathered once, before any mutation.

Access-port precedence (first match wins, order is fixed):

    1. config        ``access_port`` in install.yml
    2. session       the port of the SSH session running the installer
    3. socket        the port a live ``sshd`` process listens on
    4. sshd_config   the first ``Port`` directive
    5. default       22

The session port comes first among the detected sources because it is
the one connection that must survive this run.
"""

from __future__ import annotations

import ipaddress
import logging
import os
import platform
import re
import shutil
import socket
from collections.abc import Mapping
from pathlib import Path

from hoststack.adapters.host import HostOps
from hoststack.adapters.shell.command import CommandRunner
from hoststack.core.engine.orchestrator import PreflightReport
from hoststack.core.errors import PreconditionFailure
from hoststack.core.models.config import InstallConfig
from hoststack.core.models.host import HostFacts

logger = logging.getLogger(__name__)

SUPPORTED_OS = ("ubuntu", "debian")
SUPPORTED_ARCH = ("x86_64", "aarch64")

PUBLIC_IP_SERVICES = (
    "https://api.ipify.org",
    "https://ifconfig.me",
    "https://icanhazip.com",
    "https://ipecho.net/plain",
)


# ── Access port ─────────────────────────────────────────────────


def _valid_port(value: str | int | None) -> int | None:
    try:
        port = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return port if 1 <= port <= 65535 else None


def session_port(env: Mapping[str, str]) -> int | None:
    """Server-side port of the current SSH session (4th SSH_CONNECTION field)."""
    fields = env.get("SSH_CONNECTION", "").split()
    return _valid_port(fields[3]) if len(fields) >= 4 else None


def listening_sshd_port(runner: CommandRunner) -> int | None:
    result = runner(["ss", "-tlnp"], timeout=15)
    if not result.ok:
        return None
    for line in result.stdout.splitlines():
        if '"sshd"' not in line:
            continue
        columns = line.split()
        if len(columns) >= 4:
            port = _valid_port(columns[3].rsplit(":", 1)[-1])
            if port:
                return port
    return None


def sshd_config_port(path: Path) -> int | None:
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    for line in text.splitlines():
        match = re.match(r"^\s*Port\s+(\d+)\s*$", line)
        if match:
            return _valid_port(match.group(1))
    return None


def detect_access_port(
    config: InstallConfig, runner: CommandRunner, env: Mapping[str, str],
) -> tuple[int, str]:
    """Return ``(port, source)`` following the fixed precedence order."""
    if config.access_port:
        return config.access_port, "config"

    candidates = (
        ("session", lambda: session_port(env)),
        ("socket", lambda: listening_sshd_port(runner)),
        ("sshd_config", lambda: sshd_config_port(config.paths.sshd_config)),
    )
    for source, detect in candidates:
        port = detect()
        if port:
            return port, source
    return 22, "default"


# ── Network ─────────────────────────────────────────────────────


def detect_public_ip(host: HostOps) -> str:
    """First valid IPv4 answer from the lookup services."""
    for url in PUBLIC_IP_SERVICES:
        resp = host.http.get_text(url, timeout=10)
        candidate = resp.body.strip() if resp.ok else ""
        try:
            return str(ipaddress.IPv4Address(candidate))
        except ValueError:
            logger.debug("No usable IPv4 from %s (%r)", url, candidate[:40])
    raise PreconditionFailure("Could not determine the public IP address")


def listening_ports(runner: CommandRunner) -> set[int]:
    result = runner(["ss", "-tlnH"], timeout=15)
    ports: set[int] = set()
    if not result.ok:
        return ports
    for line in result.stdout.splitlines():
        columns = line.split()
        if len(columns) >= 4:
            port = _valid_port(columns[3].rsplit(":", 1)[-1])
            if port:
                ports.add(port)
    return ports


def resolve_domain(domain: str) -> set[str]:
    """IPv4 addresses a domain resolves to; empty when it doesn't."""
    try:
        _, _, addresses = socket.gethostbyname_ex(domain)
    except OSError:
        return set()
    return set(addresses)


# ── Platform ────────────────────────────────────────────────────


def read_os_release(path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return values
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value.strip().strip('"')
    return values


def total_memory_mb(meminfo: Path) -> int:
    try:
        text = meminfo.read_text(encoding="utf-8")
    except OSError:
        return 0
    match = re.search(r"^MemTotal:\s+(\d+)\s+kB", text, re.MULTILINE)
    return int(match.group(1)) // 1024 if match else 0


def free_disk_gb(path: Path) -> int:
    probe = path
    while not probe.exists() and probe != probe.parent:
        probe = probe.parent
    return shutil.disk_usage(probe).free // (1024 ** 3)


# ── Preflight ───────────────────────────────────────────────────


def run_preflight(
    config: InstallConfig,
    host: HostOps,
    *,
    env: Mapping[str, str] | None = None,
    require_root: bool = True,
    machine: str | None = None,
) -> PreflightReport:
    """Check platform and resources and gather HostFacts. Never mutates."""
    env = os.environ if env is None else env
    warnings: list[str] = []

    if require_root and os.geteuid() != 0:
        raise PreconditionFailure("hoststack must run as root (use sudo)")

    os_release = read_os_release(config.paths.os_release)
    os_id = os_release.get("ID", "")
    if os_id not in SUPPORTED_OS:
        raise PreconditionFailure(
            f"Unsupported OS {os_id or 'unknown'!r}; supported: {', '.join(SUPPORTED_OS)}"
        )

    arch = machine or platform.machine()
    if arch not in SUPPORTED_ARCH:
        raise PreconditionFailure(f"Unsupported architecture: {arch}")

    memory = total_memory_mb(config.paths.meminfo)
    if memory and memory < config.min_memory_mb:
        warnings.append(f"Low memory: {memory} MB (minimum {config.min_memory_mb} MB recommended)")

    disk = free_disk_gb(config.paths.data_dir)
    if disk < config.min_disk_gb:
        warnings.append(f"Low disk space: {disk} GB free (minimum {config.min_disk_gb} GB recommended)")

    public_ip = detect_public_ip(host)
    port, source = detect_access_port(config, host.runner, env)
    logger.info("Server IP %s, access port %d (from %s)", public_ip, port, source)

    in_use = listening_ports(host.runner)
    busy = [(label, p) for label, p in config.listening_ports() if p in in_use]

    facts = HostFacts(
        public_ip=public_ip,
        access_port=port,
        access_port_source=source,
        os_id=os_id,
        os_name=os_release.get("PRETTY_NAME", os_id),
        architecture=arch,
        memory_mb=memory,
        free_disk_gb=disk,
    )
    logger.info("✓ Pre-installation checks passed (%s, %s)", facts.os_name, arch)
    return PreflightReport(facts=facts, busy_ports=busy, warnings=warnings)
