"""
Shared test fixtures and configuration.
"""

import re
from pathlib import Path

import pytest

from hoststack.adapters.host import HostOps
from hoststack.adapters.mock import MockRunner, MockTransport
from hoststack.adapters.shell.command import CommandResult
from hoststack.core.engine.step import StepContext
from hoststack.core.models.config import InstallConfig, PathsConfig
from hoststack.core.models.host import HostFacts

_STORE_LINE = re.compile(r"-p (\w+) --dport (\d+) -j ACCEPT")


class FakeUfw:
    """ufw simulated on top of a MockRunner.

    The rule store is a real ``user.rules`` file under ``ufw_dir``, so
    snapshots and restores done by the adapter behave as on a host.
    ``unlisted`` ports are in the store but missing from ``ufw show
    added``; ``unstored`` ports are accepted by ``ufw allow`` but never
    reach the store.
    """

    def __init__(self, runner: MockRunner, ufw_dir: Path, *, rules=(), active=False):
        self.ufw_dir = ufw_dir
        self.active = active
        self.defaults = {"incoming": "allow", "outgoing": "allow"}
        self.unlisted: set[int] = set()
        self.unstored: set[int] = set()
        ufw_dir.mkdir(parents=True, exist_ok=True)
        self._save(list(rules))

        runner.on("ufw version", stdout="ufw 0.36.2\n")
        runner.on("ufw status", handler=self._status)
        runner.on("ufw show added", handler=self._show)
        runner.on("ufw allow", handler=self._allow)
        runner.on("ufw --force delete allow", handler=self._delete)
        runner.on("ufw default", handler=self._default)
        runner.on("ufw --force enable", handler=self._enable)
        runner.on("ufw --force disable", handler=self._disable)
        runner.on("ufw --force reset", handler=self._reset)

    @property
    def store(self) -> Path:
        return self.ufw_dir / "user.rules"

    def rules(self) -> list[tuple[int, str]]:
        if not self.store.is_file():
            return []
        return [(int(m.group(2)), m.group(1)) for m in _STORE_LINE.finditer(self.store.read_text())]

    def _save(self, rules: list[tuple[int, str]]) -> None:
        lines = ["*filter"]
        for port, proto in rules:
            lines.append(f"### tuple ### allow {proto} {port} 0.0.0.0/0 any 0.0.0.0/0 in")
            lines.append(f"-A ufw-user-input -p {proto} --dport {port} -j ACCEPT")
        lines.append("COMMIT")
        self.store.write_text("\n".join(lines) + "\n")

    @staticmethod
    def _port_proto(spec: str) -> tuple[int, str]:
        port, _, proto = spec.partition("/")
        return int(port), proto or "tcp"

    def _status(self, cmd):
        state = "active" if self.active else "inactive"
        return CommandResult(cmd=cmd, stdout=f"Status: {state}\n")

    def _show(self, cmd):
        lines = ["Added user rules (see 'ufw status' for running firewall):"]
        lines += [f"ufw allow {p}/{proto}" for p, proto in self.rules() if p not in self.unlisted]
        return CommandResult(cmd=cmd, stdout="\n".join(lines) + "\n")

    def _allow(self, cmd):
        port, proto = self._port_proto(cmd[2])
        rules = self.rules()
        if port not in self.unstored and (port, proto) not in rules:
            self._save(rules + [(port, proto)])
        return CommandResult(cmd=cmd, stdout="Rules updated\n")

    def _delete(self, cmd):
        port, proto = self._port_proto(cmd[4])
        self._save([r for r in self.rules() if r != (port, proto)])
        return CommandResult(cmd=cmd, stdout="Rule deleted\n")

    def _default(self, cmd):
        self.defaults[cmd[3]] = cmd[2]
        return CommandResult(cmd=cmd)

    def _enable(self, cmd):
        self.active = True
        return CommandResult(cmd=cmd, stdout="Firewall is active and enabled on system startup\n")

    def _disable(self, cmd):
        self.active = False
        return CommandResult(cmd=cmd)

    def _reset(self, cmd):
        self.active = False
        self.defaults = {"incoming": "allow", "outgoing": "allow"}
        self._save([])
        return CommandResult(cmd=cmd)


@pytest.fixture
def config(tmp_path: Path) -> InstallConfig:
    """Installer config with every host path inside tmp_path."""
    paths = PathsConfig(
        data_dir=tmp_path / "opt" / "marzban",
        panel_var_dir=tmp_path / "var" / "lib" / "marzban",
        state_dir=tmp_path / "var" / "lib" / "hoststack",
        acme_dir=tmp_path / "root" / ".acme.sh",
        tool_bin_dir=tmp_path / "usr" / "local" / "bin",
        ufw_dir=tmp_path / "etc" / "ufw",
        backup_root=tmp_path / "root",
        sshd_config=tmp_path / "etc" / "ssh" / "sshd_config",
        apt_dir=tmp_path / "etc" / "apt",
        docker_etc_dir=tmp_path / "etc" / "docker",
        os_release=tmp_path / "etc" / "os-release",
        meminfo=tmp_path / "proc" / "meminfo",
    )
    return InstallConfig(
        panel_domain="panel.example.com",
        ssl_email="admin@example.com",
        paths=paths,
    )


@pytest.fixture
def runner() -> MockRunner:
    return MockRunner()


@pytest.fixture
def transport() -> MockTransport:
    return MockTransport()


@pytest.fixture
def host(runner: MockRunner, transport: MockTransport, config: InstallConfig) -> HostOps:
    return HostOps.build(runner, ufw_dir=config.paths.ufw_dir, transport=transport)


@pytest.fixture
def make_ufw(runner: MockRunner, config: InstallConfig):
    """Factory for a FakeUfw with preset rules or state."""

    def make(**kwargs) -> FakeUfw:
        return FakeUfw(runner, config.paths.ufw_dir, **kwargs)

    return make


@pytest.fixture
def ufw(make_ufw) -> FakeUfw:
    return make_ufw()


@pytest.fixture
def facts() -> HostFacts:
    return HostFacts(
        public_ip="203.0.113.10",
        access_port=22,
        access_port_source="session",
        os_id="ubuntu",
        os_name="Ubuntu 22.04.4 LTS",
        architecture="x86_64",
        memory_mb=2048,
        free_disk_gb=40,
    )


@pytest.fixture
def ctx(config: InstallConfig, host: HostOps, facts: HostFacts) -> StepContext:
    return StepContext(config=config, host=host, facts=facts)
