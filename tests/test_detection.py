"""
Tests for host detection and preflight.
"""

from pathlib import Path

import pytest

from hoststack.core.detection.host import (
    detect_access_port,
    detect_public_ip,
    listening_ports,
    read_os_release,
    run_preflight,
    session_port,
    sshd_config_port,
    total_memory_mb,
)
from hoststack.core.errors import PreconditionFailure

SS_SSHD = (
    "State  Recv-Q Send-Q Local Address:Port Peer Address:Port Process\n"
    'LISTEN 0      128    0.0.0.0:2222      0.0.0.0:*     users:(("sshd",pid=812,fd=3))\n'
)

SS_PLAIN = (
    "LISTEN 0 4096 127.0.0.53%lo:53 0.0.0.0:*\n"
    "LISTEN 0 511  0.0.0.0:8443    0.0.0.0:*\n"
    "LISTEN 0 128  [::]:22         [::]:*\n"
)


def _host_files(config, os_id="ubuntu"):
    paths = config.paths
    paths.os_release.parent.mkdir(parents=True, exist_ok=True)
    paths.os_release.write_text(f'ID={os_id}\nPRETTY_NAME="Ubuntu 22.04.4 LTS"\n')
    paths.meminfo.parent.mkdir(parents=True, exist_ok=True)
    paths.meminfo.write_text("MemTotal:        2048000 kB\nMemFree:  100 kB\n")


class TestAccessPort:
    def test_session_port(self):
        assert session_port({"SSH_CONNECTION": "198.51.100.7 51234 203.0.113.10 2200"}) == 2200
        assert session_port({"SSH_CONNECTION": "garbage"}) is None
        assert session_port({}) is None

    def test_sshd_config_port(self, tmp_path: Path):
        path = tmp_path / "sshd_config"
        path.write_text("# Port 99\nPermitRootLogin no\nPort 2022\nPort 2023\n")
        assert sshd_config_port(path) == 2022
        assert sshd_config_port(tmp_path / "missing") is None

    def test_config_wins(self, config, runner):
        config.access_port = 2500
        env = {"SSH_CONNECTION": "1.2.3.4 5 6.7.8.9 2200"}
        assert detect_access_port(config, runner, env) == (2500, "config")
        assert not runner.calls

    def test_session_before_socket(self, config, runner):
        runner.on("ss -tlnp", stdout=SS_SSHD)
        env = {"SSH_CONNECTION": "1.2.3.4 5 6.7.8.9 2200"}
        assert detect_access_port(config, runner, env) == (2200, "session")

    def test_socket_before_sshd_config(self, config, runner):
        runner.on("ss -tlnp", stdout=SS_SSHD)
        config.paths.sshd_config.parent.mkdir(parents=True)
        config.paths.sshd_config.write_text("Port 2022\n")
        assert detect_access_port(config, runner, {}) == (2222, "socket")

    def test_sshd_config_fallback(self, config, runner):
        runner.fail("ss")
        config.paths.sshd_config.parent.mkdir(parents=True)
        config.paths.sshd_config.write_text("Port 2022\n")
        assert detect_access_port(config, runner, {}) == (2022, "sshd_config")

    def test_default(self, config, runner):
        runner.fail("ss")
        assert detect_access_port(config, runner, {}) == (22, "default")


class TestHostFacts:
    def test_public_ip_skips_bad_answers(self, host, transport):
        transport.on("GET", "https://api.ipify.org", status=500)
        transport.on("GET", "https://ifconfig.me", body="<html>nope</html>")
        transport.on("GET", "https://icanhazip.com", body="203.0.113.10\n")
        assert detect_public_ip(host) == "203.0.113.10"

    def test_public_ip_unavailable(self, host):
        with pytest.raises(PreconditionFailure, match="public IP"):
            detect_public_ip(host)

    def test_listening_ports(self, runner):
        runner.on("ss -tlnH", stdout=SS_PLAIN)
        assert listening_ports(runner) == {53, 8443, 22}

    def test_os_release(self, tmp_path: Path):
        path = tmp_path / "os-release"
        path.write_text('NAME="Debian GNU/Linux"\nID=debian\nVERSION_CODENAME=bookworm\n')
        assert read_os_release(path)["ID"] == "debian"
        assert read_os_release(path)["NAME"] == "Debian GNU/Linux"
        assert read_os_release(tmp_path / "none") == {}

    def test_memory(self, tmp_path: Path):
        path = tmp_path / "meminfo"
        path.write_text("MemTotal:        1024000 kB\n")
        assert total_memory_mb(path) == 1000
        assert total_memory_mb(tmp_path / "none") == 0


class TestPreflight:
    def _run(self, config, host, **kwargs):
        kwargs.setdefault("require_root", False)
        kwargs.setdefault("machine", "x86_64")
        kwargs.setdefault("env", {"SSH_CONNECTION": "1.2.3.4 5 6.7.8.9 22"})
        return run_preflight(config, host, **kwargs)

    def test_gathers_facts(self, config, host, transport, runner):
        _host_files(config)
        transport.on("GET", "https://api.ipify.org", body="203.0.113.10")
        runner.on("ss -tlnH", stdout=SS_PLAIN)

        report = self._run(config, host)

        assert report.facts.public_ip == "203.0.113.10"
        assert report.facts.access_port == 22
        assert report.facts.access_port_source == "session"
        assert report.facts.os_id == "ubuntu"
        assert report.facts.memory_mb == 2000
        assert report.busy_ports == [("panel", 8443)]

    def test_unsupported_os(self, config, host):
        _host_files(config, os_id="centos")
        with pytest.raises(PreconditionFailure, match="centos"):
            self._run(config, host)

    def test_unsupported_arch(self, config, host):
        _host_files(config)
        with pytest.raises(PreconditionFailure, match="architecture"):
            self._run(config, host, machine="riscv64")

    def test_low_memory_is_a_warning(self, config, host, transport):
        _host_files(config)
        config.min_memory_mb = 4096
        transport.on("GET", "https://api.ipify.org", body="203.0.113.10")
        report = self._run(config, host)
        assert any("memory" in w.lower() for w in report.warnings)

    def test_never_mutates(self, config, host, transport, runner):
        _host_files(config)
        transport.on("GET", "https://api.ipify.org", body="203.0.113.10")
        self._run(config, host)
        assert {c[0] for c in runner.calls} <= {"ss"}
