"""
Tests for the container-service steps — DNS, panel, profiles, Xray config.
"""

import json
import stat

import pytest
import yaml

from hoststack.adapters.http import HttpResponse
from hoststack.core.engine.compensations import apply_compensation
from hoststack.core.engine.rollback import RollbackExecutor
from hoststack.core.models.artifacts import KeyMaterial, TunnelOutbound
from hoststack.core.models.compensation import RemovePackages, RunCallback, StopComposeProject
from hoststack.steps import profiles as profiles_module
from hoststack.steps import xray
from hoststack.steps.dns import DnsStep
from hoststack.steps.panel import PanelStep
from hoststack.steps.profiles import ProfilesStep

RUNNING = ["docker", "inspect", "-f", "{{.State.Running}}"]
PANEL = "https://127.0.0.1:8443"

KEYS = KeyMaterial(private_key="PRIVATE", public_key="PUBLIC", short_ids=("0a1b2c3d", "4e5f6071"))
OUTBOUND = TunnelOutbound(
    private_key="WGKEY",
    addresses=("172.16.0.2/32",),
    peer_public_key="PEER",
    endpoint="engage.cloudflareclient.com:2408",
)


class TestXrayConfig:
    def test_full_config_routes_tunnel_profiles(self, config):
        built = xray.full_config(config.profiles, KEYS, OUTBOUND)

        tags = [i["tag"] for i in built["inbounds"]]
        assert tags == [xray.API_INBOUND_TAG] + [p.tag for p in config.profiles]
        reality = built["inbounds"][1]["streamSettings"]["realitySettings"]
        assert reality["privateKey"] == "PRIVATE"
        assert reality["shortIds"] == ["0a1b2c3d", "4e5f6071"]
        assert reality["dest"] == "www.vk.com:443"

        assert "warp-out" in [o["tag"] for o in built["outbounds"]]
        rules = built["routing"]["rules"]
        assert {"type": "field", "inboundTag": ["VLESS_REALITY_WARP"], "outboundTag": "warp-out"} in rules
        assert rules[-1]["outboundTag"] == "direct"

    def test_no_outbound_routes_direct(self, config):
        built = xray.full_config(config.profiles, KEYS)
        assert "warp-out" not in [o["tag"] for o in built["outbounds"]]
        assert all(r["outboundTag"] != "warp-out" for r in built["routing"]["rules"])

    def test_hosts_mapping(self, config):
        hosts = xray.hosts_mapping(config.profiles, "203.0.113.10")
        assert set(hosts) == {p.tag for p in config.profiles}
        entry = hosts["VLESS_REALITY_STANDARD"][0]
        assert entry["address"] == "203.0.113.10"
        assert entry["port"] == 8444
        assert entry["sni"] == "www.microsoft.com"


class TestDnsStep:
    def _script(self, runner, transport):
        runner.on("htpasswd", stdout=":$2y$10$abcdefghijklmnopqrstuv\n")
        runner.on(RUNNING, stdout="true\n")
        transport.on("GET", "http://127.0.0.1:3000/", status=302)

    def test_execute(self, ctx, runner, transport):
        self._script(runner, transport)
        step = DnsStep()

        result = step.execute(ctx)

        assert result.ok, result.error
        dns_dir = ctx.paths.dns_dir
        conf = yaml.safe_load((dns_dir / "conf" / "AdGuardHome.yaml").read_text())
        assert conf["users"][0]["password"] == "$2a$10$abcdefghijklmnopqrstuv"
        assert conf["dns"]["port"] == 53

        compose = yaml.safe_load((dns_dir / "docker-compose.yml").read_text())
        service = compose["services"]["adguardhome"]
        assert service["ports"] == ["3000:3000/tcp"]
        assert compose["networks"]["marzban-network"] == {"external": True}

        creds = dns_dir / "credentials.txt"
        assert stat.S_IMODE(creds.stat().st_mode) == 0o600
        assert result.outputs["dns_credentials"]["username"] == "admin"
        assert result.outputs["dns_address"] == "adguardhome:53"
        assert runner.called("docker compose -f")

        actions = [e.action for e in ctx.registry.pending()]
        assert isinstance(actions[0], StopComposeProject)
        assert isinstance(actions[1], RemovePackages)

        assert step.probe(ctx)
        assert step.resume_outputs(ctx)["dns_credentials"] == result.outputs["dns_credentials"]

    def test_password_fed_on_stdin(self, ctx, runner, transport):
        self._script(runner, transport)
        ctx.config.dns.password = "chosen-password"
        assert DnsStep().execute(ctx).ok
        htpasswd = [c for c in runner.calls if c[0] == "htpasswd"][0]
        assert "chosen-password" not in htpasswd

    def test_non_default_dns_port_published(self, ctx, runner, transport):
        self._script(runner, transport)
        ctx.config.dns.dns_port = 5353
        assert DnsStep().execute(ctx).ok
        compose = yaml.safe_load((ctx.paths.dns_dir / "docker-compose.yml").read_text())
        assert "5353:5353/udp" in compose["services"]["adguardhome"]["ports"]

    def test_unhealthy_is_a_failure(self, ctx, runner):
        runner.on("htpasswd", stdout=":$2y$10$x\n")
        ctx.config.dns.health_timeout = 0
        result = DnsStep().execute(ctx)
        assert not result.ok
        assert not result.unhealthy
        assert "not healthy" in result.error

    def test_hash_failure(self, ctx, runner):
        runner.fail("htpasswd")
        result = DnsStep().execute(ctx)
        assert not result.ok
        assert not runner.called("docker compose")


class TestPanelStep:
    @pytest.fixture
    def cert(self, ctx):
        cert_file = ctx.paths.ssl_dir / "panel.example.com.crt"
        cert_file.parent.mkdir(parents=True)
        cert_file.write_text("-----BEGIN CERTIFICATE-----\n")
        ctx.inputs["cert_file"] = cert_file
        ctx.inputs["dns_address"] = "172.28.0.3:53"
        return cert_file

    def test_execute(self, ctx, cert, runner, transport):
        transport.on("GET", f"{PANEL}/api/system", status=401)
        step = PanelStep()

        result = step.execute(ctx)

        assert result.ok, result.error
        assert result.outputs["panel_url"] == "https://panel.example.com:8443/dashboard"
        password = result.outputs["panel_credentials"]["password"]
        assert len(password) == 24

        data_dir = ctx.paths.data_dir
        env = (data_dir / ".env").read_text()
        assert f"SUDO_PASSWORD={password}" in env
        assert "XRAY_DNS_SERVERS=172.28.0.3:53" in env
        assert "UVICORN_SSL_CERTFILE=/var/lib/marzban/ssl/panel.example.com.crt" in env
        assert stat.S_IMODE((data_dir / ".env").stat().st_mode) == 0o600

        compose = yaml.safe_load((data_dir / "docker-compose.yml").read_text())
        ports = compose["services"]["marzban"]["ports"]
        assert "8443:8000/tcp" in ports
        assert "2053:2053/udp" in ports

        base = json.loads((ctx.paths.panel_var_dir / "xray_config.json").read_text())
        assert base["inbounds"][0]["tag"] == xray.API_INBOUND_TAG

        (entry,) = ctx.registry.pending()
        assert entry.action == StopComposeProject(project_dir=str(data_dir))

    def test_rollback_restores_existing_files(self, ctx, cert, runner, host):
        data_dir = ctx.paths.data_dir
        data_dir.mkdir(parents=True, exist_ok=True)
        (data_dir / ".env").write_text("OPERATOR_ENV=1\n")
        (data_dir / "admin_credentials.txt").write_text("username: operator\n")
        runner.fail("docker compose")

        assert not PanelStep().execute(ctx).ok
        RollbackExecutor(ctx.registry, ctx.tracker, host).run()

        assert (data_dir / ".env").read_text() == "OPERATOR_ENV=1\n"
        assert (data_dir / "admin_credentials.txt").read_text() == "username: operator\n"
        assert not (data_dir / "docker-compose.yml").exists()
        assert not (data_dir / ".env.hoststack-bak").exists()

    def test_dashboard_fallback(self, ctx, cert, transport):
        transport.on("GET", f"{PANEL}/dashboard/", status=200)
        assert PanelStep().execute(ctx).ok

    def test_slow_panel_is_unhealthy(self, ctx, cert, runner):
        runner.on(RUNNING, stdout="true\n")
        ctx.config.panel.health_timeout = 0

        result = PanelStep().execute(ctx)

        assert result.unhealthy
        assert result.outputs["panel_credentials"]["username"] == "admin"

    def test_stopped_container_is_a_failure(self, ctx, cert):
        ctx.config.panel.health_timeout = 0
        result = PanelStep().execute(ctx)
        assert not result.ok
        assert not result.unhealthy
        assert "stopped" in result.error

    def test_missing_certificate(self, ctx, cert):
        cert.unlink()
        result = PanelStep().execute(ctx)
        assert not result.ok
        assert "certificate" in result.error

    def test_probe_and_resume(self, ctx, cert, runner, transport):
        transport.on("GET", f"{PANEL}/api/system", status=401)
        runner.on(RUNNING, stdout="true\n")
        step = PanelStep()
        assert not step.probe(ctx)

        result = step.execute(ctx)

        assert step.probe(ctx)
        assert step.resume_outputs(ctx)["panel_credentials"] == result.outputs["panel_credentials"]


class TestProfilesStep:
    PREVIOUS = {"inbounds": [{"tag": xray.API_INBOUND_TAG}]}

    @pytest.fixture(autouse=True)
    def no_retry_delay(self, monkeypatch):
        monkeypatch.setattr(profiles_module, "HOSTS_RETRY_DELAY", 0)

    @pytest.fixture
    def panel(self, ctx, transport):
        ctx.inputs["panel_credentials"] = {"username": "admin", "password": "pw"}
        ctx.inputs["key_material"] = KEYS
        ctx.inputs["tunnel_outbound"] = None
        transport.on("POST", f"{PANEL}/api/admin/token", body={"access_token": "tok"})
        transport.on("GET", f"{PANEL}/api/core/config", body=self.PREVIOUS)
        transport.on("PUT", f"{PANEL}/api/core/config", body={})
        transport.on("PUT", f"{PANEL}/api/hosts", body={})
        transport.on("GET", f"{PANEL}/api/system", status=401)
        return transport

    def _pushed_config(self, transport):
        puts = [d for m, u, d in transport.requests if m == "PUT" and u.endswith("/api/core/config")]
        return json.loads(puts[-1])

    def test_execute(self, ctx, panel, runner):
        result = ProfilesStep().execute(ctx)

        assert result.ok, result.error
        pushed = self._pushed_config(panel)
        assert {p.tag for p in ctx.config.profiles} <= {i["tag"] for i in pushed["inbounds"]}
        assert panel.count("PUT", f"{PANEL}/api/hosts") == 1
        assert runner.called("docker compose")
        assert runner.calls[-1][-2:] == ["restart", "marzban"]

        routes = {p["name"]: p["route"] for p in result.outputs["profiles"]}
        assert routes == {"Whitelist-VK": "direct", "Standard-Fast": "direct", "Via-WARP": "direct"}

    def test_tunnel_outbound_used(self, ctx, panel):
        ctx.inputs["tunnel_outbound"] = OUTBOUND
        result = ProfilesStep().execute(ctx)
        assert "warp-out" in [o["tag"] for o in self._pushed_config(panel)["outbounds"]]
        assert {p["name"]: p["route"] for p in result.outputs["profiles"]}["Via-WARP"] == "tunnel"

    def test_hosts_retried(self, ctx, panel):
        answers = iter([500, 502, 200])
        panel.on(
            "PUT", f"{PANEL}/api/hosts",
            handler=lambda method, url, data: HttpResponse(status=next(answers)),
        )
        assert ProfilesStep().execute(ctx).ok
        assert panel.count("PUT", f"{PANEL}/api/hosts") == 3

    def test_hosts_failure_only_warns(self, ctx, panel):
        panel.on("PUT", f"{PANEL}/api/hosts", status=500)
        assert ProfilesStep().execute(ctx).ok
        assert panel.count("PUT", f"{PANEL}/api/hosts") == 3

    def test_previous_config_restored_on_rollback(self, ctx, panel, host):
        assert ProfilesStep().execute(ctx).ok

        (entry,) = ctx.registry.pending()
        assert isinstance(entry.action, RunCallback)
        apply_compensation(entry.action, host)

        assert self._pushed_config(panel) == self.PREVIOUS

    def test_login_failure(self, ctx, panel):
        panel.on("POST", f"{PANEL}/api/admin/token", status=401, body={"detail": "Incorrect"})
        result = ProfilesStep().execute(ctx)
        assert not result.ok
        assert "authenticate" in result.error
        assert panel.count("PUT", f"{PANEL}/api/core/config") == 0

    @pytest.mark.parametrize("body", [b"", []])
    def test_login_without_token_object(self, ctx, panel, body):
        panel.on("POST", f"{PANEL}/api/admin/token", body=body)
        result = ProfilesStep().execute(ctx)
        assert not result.ok
        assert "authenticate" in result.error

    def test_unreadable_core_config_is_not_overwritten(self, ctx, panel):
        panel.on("GET", f"{PANEL}/api/core/config", status=500)
        result = ProfilesStep().execute(ctx)
        assert not result.ok
        assert result.error == "could not read current core config"
        assert panel.count("PUT", f"{PANEL}/api/core/config") == 0
        assert ctx.registry.pending() == []

    def test_push_failure(self, ctx, panel):
        panel.on("PUT", f"{PANEL}/api/core/config", status=400)
        result = ProfilesStep().execute(ctx)
        assert not result.ok
        assert "core config" in result.error

    def test_probe(self, ctx, panel):
        step = ProfilesStep()
        assert not step.probe(ctx)
        inbounds = [{"tag": p.tag} for p in ctx.config.profiles]
        panel.on("GET", f"{PANEL}/api/core/config", body={"inbounds": inbounds})
        assert step.probe(ctx)
