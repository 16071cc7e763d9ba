"""
Tests for the firewall adapter, the access guard and the firewall step.
"""

from pathlib import Path

import pytest

from hoststack.adapters.firewall import rule_allows_port
from hoststack.core.engine.access_guard import AccessGuard
from hoststack.core.engine.registry import CompensationRegistry
from hoststack.core.engine.rollback import RollbackExecutor
from hoststack.core.models.compensation import DeleteFirewallRule, RestoreFirewallSnapshot, Tier
from hoststack.steps.firewall import FirewallStep, required_rules


class TestRuleParsing:
    @pytest.mark.parametrize("rule", [
        "ufw allow 22/tcp",
        "ufw allow 22/tcp comment 'SSH'",
        "ufw limit 22/tcp",
        "ufw allow 22",
        "ufw allow proto tcp from any to any port 22",
        "ufw allow from 10.0.0.0/8 to any port 22",
    ])
    def test_allows(self, rule):
        assert rule_allows_port(rule, 22, "tcp")

    @pytest.mark.parametrize("rule", [
        "ufw allow 2222/tcp",
        "ufw deny 22/tcp",
        "ufw allow 22/udp",
        "ufw allow proto udp from any to any port 22",
        "ufw allow 8443/tcp comment 22",
    ])
    def test_rejects(self, rule):
        assert not rule_allows_port(rule, 22, "tcp")


class TestUfwAdapter:
    def test_listing_and_store(self, host, ufw):
        host.firewall.allow(22, "tcp", comment="SSH")
        assert host.firewall.listing_allows_port(22)
        assert host.firewall.rules_store_has_port(22)
        assert not host.firewall.rules_store_has_port(2222)

    def test_store_reads_both_rule_files(self, host, config):
        ufw_dir = config.paths.ufw_dir
        ufw_dir.mkdir(parents=True)
        (ufw_dir / "user6.rules").write_text(
            "-A ufw6-user-input -p tcp --dport 2222 -j ACCEPT\n"
        )
        assert host.firewall.rules_store_has_port(2222)

    def test_store_accepts_limit_rules(self, host, config):
        ufw_dir = config.paths.ufw_dir
        ufw_dir.mkdir(parents=True)
        (ufw_dir / "user.rules").write_text(
            "-A ufw-user-input -p tcp --dport 22 -j ufw-user-limit-accept\n"
        )
        assert host.firewall.rules_store_has_port(22)

    def test_snapshot_and_restore(self, host, ufw, tmp_path: Path):
        host.firewall.allow(22)
        snap = host.firewall.snapshot(tmp_path / "snap")
        host.firewall.allow(8443)
        assert (8443, "tcp") in ufw.rules()

        assert host.firewall.restore(snap).ok
        assert ufw.rules() == [(22, "tcp")]


class TestAccessGuard:
    def _guard(self, host, config, port=22):
        return AccessGuard(host.firewall, port, config.paths.backup_root)

    def test_adds_missing_rule(self, host, config, ufw, runner):
        result = self._guard(host, config).ensure_access_preserved()
        assert result.ok
        assert result.added
        assert runner.count("ufw allow 22/tcp") == 1

    def test_existing_rule_not_re_added(self, host, config, runner, make_ufw):
        make_ufw(rules=[(22, "tcp")])
        result = self._guard(host, config).ensure_access_preserved()
        assert result.ok
        assert not result.added
        assert not runner.called("ufw allow")

    @pytest.mark.parametrize("hide", ["unlisted", "unstored"])
    def test_refuses_deny_when_one_path_disagrees(self, host, config, ufw, runner, hide):
        """Either inspection path missing the rule blocks default-deny."""
        getattr(ufw, hide).add(22)

        result = self._guard(host, config).enable_default_deny()

        assert not result.ok
        assert result.added
        assert "22" in result.message
        assert not runner.called("ufw default")
        assert not runner.called("ufw --force enable")
        assert ufw.defaults["incoming"] == "allow"
        assert not ufw.active

    def test_enable_default_deny(self, host, config, ufw):
        result = self._guard(host, config, port=2222).enable_default_deny()
        assert result.ok
        assert ufw.active
        assert ufw.defaults == {"incoming": "deny", "outgoing": "allow"}
        assert (2222, "tcp") in ufw.rules()

    def test_enable_stops_at_first_failure(self, host, config, ufw, runner):
        runner.fail("ufw default deny incoming")
        result = self._guard(host, config).enable_default_deny()
        assert not result.ok
        assert not runner.called("ufw default allow outgoing")
        assert not runner.called("ufw --force enable")

    def test_protect_registers_critical_restore(self, host, config, ufw):
        registry = CompensationRegistry()
        snapshot = self._guard(host, config).protect(registry)

        assert snapshot.is_dir()
        (entry,) = registry.pending()
        assert entry.tier == Tier.CRITICAL
        assert isinstance(entry.action, RestoreFirewallSnapshot)
        assert entry.action.access_port == 22
        assert entry.action.was_active is False


class TestFirewallStep:
    def test_required_rules(self, ctx):
        rules = required_rules(ctx.config)
        ports = [(p, proto) for p, proto, _ in rules]
        assert (80, "tcp") in ports
        assert (8443, "tcp") in ports
        assert (3000, "tcp") in ports
        assert (53, "udp") not in ports
        # 443 is both HTTPS and the first profile; listed once
        assert ports.count((443, "tcp")) == 1

    def test_dns_port_opened_when_not_53(self, ctx):
        ctx.config.dns.dns_port = 5353
        ports = [(p, proto) for p, proto, _ in required_rules(ctx.config)]
        assert (5353, "tcp") in ports
        assert (5353, "udp") in ports

    def test_execute(self, ctx, ufw):
        result = FirewallStep().execute(ctx)

        assert result.ok
        assert ufw.active
        assert ufw.defaults["incoming"] == "deny"
        assert (22, "tcp") in ufw.rules()
        assert (8443, "tcp") in ufw.rules()
        assert result.outputs["access_port"] == 22

        entries = ctx.registry.pending()
        assert entries[0].tier == Tier.CRITICAL
        deletes = [e.action for e in entries if isinstance(e.action, DeleteFirewallRule)]
        assert 22 not in {a.port for a in deletes}
        assert {a.port for a in deletes} == {p for p, _, _ in required_rules(ctx.config)}

    def test_preexisting_rule_not_compensated(self, ctx, make_ufw):
        make_ufw(rules=[(22, "tcp"), (80, "tcp")])
        assert FirewallStep().execute(ctx).ok
        deletes = [e.action.port for e in ctx.registry.pending() if isinstance(e.action, DeleteFirewallRule)]
        assert 80 not in deletes

    def test_probe(self, ctx, ufw):
        step = FirewallStep()
        assert not step.probe(ctx)
        assert step.execute(ctx).ok
        assert step.probe(ctx)

    def test_rollback_keeps_access_rule(self, ctx, ufw, runner):
        """Restore of the snapshot still leaves the access port allowed."""
        assert FirewallStep().execute(ctx).ok

        report = RollbackExecutor(ctx.registry, ctx.tracker, ctx.host).run()

        assert report.clean
        assert (22, "tcp") in ufw.rules()
        assert (8443, "tcp") not in ufw.rules()
        assert not ufw.active
