"""
Firewall step — ufw with default-deny incoming.

Order matters here:

    1. install ufw (compensated by package removal)
    2. snapshot /etc/ufw, register its restore at the critical tier
    3. allow the access port and confirm it via both inspection paths
    4. allow every stack port (each compensated by a rule delete)
    5. default deny incoming and enable, only through the access guard

Rules that already existed before the run get no delete compensation.
"""

from __future__ import annotations

import logging

from hoststack.core.engine.access_guard import AccessGuard
from hoststack.core.engine.step import Step, StepContext
from hoststack.core.models.compensation import DeleteFirewallRule, RemovePackages, Tier
from hoststack.core.models.config import InstallConfig
from hoststack.core.models.step import StepResult

logger = logging.getLogger(__name__)


def required_rules(config: InstallConfig) -> list[tuple[int, str, str]]:
    """(port, proto, comment) for every port the stack must expose."""
    rules: list[tuple[int, str, str]] = [
        (80, "tcp", "HTTP - certificate issuance"),
        (443, "tcp", "HTTPS"),
        (config.panel.port, "tcp", "Panel"),
        (config.dns.web_port, "tcp", "DNS web UI"),
    ]
    if config.dns.dns_port != 53:
        rules += [
            (config.dns.dns_port, "tcp", "DNS TCP"),
            (config.dns.dns_port, "udp", "DNS UDP"),
        ]
    rules += [(p.port, "tcp", f"VPN {p.name}") for p in config.profiles]

    seen: set[tuple[int, str]] = set()
    unique = []
    for port, proto, comment in rules:
        if (port, proto) not in seen:
            seen.add((port, proto))
            unique.append((port, proto, comment))
    return unique


class FirewallStep(Step):
    name = "firewall"
    title = "Firewall"
    flag = "firewall_ready"

    def _guard(self, ctx: StepContext) -> AccessGuard:
        return AccessGuard(ctx.host.firewall, ctx.facts.access_port, ctx.paths.backup_root)

    def probe(self, ctx: StepContext) -> bool:
        fw = ctx.host.firewall
        if not fw.is_installed() or not fw.is_active():
            return False
        if not self._guard(ctx).verify().ok:
            return False
        return all(fw.listing_allows_port(port, proto) for port, proto, _ in required_rules(ctx.config))

    def resume_outputs(self, ctx: StepContext) -> dict:
        return {
            "access_port": ctx.facts.access_port,
            "open_ports": [f"{port}/{proto}" for port, proto, _ in required_rules(ctx.config)],
        }

    def execute(self, ctx: StepContext) -> StepResult:
        fw = ctx.host.firewall
        access_port = ctx.facts.access_port

        if not fw.is_installed():
            ctx.registry.register("Remove ufw", RemovePackages(packages=("ufw",)))
            result = ctx.host.packages.update()
            if result.ok:
                result = ctx.host.packages.install(["ufw"])
            if not result.ok:
                return StepResult.failure(f"installing ufw: {result.describe()}")

        guard = self._guard(ctx)
        guard.protect(ctx.registry)

        logger.warning("Access port is %d; keeping it open throughout", access_port)
        check = guard.ensure_access_preserved()
        if not check.ok:
            return StepResult.failure(check.message)

        open_ports = []
        for port, proto, comment in required_rules(ctx.config):
            open_ports.append(f"{port}/{proto}")
            if port == access_port and proto == "tcp":
                continue
            if fw.listing_allows_port(port, proto):
                logger.debug("%d/%s already allowed", port, proto)
                continue
            ctx.registry.register(
                f"Delete firewall rule {port}/{proto}",
                DeleteFirewallRule(port=port, proto=proto),
                Tier.NORMAL,
            )
            result = fw.allow(port, proto, comment=comment)
            if not result.ok:
                return StepResult.failure(f"allowing {port}/{proto}: {result.describe()}")

        enabled = guard.enable_default_deny()
        if not enabled.ok:
            return StepResult.failure(f"firewall not enabled: {enabled.message}")

        return StepResult.success(access_port=access_port, open_ports=open_ports)
