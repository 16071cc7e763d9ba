"""
DNS step — AdGuard Home on the shared container network.

The panel's Xray core resolves through it. The DNS port is published on
the host only when it is not 53, so it never fights the host's own stub
resolver; the panel reaches it over the container network either way.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from hoststack.adapters.containers import COMPOSE_FILE
from hoststack.core.engine.step import Step, StepContext
from hoststack.core.models.compensation import (
    CompensationAction,
    RemovePackages,
    StopComposeProject,
    Tier,
)
from hoststack.core.models.step import StepResult
from hoststack.core.reliability.polling import wait_until
from hoststack.steps.common import generate_password, read_credentials, render_credentials

logger = logging.getLogger(__name__)

CONTAINER = "adguardhome"
CREDENTIALS_FILE = "credentials.txt"

UPSTREAM_DNS = [
    "https://dns.cloudflare.com/dns-query",
    "https://dns.google/dns-query",
    "tls://1.1.1.1",
    "tls://8.8.8.8",
]
FILTERS = [
    ("https://adguardteam.github.io/AdGuardSDNSFilter/Filters/filter.txt", "AdGuard DNS filter"),
    ("https://adaway.org/hosts.txt", "AdAway Default Blocklist"),
]


def render_config(user: str, password_hash: str, web_port: int, dns_port: int) -> dict[str, Any]:
    """AdGuardHome.yaml as a dict, skipping the first-run wizard."""
    return {
        "bind_host": "0.0.0.0",
        "bind_port": web_port,
        "users": [{"name": user, "password": password_hash}],
        "auth_attempts": 5,
        "block_auth_min": 15,
        "language": "en",
        "dns": {
            "bind_hosts": ["0.0.0.0"],
            "port": dns_port,
            "protection_enabled": True,
            "blocking_mode": "default",
            "ratelimit": 100,
            "refuse_any": True,
            "upstream_dns": UPSTREAM_DNS,
            "bootstrap_dns": ["1.1.1.1", "8.8.8.8"],
            "fastest_addr": True,
            "trusted_proxies": ["127.0.0.0/8", "::1/128", "172.16.0.0/12"],
            "cache_size": 4194304,
            "cache_optimistic": True,
            "enable_dnssec": True,
            "filtering_enabled": True,
            "filters_update_interval": 24,
            "safebrowsing_enabled": True,
        },
        "tls": {"enabled": False},
        "querylog": {"enabled": True, "file_enabled": True, "interval": "24h"},
        "statistics": {"enabled": True, "interval": "24h"},
        "filters": [
            {"enabled": True, "url": url, "name": name, "id": i}
            for i, (url, name) in enumerate(FILTERS, start=1)
        ],
        "dhcp": {"enabled": False},
        "schema_version": 24,
    }


def render_compose(image: str, dns_dir: Path, network: str, web_port: int, dns_port: int) -> dict[str, Any]:
    ports = [f"{web_port}:{web_port}/tcp"]
    if dns_port != 53:
        ports += [f"{dns_port}:{dns_port}/tcp", f"{dns_port}:{dns_port}/udp"]
    return {
        "services": {
            CONTAINER: {
                "image": image,
                "container_name": CONTAINER,
                "hostname": CONTAINER,
                "restart": "unless-stopped",
                "networks": [network],
                "ports": ports,
                "volumes": [
                    f"{dns_dir / 'work'}:/opt/adguardhome/work",
                    f"{dns_dir / 'conf'}:/opt/adguardhome/conf",
                ],
                "cap_add": ["NET_ADMIN"],
            }
        },
        "networks": {network: {"external": True}},
    }


class DnsStep(Step):
    name = "dns"
    title = "DNS filtering service"
    flag = "dns_service_ready"

    def _conf(self, ctx: StepContext) -> Path:
        return ctx.paths.dns_dir / "conf" / "AdGuardHome.yaml"

    def probe(self, ctx: StepContext) -> bool:
        return (
            self._conf(ctx).is_file()
            and read_credentials(ctx.paths.dns_dir / CREDENTIALS_FILE) is not None
            and ctx.host.containers.container_running(CONTAINER)
        )

    def resume_outputs(self, ctx: StepContext) -> dict:
        return {
            "dns_address": self._address(ctx),
            "dns_credentials": read_credentials(ctx.paths.dns_dir / CREDENTIALS_FILE),
        }

    def compensate(self, ctx: StepContext) -> CompensationAction:
        return CompensationAction(
            description="Stop DNS filtering service",
            action=StopComposeProject(project_dir=str(ctx.paths.dns_dir)),
            tier=Tier.NORMAL,
        )

    def execute(self, ctx: StepContext) -> StepResult:
        cfg = ctx.config.dns
        dns_dir = ctx.paths.dns_dir
        password = cfg.password or generate_password(24)

        password_hash = self._bcrypt(ctx, password)
        if not password_hash:
            return StepResult.failure("could not hash the DNS service password")

        ctx.files.create_dir(dns_dir / "conf")
        ctx.files.create_dir(dns_dir / "work")
        ctx.files.write_file(
            self._conf(ctx),
            yaml.safe_dump(
                render_config(cfg.user, password_hash, cfg.web_port, cfg.dns_port), sort_keys=False,
            ),
        )
        ctx.files.write_file(
            dns_dir / COMPOSE_FILE,
            yaml.safe_dump(
                render_compose(cfg.image, dns_dir, ctx.config.network.name, cfg.web_port, cfg.dns_port),
                sort_keys=False,
            ),
        )
        credentials = {"username": cfg.user, "password": password}
        ctx.files.write_secure_file(dns_dir / CREDENTIALS_FILE, render_credentials(cfg.user, password))

        ctx.registry.add(self.compensate(ctx))
        result = ctx.host.containers.compose_up(dns_dir)
        if not result.ok:
            return StepResult.failure(f"starting DNS service: {result.describe()}")

        url = f"http://127.0.0.1:{cfg.web_port}/"
        outcome = wait_until(
            lambda: ctx.host.containers.container_running(CONTAINER) and ctx.host.http.status(url) > 0,
            timeout=cfg.health_timeout,
            interval=cfg.health_interval,
            label="DNS service",
        )
        if not outcome.ready:
            logs = ctx.host.containers.compose_logs(dns_dir, CONTAINER, tail=20)
            logger.debug("DNS service logs:\n%s", logs)
            return StepResult.failure(f"DNS service not healthy after {cfg.health_timeout:.0f}s")

        address = self._address(ctx)
        logger.info("✓ DNS filtering service running (resolver %s)", address)
        return StepResult.success(dns_address=address, dns_credentials=credentials)

    def _address(self, ctx: StepContext) -> str:
        port = ctx.config.dns.dns_port
        ip = ctx.host.containers.container_ip(CONTAINER, ctx.config.network.name)
        return f"{ip or CONTAINER}:{port}"

    def _bcrypt(self, ctx: StepContext, password: str) -> str:
        apt = ctx.host.packages
        missing = apt.missing(["apache2-utils"])
        if missing:
            ctx.registry.register("Remove apache2-utils", RemovePackages(packages=tuple(missing)))
            result = apt.install(missing)
            if not result.ok:
                logger.error("Installing apache2-utils failed: %s", result.describe())
                return ""

        result = ctx.host.runner(["htpasswd", "-niBC", "10", ""], input=password, timeout=30)
        if not result.ok:
            logger.error("htpasswd failed: %s", result.describe())
            return ""
        hashed = result.stdout.strip().lstrip(":")
        return hashed.replace("$2y$", "$2a$", 1)
