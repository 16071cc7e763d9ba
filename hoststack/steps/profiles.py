"""
Profiles step — push Reality inbounds and host entries to the panel.

Talks to the panel API over loopback (self-signed or not, the panel's
certificate names the public domain, so TLS is not verified here). The
Xray config in place before the push is restored if a later part of
the run fails.
"""

from __future__ import annotations

import logging
from typing import Any

from hoststack.core.engine.step import Step, StepContext
from hoststack.core.errors import CompensationFailure
from hoststack.core.models.compensation import RunCallback, Tier
from hoststack.core.models.step import StepResult
from hoststack.core.reliability.polling import retry_call, wait_until
from hoststack.steps import xray
from hoststack.steps.panel import CONTAINER, api_ready, panel_api_url

logger = logging.getLogger(__name__)

HOSTS_ATTEMPTS = 3
HOSTS_RETRY_DELAY = 5.0


class PanelApi:
    """Token-authenticated calls against the local panel."""

    def __init__(self, ctx: StepContext):
        self.http = ctx.host.http
        self.base = panel_api_url(ctx)
        self.token = ""

    def login(self, username: str, password: str) -> bool:
        resp = self.http.post_form(
            f"{self.base}/api/admin/token",
            {"username": username, "password": password},
            verify=False,
        )
        if not resp.ok:
            logger.error("Panel login failed: HTTP %d %s", resp.status, resp.error)
            return False
        try:
            data = resp.json()
        except ValueError:
            data = None
        self.token = (data.get("access_token") or "") if isinstance(data, dict) else ""
        if not self.token:
            logger.error("Panel login returned no access token")
        return bool(self.token)

    def get_core_config(self) -> dict[str, Any] | None:
        resp = self.http.get_json(f"{self.base}/api/core/config", token=self.token, verify=False)
        if not resp.ok:
            return None
        try:
            data = resp.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    def put_core_config(self, config: dict[str, Any]):
        return self.http.send_json(
            "PUT", f"{self.base}/api/core/config", config, token=self.token, verify=False,
        )

    def put_hosts(self, hosts: dict[str, Any]):
        return self.http.send_json(
            "PUT", f"{self.base}/api/hosts", hosts, token=self.token, verify=False, timeout=60,
        )


def _inbound_tags(config: dict[str, Any] | None) -> set[str]:
    if not config:
        return set()
    return {inbound.get("tag", "") for inbound in config.get("inbounds", [])}


def profile_summary(ctx: StepContext, tunneled: bool) -> list[dict[str, Any]]:
    return [
        {
            "name": p.name,
            "tag": p.tag,
            "port": p.port,
            "sni": p.sni,
            "route": "tunnel" if p.via_tunnel and tunneled else "direct",
        }
        for p in ctx.config.profiles
    ]


class ProfilesStep(Step):
    name = "profiles"
    title = "VPN profiles"
    flag = "profiles_ready"

    def _login(self, ctx: StepContext) -> PanelApi | None:
        creds = ctx.inputs.require("panel_credentials")
        api = PanelApi(ctx)
        if not api.login(creds["username"], creds["password"]):
            return None
        return api

    def probe(self, ctx: StepContext) -> bool:
        api = self._login(ctx)
        if api is None:
            return False
        wanted = {p.tag for p in ctx.config.profiles}
        return wanted <= _inbound_tags(api.get_core_config())

    def resume_outputs(self, ctx: StepContext) -> dict:
        return {"profiles": profile_summary(ctx, ctx.inputs.get("tunnel_outbound") is not None)}

    def execute(self, ctx: StepContext) -> StepResult:
        keys = ctx.inputs.require("key_material")
        outbound = ctx.inputs.get("tunnel_outbound")

        api = self._login(ctx)
        if api is None:
            return StepResult.failure("could not authenticate with the panel API")

        previous = api.get_core_config()
        if previous is None:
            return StepResult.failure("could not read current core config")

        def restore_previous() -> None:
            resp = api.put_core_config(previous)
            if not resp.ok:
                raise CompensationFailure(f"restoring panel core config: HTTP {resp.status}")

        ctx.registry.register(
            "Restore previous panel core config",
            RunCallback(name="restore_core_config", callback=restore_previous),
            Tier.NORMAL,
        )

        config = xray.full_config(ctx.config.profiles, keys, outbound)
        resp = api.put_core_config(config)
        if not resp.ok:
            return StepResult.failure(f"pushing core config: HTTP {resp.status} {resp.error}")
        logger.info("✓ Core config updated with %d inbound(s)", len(ctx.config.profiles))

        hosts = xray.hosts_mapping(ctx.config.profiles, ctx.facts.public_ip)
        resp = retry_call(
            lambda: api.put_hosts(hosts),
            attempts=HOSTS_ATTEMPTS,
            delay=HOSTS_RETRY_DELAY,
            accept=lambda r: r.status == 200,
            label="Updating panel hosts",
        )
        if resp.status == 200:
            logger.info("✓ Panel hosts updated")
        else:
            logger.warning(
                "Could not update panel hosts after %d attempts (HTTP %d); "
                "set them in the dashboard by hand", HOSTS_ATTEMPTS, resp.status,
            )

        data_dir = ctx.paths.data_dir
        result = ctx.host.containers.compose_restart(data_dir, CONTAINER)
        if not result.ok:
            return StepResult.failure(f"restarting panel: {result.describe()}")

        panel = ctx.config.panel
        outcome = wait_until(
            lambda: api_ready(ctx),
            timeout=panel.health_timeout,
            interval=panel.health_interval,
            label="panel API after restart",
        )
        if not outcome.ready:
            return StepResult.failure("panel did not come back after applying profiles")

        profiles = profile_summary(ctx, outbound is not None)
        for p in profiles:
            logger.info("  %-16s port %-5d sni %s (%s)", p["name"], p["port"], p["sni"], p["route"])
        return StepResult.success(profiles=profiles)
