"""
Panel step — Marzban in a compose project on the shared network.

Renders the panel's ``.env``, its compose file and a base Xray config,
starts the project, then polls the API until it answers. A panel that
starts but never turns healthy is reported as ``unhealthy`` so the
operator can choose to keep it.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from hoststack.adapters.containers import COMPOSE_FILE
from hoststack.core.engine.step import Step, StepContext
from hoststack.core.models.compensation import CompensationAction, StopComposeProject, Tier
from hoststack.core.models.step import StepResult
from hoststack.core.reliability.polling import wait_until
from hoststack.steps import xray
from hoststack.steps.common import generate_password, read_credentials, render_credentials

logger = logging.getLogger(__name__)

CONTAINER = "marzban"
ENV_FILE = ".env"
CREDENTIALS_FILE = "admin_credentials.txt"
XRAY_FILE = "xray_config.json"
CONTAINER_DATA = "/var/lib/marzban"
UVICORN_PORT = 8000
DASHBOARD_PATH = "/dashboard"

# /api/system answers 401/422 without a token; any of these means the API is up.
API_READY = {200, 401, 422}
DASHBOARD_READY = {200, 302}


def panel_api_url(ctx: StepContext) -> str:
    return f"https://127.0.0.1:{ctx.config.panel.port}"


def render_env(ctx: StepContext, password: str, secret_key: str, dns_address: str) -> str:
    cfg = ctx.config
    domain = cfg.panel_domain
    values = {
        "SUDO_USERNAME": cfg.panel.admin_user,
        "SUDO_PASSWORD": password,
        "SECRET_KEY": secret_key,
        "SQLALCHEMY_DATABASE_URL": f"sqlite:///{CONTAINER_DATA}/db.sqlite3",
        "DASHBOARD_PATH": DASHBOARD_PATH,
        "SUBSCRIPTION_URL_PREFIX": f"https://{cfg.sub_domain}",
        "SUB_PROFILE_TITLE": "VPN",
        "XRAY_JSON": f"{CONTAINER_DATA}/{XRAY_FILE}",
        "XRAY_EXECUTABLE_PATH": "/usr/local/bin/xray",
        "UVICORN_HOST": "0.0.0.0",
        "UVICORN_PORT": str(UVICORN_PORT),
        "UVICORN_SSL_CERTFILE": f"{CONTAINER_DATA}/ssl/{domain}.crt",
        "UVICORN_SSL_KEYFILE": f"{CONTAINER_DATA}/ssl/{domain}.key",
        "DOCS": "true",
        "DEBUG": "false",
        "CUSTOM_TEMPLATES_DIRECTORY": f"{CONTAINER_DATA}/templates/",
        "JWT_ACCESS_TOKEN_EXPIRE_MINUTES": "1440",
        "XRAY_DNS_SERVERS": dns_address,
        "TZ": cfg.timezone,
    }
    return "# Generated by hoststack\n" + "".join(f"{k}={v}\n" for k, v in values.items())


def render_compose(ctx: StepContext) -> dict[str, Any]:
    cfg = ctx.config
    paths = ctx.paths
    ports = [f"{cfg.panel.port}:{UVICORN_PORT}/tcp"]
    for profile in cfg.profiles:
        ports += [f"{profile.port}:{profile.port}/tcp", f"{profile.port}:{profile.port}/udp"]
    return {
        "services": {
            CONTAINER: {
                "image": cfg.panel.image,
                "container_name": CONTAINER,
                "restart": "unless-stopped",
                "env_file": ENV_FILE,
                "networks": [cfg.network.name],
                "ports": ports,
                "volumes": [
                    f"{paths.panel_var_dir}:{CONTAINER_DATA}",
                    f"{paths.ssl_dir}:{CONTAINER_DATA}/ssl:ro",
                    f"{paths.data_dir / 'templates'}:{CONTAINER_DATA}/templates:ro",
                    f"{paths.data_dir / 'logs'}:{CONTAINER_DATA}/logs",
                ],
                "environment": [f"TZ={cfg.timezone}"],
            }
        },
        "networks": {cfg.network.name: {"external": True}},
    }


def api_ready(ctx: StepContext) -> bool:
    base = panel_api_url(ctx)
    http = ctx.host.http
    if http.status(f"{base}/api/system", timeout=10, verify=False) in API_READY:
        return True
    return http.status(f"{base}{DASHBOARD_PATH}/", timeout=10, verify=False) in DASHBOARD_READY


class PanelStep(Step):
    name = "panel"
    title = "Management panel"
    flag = "panel_ready"
    allows_degraded = True

    def _panel_url(self, ctx: StepContext) -> str:
        return f"https://{ctx.config.panel_domain}:{ctx.config.panel.port}{DASHBOARD_PATH}"

    def probe(self, ctx: StepContext) -> bool:
        data_dir = ctx.paths.data_dir
        return (
            (data_dir / ENV_FILE).is_file()
            and read_credentials(data_dir / CREDENTIALS_FILE) is not None
            and ctx.host.containers.container_running(CONTAINER)
            and api_ready(ctx)
        )

    def resume_outputs(self, ctx: StepContext) -> dict:
        return {
            "panel_url": self._panel_url(ctx),
            "panel_credentials": read_credentials(ctx.paths.data_dir / CREDENTIALS_FILE),
        }

    def compensate(self, ctx: StepContext) -> CompensationAction:
        return CompensationAction(
            description="Stop management panel",
            action=StopComposeProject(project_dir=str(ctx.paths.data_dir)),
            tier=Tier.NORMAL,
        )

    def execute(self, ctx: StepContext) -> StepResult:
        cfg = ctx.config.panel
        paths = ctx.paths
        data_dir = paths.data_dir

        cert_file: Path = ctx.inputs.require("cert_file")
        if not cert_file.is_file():
            return StepResult.failure(f"certificate missing: {cert_file}")
        dns_address = ctx.inputs.get("dns_address") or f"adguardhome:{ctx.config.dns.dns_port}"

        for path in (
            data_dir, data_dir / "data", data_dir / "logs", data_dir / "templates",
            paths.panel_var_dir, paths.panel_var_dir / "logs", paths.panel_var_dir / "templates",
        ):
            ctx.files.create_dir(path)

        password = cfg.admin_password or generate_password(24)
        panel_url = self._panel_url(ctx)
        ctx.files.write_secure_file(
            data_dir / ENV_FILE, render_env(ctx, password, generate_password(32), dns_address),
        )
        ctx.files.write_secure_file(
            data_dir / CREDENTIALS_FILE, render_credentials(cfg.admin_user, password, panel_url=panel_url),
        )
        ctx.files.write_file(
            data_dir / COMPOSE_FILE, yaml.safe_dump(render_compose(ctx), sort_keys=False),
        )
        ctx.files.write_file(
            paths.panel_var_dir / XRAY_FILE, json.dumps(xray.base_config(), indent=2) + "\n",
        )

        ctx.registry.add(self.compensate(ctx))
        result = ctx.host.containers.compose_up(data_dir)
        if not result.ok:
            return StepResult.failure(f"starting panel: {result.describe()}")

        outputs = {
            "panel_url": panel_url,
            "panel_credentials": {"username": cfg.admin_user, "password": password},
        }

        logger.info("Waiting for the panel API (timeout %.0fs)...", cfg.health_timeout)
        outcome = wait_until(
            lambda: api_ready(ctx),
            timeout=cfg.health_timeout,
            interval=cfg.health_interval,
            label="panel API",
        )
        if outcome.ready:
            logger.info("✓ Panel is up at %s", panel_url)
            return StepResult.success(**outputs)

        logger.debug("Panel logs:\n%s", ctx.host.containers.compose_logs(data_dir, CONTAINER, tail=50))
        if not ctx.host.containers.container_running(CONTAINER):
            return StepResult.failure("panel container stopped unexpectedly")
        return StepResult.health_failure(
            f"panel API not answering after {cfg.health_timeout:.0f}s", **outputs,
        )
