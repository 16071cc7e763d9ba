"""
Tunnel step — Cloudflare WARP via wgcf, as an Xray wireguard outbound.

wgcf registers an account and writes a WireGuard profile; the profile
is translated into a ``TunnelOutbound`` and saved as JSON for the
panel's config. Skipped entirely when no profile routes via the tunnel.
"""

from __future__ import annotations

import configparser
import json
import logging
from pathlib import Path

from hoststack.core.engine.step import Step, StepContext
from hoststack.core.models.artifacts import TunnelOutbound
from hoststack.core.models.step import StepResult

logger = logging.getLogger(__name__)

WGCF_VERSION = "2.2.22"
WGCF_URLS = {
    "x86_64": f"https://github.com/ViRb3/wgcf/releases/download/v{WGCF_VERSION}/wgcf_{WGCF_VERSION}_linux_amd64",
    "aarch64": f"https://github.com/ViRb3/wgcf/releases/download/v{WGCF_VERSION}/wgcf_{WGCF_VERSION}_linux_arm64",
}

WGCF_BINARY = "wgcf"
PROFILE_FILE = "warp.conf"
OUTBOUND_FILE = "warp_outbound.json"


def parse_wireguard_profile(text: str) -> TunnelOutbound:
    """Translate a wgcf WireGuard profile into a TunnelOutbound."""
    parser = configparser.ConfigParser()
    parser.optionxform = str
    parser.read_string(text)

    try:
        iface = parser["Interface"]
        peer = parser["Peer"]
        private_key = iface["PrivateKey"].strip()
        public_key = peer["PublicKey"].strip()
        endpoint = peer["Endpoint"].strip()
    except KeyError as e:
        raise ValueError(f"WireGuard profile is missing {e.args[0]}") from None

    addresses = []
    for raw in iface.get("Address", "").split(","):
        address = raw.strip()
        if not address:
            continue
        ip = address.split("/")[0]
        addresses.append(f"{ip}/128" if ":" in ip else f"{ip}/32")

    if not addresses:
        raise ValueError("WireGuard profile has no Address")

    return TunnelOutbound(
        private_key=private_key,
        addresses=tuple(addresses),
        peer_public_key=public_key,
        endpoint=endpoint,
        mtu=int(iface.get("MTU", "1280")),
    )


def outbound_file(ctx: StepContext) -> Path:
    return ctx.paths.tunnel_dir / OUTBOUND_FILE


def load_outbound(path: Path) -> TunnelOutbound | None:
    try:
        return TunnelOutbound.from_xray(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError, KeyError, IndexError):
        return None


class TunnelStep(Step):
    name = "tunnel"
    title = "WARP tunnel"
    flag = "tunnel_ready"

    def probe(self, ctx: StepContext) -> bool:
        if not ctx.config.tunnel_profiles():
            return True
        return load_outbound(outbound_file(ctx)) is not None

    def resume_outputs(self, ctx: StepContext) -> dict:
        return {"tunnel_outbound": load_outbound(outbound_file(ctx))}

    def execute(self, ctx: StepContext) -> StepResult:
        if not ctx.config.tunnel_profiles():
            logger.info("No profile routes via the tunnel; skipping WARP")
            return StepResult.success(tunnel_outbound=None)

        work_dir = ctx.paths.tunnel_dir
        ctx.files.create_dir(work_dir, mode=0o700)
        profile = work_dir / PROFILE_FILE

        if profile.is_file():
            logger.info("Reusing existing WireGuard profile %s", profile)
        else:
            error = self._register(ctx, work_dir, profile)
            if error:
                return StepResult.failure(error)

        try:
            outbound = parse_wireguard_profile(profile.read_text(encoding="utf-8"))
        except (OSError, ValueError, configparser.Error) as e:
            return StepResult.failure(f"parsing {profile}: {e}")

        ctx.files.write_secure_file(
            outbound_file(ctx), json.dumps(outbound.to_xray(), indent=2) + "\n",
        )
        logger.info("✓ WARP outbound ready (endpoint %s)", outbound.endpoint)
        return StepResult.success(tunnel_outbound=outbound)

    def _register(self, ctx: StepContext, work_dir: Path, profile: Path) -> str | None:
        wgcf = ctx.paths.tool_bin_dir / WGCF_BINARY
        if not wgcf.is_file():
            url = WGCF_URLS.get(ctx.facts.architecture)
            if url is None:
                return f"no wgcf build for architecture {ctx.facts.architecture}"
            ctx.files.preserve(wgcf)
            resp = ctx.host.http.download(url, wgcf)
            if not resp.ok:
                return f"downloading wgcf: {resp.error or resp.status}"
            wgcf.chmod(0o755)

        account = work_dir / "wgcf-account.toml"
        if not account.exists():
            ctx.tracker.track_path(account)
            result = ctx.host.runner([str(wgcf), "register", "--accept-tos"], timeout=120, cwd=str(work_dir))
            if not result.ok or not account.is_file():
                return f"WARP account registration failed: {result.describe()}"

        generated = work_dir / "wgcf-profile.conf"
        ctx.files.preserve(generated)
        result = ctx.host.runner([str(wgcf), "generate"], timeout=120, cwd=str(work_dir))
        if not result.ok or not generated.is_file():
            return f"WARP profile generation failed: {result.describe()}"

        ctx.files.preserve(profile)
        generated.replace(profile)
        profile.chmod(0o600)
        return None
