"""
Installation summary — the one file an operator keeps.

Written on successful completion with mode 0600: it contains the panel
URL, the admin credentials, the DNS service credentials, the public key
and short ids the clients need, and the profile endpoints.
"""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SUMMARY_FILE = "installation_summary.txt"


def render_summary(config: Any, facts: Any, outputs: dict[str, Any]) -> str:
    """Render the summary text from config, host facts and step outputs."""
    lines = [
        "=" * 60,
        "  Installation summary",
        f"  Generated: {datetime.now(UTC).strftime('%Y-%m-%d %H:%M:%S UTC')}",
        "=" * 60,
        "",
        "[Server]",
        f"  Public IP:        {facts.public_ip}",
        f"  Access port:      {facts.access_port} (from {facts.access_port_source})",
        f"  Panel domain:     {config.panel_domain}",
        f"  Subscription:     https://{config.sub_domain}",
        "",
    ]

    panel_creds = outputs.get("panel_credentials") or {}
    lines += [
        "[Panel]",
        f"  URL:              {outputs.get('panel_url', '-')}",
        f"  Username:         {panel_creds.get('username', '-')}",
        f"  Password:         {panel_creds.get('password', '-')}",
        "",
    ]

    dns_creds = outputs.get("dns_credentials") or {}
    lines += [
        "[DNS filtering]",
        f"  Web UI:           http://127.0.0.1:{config.dns.web_port}",
        f"  Resolver:         {outputs.get('dns_address', '-')}",
        f"  Username:         {dns_creds.get('username', '-')}",
        f"  Password:         {dns_creds.get('password', '-')}",
        "",
    ]

    keys = outputs.get("key_material")
    if keys is not None:
        lines += [
            "[Reality]",
            f"  Public key:       {keys.public_key}",
            f"  Short ids:        {', '.join(keys.short_ids)}",
            "",
        ]

    lines.append("[Profiles]")
    for profile in config.profiles:
        route = "via tunnel" if profile.via_tunnel else "direct"
        lines.append(f"  {profile.name:<16}  port {profile.port:<5}  sni {profile.sni}  ({route})")
    lines.append("")

    if outputs.get("cert_self_signed"):
        lines += [
            "[Warning]",
            "  The panel uses a self-signed certificate. Point the domain at",
            "  this host and re-issue with acme.sh for a trusted one.",
            "",
        ]

    return "\n".join(lines) + "\n"


def write_summary(path: Path, content: str) -> Path:
    """Write the summary file with owner-only permissions."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)
    path.chmod(0o600)
    logger.info("✓ Summary written to %s", path)
    return path
