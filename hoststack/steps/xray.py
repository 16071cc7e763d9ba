"""
Xray core configuration builders shared by the panel and profiles steps.

Plain dict builders; callers serialize them with ``json`` and either
write them to the panel's ``XRAY_JSON`` file or push them over the API.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from hoststack.core.models.artifacts import KeyMaterial, TunnelOutbound
from hoststack.core.models.config import ProfileConfig

logger = logging.getLogger(__name__)

API_TAG = "api"
API_INBOUND_TAG = "api-inbound"
API_PORT = 62789
LOG_DIR = "/var/lib/marzban/logs"


def base_config() -> dict[str, Any]:
    """Config with only the management API wired up."""
    return {
        "log": {
            "loglevel": "warning",
            "access": f"{LOG_DIR}/access.log",
            "error": f"{LOG_DIR}/error.log",
        },
        "api": {"tag": API_TAG, "services": ["HandlerService", "LoggerService", "StatsService"]},
        "stats": {},
        "policy": {
            "levels": {"0": {"statsUserUplink": True, "statsUserDownlink": True}},
            "system": {
                "statsInboundUplink": True,
                "statsInboundDownlink": True,
                "statsOutboundUplink": True,
                "statsOutboundDownlink": True,
            },
        },
        "inbounds": [
            {
                "tag": API_INBOUND_TAG,
                "listen": "127.0.0.1",
                "port": API_PORT,
                "protocol": "dokodemo-door",
                "settings": {"address": "127.0.0.1"},
            }
        ],
        "outbounds": [
            {"tag": "direct", "protocol": "freedom", "settings": {}},
            {"tag": "blocked", "protocol": "blackhole", "settings": {}},
        ],
        "routing": {
            "rules": [
                {"type": "field", "inboundTag": [API_INBOUND_TAG], "outboundTag": API_TAG},
            ]
        },
    }


def reality_inbound(profile: ProfileConfig, keys: KeyMaterial) -> dict[str, Any]:
    return {
        "tag": profile.tag,
        "listen": "0.0.0.0",
        "port": profile.port,
        "protocol": "vless",
        "settings": {"clients": [], "decryption": "none"},
        "streamSettings": {
            "network": "tcp",
            "tcpSettings": {},
            "security": "reality",
            "realitySettings": {
                "show": False,
                "dest": f"{profile.sni}:443",
                "xver": 0,
                "serverNames": [profile.sni],
                "privateKey": keys.private_key,
                "shortIds": list(keys.short_ids),
                "fingerprint": "chrome",
            },
        },
        "sniffing": {"enabled": True, "destOverride": ["http", "tls", "quic"]},
    }


def full_config(
    profiles: Iterable[ProfileConfig],
    keys: KeyMaterial,
    outbound: TunnelOutbound | None = None,
) -> dict[str, Any]:
    """Base config plus one Reality inbound per profile.

    Profiles marked ``via_tunnel`` are routed to the tunnel outbound when
    one is available, otherwise they fall back to direct.
    """
    profiles = list(profiles)
    config = base_config()
    config["inbounds"].extend(reality_inbound(p, keys) for p in profiles)

    rules = config["routing"]["rules"]
    tunneled = [p.tag for p in profiles if p.via_tunnel]
    if tunneled and outbound is not None:
        config["outbounds"].append(outbound.to_xray())
        rules.append({"type": "field", "inboundTag": tunneled, "outboundTag": outbound.tag})
    elif tunneled:
        logger.warning("No tunnel outbound available; %s will route directly", ", ".join(tunneled))

    rules.append({"type": "field", "outboundTag": "direct", "network": "tcp,udp"})
    config["routing"]["domainStrategy"] = "AsIs"
    return config


def hosts_mapping(profiles: Iterable[ProfileConfig], address: str) -> dict[str, list[dict[str, Any]]]:
    """Body for ``PUT /api/hosts``: one host entry per inbound tag."""
    return {
        p.tag: [
            {
                "remark": p.name,
                "address": address,
                "port": p.port,
                "sni": p.sni,
                "host": "",
                "path": "",
                "security": "reality",
                "alpn": "",
                "fingerprint": "chrome",
                "allowinsecure": False,
                "is_disabled": False,
                "mux_enable": False,
                "fragment_setting": "",
                "random_user_agent": False,
                "noise_setting": "",
                "weight": 1,
            }
        ]
        for p in profiles
    }
