"""
Artifacts — typed values steps hand to later steps.

These travel through ``StepInputs``; a later step never re-parses an
env file or INI text to get at them.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class KeyMaterial(BaseModel):
    """Reality X25519 key pair plus client short ids."""

    model_config = ConfigDict(frozen=True)

    private_key: str
    public_key: str
    short_ids: tuple[str, ...]

    def to_env(self) -> str:
        return (
            f"REALITY_PRIVATE_KEY={self.private_key}\n"
            f"REALITY_PUBLIC_KEY={self.public_key}\n"
            f"REALITY_SHORT_IDS={','.join(self.short_ids)}\n"
        )

    @classmethod
    def from_env(cls, text: str) -> KeyMaterial:
        values: dict[str, str] = {}
        for line in text.splitlines():
            key, sep, value = line.strip().partition("=")
            if sep:
                values[key] = value.strip().strip('"')
        try:
            return cls(
                private_key=values["REALITY_PRIVATE_KEY"],
                public_key=values["REALITY_PUBLIC_KEY"],
                short_ids=tuple(s for s in values["REALITY_SHORT_IDS"].split(",") if s),
            )
        except KeyError as e:
            raise ValueError(f"key file is missing {e.args[0]}") from None


class TunnelOutbound(BaseModel):
    """A WireGuard peer translated to the panel's outbound format."""

    model_config = ConfigDict(frozen=True)

    tag: str = "warp-out"
    private_key: str
    addresses: tuple[str, ...]
    peer_public_key: str
    endpoint: str
    mtu: int = 1280
    reserved: tuple[int, ...] = (0, 0, 0)
    allowed_ips: tuple[str, ...] = Field(default=("0.0.0.0/0", "::/0"))

    def to_xray(self) -> dict[str, Any]:
        """Xray ``wireguard`` outbound object."""
        return {
            "tag": self.tag,
            "protocol": "wireguard",
            "settings": {
                "secretKey": self.private_key,
                "address": list(self.addresses),
                "peers": [
                    {
                        "publicKey": self.peer_public_key,
                        "allowedIPs": list(self.allowed_ips),
                        "endpoint": self.endpoint,
                    }
                ],
                "mtu": self.mtu,
                "reserved": list(self.reserved),
            },
        }

    @classmethod
    def from_xray(cls, data: dict[str, Any]) -> TunnelOutbound:
        settings = data["settings"]
        peer = settings["peers"][0]
        return cls(
            tag=data.get("tag", "warp-out"),
            private_key=settings["secretKey"],
            addresses=tuple(settings["address"]),
            peer_public_key=peer["publicKey"],
            endpoint=peer["endpoint"],
            mtu=settings.get("mtu", 1280),
            reserved=tuple(settings.get("reserved", (0, 0, 0))),
            allowed_ips=tuple(peer.get("allowedIPs", ("0.0.0.0/0", "::/0"))),
        )
