"""
InstallConfig — the operator's declared intent.

Loaded from install.yml, validated before any mutation. Everything the
steps need to know about domains, ports, credentials and directories
comes from here; nothing is read from ambient environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator


class ProfileConfig(BaseModel):
    """One VLESS + Reality inbound."""

    name: str
    tag: str
    port: int = Field(ge=1, le=65535)
    sni: str
    via_tunnel: bool = False


def _default_profiles() -> list[ProfileConfig]:
    return [
        ProfileConfig(name="Whitelist-VK", tag="VLESS_REALITY_WHITELIST", port=443, sni="www.vk.com"),
        ProfileConfig(name="Standard-Fast", tag="VLESS_REALITY_STANDARD", port=8444, sni="www.microsoft.com"),
        ProfileConfig(
            name="Via-WARP", tag="VLESS_REALITY_WARP", port=2053, sni="dl.google.com", via_tunnel=True,
        ),
    ]


class NetworkConfig(BaseModel):
    """The isolated container network shared by panel and DNS service."""

    name: str = "marzban-network"
    subnet: str = "172.28.0.0/16"
    gateway: str = "172.28.0.1"


class PanelConfig(BaseModel):
    admin_user: str = "admin"
    admin_password: str = ""        # generated when empty
    port: int = Field(default=8443, ge=1, le=65535)
    image: str = "gozargah/marzban:latest"
    health_timeout: float = 180.0
    health_interval: float = 5.0


class DnsConfig(BaseModel):
    user: str = "admin"
    password: str = ""              # generated when empty
    web_port: int = Field(default=3000, ge=1, le=65535)
    dns_port: int = Field(default=53, ge=1, le=65535)
    image: str = "adguard/adguardhome:latest"
    health_timeout: float = 60.0
    health_interval: float = 2.0


class PathsConfig(BaseModel):
    """Host locations. Tests point all of these into a temp dir."""

    data_dir: Path = Path("/opt/marzban")
    panel_var_dir: Path = Path("/var/lib/marzban")
    state_dir: Path = Path("/var/lib/hoststack")
    acme_dir: Path = Path("/root/.acme.sh")
    tool_bin_dir: Path = Path("/usr/local/bin")
    ufw_dir: Path = Path("/etc/ufw")
    backup_root: Path = Path("/root")
    sshd_config: Path = Path("/etc/ssh/sshd_config")
    apt_dir: Path = Path("/etc/apt")
    docker_etc_dir: Path = Path("/etc/docker")
    os_release: Path = Path("/etc/os-release")
    meminfo: Path = Path("/proc/meminfo")

    @property
    def ssl_dir(self) -> Path:
        return self.data_dir / "ssl"

    @property
    def keys_dir(self) -> Path:
        return self.data_dir / "keys"

    @property
    def tunnel_dir(self) -> Path:
        return self.data_dir / "warp"

    @property
    def dns_dir(self) -> Path:
        return self.data_dir / "adguard"

    @property
    def summary_file(self) -> Path:
        return self.data_dir / "installation_summary.txt"


class InstallConfig(BaseModel):
    """Root installer configuration — loaded from install.yml."""

    panel_domain: str
    sub_domain: str = ""
    ssl_email: str
    timezone: str = "UTC"

    # Explicit remote-access port; takes precedence over all detection
    access_port: int | None = Field(default=None, ge=1, le=65535)

    panel: PanelConfig = Field(default_factory=PanelConfig)
    dns: DnsConfig = Field(default_factory=DnsConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    profiles: list[ProfileConfig] = Field(default_factory=_default_profiles)
    paths: PathsConfig = Field(default_factory=PathsConfig)

    # Preflight thresholds (warnings only)
    min_memory_mb: int = 512
    min_disk_gb: int = 10

    @field_validator("panel_domain", "ssl_email")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("ssl_email")
    @classmethod
    def _looks_like_email(cls, value: str) -> str:
        if "@" not in value:
            raise ValueError(f"not an e-mail address: {value!r}")
        return value

    @model_validator(mode="after")
    def _defaults_and_conflicts(self) -> InstallConfig:
        if not self.sub_domain.strip():
            self.sub_domain = self.panel_domain

        if not self.profiles:
            raise ValueError("at least one profile is required")

        tags = [p.tag for p in self.profiles]
        if len(set(tags)) != len(tags):
            raise ValueError(f"duplicate profile tags: {tags}")

        seen: dict[int, str] = {}
        for label, port in self.listening_ports():
            if port in seen:
                raise ValueError(f"port {port} used by both {seen[port]} and {label}")
            seen[port] = label
        return self

    def listening_ports(self) -> list[tuple[str, int]]:
        """(label, port) for every port the stack listens on."""
        ports = [("panel", self.panel.port), ("dns web", self.dns.web_port)]
        ports.extend((f"profile {p.name}", p.port) for p in self.profiles)
        return ports

    def tunnel_profiles(self) -> list[ProfileConfig]:
        return [p for p in self.profiles if p.via_tunnel]
