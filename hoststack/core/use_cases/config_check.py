"""
Config check use case — validate install.yml and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from hoststack.core.config.loader import find_config_file, load_config
from hoststack.core.errors import ConfigError
from hoststack.core.models.config import InstallConfig

ACME_PORT = 80


@dataclass
class ConfigCheckResult:
    valid: bool = False
    config: InstallConfig | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "panel_domain": self.config.panel_domain if self.config else None,
            "profile_count": len(self.config.profiles) if self.config else 0,
        }


def check_config(config_path: Path | None = None) -> ConfigCheckResult:
    """Validate installer configuration and report issues.

    Schema problems are errors. Choices that work but deserve a second
    look are warnings.
    """
    result = ConfigCheckResult()

    if config_path is None:
        config_path = find_config_file()
    result.config_path = config_path

    try:
        config = load_config(config_path)
    except ConfigError as e:
        result.errors.append(str(e))
        return result
    result.config = config

    ports = dict((port, label) for label, port in config.listening_ports())
    if ACME_PORT in ports:
        result.errors.append(
            f"{ports[ACME_PORT]} uses port {ACME_PORT}, which certificate issuance needs"
        )
    if config.access_port is not None and config.access_port in ports:
        result.errors.append(
            f"access_port {config.access_port} collides with {ports[config.access_port]}"
        )

    if not config.panel.admin_password:
        result.warnings.append("panel.admin_password is empty; one will be generated")
    if not config.dns.password:
        result.warnings.append("dns.password is empty; one will be generated")
    if config.dns.dns_port == 53:
        result.warnings.append("dns.dns_port is 53; the resolver is reachable only on the container network")
    if config.tunnel_profiles():
        names = ", ".join(p.name for p in config.tunnel_profiles())
        result.warnings.append(f"profiles routed via tunnel ({names}) require outbound UDP to the tunnel endpoint")

    result.valid = not result.errors
    return result
