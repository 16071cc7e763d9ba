"""
Configuration loader — reads install.yml into an InstallConfig.

The file is read and validated before anything touches the host. Every
problem, from a missing file to a port collision between profiles,
surfaces as a ConfigError, which the CLI treats as a failed
precondition.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from hoststack.core.errors import ConfigError
from hoststack.core.models.config import InstallConfig

logger = logging.getLogger(__name__)

INSTALL_CONFIG_FILE = "install.yml"
REQUIRED_KEYS = ("panel_domain", "ssl_email")


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Nearest install.yml in ``start_dir`` (default: cwd) or a parent."""
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):
        candidate = current / INSTALL_CONFIG_FILE
        if candidate.is_file():
            return candidate
        if current.parent == current:
            break
        current = current.parent

    return None


def format_validation_error(error: ValidationError) -> str:
    """One line per problem, keyed by the dotted install.yml path."""
    lines = []
    for item in error.errors():
        where = ".".join(str(part) for part in item["loc"]) or "(top level)"
        message = item["msg"].removeprefix("Value error, ")
        lines.append(f"  - {where}: {message}")
    count = len(lines)
    return f"{count} problem{'s' if count != 1 else ''} in {INSTALL_CONFIG_FILE}:\n" + "\n".join(lines)


def load_config(path: Path | None = None) -> InstallConfig:
    """Read and validate the installer configuration.

    With no ``path`` the file is searched for upward from the cwd.

    Raises:
        ConfigError: the file is missing, unreadable or invalid.
    """
    if path is None:
        path = find_config_file()

    if path is None:
        raise ConfigError(
            f"No {INSTALL_CONFIG_FILE} found. "
            "Copy install.example.yml to install.yml and fill in your values, "
            "or specify --config."
        )

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading installer config from %s", path)

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        raise ConfigError(f"{path} is empty; at least {', '.join(REQUIRED_KEYS)} must be set")
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        config = InstallConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(format_validation_error(e)) from e

    logger.info(
        "Loaded config for %s (%d profiles, access port %s)",
        config.panel_domain, len(config.profiles), config.access_port or "auto",
    )
    return config
