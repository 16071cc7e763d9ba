"""hoststack — transactional installer for a single-host VPN panel stack."""

__version__ = "0.1.0"
