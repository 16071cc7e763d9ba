"""
Installer steps, in the order a run executes them.
"""

from __future__ import annotations

from hoststack.core.engine.step import Step
from hoststack.steps.certificates import CertificateStep
from hoststack.steps.dns import DnsStep
from hoststack.steps.firewall import FirewallStep
from hoststack.steps.keys import KeysStep
from hoststack.steps.network import NetworkStep
from hoststack.steps.panel import PanelStep
from hoststack.steps.profiles import ProfilesStep
from hoststack.steps.runtime import RuntimeStep
from hoststack.steps.tunnel import TunnelStep


def default_steps() -> list[Step]:
    return [
        RuntimeStep(),
        NetworkStep(),
        FirewallStep(),
        CertificateStep(),
        KeysStep(),
        TunnelStep(),
        DnsStep(),
        PanelStep(),
        ProfilesStep(),
    ]


__all__ = [
    "CertificateStep",
    "DnsStep",
    "FirewallStep",
    "KeysStep",
    "NetworkStep",
    "PanelStep",
    "ProfilesStep",
    "RuntimeStep",
    "TunnelStep",
    "default_steps",
]
