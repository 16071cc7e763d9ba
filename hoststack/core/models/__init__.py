"""
Domain models — Pydantic types for the installer.

All models are re-exported here for convenient access:

    from hoststack.core.models import InstallConfig, InstallationState, StepResult
"""

from hoststack.core.models.artifacts import KeyMaterial, TunnelOutbound
from hoststack.core.models.compensation import (
    TIER_ORDER,
    Action,
    CompensationAction,
    DeleteFirewallRule,
    DisableService,
    RemoveNetworkObject,
    RemovePackages,
    RemovePath,
    RestoreFile,
    RestoreFirewallSnapshot,
    RunCallback,
    StopComposeProject,
    Tier,
)
from hoststack.core.models.config import (
    DnsConfig,
    InstallConfig,
    NetworkConfig,
    PanelConfig,
    PathsConfig,
    ProfileConfig,
)
from hoststack.core.models.host import HostFacts
from hoststack.core.models.state import InstallationState, RunRecord, RunStatus, StepStatus
from hoststack.core.models.step import StepInputs, StepResult

__all__ = [
    # compensation.py
    "Action",
    "CompensationAction",
    "DeleteFirewallRule",
    "DisableService",
    # config.py
    "DnsConfig",
    # host.py
    "HostFacts",
    "InstallConfig",
    # state.py
    "InstallationState",
    # artifacts.py
    "KeyMaterial",
    "NetworkConfig",
    "PanelConfig",
    "PathsConfig",
    "ProfileConfig",
    "RemoveNetworkObject",
    "RemovePackages",
    "RemovePath",
    "RestoreFile",
    "RestoreFirewallSnapshot",
    "RunCallback",
    "RunRecord",
    "RunStatus",
    "StepInputs",
    # step.py
    "StepResult",
    "StepStatus",
    "StopComposeProject",
    "TIER_ORDER",
    "Tier",
    "TunnelOutbound",
]
