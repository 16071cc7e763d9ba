"""
HostFacts — what preflight learned about the machine.

Detected once, before any mutation, and cached for the whole run. The
access port in particular must never be re-detected mid-run: by then
the firewall may already be changing underneath the detection.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class HostFacts(BaseModel):
    """Immutable snapshot of the host taken during preflight."""

    model_config = ConfigDict(frozen=True)

    public_ip: str
    access_port: int
    access_port_source: str     # config, session, socket, sshd_config, default
    os_id: str = ""
    os_name: str = ""
    architecture: str = ""
    memory_mb: int = 0
    free_disk_gb: int = 0
