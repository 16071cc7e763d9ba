"""
Host adapters — everything that touches the machine.

Steps and the rollback dispatcher never call subprocess or urllib
directly; they go through the adapters bundled in ``HostOps``.
"""

from hoststack.adapters.host import HostOps
from hoststack.adapters.mock import MockRunner, MockTransport
from hoststack.adapters.shell.command import CommandResult, run_command

__all__ = ["CommandResult", "HostOps", "MockRunner", "MockTransport", "run_command"]
