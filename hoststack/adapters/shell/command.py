"""
Shell command runner — the single place ``subprocess.run`` is called.

Every host operation (firewall, containers, packages, services) goes
through ``run_command`` and gets a ``CommandResult`` back. Nothing here
raises for a failing command: a non-zero exit, a timeout or a missing
binary all come back as a result with ``ok == False``.

Stdin input is never logged; it may carry passwords.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_OUTPUT_LIMIT = 8000


@dataclass
class CommandResult:
    """Outcome of one command."""

    cmd: list[str] = field(default_factory=list)
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0
    error: str = ""         # runner-level problem: timeout, missing binary

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.error

    def describe(self) -> str:
        """One-line failure description for logs and step errors."""
        if self.error:
            return f"{' '.join(self.cmd)}: {self.error}"
        detail = (self.stderr or self.stdout).strip().splitlines()
        tail = detail[-1] if detail else ""
        return f"{' '.join(self.cmd)} exited {self.returncode}" + (f": {tail}" if tail else "")


# Signature shared by run_command and MockRunner
CommandRunner = Callable[..., CommandResult]


def run_command(
    cmd: Sequence[str],
    *,
    timeout: float = 300,
    input: str | None = None,
    env_overrides: dict[str, str] | None = None,
    cwd: str | None = None,
) -> CommandResult:
    """Run a command and capture its output.

    Args:
        cmd: Argument list; never passed through a shell.
        timeout: Seconds before the command is killed.
        input: Optional text piped to stdin.
        env_overrides: Extra environment variables.
        cwd: Working directory.
    """
    argv = list(cmd)
    env = os.environ.copy()
    if env_overrides:
        env.update(env_overrides)

    logger.debug("Running: %s%s", " ".join(argv), f" (cwd={cwd})" if cwd else "")
    start = time.monotonic()
    try:
        proc = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input,
            env=env,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired:
        logger.warning("Command timed out after %ss: %s", timeout, " ".join(argv))
        return CommandResult(cmd=argv, returncode=-1, error=f"timed out after {timeout}s")
    except FileNotFoundError:
        return CommandResult(cmd=argv, returncode=127, error=f"command not found: {argv[0]}")
    except OSError as e:
        logger.error("Cannot run %s: %s", argv[0], e)
        return CommandResult(cmd=argv, returncode=-1, error=str(e))

    elapsed_ms = int((time.monotonic() - start) * 1000)
    result = CommandResult(
        cmd=argv,
        returncode=proc.returncode,
        stdout=(proc.stdout or "")[-_OUTPUT_LIMIT:],
        stderr=(proc.stderr or "")[-_OUTPUT_LIMIT:],
        elapsed_ms=elapsed_ms,
    )
    if not result.ok:
        logger.debug("Command failed (%d ms): %s", elapsed_ms, result.describe())
    return result
