"""
Mock command runner — scripted test double for every host adapter.

By default every command succeeds with empty output. Responses are
scripted by command prefix; the most recently scripted matching prefix
wins, so a test can override a default set up in a fixture.

    runner = MockRunner()
    runner.on("docker info", returncode=1)
    runner.on("ufw show added", stdout="ufw allow 22/tcp\\n")
    host = HostOps.build(runner)
"""

from __future__ import annotations

import json
import shlex
from collections.abc import Callable, Sequence
from typing import Any

from hoststack.adapters.http import HttpResponse
from hoststack.adapters.shell.command import CommandResult

Handler = Callable[[list[str]], CommandResult]


class MockRunner:
    """Callable with the ``run_command`` signature."""

    def __init__(self) -> None:
        self._script: list[tuple[list[str], Handler]] = []
        self._calls: list[list[str]] = []

    # ── Scripting ───────────────────────────────────────────────

    def on(
        self,
        prefix: str | Sequence[str],
        *,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        handler: Handler | None = None,
    ) -> MockRunner:
        """Script the response for commands starting with ``prefix``."""
        tokens = shlex.split(prefix) if isinstance(prefix, str) else list(prefix)

        if handler is None:
            def handler(cmd: list[str]) -> CommandResult:
                return CommandResult(cmd=cmd, returncode=returncode, stdout=stdout, stderr=stderr)

        self._script.append((tokens, handler))
        return self

    def fail(self, prefix: str | Sequence[str], stderr: str = "mock failure") -> MockRunner:
        return self.on(prefix, returncode=1, stderr=stderr)

    # ── Runner interface ────────────────────────────────────────

    def __call__(self, cmd: Sequence[str], **kwargs: Any) -> CommandResult:
        argv = list(cmd)
        self._calls.append(argv)
        for tokens, handler in reversed(self._script):
            if argv[: len(tokens)] == tokens:
                return handler(argv)
        return CommandResult(cmd=argv)

    # ── Inspection ──────────────────────────────────────────────

    @property
    def calls(self) -> list[list[str]]:
        return self._calls

    def commands(self) -> list[str]:
        """Calls as space-joined strings, in order."""
        return [" ".join(c) for c in self._calls]

    def called(self, prefix: str) -> bool:
        return self.count(prefix) > 0

    def count(self, prefix: str) -> int:
        tokens = shlex.split(prefix)
        return sum(1 for c in self._calls if c[: len(tokens)] == tokens)

    def reset(self) -> None:
        self._calls.clear()
        self._script.clear()


class MockTransport:
    """Scripted stand-in for ``UrllibTransport``.

    Routes match on method and URL prefix; the most recent match wins.
    Unscripted requests get ``status=0`` (nothing listening).
    """

    def __init__(self) -> None:
        self._routes: list[tuple[str, str, Callable[..., HttpResponse]]] = []
        self.requests: list[tuple[str, str, bytes | None]] = []

    def on(
        self,
        method: str,
        url_prefix: str,
        *,
        status: int = 200,
        body: Any = b"",
        handler: Callable[..., HttpResponse] | None = None,
    ) -> MockTransport:
        if handler is None:
            if isinstance(body, (dict, list)):
                content = json.dumps(body).encode("utf-8")
            elif isinstance(body, str):
                content = body.encode("utf-8")
            else:
                content = body

            def handler(method: str, url: str, data: bytes | None) -> HttpResponse:
                return HttpResponse(status=status, content=content)

        self._routes.append((method.upper(), url_prefix, handler))
        return self

    def request(
        self,
        method: str,
        url: str,
        *,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 10,
        verify: bool = True,
    ) -> HttpResponse:
        self.requests.append((method.upper(), url, data))
        for route_method, prefix, handler in reversed(self._routes):
            if route_method == method.upper() and url.startswith(prefix):
                return handler(method.upper(), url, data)
        return HttpResponse(status=0, error="connection refused")

    def count(self, method: str, url_prefix: str) -> int:
        return sum(1 for m, u, _ in self.requests if m == method.upper() and u.startswith(url_prefix))
