"""
HTTP adapter — small urllib client for health checks and JSON APIs.

The panel serves HTTPS on loopback with a certificate issued for its
public domain (or a self-signed one), so loopback calls skip TLS
verification. Nothing here raises for HTTP-level problems: every call
returns an ``HttpResponse``.
"""

from __future__ import annotations

import json
import logging
import ssl
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class HttpResponse:
    status: int = 0             # 0 = no HTTP response at all
    content: bytes = b""
    error: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def body(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body) if self.body else None


class UrllibTransport:
    """Real transport. Tests swap in an object with the same ``request``."""

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
        req = urllib.request.Request(url, data=data, method=method, headers=headers or {})
        context = None
        if url.startswith("https://") and not verify:
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE

        try:
            with urllib.request.urlopen(req, timeout=timeout, context=context) as resp:
                return HttpResponse(
                    status=resp.status,
                    content=resp.read(),
                    headers=dict(resp.headers.items()),
                )
        except urllib.error.HTTPError as e:
            content = e.read() if e.fp else b""
            return HttpResponse(status=e.code, content=content, error=str(e.reason))
        except (urllib.error.URLError, OSError, ValueError) as e:
            logger.debug("%s %s failed: %s", method, url, e)
            return HttpResponse(status=0, error=str(getattr(e, "reason", e)))


class HttpClient:
    """Convenience verbs over a transport."""

    def __init__(self, transport: Any = None):
        self.transport = transport or UrllibTransport()

    def status(self, url: str, *, timeout: float = 5, verify: bool = True) -> int:
        """HTTP status of a GET, or 0 if nothing answered."""
        return self.transport.request("GET", url, timeout=timeout, verify=verify).status

    def get_text(self, url: str, *, timeout: float = 10) -> HttpResponse:
        return self.transport.request("GET", url, timeout=timeout)

    def get_json(
        self, url: str, *, token: str = "", timeout: float = 30, verify: bool = True,
    ) -> HttpResponse:
        return self.transport.request(
            "GET", url, headers=_headers(token), timeout=timeout, verify=verify,
        )

    def send_json(
        self,
        method: str,
        url: str,
        payload: Any,
        *,
        token: str = "",
        timeout: float = 30,
        verify: bool = True,
    ) -> HttpResponse:
        headers = _headers(token)
        headers["Content-Type"] = "application/json"
        return self.transport.request(
            method,
            url,
            data=json.dumps(payload).encode("utf-8"),
            headers=headers,
            timeout=timeout,
            verify=verify,
        )

    def post_form(
        self, url: str, fields: dict[str, str], *, timeout: float = 30, verify: bool = True,
    ) -> HttpResponse:
        return self.transport.request(
            "POST",
            url,
            data=urllib.parse.urlencode(fields).encode("utf-8"),
            headers={"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"},
            timeout=timeout,
            verify=verify,
        )

    def download(self, url: str, dest: Path, *, timeout: float = 120) -> HttpResponse:
        """GET ``url`` into ``dest``."""
        resp = self.transport.request("GET", url, timeout=timeout)
        if resp.ok:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(resp.content)
        return resp


def _headers(token: str) -> dict[str, str]:
    headers = {"Accept": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers
