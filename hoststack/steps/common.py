"""
Helpers shared by steps.
"""

from __future__ import annotations

import secrets
import string
from pathlib import Path

_ALPHANUM = string.ascii_letters + string.digits


def generate_password(length: int = 24) -> str:
    """Alphanumeric only, so it survives .env files and YAML unquoted."""
    return "".join(secrets.choice(_ALPHANUM) for _ in range(length))


def generate_short_id() -> str:
    """8 hex characters, the Reality short-id format."""
    return secrets.token_hex(4)


def render_credentials(username: str, password: str, **extra: str) -> str:
    """``key=value`` lines; read back with :func:`read_credentials`."""
    values = {**extra, "username": username, "password": password}
    return "".join(f"{k}={v}\n" for k, v in values.items())


def read_credentials(path: Path) -> dict[str, str] | None:
    """Username/password from a credentials file, or None if unusable."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return None
    values = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep and not key.startswith("#"):
            values[key.strip()] = value.strip()
    if not values.get("username") or not values.get("password"):
        return None
    return {"username": values["username"], "password": values["password"]}
