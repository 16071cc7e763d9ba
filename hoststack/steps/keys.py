"""
Keys step — Reality X25519 key pair and client short ids.

Keys are generated in-process with ``cryptography`` and stored in a
0600 env file. On resume the file is read back, so a re-run never
rotates keys that clients may already be using.
"""

from __future__ import annotations

import base64
import logging
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from hoststack.core.engine.step import Step, StepContext
from hoststack.core.models.artifacts import KeyMaterial
from hoststack.core.models.step import StepResult
from hoststack.steps.common import generate_short_id

logger = logging.getLogger(__name__)

KEYS_FILE = "reality_keys.env"
SHORT_ID_COUNT = 3


def _b64(raw: bytes) -> str:
    """Xray's key encoding: URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def generate_key_material(short_id_count: int = SHORT_ID_COUNT) -> KeyMaterial:
    private = X25519PrivateKey.generate()
    private_raw = private.private_bytes(
        serialization.Encoding.Raw,
        serialization.PrivateFormat.Raw,
        serialization.NoEncryption(),
    )
    public_raw = private.public_key().public_bytes(
        serialization.Encoding.Raw, serialization.PublicFormat.Raw,
    )
    short_ids: list[str] = []
    while len(short_ids) < short_id_count:
        sid = generate_short_id()
        if sid not in short_ids:
            short_ids.append(sid)
    return KeyMaterial(private_key=_b64(private_raw), public_key=_b64(public_raw), short_ids=tuple(short_ids))


def keys_file(ctx: StepContext) -> Path:
    return ctx.paths.keys_dir / KEYS_FILE


def load_key_material(path: Path) -> KeyMaterial | None:
    try:
        return KeyMaterial.from_env(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None


class KeysStep(Step):
    name = "keys"
    title = "Reality keys"
    flag = "keys_ready"

    def probe(self, ctx: StepContext) -> bool:
        return load_key_material(keys_file(ctx)) is not None

    def resume_outputs(self, ctx: StepContext) -> dict:
        return {"key_material": load_key_material(keys_file(ctx))}

    def execute(self, ctx: StepContext) -> StepResult:
        material = generate_key_material()
        path = keys_file(ctx)
        ctx.files.create_dir(path.parent, mode=0o700)
        ctx.files.write_secure_file(path, material.to_env())

        logger.info("✓ Reality keys saved to %s (short ids: %s)", path, ", ".join(material.short_ids))
        return StepResult.success(key_material=material)
