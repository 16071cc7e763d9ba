"""
State file persistence — atomic read/write for InstallationState.

State is stored as JSON in ``<state_dir>/state.json``. Writes are atomic
(write to temp file, then rename) so a crash mid-write never leaves a
half-written file for the next run's resume logic to trust.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from hoststack.core.models.state import InstallationState

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "state.json"


def default_state_path(state_dir: Path) -> Path:
    """Get the default state file path inside the installer's state dir."""
    return state_dir / DEFAULT_STATE_FILE


def load_state(path: Path) -> InstallationState:
    """Load installation state from a JSON file.

    Args:
        path: Path to the state JSON file.

    Returns:
        InstallationState. If the file doesn't exist or is unreadable,
        returns a fresh state (every flag unset, so every step runs).
    """
    if not path.is_file():
        logger.info("No state file at %s — starting fresh", path)
        return InstallationState()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        state = InstallationState.model_validate(data)
        logger.debug("Loaded state from %s (updated_at=%s)", path, state.updated_at)
        return state
    except json.JSONDecodeError as e:
        logger.warning("Corrupt state file %s: %s — starting fresh", path, e)
        return InstallationState()
    except Exception as e:
        logger.warning("Cannot load state from %s: %s — starting fresh", path, e)
        return InstallationState()


def save_state(state: InstallationState, path: Path) -> None:
    """Save installation state to a JSON file (atomic write).

    Args:
        state: The state to save.
        path: Target path for the state file.
    """
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    os.close(fd)
    tmp = Path(tmp_path)
    try:
        tmp.write_text(content, encoding="utf-8")
        tmp.chmod(0o600)
        tmp.replace(path)
        logger.debug("State saved to %s", path)
    except Exception as e:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s: %s", path, e)
        raise
