"""
Logging configuration — central setup for the CLI.

Called once at startup by main.py.  Every module that does
``logger = logging.getLogger(__name__)`` inherits this config.

Levels are resolved in precedence order:
    --debug flag  >  HOSTSTACK_LOG_LEVEL env var  >  INFO (default)

The run log is a file handler at full detail. Its path comes from
--log-file, then HOSTSTACK_LOG_FILE, then DEFAULT_LOG_FILE. It rotates
at LOG_MAX_BYTES, keeping LOG_BACKUPS gzipped generations.
"""

from __future__ import annotations

import gzip
import logging
import logging.handlers
import os
import shutil
import sys
from pathlib import Path

DEFAULT_LOG_FILE = "/var/log/hoststack-installer.log"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

# ── Format strings ──────────────────────────────────────────────

# WARNING level — minimal, no noise
_FMT_MINIMAL = "%(levelname)s: %(message)s"

# INFO level — timestamped, the operator-facing progress log
_FMT_VERBOSE = "%(asctime)s %(message)s"
_DATEFMT_VERBOSE = "%H:%M:%S"

# DEBUG level — full diagnostic with file:line
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_DEBUG = "%H:%M:%S"

# File output — always full detail
_FMT_FILE = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

_NOISY_LOGGERS = ("urllib3", "charset_normalizer")


def resolve_level(debug: bool = False) -> str:
    """Effective console level name for this process."""
    if debug:
        return "DEBUG"
    return os.environ.get("HOSTSTACK_LOG_LEVEL", "INFO")


def resolve_log_file(cli_value: str | None = None) -> str:
    """Effective run-log path; an empty string disables the file handler."""
    if cli_value is not None:
        return cli_value
    return os.environ.get("HOSTSTACK_LOG_FILE", DEFAULT_LOG_FILE)


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    log_file_level: str = "DEBUG",
    quiet_third_party: bool = True,
    log_max_bytes: int = LOG_MAX_BYTES,
) -> str | None:
    """Configure Python logging for the entire process.

    Args:
        level: Console log level name (DEBUG, INFO, WARNING, ...).
        log_file: Optional path to the persisted run log.
        log_file_level: Level for the run log (full detail by default).
        log_max_bytes: Size at which the run log is rotated.
        quiet_third_party: Keep noisy third-party loggers at WARNING
            unless we're at DEBUG level.

    Returns:
        The log file path actually in use, or None if the file could not
        be opened (the run continues with console logging only).
    """
    numeric_level = _parse_level(level)

    # ── Console handler (stderr) ────────────────────────────────
    if numeric_level <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT_DEBUG
    elif numeric_level <= logging.INFO:
        fmt, datefmt = _FMT_VERBOSE, _DATEFMT_VERBOSE
    else:
        fmt, datefmt = _FMT_MINIMAL, None

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    # ── Root logger ─────────────────────────────────────────────
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    effective_level = numeric_level
    active_file: str | None = None

    # ── File handler (optional) ─────────────────────────────────
    if log_file:
        file_level = _parse_level(log_file_level)
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            fh = _rotating_handler(log_file, log_max_bytes)
        except OSError as e:
            root.warning("Cannot open run log %s: %s", log_file, e)
        else:
            fh.setLevel(file_level)
            fh.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
            root.addHandler(fh)
            effective_level = min(effective_level, file_level)
            active_file = log_file

    root.setLevel(effective_level)

    # ── Third-party noise control ───────────────────────────────
    if quiet_third_party and numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False
    return active_file


def _parse_level(level: str | None) -> int:
    """Convert a level name string to its numeric constant."""
    if not level:
        return logging.INFO
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.INFO
    return numeric


def _rotating_handler(path: str, max_bytes: int) -> logging.handlers.RotatingFileHandler:
    """Size-based rotation; rotated generations are gzipped (run.log.1.gz)."""
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=LOG_BACKUPS, encoding="utf-8",
    )
    handler.namer = lambda name: name + ".gz"
    handler.rotator = _gzip_rotator
    return handler


def _gzip_rotator(source: str, dest: str) -> None:
    with open(source, "rb") as src, gzip.open(dest, "wb") as out:
        shutil.copyfileobj(src, out)
    os.remove(source)
