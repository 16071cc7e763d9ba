"""
Bounded polling — the only place a step is allowed to wait.

Readiness checks (container health, HTTP endpoints, daemon start-up)
use a fixed interval and an overall timeout. Exceeding the timeout is
reported to the caller as a plain ``False``; the step decides whether
that is a failure or a degraded-continue point.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PollOutcome:
    """Result of a bounded wait."""

    ready: bool
    attempts: int
    elapsed: float


def wait_until(
    check: Callable[[], bool],
    *,
    timeout: float,
    interval: float,
    label: str = "condition",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> PollOutcome:
    """Call ``check`` every ``interval`` seconds until it returns True or
    ``timeout`` seconds have passed.

    Exceptions raised by ``check`` count as "not ready yet".
    """
    start = clock()
    attempts = 0

    while True:
        attempts += 1
        try:
            if check():
                elapsed = clock() - start
                logger.debug("%s ready after %d attempt(s), %.1fs", label, attempts, elapsed)
                return PollOutcome(ready=True, attempts=attempts, elapsed=elapsed)
        except Exception as e:
            logger.debug("%s check raised: %s", label, e)

        elapsed = clock() - start
        if elapsed + interval > timeout:
            logger.warning("%s not ready after %.0fs (%d attempts)", label, elapsed, attempts)
            return PollOutcome(ready=False, attempts=attempts, elapsed=elapsed)

        sleep(interval)


def retry_call(
    fn: Callable[[], T],
    *,
    attempts: int,
    delay: float,
    accept: Callable[[T], bool],
    label: str = "call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` up to ``attempts`` times, ``delay`` seconds apart.

    Returns the first result ``accept`` approves, else the last result.
    """
    result = fn()
    for attempt in range(2, attempts + 1):
        if accept(result):
            return result
        logger.warning("%s failed, retrying in %.0fs (attempt %d/%d)", label, delay, attempt, attempts)
        sleep(delay)
        result = fn()
    return result
