"""
Step contract — one unit of provisioning work.

    probe(ctx)           is the goal state already live on the host?
    execute(ctx)         do the work; register compensations first
    compensate(ctx)      the step's primary undo action
    resume_outputs(ctx)  outputs to republish when the step is skipped

A step never decides to roll back. It returns a ``StepResult`` (or
raises) and the orchestrator takes it from there.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

import click

from hoststack.adapters.filesystem import FileOps
from hoststack.adapters.host import HostOps
from hoststack.core.engine.registry import CompensationRegistry
from hoststack.core.engine.tracker import ResourceTracker
from hoststack.core.models.compensation import CompensationAction
from hoststack.core.models.config import InstallConfig, PathsConfig
from hoststack.core.models.host import HostFacts
from hoststack.core.models.step import StepInputs, StepResult

logger = logging.getLogger(__name__)


@dataclass
class StepContext:
    """Everything a step may touch during one run."""

    config: InstallConfig
    host: HostOps
    facts: HostFacts
    registry: CompensationRegistry = field(default_factory=CompensationRegistry)
    tracker: ResourceTracker = field(default_factory=ResourceTracker)
    inputs: StepInputs = field(default_factory=StepInputs)
    files: FileOps = field(init=False)

    def __post_init__(self) -> None:
        self.files = FileOps(self.tracker, self.registry)

    @property
    def paths(self) -> PathsConfig:
        return self.config.paths


class Step(ABC):
    """Base class for the installer's steps."""

    name: str = ""
    title: str = ""
    flag: str = ""                # InstallationState milestone this step owns
    allows_degraded: bool = False

    @abstractmethod
    def probe(self, ctx: StepContext) -> bool:
        """Live check of the step's goal state. Must not mutate."""

    @abstractmethod
    def execute(self, ctx: StepContext) -> StepResult:
        """Perform the work. Register each compensation before its mutation."""

    def compensate(self, ctx: StepContext) -> CompensationAction | None:
        return None

    def resume_outputs(self, ctx: StepContext) -> dict[str, Any]:
        return {}

    def __repr__(self) -> str:
        return f"<Step {self.name}>"


# ── Prompting ───────────────────────────────────────────────────


class Prompter(Protocol):
    def confirm(self, question: str, default: bool = False) -> bool: ...


class ClickPrompter:
    """Interactive yes/no via click; non-interactive sessions get the default."""

    def __init__(self, interactive: bool | None = None):
        self._interactive = interactive

    def confirm(self, question: str, default: bool = False) -> bool:
        interactive = self._interactive
        if interactive is None:
            interactive = click.get_text_stream("stdin").isatty()
        if not interactive:
            logger.info("%s [non-interactive: %s]", question, "yes" if default else "no")
            return default
        return click.confirm(question, default=default)


class ScriptedPrompter:
    """Answers from a list, recording every question asked."""

    def __init__(self, answers: Iterable[bool] = ()):
        self._answers = deque(answers)
        self.questions: list[str] = []

    def confirm(self, question: str, default: bool = False) -> bool:
        self.questions.append(question)
        return self._answers.popleft() if self._answers else default
