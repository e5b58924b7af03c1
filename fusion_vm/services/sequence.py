"""Ordered multi-step handoffs with an explicit abort point.

A sequence moves ``IDLE -> RUNNING -> DONE`` or stops in ``ABORTED`` at the
first failing step. Later steps never run after a failure, and nothing is
retried or rolled back: undoing half a driver rebind is not safe in general.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from fusion_vm.exceptions import SequenceAbortedError
from fusion_vm.services.executor import CommandResult

logger = logging.getLogger(__name__)


class SequenceState(Enum):
    """Lifecycle of a step sequence."""

    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    ABORTED = "aborted"


@dataclass(frozen=True)
class Step:
    """A named action backed by one external command."""

    name: str
    action: Callable[[], CommandResult]


@dataclass
class SequenceOutcome:
    """Where a sequence ended and what it left behind."""

    name: str
    state: SequenceState = SequenceState.IDLE
    completed_steps: list[str] = field(default_factory=list)
    current_step: str | None = None
    failed_step: str | None = None
    result: CommandResult | None = None

    @property
    def succeeded(self) -> bool:
        """Check if every step completed."""
        return self.state is SequenceState.DONE

    def raise_for_abort(self) -> "SequenceOutcome":
        """Raise SequenceAbortedError if the sequence stopped partway."""
        if self.state is SequenceState.ABORTED:
            assert self.failed_step is not None
            raise SequenceAbortedError(
                self.name,
                self.failed_step,
                self.completed_steps,
                self.result.output if self.result else "",
            )
        return self


class StepSequence:
    """Runs steps in order, stopping at the first failure."""

    def __init__(self, name: str, steps: list[Step]) -> None:
        self.name = name
        self.steps = list(steps)
        self.outcome = SequenceOutcome(name=name)

    def run(self) -> SequenceOutcome:
        """Execute every step once."""
        if self.outcome.state is not SequenceState.IDLE:
            raise RuntimeError(f"Sequence '{self.name}' has already run")

        outcome = self.outcome
        outcome.state = SequenceState.RUNNING
        for step in self.steps:
            outcome.current_step = step.name
            logger.info("%s: %s", self.name, step.name)
            result = step.action()
            outcome.result = result
            if not result.ok:
                outcome.failed_step = step.name
                outcome.state = SequenceState.ABORTED
                logger.error(
                    "%s aborted at %s after %s: %s",
                    self.name,
                    step.name,
                    outcome.completed_steps or "no steps",
                    result.output,
                )
                return outcome
            outcome.completed_steps.append(step.name)

        outcome.current_step = None
        outcome.state = SequenceState.DONE
        return outcome
