"""Compensating actions for the resources a run creates.

Every step that creates something pushes the action that undoes it. After
the main sequence, successful or not, the stack is unwound LIFO. Each
action runs even if an earlier one failed, and all failures are reported
together with the error that triggered the unwind.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from loguru import logger

from hcutils.exceptions import PipelineError, TeardownError


@dataclass(frozen=True, slots=True, eq=False)
class TeardownStep:
    description: str
    action: Callable[[], None]


@dataclass
class Teardown:
    """LIFO stack of compensating actions.

    Example:
        >>> teardown = Teardown()
        >>> key = credentials.register(...)
        >>> teardown.push("Deleting SSH key", lambda: credentials.unregister(key))
        >>> ...
        >>> errors = teardown.unwind()
    """

    _steps: list[TeardownStep] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self._steps)

    @property
    def pending(self) -> tuple[str, ...]:
        """Descriptions of the steps still to run, in unwind order."""
        return tuple(step.description for step in reversed(self._steps))

    def push(self, description: str, action: Callable[[], None]) -> TeardownStep:
        step = TeardownStep(description, action)
        self._steps.append(step)
        return step

    def run_early(self, step: TeardownStep) -> None:
        """Run one step now and drop it from the stack.

        Unlike unwind(), a failure here propagates to the caller.
        """
        self._steps.remove(step)
        logger.debug("Running teardown step early: {step}", step=step.description)
        step.action()

    def unwind(self, narrate: Callable[[str], object] | None = None) -> list[Exception]:
        """Run every remaining step, newest first, and collect failures."""
        errors: list[Exception] = []
        while self._steps:
            step = self._steps.pop()
            if narrate is not None:
                narrate(f"{step.description}...")
            try:
                step.action()
            except Exception as e:
                logger.warning("Teardown step failed: {step}: {error}", step=step.description, error=e)
                error = e
                if not isinstance(e, TeardownError):
                    error = TeardownError(f"{step.description} failed: {e}")
                    error.__cause__ = e
                errors.append(error)
        return errors


def combine_errors(primary: Exception | None, errors: list[Exception]) -> Exception | None:
    """Fold the outcome of a run into the single error to report.

    None when nothing failed. A lone primary error is returned unchanged;
    any teardown failure produces a PipelineError holding the primary
    error first, then every teardown error.
    """
    if not errors:
        return primary
    members = [primary, *errors] if primary is not None else list(errors)
    message = "Run failed" if primary is not None else "Cleanup failed"
    return PipelineError(f"{message} ({len(errors)} teardown error(s))", members)
