from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger("partsbot.pipeline")

C = TypeVar("C")


@dataclass
class AdkStep(Generic[C]):
    """Step descriptor for the ADK-style pipeline runner."""
    name: str
    fn: Callable[[C], None]
    skip_if: Optional[Callable[[C], bool]] = None
    always_run: bool = False


class AdkAgent(Generic[C]):
    """Ordered step runner; a context with ``halted`` set skips all but always_run steps."""

    def __init__(self, steps: List[AdkStep[C]], name: str = "pipeline") -> None:
        """Purpose: Initialize the agent with an ordered list of steps.
        Inputs/Outputs: Input is a list of AdkStep and a label for logs; no return value.
        Side Effects / State: Stores the step list for later execution.
        Dependencies: None beyond AdkStep definitions.
        Failure Modes: Duplicate step names raise ValueError.
        If Removed: The chat flow has no runner.
        Testing Notes: Provide a minimal step list and ensure order is preserved.
        """
        # Step names appear in logs and in run() results, so they must be unique.
        names = [step.name for step in steps]
        if len(names) != len(set(names)):
            raise ValueError(f"duplicate step names in {name}")
        self._steps = steps
        self._name = name

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self._steps]

    def run(self, context: C) -> List[str]:
        """Purpose: Execute steps in order with halt/skip/always-run rules.
        Inputs/Outputs: Input is a mutable context object; output is the names of the
            steps that actually ran.
        Side Effects / State: Invokes step functions that may mutate context.
        Dependencies: Depends on AdkStep.fn, AdkStep.skip_if, and context.halted.
        Failure Modes: Exceptions in step functions are logged with the step name and
            propagate to the caller.
        If Removed: The chat flow cannot run.
        Testing Notes: Verify halted contexts only run always_run steps.
        """
        # always_run steps ignore both the halt flag and skip_if.
        executed: List[str] = []
        for step in self._steps:
            if not step.always_run:
                if getattr(context, "halted", False):
                    continue
                if step.skip_if and step.skip_if(context):
                    continue
            started = time.monotonic()
            try:
                step.fn(context)
            except Exception as exc:
                logger.warning("%s step=%s failed error=%s", self._name, step.name, type(exc).__name__)
                raise
            executed.append(step.name)
            logger.debug(
                "%s step=%s elapsed_ms=%d",
                self._name,
                step.name,
                (time.monotonic() - started) * 1000,
            )
        return executed
