from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

logger = logging.getLogger("title_finder.runtime")


@dataclass
class AdkStep:
    """Step descriptor for the ADK-style async pipeline runner."""
    name: str
    fn: Callable[[object], Awaitable[None]]
    skip_if: Optional[Callable[[object], bool]] = None
    always_run: bool = False


class AdkAgent:
    """Lightweight ADK-style step runner; steps run strictly one after another."""

    def __init__(self, steps: list[AdkStep]) -> None:
        self._steps = steps

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self._steps]

    async def run(self, context: object) -> None:
        """Purpose: Await steps in order with optional skip/always-run rules.
        Inputs/Outputs: Input is a mutable context object; no return value.
        Side Effects / State: Invokes step coroutines that may mutate context.
        Dependencies: Depends on AdkStep.fn and AdkStep.skip_if semantics.
        Failure Modes: Exceptions in step functions propagate to the caller; later
            steps do not run.
        If Removed: The title finder pipeline cannot run, breaking request handling.
        Testing Notes: Verify skip_if and always_run logic with simple async steps.
        """
        # Steps are awaited sequentially; a later step may depend on an earlier one.
        for step in self._steps:
            if not step.always_run and step.skip_if and step.skip_if(context):
                logger.debug("step=%s skipped", step.name)
                continue
            await step.fn(context)
