"""
Step recording shared across pipeline stages.

This module implements:
- StepCounter: one counter per job execution, injected into every stage
- StepRecorder: per-stage helper that numbers steps and notifies an observer

Stages never own their numbering. Sequential stages see the counter where
the previous stage left it, and concurrent stages (the two gather stages)
draw from the same counter, so numbers stay unique and increasing in
completion order.
"""

from __future__ import annotations

import asyncio
import threading
from datetime import timedelta
from typing import Awaitable, Callable

from erjobs.logging import get_logger
from erjobs.types import Step, utc_now

logger = get_logger(__name__)

StepObserver = Callable[[Step], Awaitable[None]]


class StepCounter:
    """Thread-safe monotonically increasing counter."""

    def __init__(self, start: int = 0) -> None:
        if start < 0:
            raise ValueError("start must be >= 0")
        self._value = start
        self._lock = threading.Lock()

    def next(self) -> int:
        """Reserve and return the next step number."""
        with self._lock:
            self._value += 1
            return self._value

    @property
    def current(self) -> int:
        """Last number handed out (or the start value)."""
        with self._lock:
            return self._value


class StepRecorder:
    """Records numbered steps on behalf of one stage.

    Observer failures are logged with traceback and do not propagate:
    the step number already issued stays consumed and the recorded Step
    is still returned to the stage.
    """

    def __init__(
        self,
        stage: str,
        counter: StepCounter,
        observer: StepObserver | None = None,
    ) -> None:
        self.stage = stage
        self.counter = counter
        self.observer = observer

    def for_stage(self, stage: str) -> StepRecorder:
        """Recorder for another stage sharing this counter and observer."""
        return StepRecorder(stage, self.counter, self.observer)

    async def record(
        self,
        action: str,
        details: str | None = None,
        success: bool = True,
        error: str | None = None,
        duration: timedelta | None = None,
    ) -> Step:
        """Record one completed unit of work.

        Args:
            action: What was done.
            details: Optional extra detail.
            success: Whether the unit succeeded.
            error: Error text for failed units.
            duration: How long the unit took.

        Returns:
            The immutable recorded Step.
        """
        step = Step(
            step_number=self.counter.next(),
            stage=self.stage,
            action=action,
            details=details,
            timestamp=utc_now(),
            duration=duration,
            success=success,
            error_message=error,
        )

        if success:
            logger.info(f"[{self.stage}] Step {step.step_number}: {action}")
        else:
            logger.warning(
                f"[{self.stage}] Step {step.step_number}: {action}",
                error=error,
            )

        if self.observer is not None:
            try:
                await self.observer(step)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Step observer failed",
                    step_number=step.step_number,
                    step_stage=self.stage,
                )

        return step
