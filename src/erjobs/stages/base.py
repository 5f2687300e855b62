"""
Base class for pipeline stages.

This module implements:
- Stage: abstract base class for all stages

Stage types implemented in separate modules:
- planner.py: PlanStage
- financial.py: FinancialGatherStage
- news.py: NewsGatherStage
- synthesizer.py: SynthesizeStage

A stage holds only its collaborators. Per-run state (the step recorder and
the cancel token) is passed into ``run`` so one stage instance can serve
many jobs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from erjobs.logging import get_logger


class Stage(ABC):
    """Abstract base class for pipeline stages."""

    def __init__(self) -> None:
        self._logger = get_logger(f"stage.{self.name}")

    @property
    @abstractmethod
    def name(self) -> str:
        """Stage name used in steps and logs."""
        ...

    @abstractmethod
    async def run(self, *args: Any, **kwargs: Any) -> Any:
        """Execute the stage."""
        ...

    def log_info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(message, **kwargs)

    def log_warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(message, **kwargs)

    def log_error(self, message: str, **kwargs: Any) -> None:
        self._logger.error(message, **kwargs)
