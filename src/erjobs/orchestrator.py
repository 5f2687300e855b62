"""
Research orchestrator.

Runs one job through the pipeline:
1. Plan - research plan from the language model or the default plan
2. Gather - financial data and news, in parallel
3. Synthesize - thesis, signal and confidence

A single StepCounter is shared by every stage, so the two gather stages
draw numbers from the same sequence and their steps interleave in
completion order.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from erjobs.cancellation import CancelToken
from erjobs.config import Settings
from erjobs.exceptions import InvalidTransitionError, JobCancelledError
from erjobs.llm.base import TextCompletion
from erjobs.logging import get_logger, log_context
from erjobs.providers.base import FinancialDataProvider, NewsProvider
from erjobs.stages.financial import FinancialGatherStage
from erjobs.stages.news import NewsGatherStage
from erjobs.stages.planner import PlanStage
from erjobs.stages.synthesizer import SynthesizeStage
from erjobs.steps import StepCounter, StepRecorder
from erjobs.types import (
    PHASE_ORDER,
    AnalysisResult,
    Job,
    PipelinePhase,
    Step,
)

logger = get_logger(__name__)

ORCHESTRATOR_STAGE = "Orchestrator"

StepCallback = Callable[[Step], Awaitable[None]]


@dataclass
class PipelineRun:
    """Mutable state of one pipeline execution.

    The phase only moves forward through PHASE_ORDER; FAILED can be entered
    from any non-terminal phase.
    """

    job_id: str
    phase: PipelinePhase = PipelinePhase.PLANNING
    steps: list[Step] = field(default_factory=list)
    counter: StepCounter = field(default_factory=StepCounter)

    @property
    def is_terminal(self) -> bool:
        return self.phase in (PipelinePhase.DONE, PipelinePhase.FAILED)

    def advance(self, phase: PipelinePhase) -> None:
        """Move to ``phase``.

        Raises:
            InvalidTransitionError: If the move is not forward.
        """
        if self.is_terminal:
            allowed = False
        elif phase is PipelinePhase.FAILED:
            allowed = True
        else:
            allowed = PHASE_ORDER.index(phase) > PHASE_ORDER.index(self.phase)

        if not allowed:
            raise InvalidTransitionError(
                f"Cannot move pipeline from {self.phase.value} to {phase.value}",
                context={"job_id": self.job_id},
            )
        logger.debug("Pipeline phase", job_id=self.job_id, phase=phase.value)
        self.phase = phase


class ResearchOrchestrator:
    """Sequences the stages for a single job execution.

    Stateless between jobs: all per-run state lives in PipelineRun, so one
    orchestrator can serve jobs one after another.
    """

    def __init__(
        self,
        planner: PlanStage,
        financial: FinancialGatherStage,
        news: NewsGatherStage,
        synthesizer: SynthesizeStage,
    ) -> None:
        self.planner = planner
        self.financial = financial
        self.news = news
        self.synthesizer = synthesizer

    @classmethod
    def build(
        cls,
        financial_providers: list[FinancialDataProvider],
        news_providers: list[NewsProvider],
        llm: TextCompletion | None = None,
        concurrency: int = 3,
        provider_timeout: float | None = None,
        max_prices: int = 1000,
        max_articles: int = 100,
    ) -> ResearchOrchestrator:
        """Wire the four stages from their collaborators."""
        return cls(
            planner=PlanStage(llm),
            financial=FinancialGatherStage(
                financial_providers,
                concurrency=concurrency,
                provider_timeout=provider_timeout,
                max_prices=max_prices,
            ),
            news=NewsGatherStage(
                news_providers,
                llm=llm,
                concurrency=concurrency,
                provider_timeout=provider_timeout,
                max_articles=max_articles,
            ),
            synthesizer=SynthesizeStage(llm),
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        financial_providers: list[FinancialDataProvider],
        news_providers: list[NewsProvider],
        llm: TextCompletion | None = None,
    ) -> ResearchOrchestrator:
        return cls.build(
            financial_providers,
            news_providers,
            llm=llm,
            concurrency=settings.PROVIDER_CONCURRENCY,
            provider_timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            max_prices=settings.MAX_HISTORICAL_PRICES,
            max_articles=settings.MAX_NEWS_ARTICLES,
        )

    async def execute(
        self,
        job: Job,
        on_step: StepCallback | None = None,
        cancel: CancelToken | None = None,
        run: PipelineRun | None = None,
    ) -> AnalysisResult:
        """Run the full pipeline for ``job``.

        Args:
            job: The job to research (not mutated).
            on_step: Awaited once per recorded step.
            cancel: Cancellation signal; a fresh token if omitted.
            run: Pipeline state to use; exposed so callers can inspect it.

        Returns:
            The final AnalysisResult.

        Raises:
            JobCancelledError: If ``cancel`` fires.
            Exception: Anything a stage raised, after a failed step is recorded.
        """
        cancel = cancel or CancelToken()
        run = run or PipelineRun(job_id=job.job_id)

        async def observe(step: Step) -> None:
            run.steps.append(step)
            if on_step is not None:
                await on_step(step)

        recorder = StepRecorder(ORCHESTRATOR_STAGE, run.counter, observe)

        with log_context(job_id=job.job_id):
            logger.info(
                "Starting research",
                symbol=job.symbol,
                company_name=job.company_name,
                depth=job.depth.value,
            )
            try:
                result = await self._execute(job, run, recorder, cancel)
            except (JobCancelledError, asyncio.CancelledError) as e:
                logger.warning("Research cancelled", reason=str(e) or "cancelled")
                if not run.is_terminal:
                    run.advance(PipelinePhase.FAILED)
                raise
            except Exception as e:
                logger.exception("Research failed", phase=run.phase.value)
                if not run.is_terminal:
                    run.advance(PipelinePhase.FAILED)
                await recorder.record(
                    "Research failed",
                    success=False,
                    error=str(e) or type(e).__name__,
                )
                raise

            run.advance(PipelinePhase.DONE)
            logger.info(
                "Research completed",
                signal=result.signal.value,
                confidence=result.confidence,
                steps=len(run.steps),
            )
            return result

    async def _execute(
        self,
        job: Job,
        run: PipelineRun,
        recorder: StepRecorder,
        cancel: CancelToken,
    ) -> AnalysisResult:
        # Stage 1: Plan
        with log_context(stage=self.planner.name):
            plan = await self.planner.run(
                job.symbol,
                job.company_name,
                job.depth,
                recorder.for_stage(self.planner.name),
                cancel,
            )
        cancel.raise_if_cancelled()

        # Stage 2: Gather (parallel)
        run.advance(PipelinePhase.GATHERING)

        async def gather_financial():
            with log_context(stage=self.financial.name):
                return await self.financial.run(plan, recorder.for_stage(self.financial.name), cancel)

        async def gather_news():
            with log_context(stage=self.news.name):
                return await self.news.run(plan, recorder.for_stage(self.news.name), cancel)

        financial_task = asyncio.create_task(gather_financial())
        news_task = asyncio.create_task(gather_news())
        try:
            financial, news = await asyncio.gather(financial_task, news_task)
        except BaseException:
            for task in (financial_task, news_task):
                task.cancel()
            await asyncio.gather(financial_task, news_task, return_exceptions=True)
            raise
        cancel.raise_if_cancelled()

        # Stage 3: Synthesize
        run.advance(PipelinePhase.SYNTHESIZING)
        with log_context(stage=self.synthesizer.name):
            return await self.synthesizer.run(
                plan,
                financial,
                news,
                list(run.steps),
                recorder.for_stage(self.synthesizer.name),
                cancel,
            )
