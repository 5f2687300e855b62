"""
Gather-Financial stage.

Fans out over every configured financial provider through the pool
runner, then derives headline metrics and a price trend from the merged
data.
"""

from __future__ import annotations

import time
from datetime import timedelta
from typing import AsyncIterator, Sequence

from erjobs.analysis import calculate_metrics, determine_trend
from erjobs.cancellation import CancelToken
from erjobs.pool import (
    DEFAULT_CONCURRENCY,
    DEFAULT_MAX_PRICES,
    FinancialAccumulator,
    FinancialPartial,
    ProviderPoolRunner,
)
from erjobs.providers.base import FinancialDataProvider
from erjobs.stages.base import Stage
from erjobs.steps import StepRecorder
from erjobs.types import FinancialAnalysis, ResearchPlan

HISTORY_DAYS = 30


class FinancialGatherStage(Stage):
    """Stage 2a: quotes, fundamentals and price history."""

    def __init__(
        self,
        providers: Sequence[FinancialDataProvider],
        concurrency: int = DEFAULT_CONCURRENCY,
        provider_timeout: float | None = None,
        max_prices: int = DEFAULT_MAX_PRICES,
    ) -> None:
        super().__init__()
        self.providers = list(providers)
        self.concurrency = concurrency
        self.provider_timeout = provider_timeout
        self.max_prices = max_prices

    @property
    def name(self) -> str:
        return "FinancialData"

    @staticmethod
    async def _fetch(
        provider: FinancialDataProvider,
        symbol: str,
        cancel: CancelToken,
    ) -> AsyncIterator[FinancialPartial]:
        """Yield quote, fundamentals and history as each call returns."""
        yield FinancialPartial(quote=await provider.get_quote(symbol, cancel))
        yield FinancialPartial(fundamentals=await provider.get_fundamentals(symbol, cancel))
        prices = await provider.get_historical_prices(symbol, HISTORY_DAYS, cancel)
        yield FinancialPartial(prices=list(prices or []))

    @staticmethod
    def _describe(partials: list[FinancialPartial]) -> str:
        has_quote = any(p.quote is not None for p in partials)
        has_fundamentals = any(p.fundamentals is not None for p in partials)
        prices = sum(len(p.prices) for p in partials)
        return f"Quote: {has_quote}, Fundamentals: {has_fundamentals}, Historical prices: {prices}"

    async def run(
        self,
        plan: ResearchPlan,
        recorder: StepRecorder,
        cancel: CancelToken,
    ) -> FinancialAnalysis:
        """Gather and analyze financial data for ``plan.symbol``.

        Raises:
            JobCancelledError: If the cancel token fires.
        """
        started = time.monotonic()
        symbol = plan.symbol

        await recorder.record(
            f"Starting financial data collection for {symbol}",
            f"Using {len(self.providers)} data sources",
        )

        accumulator = FinancialAccumulator(symbol, plan.company_name, max_prices=self.max_prices)
        runner = ProviderPoolRunner(
            recorder,
            concurrency=self.concurrency,
            provider_timeout=self.provider_timeout,
            subject="data",
        )
        outcome = await runner.run(
            self.providers,
            accumulator,
            lambda provider, token: self._fetch(provider, symbol, token),
            cancel,
            describe=self._describe,
        )
        cancel.raise_if_cancelled()

        prices = tuple(accumulator.prices)
        analysis = FinancialAnalysis(
            symbol=symbol,
            company_name=plan.company_name,
            data=accumulator.data,
            historical_prices=prices,
            metrics=calculate_metrics(accumulator.data),
            trend=determine_trend(prices),
            data_sources=outcome.contributors,
        )

        sources = ", ".join(analysis.data_sources) or "none"
        await recorder.record(
            f"Completed financial analysis for {symbol}",
            f"Sources: {sources}, Trend: {analysis.trend}",
            duration=timedelta(seconds=time.monotonic() - started),
        )
        return analysis
