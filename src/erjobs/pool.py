"""
Concurrency-bounded provider pool.

Runs a set of interchangeable providers side by side, merges each
provider's partial result into one accumulator and narrates every attempt
as a Step. One provider failing never aborts its siblings.

This module implements:
- Accumulator: base class whose ``merge`` is the only mutation entry point,
  guarded by one lock per accumulator instance
- FinancialAccumulator / NewsAccumulator: the two concrete accumulators
- ProviderPoolRunner: bounded fan-out with cancellation
- classify_provider_error(): maps exceptions to ProviderErrorCategory
"""

from __future__ import annotations

import asyncio
import inspect
import time
from abc import ABC, abstractmethod
from contextlib import aclosing
from dataclasses import dataclass, field, fields
from datetime import timedelta
from typing import AsyncIterator, Awaitable, Callable, Generic, Sequence, TypeVar, Union

from erjobs.cancellation import CancelToken
from erjobs.exceptions import ProviderDataError, ProviderError
from erjobs.logging import get_logger, log_context
from erjobs.steps import StepRecorder
from erjobs.types import (
    FinancialData,
    HistoricalPrice,
    NewsArticle,
    ProviderErrorCategory,
)

logger = get_logger(__name__)

DEFAULT_CONCURRENCY = 3
DEFAULT_MAX_PRICES = 1000
DEFAULT_MAX_ARTICLES = 100

T = TypeVar("T")
P = TypeVar("P")
A = TypeVar("A", bound="Accumulator")

# Fields of FinancialData that are bookkeeping, not data.
_NON_DATA_FIELDS = frozenset({"symbol", "retrieved_at", "data_sources"})


class Accumulator(ABC, Generic[T]):
    """Shared result of one pool run.

    Providers never touch the accumulator directly; the runner calls
    ``merge`` once per partial result a provider produces. After
    ``freeze`` the accumulator is read-only.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._contributors: list[str] = []
        self._frozen = False

    async def merge(self, provider: str, partial: T) -> bool:
        """Merge one provider's partial result.

        A provider that returned a non-empty partial is listed in
        ``contributors`` even when everything it sent was already present
        or the ceiling had been reached. A malformed partial raises before
        anything is mutated.

        Returns:
            True if the partial added anything new.
        """
        async with self._lock:
            if self._frozen:
                raise RuntimeError("Accumulator is frozen")
            added = self._merge_locked(provider, partial)
            if self._has_content(partial) and provider not in self._contributors:
                self._contributors.append(provider)
            return added

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def contributors(self) -> tuple[str, ...]:
        return tuple(self._contributors)

    @property
    @abstractmethod
    def is_empty(self) -> bool:
        ...

    @abstractmethod
    def _merge_locked(self, provider: str, partial: T) -> bool:
        """Apply the merge policy. Called with the lock held."""
        ...

    @abstractmethod
    def _has_content(self, partial: T) -> bool:
        """Whether the provider returned anything at all."""
        ...


def _date_key(price: HistoricalPrice):
    return price.date.date() if hasattr(price.date, "date") else price.date


def merge_financial_data(target: FinancialData, source: FinancialData) -> bool:
    """First-writer-wins merge of ``source`` into ``target``.

    A field already set on ``target`` is never overwritten. ``data_sources``
    is unioned.

    Returns:
        True if ``source`` carried any data field.
    """
    carried = False
    for f in fields(FinancialData):
        if f.name in _NON_DATA_FIELDS:
            continue
        incoming = getattr(source, f.name)
        if incoming is None:
            continue
        carried = True
        if getattr(target, f.name) is None:
            setattr(target, f.name, incoming)

    if not target.symbol and source.symbol:
        target.symbol = source.symbol

    for ds in source.data_sources:
        if ds not in target.data_sources:
            target.data_sources.append(ds)

    return carried


@dataclass
class FinancialPartial:
    """What one financial provider returned."""

    quote: FinancialData | None = None
    fundamentals: FinancialData | None = None
    prices: list[HistoricalPrice] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.quote is None and self.fundamentals is None and not self.prices


class FinancialAccumulator(Accumulator[FinancialPartial]):
    """Merged quote/fundamental data plus a bounded price history.

    Price bars are unioned by date (first writer wins per date) and capped
    at ``max_prices``.
    """

    def __init__(
        self,
        symbol: str,
        company_name: str,
        max_prices: int = DEFAULT_MAX_PRICES,
    ) -> None:
        super().__init__()
        self.data = FinancialData(symbol=symbol, company_name=company_name)
        self.prices: list[HistoricalPrice] = []
        self.max_prices = max_prices
        self._price_dates: set = set()
        self._has_data = False

    @property
    def is_empty(self) -> bool:
        return not self._has_data and not self.prices

    def _merge_locked(self, provider: str, partial: FinancialPartial) -> bool:
        payloads = [p for p in (partial.quote, partial.fundamentals) if p is not None]
        for payload in payloads:
            if not isinstance(payload, FinancialData):
                raise TypeError(f"Expected FinancialData, got {type(payload).__name__}")
        dated = [(_date_key(price), price) for price in partial.prices]

        contributed = False
        for payload in payloads:
            if merge_financial_data(self.data, payload):
                contributed = True
                self._has_data = True

        for key, price in dated:
            if len(self.prices) >= self.max_prices:
                break
            if key in self._price_dates:
                continue
            self._price_dates.add(key)
            self.prices.append(price)
            contributed = True

        return contributed

    def _has_content(self, partial: FinancialPartial) -> bool:
        return not partial.is_empty


class NewsAccumulator(Accumulator[Sequence[NewsArticle]]):
    """Articles from all news providers, deduplicated by URL and capped."""

    def __init__(self, max_articles: int = DEFAULT_MAX_ARTICLES) -> None:
        super().__init__()
        self.articles: list[NewsArticle] = []
        self.max_articles = max_articles
        self.article_counts: dict[str, int] = {}
        self._urls: set[str] = set()

    @property
    def is_empty(self) -> bool:
        return not self.articles

    def _merge_locked(self, provider: str, partial: Sequence[NewsArticle]) -> bool:
        keyed = [(article.url, article) for article in partial]

        added = 0
        for url, article in keyed:
            if len(self.articles) >= self.max_articles:
                break
            if url in self._urls:
                continue
            self._urls.add(url)
            self.articles.append(article)
            added += 1
        if keyed:
            self.article_counts[provider] = self.article_counts.get(provider, 0) + added
        return added > 0

    def _has_content(self, partial: Sequence[NewsArticle]) -> bool:
        return len(partial) > 0


@dataclass(frozen=True)
class ProviderFailure:
    """One provider attempt that failed."""

    provider: str
    category: ProviderErrorCategory
    message: str


@dataclass
class PoolOutcome(Generic[A]):
    """Result of one pool run."""

    accumulator: A
    contributors: tuple[str, ...] = ()
    failures: list[ProviderFailure] = field(default_factory=list)
    cancelled: bool = False


def classify_provider_error(exc: BaseException) -> ProviderErrorCategory:
    """Map an exception raised by a provider to a failure category."""
    if isinstance(exc, ProviderError):
        return exc.category
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ProviderErrorCategory.TIMEOUT
    if isinstance(exc, PermissionError):
        return ProviderErrorCategory.AUTHENTICATION
    if isinstance(exc, (ValueError, KeyError)):
        return ProviderErrorCategory.MALFORMED_DATA
    return ProviderErrorCategory.UNKNOWN


def provider_name(provider: object) -> str:
    return getattr(provider, "name", None) or type(provider).__name__


Fetch = Callable[[P, CancelToken], Union[Awaitable[T], AsyncIterator[T]]]


async def _single(awaitable: Awaitable[T]) -> AsyncIterator[T]:
    yield await awaitable


class ProviderPoolRunner:
    """Runs providers concurrently under a concurrency cap.

    Each provider call runs outside the accumulator lock; only the merge
    takes it. No retries happen here: a failed provider is recorded as a
    failed step with its category and the rest carry on.

    ``fetch`` is either a coroutine function returning one partial result
    or an async generator yielding several. Every partial is merged as soon
    as it arrives, so a provider that fails half way keeps what it already
    delivered.
    """

    def __init__(
        self,
        recorder: StepRecorder,
        concurrency: int = DEFAULT_CONCURRENCY,
        provider_timeout: float | None = None,
        subject: str = "data",
    ) -> None:
        """Initialize the runner.

        Args:
            recorder: Step recorder of the owning stage.
            concurrency: Maximum providers in flight.
            provider_timeout: Seconds before a provider counts as timed out.
            subject: Noun used in step text ("data", "news").
        """
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.recorder = recorder
        self.concurrency = concurrency
        self.provider_timeout = provider_timeout
        self.subject = subject

    async def run(
        self,
        providers: Sequence[P],
        accumulator: A,
        fetch: Fetch,
        cancel: CancelToken,
        describe: Callable[[list[T]], str] | None = None,
    ) -> PoolOutcome[A]:
        """Fan out over ``providers`` and merge into ``accumulator``.

        Args:
            providers: Provider objects (order does not matter).
            accumulator: Target accumulator; frozen on return.
            fetch: Produces the partial result(s) of one provider.
            cancel: Cancellation signal for the whole run.
            describe: Optional formatter for the success step details; gets
                every partial the provider produced.

        Returns:
            PoolOutcome with contributors, failures and cancel flag.
        """
        outcome: PoolOutcome[A] = PoolOutcome(accumulator=accumulator)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_one(provider: P) -> None:
            name = provider_name(provider)
            async with semaphore:
                if cancel.cancelled:
                    return
                with log_context(provider=name):
                    await self._attempt(provider, name, accumulator, fetch, cancel, describe, outcome)

        tasks = [asyncio.create_task(run_one(p)) for p in providers]
        if not tasks:
            accumulator.freeze()
            return outcome

        all_done = asyncio.gather(*tasks)
        cancel_waiter = asyncio.create_task(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {all_done, cancel_waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if all_done not in done:
                outcome.cancelled = True
                logger.warning(
                    "Cancellation during provider fan-out; abandoning in-flight providers",
                    in_flight=sum(1 for t in tasks if not t.done()),
                )
            else:
                all_done.result()
        finally:
            pending = [t for t in (*tasks, cancel_waiter) if not t.done()]
            for task in pending:
                task.cancel()
            try:
                await asyncio.gather(*pending, return_exceptions=True)
            finally:
                accumulator.freeze()

        outcome.cancelled = outcome.cancelled or cancel.cancelled
        outcome.contributors = accumulator.contributors
        return outcome

    async def _attempt(
        self,
        provider: P,
        name: str,
        accumulator: A,
        fetch: Fetch,
        cancel: CancelToken,
        describe: Callable[[list[T]], str] | None,
        outcome: PoolOutcome[A],
    ) -> None:
        started = time.monotonic()
        merged: list[T] = []
        try:
            consume = self._consume(provider, name, accumulator, fetch, cancel, merged)
            if self.provider_timeout is not None:
                added = await asyncio.wait_for(consume, self.provider_timeout)
            else:
                added = await consume
            if cancel.cancelled:
                return
            details = self._describe(name, describe, merged)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Failures after the signal are part of the cancellation.
            if cancel.cancelled:
                return
            category = classify_provider_error(e)
            if isinstance(e, ProviderError):
                message = e.message
                logger.warning("Provider error", category=category.value, error=str(e))
            elif category is ProviderErrorCategory.TIMEOUT:
                message = f"No response within {self.provider_timeout}s"
                logger.warning("Provider timed out", timeout=self.provider_timeout)
            else:
                message = "Unexpected error occurred"
                logger.exception("Unexpected provider error")
            outcome.failures.append(ProviderFailure(name, category, message))
            await self.recorder.record(
                f"Failed to retrieve {self.subject} from {name}",
                success=False,
                error=f"{category.value}: {message}",
                duration=timedelta(seconds=time.monotonic() - started),
            )
            return

        if not added:
            details = f"{details}; nothing new" if details else "No new data"
        await self.recorder.record(
            f"Retrieved {self.subject} from {name}",
            details=details,
            duration=timedelta(seconds=time.monotonic() - started),
        )

    @staticmethod
    async def _consume(
        provider: P,
        name: str,
        accumulator: A,
        fetch: Fetch,
        cancel: CancelToken,
        merged: list[T],
    ) -> bool:
        """Merge each partial from ``fetch`` as it arrives.

        Returns:
            True if any partial added something new.
        """
        result = fetch(provider, cancel)
        partials = result if inspect.isasyncgen(result) else _single(result)
        added = False
        async with aclosing(partials):
            async for partial in partials:
                # Results that land after the signal are discarded, not merged.
                if cancel.cancelled:
                    break
                try:
                    added = await accumulator.merge(name, partial) or added
                except Exception as e:
                    raise ProviderDataError(
                        name,
                        f"Malformed result: {type(e).__name__}",
                        context={"error": str(e)},
                    ) from e
                merged.append(partial)
        return added

    @staticmethod
    def _describe(
        name: str,
        describe: Callable[[list[T]], str] | None,
        merged: list[T],
    ) -> str | None:
        if describe is None:
            return None
        try:
            return describe(merged)
        except Exception as e:
            raise ProviderDataError(
                name,
                f"Malformed result: {type(e).__name__}",
                context={"error": str(e)},
            ) from e
