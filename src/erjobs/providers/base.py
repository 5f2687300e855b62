"""
Capability interfaces for data providers.

Financial providers expose quote, fundamentals and price-history calls;
news providers expose a single search call. The gather stages only see
these protocols, so any object with the right shape can be plugged in.

Concrete implementations:
- yahoo.py: YahooFinanceProvider (yfinance)
- fmp.py: FMPProvider (Financial Modeling Prep over httpx)
- newsapi.py: NewsAPIProvider (NewsAPI.org over httpx)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from erjobs.types import FinancialData, HistoricalPrice, NewsArticle

if TYPE_CHECKING:
    from erjobs.cancellation import CancelToken


@runtime_checkable
class FinancialDataProvider(Protocol):
    """Source of quotes, fundamentals and price history.

    Calls return ``None`` (or an empty list) when the source has nothing
    for the symbol and raise a ProviderError subclass when the call fails.
    """

    @property
    def name(self) -> str:
        """Display name used in steps and provenance."""
        ...

    async def get_quote(self, symbol: str, cancel: CancelToken) -> FinancialData | None:
        ...

    async def get_fundamentals(self, symbol: str, cancel: CancelToken) -> FinancialData | None:
        ...

    async def get_historical_prices(
        self,
        symbol: str,
        days: int,
        cancel: CancelToken,
    ) -> list[HistoricalPrice]:
        ...


@runtime_checkable
class NewsProvider(Protocol):
    """Source of news articles about a company."""

    @property
    def name(self) -> str:
        ...

    async def search_news(
        self,
        company_name: str,
        symbol: str | None,
        max_articles: int,
        days_back: int,
        cancel: CancelToken,
    ) -> list[NewsArticle]:
        ...
