"""
Pytest configuration and fixtures for research job engine tests.
"""

from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncGenerator, Generator
from unittest.mock import patch

import pytest

from erjobs.cancellation import CancelToken
from erjobs.config import Settings, clear_settings_cache
from erjobs.exceptions import LLMError, ProviderError
from erjobs.jobs.service import JobService
from erjobs.jobs.sqlite_store import SQLiteJobStore
from erjobs.jobs.store import InMemoryJobStore
from erjobs.types import FinancialData, HistoricalPrice, NewsArticle


class FakeFinancialProvider:
    """Scriptable FinancialDataProvider."""

    def __init__(
        self,
        name: str = "FakeFinance",
        quote: FinancialData | None = None,
        fundamentals: FinancialData | None = None,
        prices: list[HistoricalPrice] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self._name = name
        self.quote = quote
        self.fundamentals = fundamentals
        self.prices = prices or []
        self.error = error
        self.delay = delay
        self.calls = 0

    @property
    def name(self) -> str:
        return self._name

    async def _maybe_fail(self) -> None:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

    async def get_quote(self, symbol: str, cancel: CancelToken) -> FinancialData | None:
        await self._maybe_fail()
        return self.quote

    async def get_fundamentals(self, symbol: str, cancel: CancelToken) -> FinancialData | None:
        return self.fundamentals

    async def get_historical_prices(
        self, symbol: str, days: int, cancel: CancelToken
    ) -> list[HistoricalPrice]:
        return list(self.prices)


class FakeNewsProvider:
    """Scriptable NewsProvider."""

    def __init__(
        self,
        name: str = "FakeNews",
        articles: list[NewsArticle] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self._name = name
        self.articles = articles or []
        self.error = error
        self.delay = delay
        self.calls = 0

    @property
    def name(self) -> str:
        return self._name

    async def search_news(
        self,
        company_name: str,
        symbol: str | None,
        max_articles: int,
        days_back: int,
        cancel: CancelToken,
    ) -> list[NewsArticle]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.articles)


class FakeLLM:
    """TextCompletion returning canned replies in order."""

    def __init__(self, *replies: str, error: Exception | None = None) -> None:
        self.replies = list(replies)
        self.error = error
        self.prompts: list[tuple[str, str]] = []

    async def complete(
        self,
        system_text: str,
        user_text: str,
        cancel: CancelToken | None = None,
    ) -> str:
        self.prompts.append((system_text, user_text))
        if self.error is not None:
            raise self.error
        if not self.replies:
            raise LLMError("No canned reply left")
        return self.replies.pop(0)


def make_prices(closes: list[float], end: datetime | None = None) -> list[HistoricalPrice]:
    """Daily bars ending at ``end``; the last close is the most recent."""
    end = end or datetime(2024, 6, 28, tzinfo=timezone.utc)
    count = len(closes)
    return [
        HistoricalPrice(date=end - timedelta(days=count - 1 - i), close=close)
        for i, close in enumerate(closes)
    ]


def make_article(
    title: str = "Company news",
    url: str = "https://example.com/a",
    sentiment: float | None = 0.0,
    published_at: datetime | None = None,
    description: str | None = None,
) -> NewsArticle:
    return NewsArticle(
        title=title,
        url=url,
        source="Example",
        published_at=published_at or datetime.now(timezone.utc),
        description=description,
        sentiment_score=sentiment,
    )


def failing_financial(name: str) -> FakeFinancialProvider:
    return FakeFinancialProvider(name=name, error=ProviderError(name, "Service unavailable"))


def failing_news(name: str) -> FakeNewsProvider:
    return FakeNewsProvider(name=name, error=ProviderError(name, "Service unavailable"))


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing.

    No LLM endpoint is configured, so stages take their fallback paths.
    """
    env_vars = {
        "LLM_API_KEY": "",  # Override any .env value
        "LLM_BASE_URL": "",
        "FMP_API_KEY": "test-fmp-key-1234567890",
        "NEWSAPI_API_KEY": "test-newsapi-key",
        "ENABLE_YAHOO": "false",
        "POLL_INTERVAL_SECONDS": "0.05",
        "PROVIDER_CONCURRENCY": "2",
        "JOB_DB_PATH": str(temp_dir / "db" / "jobs.db"),
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        # Clear any cached settings
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Generator[Settings, None, None]:
    """Provide a Settings instance with mock configuration."""
    clear_settings_cache()
    from erjobs.config import get_settings

    settings = get_settings()
    settings.ensure_directories()
    yield settings
    clear_settings_cache()


@pytest.fixture
def memory_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def job_service(memory_store: InMemoryJobStore) -> JobService:
    return JobService(memory_store)


@pytest.fixture
async def sqlite_store(temp_dir: Path) -> AsyncGenerator[SQLiteJobStore, None]:
    """Create an initialized SQLite job store for testing."""
    store = SQLiteJobStore(temp_dir / "store" / "jobs.db")
    await store.init()
    yield store
    await store.close()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
