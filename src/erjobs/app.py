"""
Application wiring.

Builds the provider lists, the text completion client, the job store and
the orchestrator from Settings. Providers are selected once at startup.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from erjobs.config import Settings
from erjobs.jobs.service import JobService
from erjobs.jobs.sqlite_store import SQLiteJobStore
from erjobs.jobs.store import JobStore
from erjobs.llm.base import TextCompletion
from erjobs.llm.openai_client import OpenAICompletion
from erjobs.logging import get_logger
from erjobs.orchestrator import ResearchOrchestrator
from erjobs.processor import JobProcessor
from erjobs.providers.base import FinancialDataProvider, NewsProvider
from erjobs.providers.fmp import FMPProvider
from erjobs.providers.newsapi import NewsAPIProvider
from erjobs.providers.yahoo import YahooFinanceProvider

logger = get_logger(__name__)


def build_financial_providers(settings: Settings) -> list[FinancialDataProvider]:
    providers: list[FinancialDataProvider] = []
    timeout = settings.PROVIDER_TIMEOUT_SECONDS or 30.0
    if settings.ENABLE_YAHOO:
        providers.append(YahooFinanceProvider())
    if settings.FMP_API_KEY:
        providers.append(FMPProvider(settings.FMP_API_KEY, timeout=timeout))
    return providers


def build_news_providers(settings: Settings) -> list[NewsProvider]:
    providers: list[NewsProvider] = []
    if settings.NEWSAPI_API_KEY:
        timeout = settings.PROVIDER_TIMEOUT_SECONDS or 30.0
        providers.append(NewsAPIProvider(settings.NEWSAPI_API_KEY, timeout=timeout))
    return providers


def build_llm(settings: Settings) -> TextCompletion | None:
    """Completion client, or None when no endpoint is configured."""
    if not settings.llm_configured:
        return None
    return OpenAICompletion.from_settings(settings)


@dataclass
class Runtime:
    """Everything a CLI command needs, plus what must be closed afterwards."""

    settings: Settings
    store: JobStore
    service: JobService
    orchestrator: ResearchOrchestrator
    _closeables: list[Any] = field(default_factory=list)

    def processor(self) -> JobProcessor:
        return JobProcessor(
            self.service,
            self.orchestrator,
            poll_interval=self.settings.POLL_INTERVAL_SECONDS,
        )

    async def aclose(self) -> None:
        for resource in reversed(self._closeables):
            close = getattr(resource, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception:
                logger.exception("Error closing resource", resource=type(resource).__name__)


@asynccontextmanager
async def open_runtime(settings: Settings, store: JobStore | None = None) -> AsyncIterator[Runtime]:
    """Build the runtime; the SQLite store at JOB_DB_PATH is used unless ``store`` is given."""
    closeables: list[Any] = []
    if store is None:
        settings.ensure_directories()
        sqlite_store = SQLiteJobStore(settings.JOB_DB_PATH)
        await sqlite_store.init()
        closeables.append(sqlite_store)
        store = sqlite_store

    financial = build_financial_providers(settings)
    news = build_news_providers(settings)
    llm = build_llm(settings)
    closeables.extend([*financial, *news])
    if llm is not None:
        closeables.append(llm)

    logger.info(
        "Runtime ready",
        financial_providers=[p.name for p in financial],
        news_providers=[p.name for p in news],
        llm=settings.LLM_MODEL if llm else None,
    )

    runtime = Runtime(
        settings=settings,
        store=store,
        service=JobService(store),
        orchestrator=ResearchOrchestrator.from_settings(settings, financial, news, llm),
        _closeables=closeables,
    )
    try:
        yield runtime
    finally:
        await runtime.aclose()
