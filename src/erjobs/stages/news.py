"""
Gather-News stage.

Searches every configured news provider through the pool runner, then
scores sentiment with recency decay, extracts keyword themes and
optionally asks the language model for a short narrative.
"""

from __future__ import annotations

import time
from dataclasses import replace
from datetime import timedelta
from typing import Sequence

from erjobs.analysis import (
    extract_key_themes,
    overall_sentiment,
    recent_headlines,
    sentiment_label,
)
from erjobs.cancellation import CancelToken
from erjobs.exceptions import JobCancelledError
from erjobs.llm.base import TextCompletion
from erjobs.pool import (
    DEFAULT_CONCURRENCY,
    DEFAULT_MAX_ARTICLES,
    NewsAccumulator,
    ProviderPoolRunner,
)
from erjobs.providers.base import NewsProvider
from erjobs.security.sanitizer import sanitize_input
from erjobs.stages.base import Stage
from erjobs.steps import StepRecorder
from erjobs.types import NewsAnalysis, NewsArticle, ResearchPlan
from erjobs.utils.json_extract import extract_json_object, get_str_list, get_value

ARTICLES_PER_PROVIDER = 15

NEWS_SYSTEM_PROMPT = """You are a financial news analyst. Analyze the following headlines and provide:
1. A brief summary of the overall news sentiment
2. Key events or developments
3. Potential impact on stock price

Respond in JSON format:
{
    "summary": "brief summary",
    "keyEvents": ["event1", "event2"],
    "potentialImpact": "brief impact assessment"
}"""

NEWS_USER_PROMPT = """Analyze these recent headlines for {company_name} ({symbol}):

{headlines}"""


def days_back_for(plan: ResearchPlan) -> int:
    return 30 if plan.timeframe_months > 6 else 14


class NewsGatherStage(Stage):
    """Stage 2b: news coverage and sentiment."""

    def __init__(
        self,
        providers: Sequence[NewsProvider],
        llm: TextCompletion | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        provider_timeout: float | None = None,
        max_articles: int = DEFAULT_MAX_ARTICLES,
    ) -> None:
        super().__init__()
        self.providers = list(providers)
        self.llm = llm
        self.concurrency = concurrency
        self.provider_timeout = provider_timeout
        self.max_articles = max_articles

    @property
    def name(self) -> str:
        return "NewsAnalyst"

    async def run(
        self,
        plan: ResearchPlan,
        recorder: StepRecorder,
        cancel: CancelToken,
    ) -> NewsAnalysis:
        """Gather and analyze news about the planned company.

        Raises:
            JobCancelledError: If the cancel token fires.
        """
        started = time.monotonic()
        days_back = days_back_for(plan)

        await recorder.record(
            f"Starting news analysis for {plan.company_name}",
            f"Searching {len(self.providers)} news sources",
        )

        async def fetch(provider: NewsProvider, token: CancelToken) -> list[NewsArticle]:
            return await provider.search_news(
                plan.company_name,
                plan.symbol,
                ARTICLES_PER_PROVIDER,
                days_back,
                token,
            )

        def describe(partials: list[list[NewsArticle]]) -> str:
            articles = [a for part in partials for a in part]
            scored = [a.sentiment_score for a in articles if a.sentiment_score is not None]
            average = sum(scored) / len(scored) if scored else 0.0
            return f"{len(articles)} articles, average sentiment: {average:.2f}"

        accumulator = NewsAccumulator(max_articles=self.max_articles)
        runner = ProviderPoolRunner(
            recorder,
            concurrency=self.concurrency,
            provider_timeout=self.provider_timeout,
            subject="news",
        )
        outcome = await runner.run(self.providers, accumulator, fetch, cancel, describe=describe)
        cancel.raise_if_cancelled()

        articles = tuple(accumulator.articles)
        analysis = NewsAnalysis(
            symbol=plan.symbol,
            company_name=plan.company_name,
            articles=articles,
            sources=outcome.contributors,
            article_counts=dict(accumulator.article_counts),
        )

        if articles:
            sentiment = overall_sentiment(articles)
            analysis = replace(
                analysis,
                overall_sentiment=sentiment,
                sentiment_label=sentiment_label(sentiment),
                key_themes=tuple(extract_key_themes(articles)),
                recent_headlines=tuple(recent_headlines(articles)),
            )
            if self.llm is not None:
                analysis = await self._enhance(self.llm, analysis, recorder, cancel)

        themes = ", ".join(analysis.key_themes[:3]) or "none"
        await recorder.record(
            f"Completed news analysis with {len(analysis.articles)} articles",
            f"Sentiment: {analysis.sentiment_label} ({analysis.overall_sentiment:.2f}), "
            f"Key themes: {themes}",
            duration=timedelta(seconds=time.monotonic() - started),
        )
        return analysis

    async def _enhance(
        self,
        llm: TextCompletion,
        analysis: NewsAnalysis,
        recorder: StepRecorder,
        cancel: CancelToken,
    ) -> NewsAnalysis:
        """Add a model-written summary; failures leave ``analysis`` unchanged."""
        ordered = sorted(analysis.articles, key=lambda a: a.published_at, reverse=True)[:10]
        headlines = "\n".join(
            f"- {sanitize_input(a.title, 300)} ({a.published_at:%b %d})" for a in ordered
        )
        try:
            content = await llm.complete(
                NEWS_SYSTEM_PROMPT,
                NEWS_USER_PROMPT.format(
                    company_name=analysis.company_name,
                    symbol=analysis.symbol,
                    headlines=headlines,
                ),
                cancel,
            )
        except JobCancelledError:
            raise
        except Exception as e:
            self.log_warning("Failed to enhance news analysis with LLM", error=str(e))
            return analysis

        data = extract_json_object(content)
        if data is None:
            self.log_warning("News analysis response was not valid JSON")
            return analysis

        summary = get_value(data, "summary")
        impact = get_value(data, "potentialImpact", "potential_impact")
        enhanced = replace(
            analysis,
            summary=str(summary) if summary else None,
            key_events=tuple(get_str_list(data, "keyEvents", "key_events")),
            potential_impact=str(impact) if impact else None,
        )
        await recorder.record("Enhanced news analysis with LLM insights")
        return enhanced
