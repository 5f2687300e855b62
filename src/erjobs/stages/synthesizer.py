"""
Synthesize stage.

Combines the plan, both gathered analyses and the step history into the
final AnalysisResult. The model writes the thesis when available; when it
is absent, fails, or answers with something unparseable, a rule-based
result is built from the same data.
"""

from __future__ import annotations

import time
from dataclasses import replace
from datetime import timedelta
from typing import Sequence

from erjobs.analysis import calculate_confidence, determine_signal, format_large_number
from erjobs.cancellation import CancelToken
from erjobs.exceptions import JobCancelledError
from erjobs.llm.base import TextCompletion
from erjobs.stages.base import Stage
from erjobs.steps import StepRecorder
from erjobs.types import (
    AnalysisResult,
    DataSource,
    FinancialAnalysis,
    Insight,
    NewsAnalysis,
    ResearchPlan,
    Signal,
    Step,
    StepSummary,
    utc_now,
)
from erjobs.utils.json_extract import extract_json_object, get_value

SYNTHESIS_SYSTEM_PROMPT = """You are a senior investment analyst creating a comprehensive investment research report.

Based on the provided financial data and news analysis, generate a clear, actionable investment thesis.

Respond in JSON format with this exact structure:
{
    "thesis": "A 2-3 sentence investment thesis explaining the key reasoning",
    "signal": "BULLISH" | "BEARISH" | "NEUTRAL",
    "confidence": 0.0-1.0,
    "insights": [
        {"category": "financial", "insight": "...", "importance": "high"|"medium"|"low"},
        {"category": "sentiment", "insight": "...", "importance": "high"|"medium"|"low"},
        {"category": "growth", "insight": "...", "importance": "high"|"medium"|"low"},
        {"category": "risk", "insight": "...", "importance": "high"|"medium"|"low"}
    ]
}

Be specific and data-driven. Reference actual numbers when available."""

SYNTHESIS_USER_PROMPT = """Create an investment assessment for {company_name} ({symbol}).

Focus areas: {focus_areas}
Risk factors to weigh: {risk_factors}

{analysis_context}

Provide your analysis in JSON format."""


def build_analysis_context(financial: FinancialAnalysis, news: NewsAnalysis) -> str:
    """Markdown summary of gathered data for the synthesis prompt."""
    data = financial.data
    lines = ["## Financial Data"]
    if data.current_price is not None:
        lines.append(f"- Current Price: ${data.current_price:.2f}")
    if data.price_change_percent is not None:
        lines.append(f"- Price Change: {data.price_change_percent:.2f}%")
    lines.append(f"- Price Trend: {financial.trend}")
    if data.market_cap is not None:
        lines.append(f"- Market Cap: {format_large_number(data.market_cap)}")
    if data.pe_ratio is not None:
        lines.append(f"- P/E Ratio: {data.pe_ratio:.2f}")
    if data.eps is not None:
        lines.append(f"- EPS: ${data.eps:.2f}")
    if data.revenue_growth is not None:
        lines.append(f"- Revenue Growth: {data.revenue_growth * 100:.1f}%")
    if data.net_profit_margin is not None:
        lines.append(f"- Profit Margin: {data.net_profit_margin * 100:.1f}%")
    if data.debt_to_equity is not None:
        lines.append(f"- Debt/Equity: {data.debt_to_equity:.2f}")
    if data.analyst_rating:
        lines.append(f"- Analyst Rating: {data.analyst_rating}")
    if data.target_price is not None:
        lines.append(f"- Target Price: ${data.target_price:.2f}")

    lines.append("")
    lines.append("## News & Sentiment")
    lines.append(f"- Overall Sentiment: {news.sentiment_label} ({news.overall_sentiment:.2f})")
    lines.append(f"- Articles Analyzed: {len(news.articles)}")
    if news.key_themes:
        lines.append(f"- Key Themes: {', '.join(news.key_themes)}")
    if news.summary:
        lines.append(f"- Summary: {news.summary}")
    if news.key_events:
        lines.append(f"- Key Events: {'; '.join(news.key_events)}")
    if news.potential_impact:
        lines.append(f"- Potential Impact: {news.potential_impact}")
    if news.recent_headlines:
        lines.append("")
        lines.append("Recent Headlines:")
        lines.extend(f"- {h}" for h in news.recent_headlines[:5])

    return "\n".join(lines)


def build_sources(financial: FinancialAnalysis, news: NewsAnalysis) -> tuple[DataSource, ...]:
    """Provenance: one entry per contributing provider."""
    sources = [
        DataSource(type="financial", source=name, data_points=tuple(financial.metrics.keys()))
        for name in financial.data_sources
    ]
    sources.extend(
        DataSource(type="news", source=name, article_count=news.article_counts.get(name))
        for name in news.sources
    )
    return tuple(sources)


def summarize_steps(steps: Sequence[Step]) -> tuple[StepSummary, ...]:
    ordered = sorted(steps, key=lambda s: s.step_number)
    return tuple(StepSummary(stage=s.stage, action=s.action, timestamp=s.timestamp) for s in ordered)


def parse_synthesis(content: str, company: str) -> AnalysisResult | None:
    """Result fields from model output, or None if unusable."""
    data = extract_json_object(content)
    if data is None:
        return None

    thesis = get_value(data, "thesis")
    if not isinstance(thesis, str) or not thesis.strip():
        return None

    try:
        confidence = float(get_value(data, "confidence"))
    except (TypeError, ValueError):
        confidence = 0.5
    confidence = max(0.0, min(1.0, confidence))

    insights: list[Insight] = []
    raw_insights = get_value(data, "insights")
    if isinstance(raw_insights, list):
        for item in raw_insights:
            if not isinstance(item, dict):
                continue
            text = item.get("insight") or item.get("content")
            if not text:
                continue
            insights.append(
                Insight(
                    category=str(item.get("category") or "general"),
                    content=str(text),
                    importance=str(item.get("importance") or "medium"),
                )
            )

    signal_raw = get_value(data, "signal")
    return AnalysisResult(
        company=company,
        thesis=thesis.strip(),
        signal=Signal.normalize(signal_raw if isinstance(signal_raw, str) else None),
        confidence=confidence,
        insights=tuple(insights),
    )


def fallback_result(
    company_name: str,
    symbol: str,
    financial: FinancialAnalysis,
    news: NewsAnalysis,
) -> AnalysisResult:
    """Rule-based result from whatever data was gathered."""
    insights: list[Insight] = []
    change = financial.data.price_change_percent
    if change is not None:
        direction = "up" if change > 0 else "down"
        insights.append(
            Insight(
                category="financial",
                content=f"Stock is {direction} {abs(change):.2f}% with a {financial.trend.lower()} trend",
                importance="high",
            )
        )
    insights.append(
        Insight(
            category="sentiment",
            content=(
                f"News sentiment is {news.sentiment_label.lower()} "
                f"based on {len(news.articles)} recent articles"
            ),
            importance="medium",
        )
    )

    return AnalysisResult(
        company=f"{company_name} ({symbol})",
        thesis=(
            f"Based on available data, {company_name} shows {financial.trend.lower()} "
            f"price action with {news.sentiment_label.lower()} market sentiment."
        ),
        signal=determine_signal(financial, news),
        confidence=calculate_confidence(financial, news),
        insights=tuple(insights),
    )


class SynthesizeStage(Stage):
    """Stage 3: investment thesis, signal and confidence."""

    def __init__(self, llm: TextCompletion | None = None) -> None:
        super().__init__()
        self.llm = llm

    @property
    def name(self) -> str:
        return "Synthesizer"

    async def run(
        self,
        plan: ResearchPlan,
        financial: FinancialAnalysis,
        news: NewsAnalysis,
        steps: Sequence[Step],
        recorder: StepRecorder,
        cancel: CancelToken,
    ) -> AnalysisResult:
        """Synthesize the final result.

        Args:
            plan: Research plan.
            financial: Gather-Financial output.
            news: Gather-News output.
            steps: Steps recorded so far (copied into the result summary).
            recorder: Step recorder for this stage.
            cancel: Cancellation signal.

        Returns:
            AnalysisResult (never raises for model problems).
        """
        started = time.monotonic()
        company = f"{plan.company_name} ({plan.symbol})"

        await recorder.record(
            f"Starting synthesis for {plan.company_name}",
            "Combining financial and news analysis",
        )
        cancel.raise_if_cancelled()

        result: AnalysisResult | None = None
        failure: str | None = None

        if self.llm is None:
            failure = "No text completion configured"
        else:
            await recorder.record("Generating investment thesis with LLM")
            try:
                content = await self.llm.complete(
                    SYNTHESIS_SYSTEM_PROMPT,
                    SYNTHESIS_USER_PROMPT.format(
                        company_name=plan.company_name,
                        symbol=plan.symbol,
                        focus_areas=", ".join(plan.focus_areas) or "general",
                        risk_factors=", ".join(plan.risk_factors) or "general",
                        analysis_context=build_analysis_context(financial, news),
                    ),
                    cancel,
                )
            except JobCancelledError:
                raise
            except Exception as e:
                self.log_error("Error in synthesis", error=str(e))
                failure = str(e) or type(e).__name__
            else:
                result = parse_synthesis(content, company)
                if result is None:
                    failure = "Model response was not a valid synthesis"

        if result is None:
            self.log_warning("Using rule-based synthesis", reason=failure)
            await recorder.record(
                "Synthesis failed, generating fallback result",
                success=False,
                error=failure,
            )
            result = fallback_result(plan.company_name, plan.symbol, financial, news)

        result = _with_provenance(result, financial, news, steps)

        await recorder.record(
            f"Completed synthesis: {result.signal.value} with {result.confidence:.0%} confidence",
            result.thesis,
            duration=timedelta(seconds=time.monotonic() - started),
        )
        return result


def _with_provenance(
    result: AnalysisResult,
    financial: FinancialAnalysis,
    news: NewsAnalysis,
    steps: Sequence[Step],
) -> AnalysisResult:
    return replace(
        result,
        sources=build_sources(financial, news),
        steps=summarize_steps(steps),
        generated_at=utc_now(),
    )
