"""
Plan stage.

Asks the language model for a research plan and falls back to a fixed
plan keyed on depth when the model is absent, fails, or replies with
something unparseable. A single attempt; the fallback is the failure path.
"""

from __future__ import annotations

import time
from datetime import timedelta

from erjobs.cancellation import CancelToken
from erjobs.exceptions import JobCancelledError
from erjobs.llm.base import TextCompletion
from erjobs.security.sanitizer import MAX_COMPANY_NAME_LENGTH, MAX_SYMBOL_LENGTH, sanitize_input
from erjobs.stages.base import Stage
from erjobs.steps import StepRecorder
from erjobs.types import AnalysisDepth, ResearchPlan
from erjobs.utils.json_extract import extract_json_object, get_str_list, get_value

MIN_TIMEFRAME_MONTHS = 6
MAX_TIMEFRAME_MONTHS = 60

PLANNER_SYSTEM_PROMPT = """You are a senior investment research analyst. Your task is to create a structured research plan for analyzing a company.

Based on the company and analysis depth, identify the key areas to investigate:
1. Financial Performance (revenue, profitability, growth trends)
2. Market Position (competitive landscape, market share)
3. Valuation Metrics (P/E, P/B, EV/EBITDA)
4. Recent News and Sentiment
5. Risk Factors

Output a JSON object with the following structure:
{
    "focusAreas": ["area1", "area2", ...],
    "financialMetricsToAnalyze": ["metric1", "metric2", ...],
    "newsTopics": ["topic1", "topic2", ...],
    "timeframeMonths": 12,
    "riskFactorsToConsider": ["risk1", "risk2", ...]
}"""

PLANNER_USER_PROMPT = """Create a research plan for: {company_name} (Ticker: {symbol})
Analysis Depth: {depth}

Provide the research plan in JSON format."""


def clamp_timeframe(months: int) -> int:
    return max(MIN_TIMEFRAME_MONTHS, min(MAX_TIMEFRAME_MONTHS, months))


def default_plan(symbol: str, company_name: str, depth: AnalysisDepth) -> ResearchPlan:
    """Deterministic plan used whenever the model path fails."""
    return ResearchPlan(
        symbol=symbol,
        company_name=company_name,
        depth=depth,
        focus_areas=(
            "Financial Performance",
            "Valuation Metrics",
            "Market Sentiment",
            "Growth Prospects",
            "Risk Assessment",
        ),
        financial_metrics=(
            "Revenue Growth",
            "Profit Margins",
            "P/E Ratio",
            "Debt to Equity",
            "Free Cash Flow",
        ),
        news_topics=(
            "Earnings",
            "Product Launches",
            "Management Changes",
            "Market Competition",
            "Regulatory Issues",
        ),
        timeframe_months=depth.default_timeframe_months,
        risk_factors=(
            "Market Risk",
            "Competition",
            "Regulatory Risk",
            "Operational Risk",
        ),
    )


def parse_plan(
    content: str,
    symbol: str,
    company_name: str,
    depth: AnalysisDepth,
) -> ResearchPlan | None:
    """Build a plan from model output, or None if it is not usable."""
    data = extract_json_object(content)
    if data is None:
        return None

    focus_areas = get_str_list(data, "focusAreas", "focus_areas")
    if not focus_areas:
        return None

    raw_timeframe = get_value(data, "timeframeMonths", "timeframe_months")
    try:
        timeframe = int(raw_timeframe)
    except (TypeError, ValueError):
        timeframe = depth.default_timeframe_months

    return ResearchPlan(
        symbol=symbol,
        company_name=company_name,
        depth=depth,
        focus_areas=tuple(focus_areas),
        financial_metrics=tuple(get_str_list(data, "financialMetricsToAnalyze", "financial_metrics")),
        news_topics=tuple(get_str_list(data, "newsTopics", "news_topics")),
        timeframe_months=clamp_timeframe(timeframe),
        risk_factors=tuple(get_str_list(data, "riskFactorsToConsider", "risk_factors")),
    )


class PlanStage(Stage):
    """Stage 1: turn (symbol, name, depth) into a ResearchPlan."""

    def __init__(self, llm: TextCompletion | None = None) -> None:
        super().__init__()
        self.llm = llm

    @property
    def name(self) -> str:
        return "Planner"

    async def run(
        self,
        symbol: str,
        company_name: str,
        depth: AnalysisDepth,
        recorder: StepRecorder,
        cancel: CancelToken,
    ) -> ResearchPlan:
        """Create the research plan.

        Args:
            symbol: Ticker symbol.
            company_name: Company display name.
            depth: Requested analysis depth.
            recorder: Step recorder for this stage.
            cancel: Cancellation signal.

        Returns:
            ResearchPlan (never raises for model problems).
        """
        symbol = sanitize_input(symbol, MAX_SYMBOL_LENGTH)
        company_name = sanitize_input(company_name, MAX_COMPANY_NAME_LENGTH)
        started = time.monotonic()

        await recorder.record(
            f"Starting research planning for {company_name} ({symbol})",
            f"Analysis depth: {depth.value}",
        )
        cancel.raise_if_cancelled()

        if self.llm is None:
            self.log_warning("No text completion configured, using default plan")
            plan = default_plan(symbol, company_name, depth)
            await recorder.record(
                "Using default research plan",
                f"Timeframe: {plan.timeframe_months} months",
            )
            return plan

        try:
            content = await self.llm.complete(
                PLANNER_SYSTEM_PROMPT,
                PLANNER_USER_PROMPT.format(
                    company_name=company_name, symbol=symbol, depth=depth.value
                ),
                cancel,
            )
        except JobCancelledError:
            raise
        except Exception as e:
            self.log_error("Error creating research plan", error=str(e))
            await recorder.record(
                "Failed to create research plan",
                success=False,
                error=str(e) or type(e).__name__,
            )
            return default_plan(symbol, company_name, depth)

        plan = parse_plan(content, symbol, company_name, depth)
        if plan is None:
            self.log_warning("Failed to parse research plan JSON, using default")
            await recorder.record(
                "Failed to parse research plan",
                success=False,
                error="Model response was not a valid plan",
            )
            return default_plan(symbol, company_name, depth)

        await recorder.record(
            f"Created research plan with {len(plan.focus_areas)} focus areas",
            f"Focus areas: {', '.join(plan.focus_areas)}",
            duration=timedelta(seconds=time.monotonic() - started),
        )
        return plan
