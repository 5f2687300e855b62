"""
Core types for the research job engine.

This module defines the fundamental data structures used throughout the system:
- Enums for job status, analysis depth, pipeline phases, signals and
  provider error categories
- Frozen dataclasses for immutable records (Step, ResearchPlan, analyses)
- Mutable dataclasses for state owned by the job store (Job) and for
  provider payloads (FinancialData)
- Helper functions for ID generation and timestamps
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from uuid6 import uuid7


def generate_id(prefix: str = "") -> str:
    """Generate a time-ordered unique ID using UUID7.

    Args:
        prefix: Optional prefix for the ID (e.g., "job").

    Returns:
        A unique ID string, optionally prefixed.
    """
    uid = str(uuid7())
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Lifecycle status of a research job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Allowed forward moves; terminal states have none.
JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class AnalysisDepth(str, Enum):
    """Requested depth of analysis."""

    QUICK = "quick"
    STANDARD = "standard"
    DEEP = "deep"

    @property
    def default_timeframe_months(self) -> int:
        return {
            AnalysisDepth.QUICK: 6,
            AnalysisDepth.STANDARD: 12,
            AnalysisDepth.DEEP: 24,
        }[self]


class PipelinePhase(str, Enum):
    """Phases of a single pipeline execution."""

    PLANNING = "planning"
    GATHERING = "gathering"
    SYNTHESIZING = "synthesizing"
    DONE = "done"
    FAILED = "failed"


PHASE_ORDER: tuple[PipelinePhase, ...] = (
    PipelinePhase.PLANNING,
    PipelinePhase.GATHERING,
    PipelinePhase.SYNTHESIZING,
    PipelinePhase.DONE,
)


class Signal(str, Enum):
    """Directional investment signal."""

    BULLISH = "Bullish"
    BEARISH = "Bearish"
    NEUTRAL = "Neutral"

    @classmethod
    def normalize(cls, raw: str | None) -> Signal:
        """Map free-form model output onto a signal."""
        if not raw:
            return cls.NEUTRAL
        value = raw.strip().upper()
        if value in ("BULLISH", "BUY", "POSITIVE"):
            return cls.BULLISH
        if value in ("BEARISH", "SELL", "NEGATIVE"):
            return cls.BEARISH
        return cls.NEUTRAL


class ProviderErrorCategory(str, Enum):
    """Failure categories a caller may act on (retry, re-auth, ...)."""

    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    MALFORMED_DATA = "malformed_data"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Step:
    """Immutable progress record emitted by a stage or a provider attempt.

    Step numbers are shared by every stage of one execution and are
    strictly increasing in the order steps were recorded.
    """

    step_number: int
    stage: str
    action: str
    timestamp: datetime
    details: str | None = None
    duration: timedelta | None = None
    success: bool = True
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_number": self.step_number,
            "stage": self.stage,
            "action": self.action,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "duration_seconds": self.duration.total_seconds() if self.duration else None,
            "success": self.success,
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Step:
        duration = data.get("duration_seconds")
        return cls(
            step_number=int(data["step_number"]),
            stage=data["stage"],
            action=data["action"],
            details=data.get("details"),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            duration=timedelta(seconds=duration) if duration is not None else None,
            success=bool(data.get("success", True)),
            error_message=data.get("error_message"),
        )


@dataclass
class Job:
    """One research request and its lifecycle state.

    Owned by the job store. The engine works on a transient copy for the
    duration of one execution.
    """

    job_id: str
    symbol: str
    company_name: str
    depth: AnalysisDepth = AnalysisDepth.STANDARD
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    result_json: str | None = None
    steps: list[Step] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        symbol: str,
        company_name: str,
        depth: AnalysisDepth = AnalysisDepth.STANDARD,
    ) -> Job:
        """Factory method to create a pending job with a fresh ID."""
        return cls(
            job_id=generate_id("job"),
            symbol=symbol,
            company_name=company_name,
            depth=depth,
        )

    def can_transition_to(self, status: JobStatus) -> bool:
        return status in JOB_TRANSITIONS[self.status]

    def transition_to(self, status: JobStatus) -> None:
        """Move to ``status``; only forward moves are allowed.

        Raises:
            InvalidTransitionError: If the move is not allowed.
        """
        if not self.can_transition_to(status):
            from erjobs.exceptions import InvalidTransitionError

            raise InvalidTransitionError(
                f"Cannot move job from {self.status.value} to {status.value}",
                context={
                    "job_id": self.job_id,
                    "current": self.status.value,
                    "requested": status.value,
                },
            )
        self.status = status


@dataclass(frozen=True)
class ResearchPlan:
    """Read-only plan produced by the Plan stage."""

    symbol: str
    company_name: str
    depth: AnalysisDepth
    focus_areas: tuple[str, ...] = ()
    financial_metrics: tuple[str, ...] = ()
    news_topics: tuple[str, ...] = ()
    timeframe_months: int = 12
    risk_factors: tuple[str, ...] = ()


@dataclass
class FinancialData:
    """Partial or merged quote/fundamental data from financial providers.

    Every field except ``symbol`` is optional so that redundant providers
    can each fill in what they know.
    """

    symbol: str = ""
    company_name: str | None = None

    # Price data
    current_price: float | None = None
    previous_close: float | None = None
    open: float | None = None
    day_high: float | None = None
    day_low: float | None = None
    week52_high: float | None = None
    week52_low: float | None = None
    price_change: float | None = None
    price_change_percent: float | None = None

    # Volume
    volume: int | None = None
    average_volume: int | None = None

    # Fundamentals
    market_cap: float | None = None
    pe_ratio: float | None = None
    forward_pe: float | None = None
    eps: float | None = None
    dividend_yield: float | None = None
    beta: float | None = None

    # Financials
    revenue: float | None = None
    revenue_growth: float | None = None
    gross_profit: float | None = None
    gross_profit_margin: float | None = None
    net_income: float | None = None
    net_profit_margin: float | None = None
    operating_income: float | None = None
    ebitda: float | None = None

    # Balance sheet
    total_assets: float | None = None
    total_liabilities: float | None = None
    total_equity: float | None = None
    total_debt: float | None = None
    cash: float | None = None
    debt_to_equity: float | None = None
    current_ratio: float | None = None

    # Analyst data
    analyst_rating: str | None = None
    target_price: float | None = None
    analyst_count: int | None = None

    retrieved_at: datetime = field(default_factory=utc_now)
    data_sources: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class HistoricalPrice:
    """Daily price bar."""

    date: datetime
    close: float
    open: float | None = None
    high: float | None = None
    low: float | None = None
    adjusted_close: float | None = None
    volume: int | None = None


@dataclass(frozen=True)
class NewsArticle:
    """News article returned by a news provider."""

    title: str
    url: str
    source: str
    published_at: datetime
    description: str | None = None
    content: str | None = None
    author: str | None = None
    sentiment_score: float | None = None  # -1.0 to 1.0
    relevance_score: float | None = None  # 0.0 to 1.0


@dataclass(frozen=True)
class FinancialAnalysis:
    """Output of the Gather-Financial stage."""

    symbol: str
    company_name: str
    data: FinancialData
    historical_prices: tuple[HistoricalPrice, ...] = ()
    metrics: dict[str, Any] = field(default_factory=dict)
    trend: str = "Unknown"
    data_sources: tuple[str, ...] = ()


@dataclass(frozen=True)
class NewsAnalysis:
    """Output of the Gather-News stage."""

    symbol: str
    company_name: str
    articles: tuple[NewsArticle, ...] = ()
    sources: tuple[str, ...] = ()
    overall_sentiment: float = 0.0
    sentiment_label: str = "Unknown"
    key_themes: tuple[str, ...] = ()
    recent_headlines: tuple[str, ...] = ()
    summary: str | None = None
    key_events: tuple[str, ...] = ()
    potential_impact: str | None = None
    article_counts: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class Insight:
    """Categorized takeaway of a synthesis."""

    category: str
    content: str
    importance: str = "medium"


@dataclass(frozen=True)
class DataSource:
    """Provenance entry in a result."""

    type: str
    source: str
    data_points: tuple[str, ...] = ()
    article_count: int | None = None


@dataclass(frozen=True)
class StepSummary:
    """Condensed step carried in the final result."""

    stage: str
    action: str
    timestamp: datetime


@dataclass(frozen=True)
class AnalysisResult:
    """Final structured output of a research job."""

    company: str
    thesis: str
    signal: Signal
    confidence: float
    insights: tuple[Insight, ...] = ()
    sources: tuple[DataSource, ...] = ()
    steps: tuple[StepSummary, ...] = ()
    generated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "company": self.company,
            "thesis": self.thesis,
            "signal": self.signal.value,
            "confidence": self.confidence,
            "insights": [
                {"category": i.category, "insight": i.content, "importance": i.importance}
                for i in self.insights
            ],
            "sources": [
                {
                    "type": s.type,
                    "source": s.source,
                    "data_points": list(s.data_points),
                    "article_count": s.article_count,
                }
                for s in self.sources
            ],
            "steps": [
                {"stage": s.stage, "action": s.action, "timestamp": s.timestamp.isoformat()}
                for s in self.steps
            ],
            "generated_at": self.generated_at.isoformat(),
        }
