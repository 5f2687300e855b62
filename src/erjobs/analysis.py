"""
Deterministic analytics used by the gather and synthesize stages.

Everything here is a pure function of its inputs so that the fallback
paths produce the same answer for the same data.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from erjobs.types import (
    FinancialAnalysis,
    FinancialData,
    HistoricalPrice,
    NewsAnalysis,
    NewsArticle,
    Signal,
)

INSUFFICIENT_DATA = "Insufficient Data"
MIN_TREND_POINTS = 10
TREND_WINDOW = 5

SENTIMENT_DECAY_DAYS = 30.0
MIN_SENTIMENT_WEIGHT = 0.1

THEME_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Earnings": ("earnings", "revenue", "profit", "quarterly", "fiscal"),
    "Growth": ("growth", "expand", "increase", "surge", "boost"),
    "Product": ("product", "launch", "release", "innovation", "technology"),
    "Market": ("market", "competition", "competitor", "industry", "sector"),
    "Management": ("ceo", "executive", "leadership", "management", "board"),
    "Regulatory": ("regulation", "compliance", "legal", "lawsuit", "investigation"),
    "Acquisition": ("acquisition", "merger", "buyout", "deal", "partnership"),
    "Dividend": ("dividend", "buyback", "shareholder", "return"),
    "Guidance": ("guidance", "forecast", "outlook", "expectation"),
}

POSITIVE_WORDS = (
    "surge", "soar", "gain", "rise", "jump", "rally", "boom", "growth",
    "profit", "beat", "exceed", "record", "strong", "bullish", "upgrade",
    "buy", "outperform", "positive", "success", "breakthrough", "innovation",
    "expand", "win", "award", "best", "leading", "top", "excellent",
)

NEGATIVE_WORDS = (
    "drop", "fall", "decline", "crash", "plunge", "loss", "miss", "fail",
    "weak", "bearish", "downgrade", "sell", "underperform", "negative",
    "concern", "risk", "warning", "lawsuit", "investigation", "scandal",
    "layoff", "cut", "worst", "trouble", "problem", "crisis", "debt",
)


# ==================== Financial ====================


def determine_trend(prices: Sequence[HistoricalPrice]) -> str:
    """Classify price action from the latest two 5-bar windows.

    Compares the average close of the 5 most recent bars with the 5 bars
    before them. Needs at least 10 bars.

    Returns:
        "Strong Uptrend" (> +5%), "Uptrend" (> +2%), "Strong Downtrend"
        (< -5%), "Downtrend" (< -2%), "Neutral", or "Insufficient Data".
    """
    if len(prices) < MIN_TREND_POINTS:
        return INSUFFICIENT_DATA

    ordered = sorted(prices, key=lambda p: p.date, reverse=True)
    recent = ordered[:TREND_WINDOW]
    older = ordered[TREND_WINDOW : TREND_WINDOW * 2]

    recent_avg = sum(p.close for p in recent) / len(recent)
    older_avg = sum(p.close for p in older) / len(older)
    if older_avg == 0:
        return INSUFFICIENT_DATA

    change = (recent_avg - older_avg) / older_avg * 100

    if change > 5:
        return "Strong Uptrend"
    if change > 2:
        return "Uptrend"
    if change < -5:
        return "Strong Downtrend"
    if change < -2:
        return "Downtrend"
    return "Neutral"


def format_large_number(value: float) -> str:
    """Format a dollar amount with a T/B/M/K suffix."""
    if value >= 1_000_000_000_000:
        return f"${value / 1_000_000_000_000:.2f}T"
    if value >= 1_000_000_000:
        return f"${value / 1_000_000_000:.2f}B"
    if value >= 1_000_000:
        return f"${value / 1_000_000:.2f}M"
    if value >= 1_000:
        return f"${value / 1_000:.2f}K"
    return f"${value:.2f}"


def calculate_metrics(data: FinancialData) -> dict[str, Any]:
    """Display-ready headline metrics for whatever fields are present."""
    metrics: dict[str, Any] = {}

    if data.market_cap is not None:
        metrics["Market Cap"] = format_large_number(data.market_cap)
    if data.pe_ratio is not None:
        metrics["P/E Ratio"] = round(data.pe_ratio, 2)
    if data.eps is not None:
        metrics["EPS"] = round(data.eps, 2)
    if data.dividend_yield is not None:
        metrics["Dividend Yield"] = f"{round(data.dividend_yield * 100, 2)}%"
    if data.beta is not None:
        metrics["Beta"] = round(data.beta, 2)
    if data.debt_to_equity is not None:
        metrics["Debt/Equity"] = round(data.debt_to_equity, 2)
    if data.current_ratio is not None:
        metrics["Current Ratio"] = round(data.current_ratio, 2)
    if data.net_profit_margin is not None:
        metrics["Net Margin"] = f"{round(data.net_profit_margin * 100, 2)}%"
    if data.revenue_growth is not None:
        metrics["Revenue Growth"] = f"{round(data.revenue_growth * 100, 2)}%"

    if (
        data.current_price is not None
        and data.week52_high is not None
        and data.week52_low is not None
    ):
        price_range = data.week52_high - data.week52_low
        if price_range > 0:
            position = (data.current_price - data.week52_low) / price_range * 100
            metrics["52W Range Position"] = f"{round(position, 1)}%"

    return metrics


# ==================== News ====================


def keyword_sentiment(title: str | None, description: str | None = None) -> float:
    """Keyword-count sentiment in [-1, 1] for providers without scoring."""
    text = f"{title or ''} {description or ''}".lower()
    positive = sum(1 for w in POSITIVE_WORDS if w in text)
    negative = sum(1 for w in NEGATIVE_WORDS if w in text)
    total = positive + negative
    if total == 0:
        return 0.0
    return (positive - negative) / total


def overall_sentiment(
    articles: Iterable[NewsArticle],
    now: datetime | None = None,
) -> float:
    """Recency-weighted mean sentiment.

    weight = max(0.1, 1 - days_ago / 30); articles without a score are
    ignored. Returns 0.0 when nothing is scored.
    """
    now = now or datetime.now(timezone.utc)
    weighted_sum = 0.0
    weight_sum = 0.0

    for article in articles:
        if article.sentiment_score is None:
            continue
        published = article.published_at
        if published.tzinfo is None:
            published = published.replace(tzinfo=timezone.utc)
        days_ago = (now - published).total_seconds() / 86400
        weight = max(MIN_SENTIMENT_WEIGHT, 1 - days_ago / SENTIMENT_DECAY_DAYS)
        weighted_sum += article.sentiment_score * weight
        weight_sum += weight

    return weighted_sum / weight_sum if weight_sum > 0 else 0.0


def sentiment_label(sentiment: float) -> str:
    if sentiment > 0.3:
        return "Very Positive"
    if sentiment > 0.1:
        return "Positive"
    if sentiment < -0.3:
        return "Very Negative"
    if sentiment < -0.1:
        return "Negative"
    return "Neutral"


def extract_key_themes(articles: Iterable[NewsArticle], limit: int = 5) -> list[str]:
    """Most frequent keyword themes across titles and descriptions.

    Each article counts at most once per theme. Ties keep the order of
    THEME_KEYWORDS.
    """
    counts: Counter[str] = Counter()
    for article in articles:
        text = f"{article.title} {article.description or ''}".lower()
        for theme, keywords in THEME_KEYWORDS.items():
            if any(k in text for k in keywords):
                counts[theme] += 1

    order = {theme: i for i, theme in enumerate(THEME_KEYWORDS)}
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], order[kv[0]]))
    return [theme for theme, _ in ranked[:limit]]


def recent_headlines(articles: Iterable[NewsArticle], limit: int = 5) -> list[str]:
    ordered = sorted(articles, key=lambda a: a.published_at, reverse=True)
    return [a.title for a in ordered[:limit]]


# ==================== Synthesis fallback ====================


def determine_signal(financial: FinancialAnalysis, news: NewsAnalysis) -> Signal:
    """Rule-based signal.

    Trend contributes +/-2, sentiment beyond +/-0.2 contributes +/-2 and
    the analyst rating contributes +/-1. Bullish at >= 3, Bearish at <= -3.
    """
    score = 0

    if "Up" in financial.trend:
        score += 2
    elif "Down" in financial.trend:
        score -= 2

    if news.overall_sentiment > 0.2:
        score += 2
    elif news.overall_sentiment < -0.2:
        score -= 2

    rating = (financial.data.analyst_rating or "").lower()
    if rating:
        if "buy" in rating:
            score += 1
        elif "sell" in rating:
            score -= 1

    if score >= 3:
        return Signal.BULLISH
    if score <= -3:
        return Signal.BEARISH
    return Signal.NEUTRAL


def calculate_confidence(financial: FinancialAnalysis, news: NewsAnalysis) -> float:
    """Confidence from data coverage and signal strength, clamped to [0.3, 0.95]."""
    confidence = 0.5
    confidence += len(financial.data_sources) * 0.1
    confidence += len(news.sources) * 0.05
    confidence += min(len(news.articles) * 0.01, 0.15)

    if "Strong" in financial.trend:
        confidence += 0.1
    if abs(news.overall_sentiment) > 0.3:
        confidence += 0.1

    return max(0.3, min(0.95, confidence))
