"""
NewsAPI.org provider.

Searches the ``/everything`` endpoint by company name and symbol and scores
each article with the keyword sentiment heuristic.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from erjobs.analysis import keyword_sentiment
from erjobs.cancellation import CancelToken
from erjobs.exceptions import ProviderAuthenticationError, ProviderDataError
from erjobs.logging import get_logger
from erjobs.providers.http import DEFAULT_TIMEOUT, JsonHttpClient
from erjobs.security.sanitizer import MAX_COMPANY_NAME_LENGTH, is_valid_symbol, sanitize_input
from erjobs.types import NewsArticle, utc_now

logger = get_logger(__name__)

NEWSAPI_BASE_URL = "https://newsapi.org/v2"
MAX_PAGE_SIZE = 100
MAX_DAYS_BACK = 30


def _parse_published(value: Any) -> datetime:
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return utc_now()
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return utc_now()


def parse_article(raw: Any) -> NewsArticle | None:
    """NewsArticle from one NewsAPI item, or None if title or URL is missing."""
    if not isinstance(raw, dict):
        return None
    title = raw.get("title")
    url = raw.get("url")
    if not title or not url:
        return None
    source = raw.get("source")
    source_name = source.get("name") if isinstance(source, dict) else None
    description = raw.get("description")
    return NewsArticle(
        title=title,
        url=url,
        source=source_name or "Unknown",
        published_at=_parse_published(raw.get("publishedAt")),
        description=description,
        content=raw.get("content"),
        author=raw.get("author"),
        sentiment_score=keyword_sentiment(title, description),
    )


class NewsAPIProvider:
    """NewsProvider backed by NewsAPI.org."""

    def __init__(
        self,
        api_key: str,
        base_url: str = NEWSAPI_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("NewsAPI API key is not configured")
        self.api_key = api_key
        self._http = JsonHttpClient(self.name, base_url, timeout=timeout, transport=transport)

    @property
    def name(self) -> str:
        return "NewsAPI"

    async def close(self) -> None:
        await self._http.close()

    async def search_news(
        self,
        company_name: str,
        symbol: str | None,
        max_articles: int,
        days_back: int,
        cancel: CancelToken,
    ) -> list[NewsArticle]:
        name = sanitize_input(company_name, MAX_COMPANY_NAME_LENGTH)
        if not name:
            raise ValueError("Company name cannot be empty")
        if symbol and not is_valid_symbol(symbol):
            raise ValueError(f"Invalid stock symbol: {symbol}")

        page_size = max(1, min(max_articles, MAX_PAGE_SIZE))
        days_back = max(1, min(days_back, MAX_DAYS_BACK))
        query = f"{name} OR {symbol} stock" if symbol else name
        from_date = (datetime.now(timezone.utc) - timedelta(days=days_back)).strftime("%Y-%m-%d")

        logger.debug("Searching news", query=query, days_back=days_back)
        payload = await self._http.get_json(
            "/everything",
            params={
                "q": query,
                "from": from_date,
                "sortBy": "relevancy",
                "pageSize": page_size,
                "apiKey": self.api_key,
            },
            cancel=cancel,
        )

        if not isinstance(payload, dict):
            raise ProviderDataError(self.name, "Unexpected response shape from NewsAPI")
        if payload.get("status") != "ok":
            message = payload.get("message") or "NewsAPI returned an error"
            if payload.get("code") in ("apiKeyInvalid", "apiKeyMissing", "apiKeyDisabled"):
                raise ProviderAuthenticationError(self.name, message)
            raise ProviderDataError(self.name, message, context={"code": payload.get("code")})

        raw_articles = payload.get("articles")
        if not isinstance(raw_articles, list):
            raise ProviderDataError(self.name, "NewsAPI response has no article list")

        articles = [a for a in (parse_article(r) for r in raw_articles[:page_size]) if a is not None]
        logger.debug("News search complete", articles=len(articles))
        return articles
