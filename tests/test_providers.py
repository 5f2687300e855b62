"""
Tests for the data providers.

HTTP providers run against httpx.MockTransport; the Yahoo provider runs
with yfinance patched out.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import httpx
import orjson
import pandas as pd
import pytest

from erjobs.cancellation import CancelToken
from erjobs.exceptions import (
    JobCancelledError,
    ProviderAuthenticationError,
    ProviderDataError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)
from erjobs.pool import classify_provider_error
from erjobs.providers import FinancialDataProvider, FMPProvider, NewsAPIProvider, NewsProvider, YahooFinanceProvider
from erjobs.providers.http import JsonHttpClient
from erjobs.providers.newsapi import parse_article
from erjobs.providers.yahoo import _period_for, fundamentals_from_info, prices_from_frame, quote_from_info
from erjobs.types import ProviderErrorCategory


def json_response(payload: object, status: int = 200, headers: dict[str, str] | None = None) -> httpx.Response:
    return httpx.Response(status, content=orjson.dumps(payload), headers=headers)


def fmp_with(routes: dict[str, httpx.Response]) -> tuple[FMPProvider, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        endpoint = request.url.path.removeprefix("/stable/")
        return routes.get(endpoint, json_response([]))

    return FMPProvider("test-key", transport=httpx.MockTransport(handler)), seen


def newsapi_with(response: httpx.Response) -> tuple[NewsAPIProvider, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return response

    return NewsAPIProvider("test-key", transport=httpx.MockTransport(handler)), seen


class TestJsonHttpClient:
    """Tests for status and transport error mapping."""

    def test_requires_https(self) -> None:
        """Test that plain http base URLs are refused."""
        with pytest.raises(ValueError):
            JsonHttpClient("X", "http://example.com")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "error_type", "category"),
        [
            (401, ProviderAuthenticationError, ProviderErrorCategory.AUTHENTICATION),
            (403, ProviderAuthenticationError, ProviderErrorCategory.AUTHENTICATION),
            (500, ProviderError, ProviderErrorCategory.UNKNOWN),
        ],
    )
    async def test_status_mapping(
        self, status: int, error_type: type[ProviderError], category: ProviderErrorCategory
    ) -> None:
        """Test HTTP errors map to categorized provider errors."""
        client = JsonHttpClient(
            "X",
            "https://example.com",
            transport=httpx.MockTransport(lambda r: json_response({}, status)),
        )
        with pytest.raises(error_type) as exc_info:
            await client.get_json("/thing")
        assert classify_provider_error(exc_info.value) is category
        await client.close()

    @pytest.mark.asyncio
    async def test_rate_limit_retry_after(self) -> None:
        """Test that 429 carries the Retry-After hint."""
        client = JsonHttpClient(
            "X",
            "https://example.com",
            transport=httpx.MockTransport(lambda r: json_response({}, 429, {"Retry-After": "12"})),
        )
        with pytest.raises(ProviderRateLimitError) as exc_info:
            await client.get_json("/thing")
        assert exc_info.value.retry_after == 12.0

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        """Test that an unparseable body is malformed data."""
        client = JsonHttpClient(
            "X",
            "https://example.com",
            transport=httpx.MockTransport(lambda r: httpx.Response(200, content=b"<html>")),
        )
        with pytest.raises(ProviderDataError) as exc_info:
            await client.get_json("/thing")
        assert exc_info.value.category is ProviderErrorCategory.MALFORMED_DATA

    @pytest.mark.asyncio
    async def test_timeout_after_retries(self) -> None:
        """Test that repeated timeouts are retried, then reported."""
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            raise httpx.ReadTimeout("slow", request=request)

        client = JsonHttpClient("X", "https://example.com", transport=httpx.MockTransport(handler))
        with pytest.raises(ProviderTimeoutError):
            await client.get_json("/thing")
        assert attempts == 3

    @pytest.mark.asyncio
    async def test_cancelled_before_request(self) -> None:
        """Test that no request is sent once the token has fired."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return json_response({})

        client = JsonHttpClient("X", "https://example.com", transport=httpx.MockTransport(handler))
        token = CancelToken()
        token.cancel()
        with pytest.raises(JobCancelledError):
            await client.get_json("/thing", cancel=token)
        assert calls == 0


class TestFMPProvider:
    """Tests for FMPProvider."""

    def test_satisfies_protocol(self) -> None:
        """Test FMPProvider implements FinancialDataProvider."""
        assert isinstance(FMPProvider("k"), FinancialDataProvider)

    def test_requires_key(self) -> None:
        """Test that an empty key is refused."""
        with pytest.raises(ValueError):
            FMPProvider("")

    @pytest.mark.asyncio
    async def test_quote(self) -> None:
        """Test quote parsing and the API key parameter."""
        provider, seen = fmp_with(
            {
                "quote": json_response(
                    [
                        {
                            "symbol": "AAPL",
                            "name": "Apple Inc.",
                            "price": 190.5,
                            "change": 2.5,
                            "changePercentage": 1.33,
                            "yearHigh": 200.0,
                            "yearLow": 150.0,
                            "volume": 5000000,
                            "marketCap": 2.9e12,
                        }
                    ]
                )
            }
        )

        data = await provider.get_quote("AAPL", CancelToken())

        assert data is not None
        assert data.current_price == 190.5
        assert data.price_change_percent == 1.33
        assert data.volume == 5000000
        assert data.data_sources == ["FMP"]
        assert seen[0].url.params["apikey"] == "test-key"
        assert seen[0].url.params["symbol"] == "AAPL"

    @pytest.mark.asyncio
    async def test_unknown_symbol(self) -> None:
        """Test that an empty list means no data rather than an error."""
        provider, _ = fmp_with({})
        assert await provider.get_quote("ZZZZ", CancelToken()) is None
        assert await provider.get_fundamentals("ZZZZ", CancelToken()) is None

    @pytest.mark.asyncio
    async def test_fundamentals(self) -> None:
        """Test ratios and price target are combined."""
        provider, _ = fmp_with(
            {
                "ratios-ttm": json_response(
                    [{"priceToEarningsRatioTTM": 29.1, "netProfitMarginTTM": 0.25, "currentRatioTTM": 0.9}]
                ),
                "price-target-consensus": json_response([{"targetConsensus": 220.0}]),
            }
        )

        data = await provider.get_fundamentals("AAPL", CancelToken())

        assert data is not None
        assert data.pe_ratio == 29.1
        assert data.net_profit_margin == 0.25
        assert data.target_price == 220.0

    @pytest.mark.asyncio
    async def test_error_message_payload(self) -> None:
        """Test that FMP's error payload is malformed data."""
        provider, _ = fmp_with({"quote": json_response({"Error Message": "Invalid API KEY."})})
        with pytest.raises(ProviderDataError, match="Invalid API KEY"):
            await provider.get_quote("AAPL", CancelToken())

    @pytest.mark.asyncio
    async def test_historical_prices(self) -> None:
        """Test end-of-day bars are parsed and dated in UTC."""
        provider, seen = fmp_with(
            {
                "historical-price-eod/full": json_response(
                    [
                        {"date": "2024-06-28", "open": 100, "high": 102, "low": 99, "close": 101, "volume": 1000},
                        {"date": "2024-06-27", "close": 100},
                        {"date": "2024-06-26"},
                    ]
                )
            }
        )

        prices = await provider.get_historical_prices("AAPL", 30, CancelToken())

        assert [p.close for p in prices] == [101.0, 100.0]
        assert prices[0].date == datetime(2024, 6, 28, tzinfo=timezone.utc)
        assert prices[0].volume == 1000
        assert "from" in seen[0].url.params


class TestNewsAPIProvider:
    """Tests for NewsAPIProvider."""

    def test_satisfies_protocol(self) -> None:
        """Test NewsAPIProvider implements NewsProvider."""
        assert isinstance(NewsAPIProvider("k"), NewsProvider)

    def test_parse_article(self) -> None:
        """Test article parsing and keyword sentiment."""
        article = parse_article(
            {
                "title": "Apple shares surge to record",
                "url": "https://news.example.com/1",
                "source": {"name": "Example News"},
                "publishedAt": "2024-06-28T14:00:00Z",
                "description": None,
            }
        )
        assert article is not None
        assert article.source == "Example News"
        assert article.published_at == datetime(2024, 6, 28, 14, tzinfo=timezone.utc)
        assert article.sentiment_score == 1.0

    def test_parse_article_requires_title_and_url(self) -> None:
        """Test that incomplete items are skipped."""
        assert parse_article({"title": "No URL"}) is None
        assert parse_article("junk") is None

    @pytest.mark.asyncio
    async def test_search(self) -> None:
        """Test the query and result parsing."""
        provider, seen = newsapi_with(
            json_response(
                {
                    "status": "ok",
                    "totalResults": 2,
                    "articles": [
                        {"title": "Apple earnings beat", "url": "https://n/1", "publishedAt": "2024-06-28T10:00:00Z"},
                        {"title": None, "url": "https://n/2"},
                    ],
                }
            )
        )

        articles = await provider.search_news("Apple Inc.", "AAPL", 15, 30, CancelToken())

        assert [a.url for a in articles] == ["https://n/1"]
        params = seen[0].url.params
        assert params["q"] == "Apple Inc. OR AAPL stock"
        assert params["pageSize"] == "15"
        assert params["sortBy"] == "relevancy"

    @pytest.mark.asyncio
    async def test_invalid_key_payload(self) -> None:
        """Test that NewsAPI's key errors map to authentication."""
        provider, _ = newsapi_with(
            json_response({"status": "error", "code": "apiKeyInvalid", "message": "Your API key is invalid."}, 401)
        )
        with pytest.raises(ProviderAuthenticationError):
            await provider.search_news("Apple Inc.", "AAPL", 15, 30, CancelToken())

    @pytest.mark.asyncio
    async def test_error_payload(self) -> None:
        """Test that other error payloads are malformed data."""
        provider, _ = newsapi_with(json_response({"status": "error", "code": "unexpectedError", "message": "oops"}))
        with pytest.raises(ProviderDataError):
            await provider.search_news("Apple Inc.", "AAPL", 15, 30, CancelToken())

    @pytest.mark.asyncio
    async def test_invalid_inputs(self) -> None:
        """Test input validation before any request is made."""
        provider, seen = newsapi_with(json_response({"status": "ok", "articles": []}))
        with pytest.raises(ValueError):
            await provider.search_news("   ", "AAPL", 15, 30, CancelToken())
        with pytest.raises(ValueError):
            await provider.search_news("Apple Inc.", "NOT A SYMBOL", 15, 30, CancelToken())
        assert seen == []


class TestYahooHelpers:
    """Tests for the yfinance payload mappers."""

    def test_quote_from_info(self) -> None:
        """Test quote fields and the computed change."""
        data = quote_from_info(
            "AAPL",
            {"currentPrice": 110.0, "previousClose": 100.0, "longName": "Apple Inc."},
            "YahooFinance",
        )
        assert data is not None
        assert data.company_name == "Apple Inc."
        assert data.price_change == pytest.approx(10.0)
        assert data.price_change_percent == pytest.approx(10.0)

    def test_quote_without_price(self) -> None:
        """Test that info without a price yields no quote."""
        assert quote_from_info("AAPL", {"longName": "Apple Inc."}, "YahooFinance") is None

    def test_fundamentals_from_info(self) -> None:
        """Test fundamentals and the debt/equity percentage conversion."""
        data = fundamentals_from_info(
            "AAPL",
            {"marketCap": 3e12, "trailingPE": 30.0, "debtToEquity": 150.0, "recommendationKey": "buy"},
            "YahooFinance",
        )
        assert data is not None
        assert data.debt_to_equity == pytest.approx(1.5)
        assert data.analyst_rating == "buy"

    def test_prices_from_frame(self) -> None:
        """Test DataFrame rows become bars and NaN closes are skipped."""
        index = pd.DatetimeIndex(["2024-06-27", "2024-06-28"], tz="America/New_York")
        df = pd.DataFrame(
            {"Open": [1.0, 2.0], "High": [1.5, 2.5], "Low": [0.5, 1.5], "Close": [1.2, float("nan")], "Volume": [10, 20]},
            index=index,
        )
        prices = prices_from_frame(df)
        assert len(prices) == 1
        assert prices[0].close == 1.2
        assert prices[0].volume == 10

    @pytest.mark.parametrize(("days", "period"), [(5, "5d"), (30, "1mo"), (200, "1y"), (3000, "5y")])
    def test_period_for(self, days: int, period: str) -> None:
        """Test history period selection."""
        assert _period_for(days) == period


class TestYahooFinanceProvider:
    """Tests for YahooFinanceProvider with yfinance patched."""

    @pytest.mark.asyncio
    async def test_quote_and_fundamentals_share_info(self) -> None:
        """Test that one info download serves both calls."""
        ticker = MagicMock()
        ticker.info = {"currentPrice": 190.0, "previousClose": 188.0, "marketCap": 3e12}
        with patch("erjobs.providers.yahoo.yf.Ticker", return_value=ticker) as mock_ticker:
            provider = YahooFinanceProvider()
            quote = await provider.get_quote("AAPL", CancelToken())
            fundamentals = await provider.get_fundamentals("AAPL", CancelToken())

        assert quote is not None and quote.current_price == 190.0
        assert fundamentals is not None and fundamentals.market_cap == 3e12
        assert mock_ticker.call_count == 1

    @pytest.mark.asyncio
    async def test_history_cutoff(self) -> None:
        """Test that bars older than the window are dropped."""
        now = datetime.now(timezone.utc)
        index = pd.DatetimeIndex([now - timedelta(days=40), now - timedelta(days=1)])
        ticker = MagicMock()
        ticker.history.return_value = pd.DataFrame({"Close": [1.0, 2.0]}, index=index)
        with patch("erjobs.providers.yahoo.yf.Ticker", return_value=ticker):
            prices = await YahooFinanceProvider().get_historical_prices("AAPL", 30, CancelToken())

        assert [p.close for p in prices] == [2.0]

    @pytest.mark.asyncio
    async def test_failure_is_provider_error(self) -> None:
        """Test that yfinance exceptions become ProviderError."""
        with patch("erjobs.providers.yahoo.yf.Ticker", side_effect=RuntimeError("network down")):
            with pytest.raises(ProviderError):
                await YahooFinanceProvider().get_quote("AAPL", CancelToken())
