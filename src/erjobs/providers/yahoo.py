"""
Yahoo Finance provider.

Uses yfinance, which is synchronous, through a small thread pool so the
event loop never blocks on it.
"""

from __future__ import annotations

import asyncio
import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

import pandas as pd
import yfinance as yf

from erjobs.cancellation import CancelToken
from erjobs.exceptions import ProviderDataError, ProviderError, ProviderTimeoutError
from erjobs.logging import get_logger
from erjobs.types import FinancialData, HistoricalPrice

logger = get_logger(__name__)

# Thread pool for yfinance (it's not async-native)
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="yfinance")

T = TypeVar("T")


def _num(info: dict[str, Any], *keys: str) -> float | None:
    """First finite numeric value among ``keys``."""
    for key in keys:
        value = info.get(key)
        if isinstance(value, bool) or value is None:
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(number):
            return number
    return None


def _int(info: dict[str, Any], *keys: str) -> int | None:
    value = _num(info, *keys)
    return int(value) if value is not None else None


def _period_for(days: int) -> str:
    """Smallest yfinance period covering ``days`` calendar days."""
    for limit, period in ((5, "5d"), (30, "1mo"), (90, "3mo"), (180, "6mo"), (365, "1y"), (730, "2y")):
        if days <= limit:
            return period
    return "5y"


def quote_from_info(symbol: str, info: dict[str, Any], source: str) -> FinancialData | None:
    price = _num(info, "currentPrice", "regularMarketPrice")
    if price is None:
        return None
    previous = _num(info, "previousClose", "regularMarketPreviousClose")
    data = FinancialData(
        symbol=symbol,
        company_name=info.get("longName") or info.get("shortName"),
        current_price=price,
        previous_close=previous,
        open=_num(info, "open", "regularMarketOpen"),
        day_high=_num(info, "dayHigh", "regularMarketDayHigh"),
        day_low=_num(info, "dayLow", "regularMarketDayLow"),
        week52_high=_num(info, "fiftyTwoWeekHigh"),
        week52_low=_num(info, "fiftyTwoWeekLow"),
        volume=_int(info, "volume", "regularMarketVolume"),
        average_volume=_int(info, "averageVolume"),
        data_sources=[source],
    )
    if previous:
        data.price_change = price - previous
        data.price_change_percent = data.price_change / previous * 100
    return data


def fundamentals_from_info(symbol: str, info: dict[str, Any], source: str) -> FinancialData | None:
    data = FinancialData(
        symbol=symbol,
        market_cap=_num(info, "marketCap"),
        pe_ratio=_num(info, "trailingPE"),
        forward_pe=_num(info, "forwardPE"),
        eps=_num(info, "trailingEps"),
        dividend_yield=_num(info, "dividendYield"),
        beta=_num(info, "beta"),
        revenue=_num(info, "totalRevenue"),
        revenue_growth=_num(info, "revenueGrowth"),
        gross_profit=_num(info, "grossProfits"),
        gross_profit_margin=_num(info, "grossMargins"),
        net_income=_num(info, "netIncomeToCommon"),
        net_profit_margin=_num(info, "profitMargins"),
        operating_income=_num(info, "operatingIncome"),
        ebitda=_num(info, "ebitda"),
        total_debt=_num(info, "totalDebt"),
        cash=_num(info, "totalCash"),
        current_ratio=_num(info, "currentRatio"),
        analyst_rating=info.get("recommendationKey") or None,
        target_price=_num(info, "targetMeanPrice"),
        analyst_count=_int(info, "numberOfAnalystOpinions"),
        data_sources=[source],
    )
    # yfinance reports debt/equity as a percentage
    debt_to_equity = _num(info, "debtToEquity")
    if debt_to_equity is not None:
        data.debt_to_equity = debt_to_equity / 100
    if data.market_cap is None and data.pe_ratio is None and data.eps is None:
        return None
    return data


def prices_from_frame(df: pd.DataFrame) -> list[HistoricalPrice]:
    prices: list[HistoricalPrice] = []
    for ts, row in df.iterrows():
        close = row.get("Close")
        if close is None or pd.isna(close):
            continue
        date = ts.to_pydatetime() if hasattr(ts, "to_pydatetime") else ts
        if date.tzinfo is None:
            date = date.replace(tzinfo=timezone.utc)

        def opt(column: str) -> float | None:
            value = row.get(column)
            return None if value is None or pd.isna(value) else float(value)

        volume = opt("Volume")
        prices.append(
            HistoricalPrice(
                date=date,
                close=float(close),
                open=opt("Open"),
                high=opt("High"),
                low=opt("Low"),
                adjusted_close=opt("Adj Close"),
                volume=int(volume) if volume is not None else None,
            )
        )
    return prices


class YahooFinanceProvider:
    """FinancialDataProvider backed by yfinance."""

    def __init__(self) -> None:
        self._info_cache: dict[str, dict[str, Any]] = {}

    @property
    def name(self) -> str:
        return "YahooFinance"

    async def _run(self, fn: Callable[[], T], cancel: CancelToken, what: str, symbol: str) -> T:
        cancel.raise_if_cancelled()
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(_executor, fn)
        except ProviderError:
            raise
        except TimeoutError as e:
            raise ProviderTimeoutError(self.name, f"Yahoo Finance {what} timed out", context={"symbol": symbol}) from e
        except (KeyError, ValueError, TypeError) as e:
            raise ProviderDataError(
                self.name,
                f"Invalid {what} data from Yahoo Finance",
                context={"symbol": symbol, "error": str(e)},
            ) from e
        except Exception as e:
            logger.warning("yfinance call failed", symbol=symbol, what=what, error=str(e))
            raise ProviderError(
                self.name,
                f"Failed to fetch {what} from Yahoo Finance",
                context={"symbol": symbol, "error": str(e)},
            ) from e

    async def _info(self, symbol: str, cancel: CancelToken) -> dict[str, Any]:
        if symbol not in self._info_cache:
            info = await self._run(lambda: yf.Ticker(symbol).info or {}, cancel, "quote", symbol)
            if not isinstance(info, dict):
                raise ProviderDataError(self.name, "Unexpected quote payload from Yahoo Finance")
            self._info_cache[symbol] = info
        return self._info_cache[symbol]

    async def get_quote(self, symbol: str, cancel: CancelToken) -> FinancialData | None:
        logger.debug("Fetching quote", symbol=symbol)
        return quote_from_info(symbol, await self._info(symbol, cancel), self.name)

    async def get_fundamentals(self, symbol: str, cancel: CancelToken) -> FinancialData | None:
        logger.debug("Fetching fundamentals", symbol=symbol)
        try:
            info = await self._info(symbol, cancel)
        finally:
            # Quote and fundamentals share one info payload per fetch.
            self._info_cache.pop(symbol, None)
        return fundamentals_from_info(symbol, info, self.name)

    async def get_historical_prices(
        self,
        symbol: str,
        days: int,
        cancel: CancelToken,
    ) -> list[HistoricalPrice]:
        period = _period_for(days)
        logger.debug("Fetching historical data", symbol=symbol, period=period)
        df = await self._run(lambda: yf.Ticker(symbol).history(period=period), cancel, "price history", symbol)
        if df is None or df.empty:
            return []
        cutoff = datetime.now(timezone.utc).timestamp() - days * 86400
        return [p for p in prices_from_frame(df) if p.date.timestamp() >= cutoff]
