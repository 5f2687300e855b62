"""
Financial Modeling Prep provider.

Quote, TTM ratios and end-of-day prices from the FMP "stable" API.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from erjobs.cancellation import CancelToken
from erjobs.exceptions import ProviderDataError
from erjobs.logging import get_logger
from erjobs.providers.http import DEFAULT_TIMEOUT, JsonHttpClient
from erjobs.types import FinancialData, HistoricalPrice

logger = get_logger(__name__)

# Base URL for FMP API
FMP_BASE_URL = "https://financialmodelingprep.com/stable"


def _float(record: dict[str, Any], key: str) -> float | None:
    value = record.get(key)
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _first_record(data: Any, provider: str, endpoint: str) -> dict[str, Any] | None:
    """FMP returns a list of records; an error payload is a dict."""
    if isinstance(data, dict):
        if "Error Message" in data:
            raise ProviderDataError(provider, f"FMP API error: {data['Error Message']}", context={"endpoint": endpoint})
        return data or None
    if not isinstance(data, list):
        raise ProviderDataError(provider, f"Unexpected FMP payload for {endpoint}")
    if not data:
        return None
    if not isinstance(data[0], dict):
        raise ProviderDataError(provider, f"Unexpected FMP record for {endpoint}")
    return data[0]


class FMPProvider:
    """FinancialDataProvider backed by Financial Modeling Prep."""

    def __init__(
        self,
        api_key: str,
        base_url: str = FMP_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("FMP API key is not configured")
        self.api_key = api_key
        self._http = JsonHttpClient(self.name, base_url, timeout=timeout, transport=transport)

    @property
    def name(self) -> str:
        return "FMP"

    async def close(self) -> None:
        await self._http.close()

    async def _fetch(self, endpoint: str, params: dict[str, Any], cancel: CancelToken) -> Any:
        logger.debug("Fetching from FMP", endpoint=endpoint, params=params)
        return await self._http.get_json(
            f"/{endpoint}",
            params={**params, "apikey": self.api_key},
            cancel=cancel,
        )

    async def get_quote(self, symbol: str, cancel: CancelToken) -> FinancialData | None:
        record = _first_record(await self._fetch("quote", {"symbol": symbol}, cancel), self.name, "quote")
        if record is None:
            return None
        return FinancialData(
            symbol=symbol,
            company_name=record.get("name"),
            current_price=_float(record, "price"),
            previous_close=_float(record, "previousClose"),
            open=_float(record, "open"),
            day_high=_float(record, "dayHigh"),
            day_low=_float(record, "dayLow"),
            week52_high=_float(record, "yearHigh"),
            week52_low=_float(record, "yearLow"),
            price_change=_float(record, "change"),
            price_change_percent=_float(record, "changePercentage"),
            volume=int(record["volume"]) if isinstance(record.get("volume"), (int, float)) else None,
            average_volume=int(record["avgVolume"]) if isinstance(record.get("avgVolume"), (int, float)) else None,
            market_cap=_float(record, "marketCap"),
            data_sources=[self.name],
        )

    async def get_fundamentals(self, symbol: str, cancel: CancelToken) -> FinancialData | None:
        ratios = _first_record(
            await self._fetch("ratios-ttm", {"symbol": symbol}, cancel), self.name, "ratios-ttm"
        )
        targets = _first_record(
            await self._fetch("price-target-consensus", {"symbol": symbol}, cancel),
            self.name,
            "price-target-consensus",
        )
        if ratios is None and targets is None:
            return None

        ratios = ratios or {}
        data = FinancialData(
            symbol=symbol,
            pe_ratio=_float(ratios, "priceToEarningsRatioTTM"),
            eps=_float(ratios, "netIncomePerShareTTM"),
            dividend_yield=_float(ratios, "dividendYieldTTM"),
            gross_profit_margin=_float(ratios, "grossProfitMarginTTM"),
            net_profit_margin=_float(ratios, "netProfitMarginTTM"),
            debt_to_equity=_float(ratios, "debtToEquityRatioTTM"),
            current_ratio=_float(ratios, "currentRatioTTM"),
            data_sources=[self.name],
        )
        if targets:
            data.target_price = _float(targets, "targetConsensus")
        return data

    async def get_historical_prices(
        self,
        symbol: str,
        days: int,
        cancel: CancelToken,
    ) -> list[HistoricalPrice]:
        start = (datetime.now(timezone.utc) - timedelta(days=days)).strftime("%Y-%m-%d")
        data = await self._fetch("historical-price-eod/full", {"symbol": symbol, "from": start}, cancel)
        if isinstance(data, dict):
            if "Error Message" in data:
                raise ProviderDataError(self.name, f"FMP API error: {data['Error Message']}")
            data = data.get("historical", [])
        if not isinstance(data, list):
            raise ProviderDataError(self.name, "Unexpected FMP price history payload")

        prices: list[HistoricalPrice] = []
        for record in data:
            if not isinstance(record, dict):
                continue
            close = _float(record, "close")
            raw_date = record.get("date")
            if close is None or not raw_date:
                continue
            try:
                date = datetime.fromisoformat(str(raw_date)).replace(tzinfo=timezone.utc)
            except ValueError as e:
                raise ProviderDataError(self.name, f"Invalid date in FMP price history: {raw_date!r}") from e
            volume = _float(record, "volume")
            prices.append(
                HistoricalPrice(
                    date=date,
                    close=close,
                    open=_float(record, "open"),
                    high=_float(record, "high"),
                    low=_float(record, "low"),
                    adjusted_close=_float(record, "adjClose"),
                    volume=int(volume) if volume is not None else None,
                )
            )
        return prices
