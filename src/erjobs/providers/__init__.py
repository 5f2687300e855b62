"""Data provider capabilities and concrete providers."""

from erjobs.providers.base import FinancialDataProvider, NewsProvider
from erjobs.providers.fmp import FMPProvider
from erjobs.providers.newsapi import NewsAPIProvider
from erjobs.providers.yahoo import YahooFinanceProvider

__all__ = [
    "FMPProvider",
    "FinancialDataProvider",
    "NewsAPIProvider",
    "NewsProvider",
    "YahooFinanceProvider",
]
