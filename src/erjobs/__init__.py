"""Equity research job engine: background processing of multi-stage research jobs."""

__version__ = "0.1.0"
