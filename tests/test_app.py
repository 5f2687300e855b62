"""
Tests for runtime wiring and the CLI.
"""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from erjobs import __version__
from erjobs.app import build_financial_providers, build_llm, build_news_providers, open_runtime
from erjobs.cli.main import app
from erjobs.config import Settings
from erjobs.jobs import InMemoryJobStore, SQLiteJobStore
from erjobs.llm import OpenAICompletion
from erjobs.types import JobStatus

runner = CliRunner()


class TestProviderSelection:
    """Tests for building providers from settings."""

    def test_keys_select_providers(self, mock_settings: Settings) -> None:
        """Test that configured keys enable the matching providers."""
        assert [p.name for p in build_financial_providers(mock_settings)] == ["FMP"]
        assert [p.name for p in build_news_providers(mock_settings)] == ["NewsAPI"]
        assert build_llm(mock_settings) is None

    def test_yahoo_enabled_by_default(self) -> None:
        """Test the keyless provider set."""
        settings = Settings(_env_file=None, ENABLE_YAHOO=True, FMP_API_KEY=None, NEWSAPI_API_KEY=None)
        assert [p.name for p in build_financial_providers(settings)] == ["YahooFinance"]
        assert build_news_providers(settings) == []

    def test_llm_built_when_configured(self) -> None:
        """Test that an API key yields a completion client."""
        settings = Settings(_env_file=None, LLM_API_KEY="sk-test")
        assert isinstance(build_llm(settings), OpenAICompletion)


class TestOpenRuntime:
    """Tests for open_runtime."""

    @pytest.mark.asyncio
    async def test_given_store(self, mock_settings: Settings) -> None:
        """Test that a supplied store is used as-is."""
        store = InMemoryJobStore()
        async with open_runtime(mock_settings, store=store) as runtime:
            assert runtime.store is store
            job = await runtime.service.create_job("AAPL", "Apple Inc.")
            assert runtime.processor().poll_interval == mock_settings.POLL_INTERVAL_SECONDS

        assert (await store.get(job.job_id)).status is JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_default_sqlite_store(self, mock_settings: Settings) -> None:
        """Test that the SQLite store at JOB_DB_PATH is opened."""
        async with open_runtime(mock_settings) as runtime:
            assert isinstance(runtime.store, SQLiteJobStore)
            await runtime.service.create_job("MSFT", "Microsoft Corporation")

        assert mock_settings.JOB_DB_PATH.exists()


class TestCLI:
    """Tests for the typer CLI."""

    def test_version(self) -> None:
        """Test the version command."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_config(self, mock_env_vars: dict[str, str]) -> None:
        """Test that config shows redacted keys and providers."""
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "test-fmp-key-1234567890" not in result.stdout
        assert "fmp" in result.stdout

    def test_submit_and_status(self, mock_env_vars: dict[str, str]) -> None:
        """Test that a submitted job can be looked up."""
        result = runner.invoke(app, ["submit", "AAPL", "Apple Inc.", "--depth", "quick"])
        assert result.exit_code == 0
        job_id = result.stdout.split("Job queued:")[1].split()[0]

        status = runner.invoke(app, ["status", job_id])
        assert status.exit_code == 0
        assert "pending" in status.stdout

    def test_submit_invalid_symbol(self, mock_env_vars: dict[str, str]) -> None:
        """Test that validation errors exit non-zero."""
        result = runner.invoke(app, ["submit", "NOT A SYMBOL", "Apple Inc."])
        assert result.exit_code == 1
