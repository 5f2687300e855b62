"""
Tests for configuration module.
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from erjobs.config import Settings, clear_settings_cache, get_settings


class TestSettingsValidation:
    """Tests for Settings validation."""

    def test_settings_loads_from_env(self, mock_env_vars: dict[str, str]) -> None:
        """Test that settings correctly loads from environment variables."""
        settings = get_settings()

        assert settings.FMP_API_KEY == "test-fmp-key-1234567890"
        assert settings.NEWSAPI_API_KEY == "test-newsapi-key"
        assert settings.ENABLE_YAHOO is False
        assert settings.POLL_INTERVAL_SECONDS == 0.05
        assert settings.PROVIDER_CONCURRENCY == 2
        assert settings.LOG_LEVEL == "DEBUG"

    def test_defaults(self) -> None:
        """Test that nothing is required."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.LLM_API_KEY is None
        assert settings.llm_configured is False
        assert settings.PROVIDER_CONCURRENCY == 3
        assert settings.POLL_INTERVAL_SECONDS == 5.0
        assert settings.available_financial_providers == ["yahoo"]
        assert settings.available_news_providers == []

    def test_concurrency_must_be_positive(self) -> None:
        """Test that PROVIDER_CONCURRENCY below 1 is rejected."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, PROVIDER_CONCURRENCY=0)

    def test_poll_interval_must_be_positive(self) -> None:
        """Test that a zero polling interval is rejected."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, POLL_INTERVAL_SECONDS=0)

    def test_non_positive_timeout_disables_it(self) -> None:
        """Test that a zero provider timeout means no timeout."""
        settings = Settings(_env_file=None, PROVIDER_TIMEOUT_SECONDS=0)
        assert settings.PROVIDER_TIMEOUT_SECONDS is None

    def test_base_url_validation(self) -> None:
        """Test LLM_BASE_URL normalization and rejection."""
        settings = Settings(_env_file=None, LLM_BASE_URL="http://localhost:11434/v1/")
        assert settings.LLM_BASE_URL == "http://localhost:11434/v1"
        assert settings.llm_configured is True

        with pytest.raises(ValidationError):
            Settings(_env_file=None, LLM_BASE_URL="localhost:11434")

    def test_available_providers_property(self, mock_env_vars: dict[str, str]) -> None:
        """Test provider lists follow the configured keys."""
        settings = get_settings()
        assert settings.available_financial_providers == ["fmp"]
        assert settings.available_news_providers == ["newsapi"]
        assert settings.llm_configured is False


class TestSettingsHelpers:
    """Tests for display and directory helpers."""

    def test_redacted_display(self) -> None:
        """Test that API keys are never shown in full."""
        settings = Settings(_env_file=None, LLM_API_KEY="sk-abcdefghijklmnop", FMP_API_KEY="short")
        display = settings.redacted_display()

        assert display["LLM_API_KEY"] == "sk-abcde...mnop"
        assert display["FMP_API_KEY"] == "***"
        assert display["NEWSAPI_API_KEY"] is None

    def test_ensure_directories(self, temp_dir: Path) -> None:
        """Test that the database directory is created."""
        settings = Settings(_env_file=None, JOB_DB_PATH=temp_dir / "nested" / "jobs.db")
        settings.ensure_directories()
        assert (temp_dir / "nested").is_dir()

    def test_settings_cached(self, mock_env_vars: dict[str, str]) -> None:
        """Test get_settings returns one instance until the cache is cleared."""
        first = get_settings()
        assert get_settings() is first
        clear_settings_cache()
        assert get_settings() is not first
