"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates ranges and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Nothing is strictly required: without an LLM key the Plan and Synthesize
    stages use their deterministic fallbacks, and without provider keys the
    matching providers are simply not configured.

    Optional:
        LLM_API_KEY: Key for an OpenAI-compatible chat completion endpoint
        LLM_BASE_URL: Base URL override (Groq, Ollama, ...)
        FMP_API_KEY: Financial Modeling Prep API key
        NEWSAPI_API_KEY: NewsAPI.org API key
        POLL_INTERVAL_SECONDS: How often pending jobs are polled
        PROVIDER_CONCURRENCY: Providers in flight per gather stage
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM
    LLM_API_KEY: str | None = Field(default=None, description="OpenAI-compatible API key")
    LLM_BASE_URL: str | None = Field(
        default=None,
        description="Base URL for OpenAI-compatible endpoints (None = api.openai.com)",
    )
    LLM_MODEL: str = Field(default="gpt-4o-mini", description="Chat completion model")
    LLM_TEMPERATURE: float = Field(default=0.3, ge=0.0, le=2.0)
    LLM_TIMEOUT_SECONDS: float = Field(default=60.0, gt=0.0)

    # Data providers
    FMP_API_KEY: str | None = Field(default=None, description="Financial Modeling Prep API key")
    NEWSAPI_API_KEY: str | None = Field(default=None, description="NewsAPI.org API key")
    ENABLE_YAHOO: bool = Field(default=True, description="Use yfinance as a financial provider")

    # Processing
    POLL_INTERVAL_SECONDS: float = Field(
        default=5.0, gt=0.0, le=3600.0, description="Pending-job polling interval"
    )
    PROVIDER_CONCURRENCY: int = Field(
        default=3, ge=1, le=32, description="Maximum providers in flight per gather stage"
    )
    PROVIDER_TIMEOUT_SECONDS: float | None = Field(
        default=30.0, description="Per-provider time limit (None disables it)"
    )
    MAX_HISTORICAL_PRICES: int = Field(default=1000, ge=10)
    MAX_NEWS_ARTICLES: int = Field(default=100, ge=1)

    # Storage
    JOB_DB_PATH: Path = Field(default=Path("data/jobs.db"), description="SQLite job store")

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="JSON-lines log file")

    @field_validator("PROVIDER_TIMEOUT_SECONDS")
    @classmethod
    def validate_provider_timeout(cls, v: float | None) -> float | None:
        """Zero or negative disables the timeout."""
        if v is not None and v <= 0:
            return None
        return v

    @field_validator("LLM_BASE_URL")
    @classmethod
    def validate_base_url(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("LLM_BASE_URL must be an http(s) URL")
        return v.rstrip("/")

    @property
    def llm_configured(self) -> bool:
        """Whether a text completion client can be built.

        Local OpenAI-compatible servers such as Ollama accept any key, so a
        base URL alone is enough.
        """
        return bool(self.LLM_API_KEY or self.LLM_BASE_URL)

    @property
    def available_financial_providers(self) -> list[str]:
        providers: list[str] = []
        if self.ENABLE_YAHOO:
            providers.append("yahoo")
        if self.FMP_API_KEY:
            providers.append("fmp")
        return providers

    @property
    def available_news_providers(self) -> list[str]:
        return ["newsapi"] if self.NEWSAPI_API_KEY else []

    def ensure_directories(self) -> None:
        """Create the job database directory if it doesn't exist."""
        self.JOB_DB_PATH.parent.mkdir(parents=True, exist_ok=True)

    def redacted_display(self) -> dict[str, str | int | float | bool | None]:
        """Return settings with API keys redacted for display."""
        def redact(value: str | None) -> str | None:
            if value is None:
                return None
            return f"{value[:8]}...{value[-4:]}" if len(value) > 12 else "***"

        return {
            "LLM_API_KEY": redact(self.LLM_API_KEY),
            "LLM_BASE_URL": self.LLM_BASE_URL,
            "LLM_MODEL": self.LLM_MODEL,
            "FMP_API_KEY": redact(self.FMP_API_KEY),
            "NEWSAPI_API_KEY": redact(self.NEWSAPI_API_KEY),
            "ENABLE_YAHOO": self.ENABLE_YAHOO,
            "POLL_INTERVAL_SECONDS": self.POLL_INTERVAL_SECONDS,
            "PROVIDER_CONCURRENCY": self.PROVIDER_CONCURRENCY,
            "PROVIDER_TIMEOUT_SECONDS": self.PROVIDER_TIMEOUT_SECONDS,
            "MAX_HISTORICAL_PRICES": self.MAX_HISTORICAL_PRICES,
            "MAX_NEWS_ARTICLES": self.MAX_NEWS_ARTICLES,
            "JOB_DB_PATH": str(self.JOB_DB_PATH),
            "LOG_LEVEL": self.LOG_LEVEL,
            "LOG_FILE": str(self.LOG_FILE) if self.LOG_FILE else None,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        pydantic.ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
