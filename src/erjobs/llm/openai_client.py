"""
OpenAI-compatible text completion client.

Uses AsyncOpenAI, so any endpoint speaking the chat completions API works
(OpenAI, Groq, Ollama) by setting ``base_url``.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

from openai import (
    APIConnectionError,
    APIError,
    AsyncOpenAI,
    AuthenticationError,
    RateLimitError,
)
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from erjobs.cancellation import CancelToken
from erjobs.config import Settings
from erjobs.exceptions import LLMError
from erjobs.logging import get_logger

logger = get_logger(__name__)

# Local servers such as Ollama ignore the key but the SDK requires one.
PLACEHOLDER_API_KEY = "not-needed"


class OpenAICompletion:
    """TextCompletion over the chat completions API."""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: str | None = None,
        base_url: str | None = None,
        temperature: float = 0.3,
        timeout: float = 60.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            model: Chat model name.
            api_key: API key; a placeholder is used for keyless local servers.
            base_url: OpenAI-compatible base URL (None = api.openai.com).
            temperature: Sampling temperature.
            timeout: Request timeout in seconds.
            client: Pre-built AsyncOpenAI client (tests).
        """
        self.model = model
        self.temperature = temperature
        self._client = client or AsyncOpenAI(
            api_key=api_key or PLACEHOLDER_API_KEY,
            base_url=base_url,
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> OpenAICompletion:
        return cls(
            model=settings.LLM_MODEL,
            api_key=settings.LLM_API_KEY,
            base_url=settings.LLM_BASE_URL,
            temperature=settings.LLM_TEMPERATURE,
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )

    async def close(self) -> None:
        await self._client.close()

    @retry(
        retry=retry_if_exception_type((RateLimitError, APIConnectionError)),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _create(self, params: dict[str, Any]) -> str:
        response = await self._client.chat.completions.create(**params)
        if not response.choices:
            raise LLMError("Empty response from model", context={"model": self.model})
        return response.choices[0].message.content or ""

    async def complete(
        self,
        system_text: str,
        user_text: str,
        cancel: CancelToken | None = None,
    ) -> str:
        """Return the model's reply to one system + user exchange.

        Raises:
            LLMError: If the request fails.
            JobCancelledError: If ``cancel`` fires first.
        """
        if cancel is not None:
            cancel.raise_if_cancelled()

        params: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_text},
                {"role": "user", "content": user_text},
            ],
            "temperature": self.temperature,
        }
        start_time = time.monotonic()

        try:
            if cancel is None:
                content = await self._create(params)
            else:
                content = await self._race(self._create(params), cancel)
        except LLMError:
            raise
        except AuthenticationError as e:
            raise LLMError(
                "Authentication with the completion endpoint failed",
                context={"model": self.model, "error_type": "auth"},
            ) from e
        except RateLimitError as e:
            raise LLMError(
                "Completion endpoint rate limit exceeded",
                context={"model": self.model, "error_type": "rate_limit"},
            ) from e
        except APIError as e:
            raise LLMError(
                f"Completion request failed: {e}",
                context={"model": self.model, "error_type": "api"},
            ) from e

        logger.debug(
            "Completion received",
            model=self.model,
            latency_ms=int((time.monotonic() - start_time) * 1000),
            chars=len(content),
        )
        return content

    @staticmethod
    async def _race(coro: Any, cancel: CancelToken) -> str:
        """Await ``coro`` unless ``cancel`` fires first."""
        task = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task not in done:
            task.cancel()
            cancel.raise_if_cancelled()
        return task.result()
