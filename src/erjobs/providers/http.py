"""
Shared HTTP plumbing for JSON API providers.

Transport errors are retried a few times inside the client (tenacity);
everything that still fails is mapped onto a ProviderError subclass so
the pool runner can classify it.
"""

from __future__ import annotations

from typing import Any

import httpx
import orjson
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from erjobs.cancellation import CancelToken
from erjobs.exceptions import (
    ProviderAuthenticationError,
    ProviderDataError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)
from erjobs.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0


def _retry_after(response: httpx.Response) -> float | None:
    header = response.headers.get("retry-after")
    if not header:
        return None
    try:
        return float(header)
    except ValueError:
        return None


class JsonHttpClient:
    """httpx.AsyncClient wrapper returning decoded JSON."""

    def __init__(
        self,
        provider: str,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            provider: Provider name used in errors.
            base_url: Base URL every path is joined to.
            timeout: Per-request timeout in seconds.
            headers: Extra default headers.
            transport: Optional transport (tests use httpx.MockTransport).
        """
        if not base_url.startswith("https://"):
            raise ValueError(f"{provider} base URL must use https")
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = headers or {}
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                follow_redirects=True,
                headers={"Accept": "application/json", **self.headers},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _send(self, path: str, params: dict[str, Any]) -> httpx.Response:
        client = await self._get_client()
        return await client.get(path, params=params)

    async def get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        cancel: CancelToken | None = None,
    ) -> Any:
        """GET ``path`` and decode the JSON body.

        Raises:
            ProviderAuthenticationError: On 401/403.
            ProviderRateLimitError: On 429.
            ProviderTimeoutError: If the request timed out after retries.
            ProviderDataError: If the body is not valid JSON.
            ProviderError: On any other HTTP or transport failure.
        """
        if cancel is not None:
            cancel.raise_if_cancelled()

        try:
            response = await self._send(path, params or {})
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                self.provider,
                f"Request to {self.provider} timed out",
                context={"path": path},
            ) from e
        except httpx.TransportError as e:
            raise ProviderError(
                self.provider,
                f"Request to {self.provider} failed",
                context={"path": path, "error": str(e)},
            ) from e

        status = response.status_code
        if status in (401, 403):
            raise ProviderAuthenticationError(
                self.provider,
                f"{self.provider} rejected the API key",
                context={"path": path, "status_code": status},
            )
        if status == 429:
            retry_after = _retry_after(response)
            logger.warning("Rate limited", provider=self.provider, retry_after=retry_after)
            raise ProviderRateLimitError(
                self.provider,
                f"{self.provider} rate limit exceeded",
                retry_after=retry_after,
                context={"path": path},
            )
        if status >= 400:
            raise ProviderError(
                self.provider,
                f"{self.provider} API error: {status}",
                context={"path": path, "status_code": status},
            )

        try:
            return orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            raise ProviderDataError(
                self.provider,
                f"Invalid response format from {self.provider}",
                context={"path": path},
            ) from e
