"""
Async HTTP client wrapper for provider requests.
Includes retry logic, timeout management, error classification and metrics collection.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.utils.logging import get_logger
from shared.utils.metrics import PROVIDER_LATENCY, PROVIDER_REQUESTS

logger = get_logger(__name__)


class ProviderError(Exception):
    """Base class for upstream provider failures."""

    def __init__(self, provider: str, path: str, message: str, status: Optional[int] = None) -> None:
        super().__init__(f"{provider} {path}: {message}")
        self.provider = provider
        self.path = path
        self.status = status


class ProviderTransientError(ProviderError):
    """Timeout, 5xx, rate limit or malformed body that persisted through every retry."""


class ProviderUnavailableError(ProviderError):
    """The endpoint refused or does not exist (403/404); not retried this cycle."""


_UNAVAILABLE_STATUSES = (403, 404)


class ProviderHTTPClient:
    """
    Async HTTP client tailored for sports data provider APIs.
    Handles timeouts, retries with exponential backoff, and records metrics per request.
    """

    def __init__(
        self,
        provider_name: str,
        base_url: str,
        default_params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        max_retries: int | None = None,
        backoff_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._provider = provider_name
        self._base_url = base_url.rstrip("/")
        self._default_params = default_params or {}
        self._default_headers = headers or {"Accept": "application/json"}
        self._timeout = timeout_s or settings.provider_request_timeout_s
        self._max_retries = max(1, max_retries if max_retries is not None else settings.provider_max_retries)
        self._backoff_s = backoff_s if backoff_s is not None else settings.provider_retry_backoff_s
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()

    async def _backoff(self, attempt: int) -> None:
        if attempt < self._max_retries and self._backoff_s > 0:
            await asyncio.sleep(self._backoff_s * (2 ** (attempt - 1)))

    async def get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        endpoint: str = "unknown",
    ) -> Any:
        """
        Perform a GET request and decode the JSON body.

        Args:
            path: API path relative to base_url.
            params: Query parameters, merged over the client's default params.
            endpoint: Endpoint label for metrics and logs.

        Returns:
            The decoded JSON document.

        Raises:
            ProviderUnavailableError: On 403/404 (never retried).
            ProviderTransientError: When timeouts, 5xx, 429 or malformed bodies outlast every retry.
            ProviderError: On any other non-success status.
        """
        if not self._client:
            raise RuntimeError("ProviderHTTPClient not started. Call start() first.")

        merged_params = {**self._default_params, **(params or {})}
        last_error = "no attempt made"

        for attempt in range(1, self._max_retries + 1):
            start_time = time.perf_counter()
            status = "unknown"
            try:
                resp = await self._client.get(path, params=merged_params)
                status = str(resp.status_code)

                if resp.status_code in _UNAVAILABLE_STATUSES:
                    logger.warning(
                        "provider_endpoint_unavailable",
                        provider=self._provider,
                        endpoint=endpoint,
                        status=resp.status_code,
                    )
                    raise ProviderUnavailableError(
                        self._provider, path, f"HTTP {resp.status_code}", status=resp.status_code
                    )

                if resp.status_code == 429 or resp.status_code >= 500:
                    last_error = f"HTTP {resp.status_code}"
                    logger.warning(
                        "provider_server_error",
                        provider=self._provider,
                        endpoint=endpoint,
                        status=resp.status_code,
                        attempt=attempt,
                    )
                    await self._backoff(attempt)
                    continue

                if resp.status_code >= 400:
                    logger.error(
                        "provider_http_error",
                        provider=self._provider,
                        endpoint=endpoint,
                        status=resp.status_code,
                    )
                    raise ProviderError(
                        self._provider, path, f"HTTP {resp.status_code}", status=resp.status_code
                    )

                try:
                    body = resp.json()
                except ValueError:
                    status = "malformed"
                    last_error = "malformed JSON body"
                    logger.warning(
                        "provider_malformed_body",
                        provider=self._provider,
                        endpoint=endpoint,
                        attempt=attempt,
                    )
                    await self._backoff(attempt)
                    continue

                logger.debug(
                    "provider_request_success",
                    provider=self._provider,
                    endpoint=endpoint,
                    status=resp.status_code,
                    latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
                return body

            except httpx.TimeoutException:
                status = "timeout"
                last_error = "timeout"
                logger.warning(
                    "provider_timeout",
                    provider=self._provider,
                    endpoint=endpoint,
                    attempt=attempt,
                )
                await self._backoff(attempt)

            except httpx.TransportError as exc:
                status = "transport_error"
                last_error = str(exc) or exc.__class__.__name__
                logger.warning(
                    "provider_transport_error",
                    provider=self._provider,
                    endpoint=endpoint,
                    error=last_error,
                    attempt=attempt,
                )
                await self._backoff(attempt)

            finally:
                PROVIDER_LATENCY.labels(provider=self._provider).observe(time.perf_counter() - start_time)
                PROVIDER_REQUESTS.labels(provider=self._provider, endpoint=endpoint, status=status).inc()

        logger.error(
            "provider_retries_exhausted",
            provider=self._provider,
            endpoint=endpoint,
            attempts=self._max_retries,
            error=last_error,
        )
        raise ProviderTransientError(self._provider, path, f"{last_error} after {self._max_retries} attempts")
