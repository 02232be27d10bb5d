"""Async HTTP client with retry and exponential backoff.

Shared by every payer adapter:
- One pooled ``httpx.AsyncClient`` per adapter instance
- Per-attempt timeout
- Exponential backoff retry on 5xx and transport failures
- 4xx responses returned to the caller on the first attempt
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from .. import config
from ..errors import PayerServiceUnavailableError

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class RetryingHttpClient:
    """HTTP client that retries transient payer failures.

    Client errors (4xx) are returned immediately since they are not
    transient; the caller decides what they mean. Server errors (5xx) and
    network/timeout errors are retried with delays of ``retry_delay``,
    ``2 * retry_delay``, ``4 * retry_delay``... Once attempts are exhausted a
    ``PayerServiceUnavailableError`` is raised.

    Cancelling the calling task interrupts the loop at the next await
    (request or backoff sleep).
    """

    def __init__(
        self,
        payer_code: str,
        client: httpx.AsyncClient | None = None,
        max_attempts: int = config.MAX_ATTEMPTS,
        retry_delay: float = config.RETRY_DELAY_SECONDS,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Initialize the client.

        Args:
            payer_code: Payer code attached to raised errors and log lines
            client: Pre-built httpx client (tests inject a MockTransport)
            max_attempts: Total attempts per request (default: 3)
            retry_delay: Initial backoff delay in seconds (default: 1)
            timeout: Per-attempt timeout in seconds (default: 30)
            sleep: Coroutine used for backoff delays
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.payer_code = payer_code
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._sleep = sleep
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    async def fetch(
        self,
        method: str,
        url: str,
        params: Any = None,
        data: dict[str, Any] | None = None,
        json_data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send a request, retrying 5xx and transport errors.

        Args:
            method: HTTP method
            url: Absolute URL
            params: Query parameters (mapping or list of pairs)
            data: Form-encoded body
            json_data: JSON body
            headers: Request headers

        Returns:
            The first response with status below 500

        Raises:
            PayerServiceUnavailableError: If every attempt failed
        """
        client = self._get_client()
        last_error: str | None = None

        for attempt in range(self.max_attempts):
            try:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    data=data,
                    json=json_data,
                    headers=headers,
                    timeout=self.timeout,
                )

                if response.status_code < 500:
                    return response

                last_error = f"HTTP {response.status_code}: {response.reason_phrase}"

            except httpx.TransportError as e:
                last_error = str(e) or type(e).__name__

            if attempt < self.max_attempts - 1:
                delay = self.retry_delay * (2**attempt)
                logger.warning(
                    f"[{self.payer_code}] {method} {url} failed "
                    f"(attempt {attempt + 1}/{self.max_attempts}), "
                    f"retrying in {delay}s: {last_error}"
                )
                await self._sleep(delay)

        logger.error(
            f"[{self.payer_code}] {method} {url} failed after "
            f"{self.max_attempts} attempts: {last_error}"
        )
        raise PayerServiceUnavailableError(
            self.payer_code,
            last_error or "Service unavailable after retries",
        )

    async def get(
        self,
        url: str,
        params: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Make a GET request with retry."""
        return await self.fetch("GET", url, params=params, headers=headers)

    async def post(
        self,
        url: str,
        data: dict[str, Any] | None = None,
        json_data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Make a POST request with retry."""
        return await self.fetch(
            "POST", url, data=data, json_data=json_data, headers=headers
        )

    async def probe(
        self,
        method: str,
        url: str,
        timeout: float = config.HEALTH_CHECK_TIMEOUT_SECONDS,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a single request without retry (used by health checks)."""
        return await self._get_client().request(method, url, timeout=timeout, **kwargs)

    async def aclose(self) -> None:
        """Close the underlying client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RetryingHttpClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
