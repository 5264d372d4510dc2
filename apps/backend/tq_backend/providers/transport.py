"""Outbound HTTP transports for provider adapters"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from .base import ProviderAPIError, ProviderRateLimitError

logger = logging.getLogger(__name__)


class ProviderTransport:
    """Single attempt per call; network errors surface as ProviderAPIError"""

    TIMEOUT_SECONDS: float = 30.0

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float | None = None,
    ):
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout_seconds or self.TIMEOUT_SECONDS

    def _get_client(self) -> httpx.AsyncClient:
        """Lazily created so adapters can be built at import time"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
            )
            self._owns_client = True
        return self._client

    async def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        client = self._get_client()
        try:
            return await client.request(method, url, headers=headers, params=params, json=json)
        except httpx.TimeoutException as e:
            raise ProviderAPIError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise ProviderAPIError(f"Request failed: {e}") from e

    async def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        return await self._send(method, url, headers, params=params, json=json)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None


class RateAwareTransport(ProviderTransport):
    """
    On a terminal rate-limit response, sleeps until the advertised reset
    (capped) and retries exactly once. A second rate-limit raises
    ProviderRateLimitError to the adapter.
    """

    MAX_WAIT_SECONDS: float = 60.0
    RATE_LIMIT_STATUSES: frozenset[int] = frozenset({403, 429})

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float | None = None,
        max_wait_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(client=client, timeout_seconds=timeout_seconds)
        self._max_wait = max_wait_seconds if max_wait_seconds is not None else self.MAX_WAIT_SECONDS
        self._sleep = sleep
        self._clock = clock

    def _rate_limit_reset(self, response: httpx.Response) -> int | None:
        """Reset epoch when the response is a terminal rate limit, else None"""
        if response.status_code not in self.RATE_LIMIT_STATUSES:
            return None
        if response.headers.get("x-ratelimit-remaining") != "0":
            return None
        try:
            return int(response.headers.get("x-ratelimit-reset", ""))
        except (TypeError, ValueError):
            return None

    def _wait_seconds(self, reset_at: int) -> float:
        return min(max(0.0, reset_at - self._clock()) + 1.0, self._max_wait)

    async def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        response = await self._send(method, url, headers, params=params, json=json)
        reset_at = self._rate_limit_reset(response)
        if reset_at is None:
            return response

        wait_seconds = self._wait_seconds(reset_at)
        logger.warning(
            f"Rate limit exhausted on {method} {url}, retrying in {wait_seconds:.0f}s",
            extra={"reset_at": reset_at, "wait_seconds": wait_seconds},
        )
        await self._sleep(wait_seconds)

        response = await self._send(method, url, headers, params=params, json=json)
        second_reset = self._rate_limit_reset(response)
        if second_reset is not None:
            raise ProviderRateLimitError(reset_at=second_reset)
        return response
