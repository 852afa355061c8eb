"""httpx transport wrapper adding bounded retries with exponential backoff."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import httpx
import structlog


logger = structlog.get_logger(__name__)

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE", "TRACE"})


def is_transient_status(status_code: int) -> bool:
    return status_code in (408, 429) or 500 <= status_code <= 599


class RetryTransport(httpx.AsyncBaseTransport):
    """Retries idempotent requests on 408/429/5xx responses and transport errors.

    Waits ``backoff_base_ms * 2 ** (attempt - 1)`` between attempts, so with the
    defaults: 200ms, 400ms, 800ms. Timeouts configured on the client apply to
    each attempt separately.
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        *,
        max_retries: int = 3,
        backoff_base_ms: int = 200,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._max_retries = max(0, int(max_retries))
        self._backoff_base = max(0, int(backoff_base_ms)) / 1000.0
        self._sleep = sleep

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if request.method.upper() not in IDEMPOTENT_METHODS:
            return await self._transport.handle_async_request(request)

        attempt = 0
        while True:
            try:
                response = await self._transport.handle_async_request(request)
            except httpx.TransportError as exc:
                if attempt >= self._max_retries:
                    raise
                attempt += 1
                logger.debug("Retrying after transport error", url=str(request.url), attempt=attempt, error=type(exc).__name__)
            else:
                if not is_transient_status(response.status_code) or attempt >= self._max_retries:
                    return response
                await response.aclose()
                attempt += 1
                logger.debug("Retrying after transient status", url=str(request.url), attempt=attempt, status=response.status_code)
            await self._sleep(self._backoff_base * (2 ** (attempt - 1)))

    async def aclose(self) -> None:
        await self._transport.aclose()
