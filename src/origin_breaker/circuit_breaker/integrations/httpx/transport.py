"""httpx transports that gate and account requests through a circuit breaker.

The wrapped transport performs the network I/O. The breaker is consulted
before it is called and after it returns or raises.
"""

from __future__ import annotations

import time
from typing import Any

import httpx

from origin_breaker.circuit_breaker.breaker import CircuitBreaker


def _elapsed_since(start: float) -> float:
    return max(time.monotonic() - start, 0.0)


class CircuitBreakerTransport(httpx.BaseTransport):
    """Synchronous transport wrapper for ``httpx.Client``."""

    def __init__(
        self,
        breaker: CircuitBreaker,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Wrap ``transport`` with breaker gating.

        Args:
            breaker: Breaker deciding which requests may be sent.
            transport: Transport that performs I/O. Defaults to
                ``httpx.HTTPTransport()``.
        """
        self._breaker = breaker
        self._transport = httpx.HTTPTransport() if transport is None else transport

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        """Send ``request`` unless the breaker rejects it."""
        if self._breaker.before_request(request.url, request=request) is None:
            return self._transport.handle_request(request)

        start = time.monotonic()
        try:
            response = self._transport.handle_request(request)
        except Exception as exc:
            self._breaker.after_error(
                exc, request=request, elapsed=_elapsed_since(start)
            )
            raise
        self._breaker.after_response(
            response, request=request, elapsed=_elapsed_since(start)
        )
        return response

    def close(self) -> None:
        """Close the wrapped transport."""
        self._transport.close()


class AsyncCircuitBreakerTransport(httpx.AsyncBaseTransport):
    """Asynchronous transport wrapper for ``httpx.AsyncClient``."""

    def __init__(
        self,
        breaker: CircuitBreaker,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Wrap ``transport`` with breaker gating.

        Args:
            breaker: Breaker deciding which requests may be sent.
            transport: Transport that performs I/O. Defaults to
                ``httpx.AsyncHTTPTransport()``.
        """
        self._breaker = breaker
        self._transport = (
            httpx.AsyncHTTPTransport() if transport is None else transport
        )

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        """Send ``request`` unless the breaker rejects it."""
        if self._breaker.before_request(request.url, request=request) is None:
            return await self._transport.handle_async_request(request)

        start = time.monotonic()
        try:
            response = await self._transport.handle_async_request(request)
        except Exception as exc:
            self._breaker.after_error(
                exc, request=request, elapsed=_elapsed_since(start)
            )
            raise
        self._breaker.after_response(
            response, request=request, elapsed=_elapsed_since(start)
        )
        return response

    async def aclose(self) -> None:
        """Close the wrapped transport."""
        await self._transport.aclose()


def build_client(
    breaker: CircuitBreaker,
    *,
    transport: httpx.BaseTransport | None = None,
    **client_kwargs: Any,
) -> httpx.Client:
    """Build an ``httpx.Client`` whose requests pass through ``breaker``."""
    return httpx.Client(
        transport=CircuitBreakerTransport(breaker, transport=transport),
        **client_kwargs,
    )


def build_async_client(
    breaker: CircuitBreaker,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    **client_kwargs: Any,
) -> httpx.AsyncClient:
    """Build an ``httpx.AsyncClient`` whose requests pass through ``breaker``."""
    return httpx.AsyncClient(
        transport=AsyncCircuitBreakerTransport(breaker, transport=transport),
        **client_kwargs,
    )
