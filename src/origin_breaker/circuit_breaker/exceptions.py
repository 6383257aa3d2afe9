"""Circuit breaker exceptions.

Callers can distinguish between:
  - A request being rejected locally because the circuit is shedding load.
  - A state machine defect (an attempted no-op transition).

``CircuitOpenError`` is also an ``httpx.TransportError`` so that generic httpx
error handling treats it like any other unavailable destination.
"""

import httpx

from origin_breaker.circuit_breaker.state import CircuitState


class CircuitBreakerError(Exception):
    """Base exception for the circuit breaker package."""


class CircuitOpenError(CircuitBreakerError, httpx.TransportError):
    """Raised when a request is rejected without contacting the destination.

    Attributes:
        destination: Origin whose breaker rejected the request.
        state: Breaker state that produced the rejection.
        status_code: Always ``503``.
    """

    status_code = 503

    def __init__(
        self,
        destination: str,
        state: CircuitState,
        *,
        request: httpx.Request | None = None,
    ) -> None:
        """Initialize a rejection payload.

        Args:
            destination: Origin whose breaker rejected the request.
            state: Breaker state that produced the rejection.
            request: Originating request, when known.
        """
        self.destination = destination
        self.state = state
        httpx.TransportError.__init__(
            self,
            f"service_unavailable: {destination} circuit={state}",
            request=request,
        )


class InvalidTransitionError(CircuitBreakerError):
    """Raised when a transition to the current state is requested."""

    def __init__(self, destination: str, state: CircuitState) -> None:
        self.destination = destination
        self.state = state
        super().__init__(f"invalid_transition: {destination} {state} -> {state}")
