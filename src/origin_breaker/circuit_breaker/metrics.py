"""Observability hooks for circuit breakers."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from origin_breaker.circuit_breaker.state import CircuitState

StateChangeCallback = Callable[[CircuitState, CircuitState, str], object]


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Notes:
        Hooks run synchronously on the requesting thread or event loop, after
        the destination lock has been released. Their return values and
        exceptions are ignored by the breaker.
    """

    def on_state_change(
        self, destination: str, old: CircuitState, new: CircuitState
    ) -> None:
        """Handle circuit state transitions."""

    def on_call_rejected(self, destination: str, state: CircuitState) -> None:
        """Handle a request rejected locally by the breaker."""

    def on_call_succeeded(self, destination: str, elapsed: float) -> None:
        """Handle a request that reached the destination and succeeded."""

    def on_call_failed(
        self, destination: str, exc: Exception | None, elapsed: float
    ) -> None:
        """Handle a request that reached the destination and failed."""


class CallbackListener:
    """Adapt a plain ``(from_state, to_state, destination)`` callback."""

    def __init__(self, callback: StateChangeCallback) -> None:
        self._callback = callback

    def on_state_change(
        self, destination: str, old: CircuitState, new: CircuitState
    ) -> None:
        """Forward the transition to the wrapped callback."""
        self._callback(old, new, destination)

    def on_call_rejected(self, destination: str, state: CircuitState) -> None:
        """No-op for this listener."""
        _ = (destination, state)

    def on_call_succeeded(self, destination: str, elapsed: float) -> None:
        """No-op for this listener."""
        _ = (destination, elapsed)

    def on_call_failed(
        self, destination: str, exc: Exception | None, elapsed: float
    ) -> None:
        """No-op for this listener."""
        _ = (destination, exc, elapsed)
