"""Circuit breaker state primitives."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from origin_breaker.circuit_breaker.breaker import BreakerConfig


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(slots=True)
class BreakerRecord:
    """Mutable per-destination breaker record.

    Only ``CircuitBreaker`` transitions may change ``state``. Access must be
    serialized through ``BreakerRegistry.locked``.

    Attributes:
        destination: Origin this record tracks.
        config: Immutable thresholds for the destination.
        state: Current circuit state.
        counter: Requests observed since the last transition.
        unsuccessful_count: Failures observed since the last transition.
        last_transition_at: Timestamp of the most recent transition.
        consecutive_open_count: Re-opens after failed half-open windows without
            an intervening close.
    """

    destination: str
    config: BreakerConfig
    last_transition_at: datetime
    state: CircuitState = CircuitState.CLOSED
    counter: int = 0
    unsuccessful_count: int = 0
    consecutive_open_count: int = 0

    def snapshot(self) -> BreakerSnapshot:
        """Return an immutable copy of the mutable fields."""
        return BreakerSnapshot(
            destination=self.destination,
            state=self.state,
            counter=self.counter,
            unsuccessful_count=self.unsuccessful_count,
            last_transition_at=self.last_transition_at,
            consecutive_open_count=self.consecutive_open_count,
        )


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for metrics/logging."""

    destination: str
    state: CircuitState
    counter: int
    unsuccessful_count: int
    last_transition_at: datetime
    consecutive_open_count: int
