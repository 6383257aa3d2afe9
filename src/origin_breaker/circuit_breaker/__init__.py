"""Per-destination circuit breaker for outgoing HTTP requests.

Key behavior notes:
  - Each tracked destination (``scheme://host[:port]``) owns an independent
    record. Records live for the lifetime of the breaker.
  - ``CLOSED`` trips to ``OPEN`` once failures exceed ``failed_percentage`` of
    ``max_requests_closed``.
  - ``OPEN`` rejects every request until ``timeout_ms * 2**consecutive_open_count``
    has elapsed. The request that notices the elapsed timer moves the circuit
    to ``HALF_OPEN`` and is itself rejected.
  - ``HALF_OPEN`` lets every ``round(100 / half_open_percentage)``-th request
    through and evaluates the window after ``half_open_max_requests`` requests.
"""

from origin_breaker.circuit_breaker.breaker import (
    BreakerConfig,
    CircuitBreaker,
    is_failure_status,
)
from origin_breaker.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
    InvalidTransitionError,
)
from origin_breaker.circuit_breaker.metrics import (
    BreakerListener,
    CallbackListener,
    StateChangeCallback,
)
from origin_breaker.circuit_breaker.registry import BreakerRegistry
from origin_breaker.circuit_breaker.state import (
    BreakerRecord,
    BreakerSnapshot,
    CircuitState,
)

__all__ = [
    "BreakerConfig",
    "BreakerListener",
    "BreakerRecord",
    "BreakerRegistry",
    "BreakerSnapshot",
    "CallbackListener",
    "CircuitBreaker",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
    "InvalidTransitionError",
    "StateChangeCallback",
    "is_failure_status",
]
