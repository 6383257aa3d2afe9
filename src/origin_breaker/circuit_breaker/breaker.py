"""Core circuit breaker implementation."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, assert_never

import httpx
import structlog

from origin_breaker.circuit_breaker.exceptions import (
    CircuitOpenError,
    InvalidTransitionError,
)
from origin_breaker.circuit_breaker.metrics import BreakerListener
from origin_breaker.circuit_breaker.registry import BreakerRegistry
from origin_breaker.circuit_breaker.state import (
    BreakerRecord,
    BreakerSnapshot,
    CircuitState,
)
from origin_breaker.destinations import normalize_destination, origin_of
from origin_breaker.errors import ConfigurationError
from origin_breaker.logging import (
    StructuredLogger,
    log_error,
    log_exception,
    log_info,
    log_warning,
)

if TYPE_CHECKING:
    from origin_breaker.settings import BreakerSettings

_Transition = tuple[str, CircuitState, CircuitState, int]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def is_failure_status(status: int | None) -> bool:
    """Return true when ``status`` counts as a destination failure.

    A missing status means no response was received at all.
    """
    return status is None or 500 <= status < 600


@dataclass(frozen=True, slots=True)
class BreakerConfig:
    """Per-destination circuit breaker thresholds.

    Attributes:
        timeout_ms: Base time an open circuit waits before probing. Doubles with
            every consecutive failed half-open window.
        max_requests_closed: Denominator of the closed-state failure ratio.
        failed_percentage: Failure percentage that must be exceeded to trip.
        half_open_max_requests: Requests observed in half-open per evaluation.
        half_open_percentage: Share of half-open requests sent to the destination.
        half_to_close_min_percentage: Success percentage among sampled requests
            that must be exceeded to close again.
        acceptable_timeout_ms: Responses slower than this are logged as slow.
    """

    timeout_ms: int = 10_000
    max_requests_closed: int = 50
    failed_percentage: float = 40
    half_open_max_requests: int = 100
    half_open_percentage: float = 10
    half_to_close_min_percentage: float = 80
    acceptable_timeout_ms: int = 4_500

    def __post_init__(self) -> None:
        if self.timeout_ms < 0:
            raise ConfigurationError("timeout_ms must be >= 0")
        if self.max_requests_closed < 1:
            raise ConfigurationError("max_requests_closed must be >= 1")
        if not 0 <= self.failed_percentage <= 100:
            raise ConfigurationError("failed_percentage must be within 0..100")
        if self.half_open_max_requests < 1:
            raise ConfigurationError("half_open_max_requests must be >= 1")
        if not 0 < self.half_open_percentage <= 100:
            raise ConfigurationError("half_open_percentage must be within (0, 100]")
        if not 0 <= self.half_to_close_min_percentage <= 100:
            raise ConfigurationError(
                "half_to_close_min_percentage must be within 0..100"
            )
        if self.acceptable_timeout_ms < 0:
            raise ConfigurationError("acceptable_timeout_ms must be >= 0")

    @property
    def sample_period(self) -> int:
        """Every ``sample_period``-th half-open request reaches the destination."""
        return round(100 / self.half_open_percentage)

    def open_duration(self, consecutive_open_count: int) -> timedelta:
        """Return how long the circuit stays open after ``consecutive_open_count``."""
        return timedelta(milliseconds=self.timeout_ms * 2**consecutive_open_count)


class CircuitBreaker:
    """Per-destination circuit breaker for outgoing HTTP requests.

    ``before_request`` gates a request before it is sent. ``after_response``
    and ``after_error`` account for its outcome. Requests to destinations that
    are not tracked pass through untouched.
    """

    def __init__(
        self,
        destinations: Iterable[str],
        *,
        config: BreakerConfig | None = None,
        destination_configs: Mapping[str, BreakerConfig] | None = None,
        listeners: Sequence[BreakerListener] | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        """Build a circuit breaker for a set of destinations.

        Args:
            destinations: Tracked origins (``scheme://host[:port]``).
            config: Default thresholds. Defaults to ``BreakerConfig()``.
            destination_configs: Optional per-destination threshold overrides.
            listeners: Optional listener hooks for breaker events.
            logger: Structured logger. Defaults to a structlog logger.

        Raises:
            ConfigurationError: When a destination identifier is malformed or an
                override names a destination that is not tracked.
        """
        self.config = BreakerConfig() if config is None else config
        self._destinations = frozenset(
            normalize_destination(destination) for destination in destinations
        )
        overrides = {
            normalize_destination(destination): destination_config
            for destination, destination_config in (destination_configs or {}).items()
        }
        untracked = sorted(set(overrides) - self._destinations)
        if untracked:
            raise ConfigurationError(
                f"overrides reference untracked destinations: {', '.join(untracked)}"
            )
        self._registry = BreakerRegistry(
            default_config=self.config, destination_configs=overrides
        )
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._logger: StructuredLogger = (
            structlog.stdlib.get_logger(__name__) if logger is None else logger
        )

    @classmethod
    def from_settings(
        cls,
        settings: BreakerSettings,
        *,
        listeners: Sequence[BreakerListener] | None = None,
        logger: StructuredLogger | None = None,
    ) -> CircuitBreaker:
        """Build a breaker from environment-driven settings."""
        return cls(
            settings.destinations,
            config=settings.default_config(),
            destination_configs=settings.destination_configs(),
            listeners=listeners,
            logger=logger,
        )

    @property
    def destinations(self) -> frozenset[str]:
        """Tracked destination origins."""
        return self._destinations

    @property
    def registry(self) -> BreakerRegistry:
        """Registry holding the per-destination records."""
        return self._registry

    def destination_for(self, url: str | httpx.URL) -> str | None:
        """Return the tracked origin of ``url``, or ``None`` when untracked."""
        destination = origin_of(url)
        if destination in self._destinations:
            return destination
        return None

    def snapshot(self, destination: str) -> BreakerSnapshot:
        """Return a point-in-time view of one tracked destination."""
        normalized = normalize_destination(destination)
        if normalized not in self._destinations:
            raise KeyError(destination)
        return self._registry.snapshot(normalized)

    def before_request(
        self,
        url: str | httpx.URL,
        *,
        request: httpx.Request | None = None,
    ) -> str | None:
        """Decide whether a request may be sent.

        Args:
            url: Request URL.
            request: Originating request, attached to a rejection.

        Returns:
            The tracked destination, or ``None`` when ``url`` is untracked.

        Raises:
            CircuitOpenError: When the request is rejected locally.
        """
        destination = self.destination_for(url)
        if destination is None:
            return None

        with self._locked(destination) as (record, transitions):
            rejected_by = self._gate(record, transitions)

        if rejected_by is not None:
            self._notify("on_call_rejected", destination, rejected_by)
            raise CircuitOpenError(destination, rejected_by, request=request)
        return destination

    @contextmanager
    def _locked(
        self, destination: str
    ) -> Iterator[tuple[BreakerRecord, list[_Transition]]]:
        """Hold the destination lock, then report queued transitions once released."""
        transitions: list[_Transition] = []
        try:
            with self._registry.locked(destination) as record:
                yield record, transitions
        except InvalidTransitionError as error:
            log_error(
                self._logger,
                "circuit_breaker_invalid_transition",
                destination=error.destination,
                state=str(error.state),
            )
            raise
        self._emit_state_changes(transitions)

    def _gate(
        self, record: BreakerRecord, transitions: list[_Transition]
    ) -> CircuitState | None:
        """Return ``None`` to allow the request, else the rejecting state."""
        record.counter += 1
        state = record.state
        if state == CircuitState.CLOSED:
            return None
        if state == CircuitState.OPEN:
            if self._backoff_elapsed(record):
                self._transition(
                    record, CircuitState.OPEN, CircuitState.HALF_OPEN, transitions
                )
            return CircuitState.OPEN
        if state == CircuitState.HALF_OPEN:
            return self._gate_half_open(record, transitions)
        assert_never(state)

    @staticmethod
    def _backoff_elapsed(record: BreakerRecord) -> bool:
        try:
            reopen_at = record.last_transition_at + record.config.open_duration(
                record.consecutive_open_count
            )
        except OverflowError:
            # A backoff reaching past datetime.max never elapses.
            return False
        return _utcnow() >= reopen_at

    def _gate_half_open(
        self, record: BreakerRecord, transitions: list[_Transition]
    ) -> CircuitState | None:
        config = record.config
        allowed = record.counter % config.sample_period == 0
        if not allowed:
            # Local rejections count as failures; the evaluation subtracts them.
            record.unsuccessful_count += 1

        if record.counter >= config.half_open_max_requests:
            sampled = config.half_open_max_requests * config.half_open_percentage / 100
            rejected_locally = config.half_open_max_requests - sampled
            effective_failures = record.unsuccessful_count - rejected_locally
            successes = sampled - effective_failures
            if successes > sampled * config.half_to_close_min_percentage / 100:
                target = CircuitState.CLOSED
            else:
                target = CircuitState.OPEN
            self._transition(record, CircuitState.HALF_OPEN, target, transitions)

        return None if allowed else CircuitState.HALF_OPEN

    def _transition(
        self,
        record: BreakerRecord,
        old: CircuitState,
        new: CircuitState,
        transitions: list[_Transition],
    ) -> None:
        """Move ``record`` from ``old`` to ``new`` and queue the event.

        Must be called while holding the destination lock. Logging and listener
        fan-out for queued events happen once the lock is released.
        """
        if old == new:
            raise InvalidTransitionError(record.destination, old)

        record.state = new
        record.counter = 0
        record.unsuccessful_count = 0
        record.last_transition_at = _utcnow()

        if old == CircuitState.HALF_OPEN and new == CircuitState.OPEN:
            record.consecutive_open_count += 1
        elif not (old == CircuitState.OPEN and new == CircuitState.HALF_OPEN):
            record.consecutive_open_count = 0

        transitions.append(
            (record.destination, old, new, record.consecutive_open_count)
        )

    def record_success(self, url: str | httpx.URL, *, elapsed: float = 0.0) -> None:
        """Record a completed request; successes leave the counters untouched."""
        destination = self.destination_for(url)
        if destination is None:
            return
        self._check_latency(destination, elapsed)
        self._notify("on_call_succeeded", destination, elapsed)

    def record_failure(
        self,
        url: str | httpx.URL,
        *,
        exc: Exception | None = None,
        elapsed: float = 0.0,
    ) -> None:
        """Count one failed request and trip a closed circuit past its threshold."""
        destination = self.destination_for(url)
        if destination is None:
            return

        with self._locked(destination) as (record, transitions):
            record.unsuccessful_count += 1
            config = record.config
            if record.state == CircuitState.CLOSED:
                failed = record.unsuccessful_count / config.max_requests_closed * 100
                if config.failed_percentage < failed:
                    self._transition(
                        record, CircuitState.CLOSED, CircuitState.OPEN, transitions
                    )

        self._check_latency(destination, elapsed)
        self._notify("on_call_failed", destination, exc, elapsed)

    def after_response(
        self,
        response: httpx.Response,
        *,
        request: httpx.Request | None = None,
        elapsed: float = 0.0,
    ) -> None:
        """Account for a response received from a destination.

        Args:
            response: Response from the destination.
            request: Originating request. Defaults to ``response.request``.
            elapsed: Seconds spent waiting for the response.
        """
        url = (response.request if request is None else request).url
        if is_failure_status(response.status_code):
            self.record_failure(url, elapsed=elapsed)
        else:
            self.record_success(url, elapsed=elapsed)

    def after_error(
        self,
        exc: Exception,
        *,
        request: httpx.Request | None = None,
        status: int | None = None,
        elapsed: float = 0.0,
    ) -> None:
        """Account for a request that ended in an error.

        Local rejections are ignored; the gate has already counted them.
        """
        if isinstance(exc, CircuitOpenError):
            return
        if request is None and isinstance(exc, httpx.RequestError):
            try:
                request = exc.request
            except RuntimeError:
                request = None
        if request is None or not is_failure_status(status):
            return
        self.record_failure(request.url, exc=exc, elapsed=elapsed)

    def _check_latency(self, destination: str, elapsed: float) -> None:
        threshold_ms = self._registry.config_for(destination).acceptable_timeout_ms
        if elapsed * 1000 > threshold_ms:
            log_warning(
                self._logger,
                "circuit_breaker_slow_response",
                destination=destination,
                elapsed=elapsed,
                acceptable_timeout_ms=threshold_ms,
            )

    def _emit_state_changes(self, transitions: list[_Transition]) -> None:
        for destination, old, new, consecutive_open_count in transitions:
            log_info(
                self._logger,
                "circuit_breaker_state_changed",
                destination=destination,
                old=str(old),
                new=str(new),
                consecutive_open_count=consecutive_open_count,
            )
            self._notify("on_state_change", destination, old, new)

    def _notify(self, hook: str, destination: str, *args: object) -> None:
        for listener in self._listeners:
            try:
                getattr(listener, hook)(destination, *args)
            except Exception:
                log_exception(
                    self._logger,
                    "circuit_breaker_listener_failed",
                    destination=destination,
                    hook=hook,
                )
