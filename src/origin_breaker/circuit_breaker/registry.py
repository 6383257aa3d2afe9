"""Per-destination breaker record registry.

The registry owns one independent ``BreakerRecord`` and one lock per
destination. Records are created lazily on first reference and never deleted.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from origin_breaker.circuit_breaker.state import BreakerRecord, BreakerSnapshot

if TYPE_CHECKING:
    from origin_breaker.circuit_breaker.breaker import BreakerConfig


def _utcnow() -> datetime:
    return datetime.now(UTC)


class BreakerRegistry:
    """In-memory destination registry with per-destination thread locks."""

    def __init__(
        self,
        *,
        default_config: BreakerConfig,
        destination_configs: Mapping[str, BreakerConfig] | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            default_config: Thresholds used for destinations without an override.
            destination_configs: Optional per-destination threshold overrides.
        """
        self._default_config = default_config
        self._destination_configs = dict(destination_configs or {})
        self._records: dict[str, BreakerRecord] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def config_for(self, destination: str) -> BreakerConfig:
        """Return the thresholds that apply to ``destination``."""
        return self._destination_configs.get(destination, self._default_config)

    def get_or_create(self, destination: str) -> BreakerRecord:
        """Return the record for ``destination``, creating a closed one if missing."""
        record = self._records.get(destination)
        if record is not None:
            return record

        with self._registry_lock:
            record = self._records.get(destination)
            if record is None:
                record = BreakerRecord(
                    destination=destination,
                    config=self.config_for(destination),
                    last_transition_at=_utcnow(),
                )
                self._locks[destination] = threading.Lock()
                self._records[destination] = record
            return record

    @contextmanager
    def locked(self, destination: str) -> Iterator[BreakerRecord]:
        """Yield the record for ``destination`` while holding its lock."""
        record = self.get_or_create(destination)
        with self._locks[destination]:
            yield record

    def snapshot(self, destination: str) -> BreakerSnapshot:
        """Return a consistent snapshot of the record for ``destination``."""
        with self.locked(destination) as record:
            return record.snapshot()

    def destinations(self) -> tuple[str, ...]:
        """Return destinations that currently own a record."""
        with self._registry_lock:
            return tuple(self._records)
