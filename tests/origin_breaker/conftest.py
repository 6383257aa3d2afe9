from __future__ import annotations

import pytest

import origin_breaker.circuit_breaker.breaker as breaker_mod
import origin_breaker.circuit_breaker.registry as registry_mod
from tests.origin_breaker.support.fakes import FakeClock, FakeLogger, RecordingListener


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Freeze breaker time and let tests advance it explicitly."""
    fake_clock = FakeClock()
    monkeypatch.setattr(breaker_mod, "_utcnow", fake_clock.now)
    monkeypatch.setattr(registry_mod, "_utcnow", fake_clock.now)
    return fake_clock


@pytest.fixture
def listener() -> RecordingListener:
    """Provide a fresh recording listener per test."""
    return RecordingListener()
