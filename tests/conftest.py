"""Shared fixtures: a controllable clock and fast session configs."""

from __future__ import annotations

import pytest

from src.pipeline_config import SessionConfig


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start_ms: int = 1_000_000) -> None:
        self.now_ms = start_ms

    def __call__(self) -> float:
        return self.now_ms / 1000

    def advance_ms(self, ms: int) -> None:
        self.now_ms += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> SessionConfig:
    """Session config with no retry sleeps."""
    return SessionConfig(
        gap_timeout_ms=5000,
        dispatch_max_attempts=3,
        dispatch_backoff_min_s=0.0,
        dispatch_backoff_max_s=0.0,
        dispatch_workers=2,
        corpus_max_attempts=3,
        corpus_backoff_s=0.0,
        context_weight=0.0,
    )
