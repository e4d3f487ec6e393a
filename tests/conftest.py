"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from allclear.health.cache import CacheStore
from allclear.health.engine import HealthEngine
from allclear.health.rate_limit import RateLimiter
from allclear.health.registry import CheckRegistry


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2020, 1, 1, 0, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def cache() -> CacheStore:
    """In-memory cache store, fresh per test."""
    return CacheStore()


@pytest.fixture
def limiter(cache: CacheStore, clock: FakeClock) -> RateLimiter:
    return RateLimiter(cache, clock=clock)


@pytest.fixture
def registry() -> CheckRegistry:
    return CheckRegistry(env="test", default_timeout=10)


@pytest.fixture
def engine(registry: CheckRegistry, limiter: RateLimiter) -> HealthEngine:
    return HealthEngine(registry, limiter=limiter)
