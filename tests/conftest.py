"""Pytest configuration and shared fixtures."""

import pytest

from ircbridge.config import AccountConfig
from ircbridge.ratelimit import RateLimitConfig, RateLimiter


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    """Rate limiter with 3 requests per 60s on a fake clock."""
    return RateLimiter(RateLimitConfig(max_requests=3, window_seconds=60.0), clock=clock)


@pytest.fixture
def make_account():
    """Factory for AccountConfig with sensible test defaults."""
    def _make(**overrides) -> AccountConfig:
        data = {"server": "irc.example.org", "nickname": "bot"}
        data.update(overrides)
        return AccountConfig(**data)
    return _make
