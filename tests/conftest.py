import asyncio
import os
import sys
from datetime import datetime, timezone

import pytest

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from config import Settings  # noqa: E402
from forecast_cache import MemoryCacheStore  # noqa: E402


class FakeClock:
    """Wall clock and monotonic timer the tests move by hand."""

    def __init__(self, now=None):
        self.now = now or datetime(2025, 1, 28, 9, 30, tzinfo=timezone.utc)
        self.ticks = 1000.0

    def __call__(self):
        return self.now

    def timer(self):
        return self.ticks

    def advance(self, **kwargs):
        delta = sum(
            value * {"days": 86400, "hours": 3600, "minutes": 60, "seconds": 1}[unit]
            for unit, value in kwargs.items()
        )
        self.ticks += delta
        self.now = datetime.fromtimestamp(self.now.timestamp() + delta, tz=timezone.utc)


class FakeGenerator:
    """Stands in for the completion call; records every request."""

    def __init__(self, reply="Forecast text.", delay=0.0):
        self.reply = reply
        self.delay = delay
        self.calls = []
        self.error = None

    async def __call__(self, messages, max_tokens, **kwargs):
        self.calls.append({"messages": messages, "max_tokens": max_tokens, **kwargs})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply(messages) if callable(self.reply) else self.reply


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        openai_api_key="test-key",
        cache_dir=tmp_path / "cache",
        daily_min_interval_seconds=60,
        personal_min_interval_seconds=1,
        peer_wait_timeout_seconds=0.5,
        pillar_strategy="simplified",
        environment="development",
    )


@pytest.fixture
def stores():
    return MemoryCacheStore(), MemoryCacheStore()
