"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before anything imports the settings module so
that tests never pick up a developer's .env file.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("APP_RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("APP_UNMATCHED_POLICY", "admit")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from rate_gate.adapters.state_store.in_memory import InMemoryClientStateStore
from rate_gate.services.policy_binder import PolicyBinder, region_classifier
from rate_gate.services.rate_limiter import RateLimiter


class FakeClock:
    """Deterministic clock; call it to read, advance it to let time pass."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryClientStateStore:
    return InMemoryClientStateStore()


@pytest.fixture
def binder() -> PolicyBinder:
    return PolicyBinder(classifier=region_classifier)


@pytest.fixture
def limiter(
    binder: PolicyBinder, store: InMemoryClientStateStore, clock: FakeClock
) -> RateLimiter:
    return RateLimiter(binder, store=store, clock=clock)
