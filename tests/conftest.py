"""Shared fixtures for the contact relay tests."""

import asyncio

import pytest

from contact_relay.dispatch import MessageSendError
from contact_relay.models import ClientConfiguration
from contact_relay.pipeline import SubmissionPipeline
from contact_relay.prometheus import ContactMetrics
from contact_relay.rate_limit import RateLimiter, SlidingWindowPolicy
from contact_relay.registry import ClientRegistry

TENANT_KEY = "tenantKey123"
HONEYPOT = "email_h_v"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingHandler:
    """Handler double that appends its name to a shared call log."""

    def __init__(self, name, calls, *, fail=False, error=None, delay=0.0):
        self.name = name
        self.calls = calls
        self.fail = fail
        self.error = error
        self.delay = delay
        self.received = []

    async def send(self, message, client):
        self.calls.append(self.name)
        self.received.append((message, client))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.fail:
            raise MessageSendError(f"{self.name} is down", handler=self.name)


@pytest.fixture
def tenant():
    return ClientConfiguration(
        public_key=TENANT_KEY,
        name="Example Ltd",
        recipients=("contact@example.com",),
    )


@pytest.fixture
def registry(tenant):
    return ClientRegistry([tenant])


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def valid_fields():
    return {
        "name": "Ann",
        "message": "Hello",
        "email": "ann@example.com",
        HONEYPOT: "",
        "realm": TENANT_KEY,
    }


@pytest.fixture
def make_pipeline(registry, clock):
    """Factory building a pipeline with a generous limit unless told otherwise."""

    def _make(handlers=(), limit=100, window=60.0, observer=None):
        limiter = RateLimiter(SlidingWindowPolicy(limit=limit, window_seconds=window), clock=clock)
        return SubmissionPipeline(
            registry,
            limiter,
            handlers=handlers,
            observer=observer or ContactMetrics(),
        )

    return _make
