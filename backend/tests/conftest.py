"""Shared test fixtures for the DropSense backend test suite."""

import pytest
import fakeredis
from datetime import datetime, timedelta, timezone

from dropsense.models.events import BehaviorEvent
from dropsense.services.advisory import TemplateAdvisor


# ── Redis ────────────────────────────────────────────────────────────────

@pytest.fixture
def r():
    """Fresh fakeredis instance per test (decode_responses=True like production)."""
    return fakeredis.FakeRedis(decode_responses=True)


# ── Time Freezing ───────────────────────────────────────────────────────

@pytest.fixture
def frozen_now():
    """Return a fixed 'now' datetime for deterministic scoring tests.

    Default: 2026-02-15T12:00:00Z (noon UTC on a Sunday).
    """
    return datetime(2026, 2, 15, 12, 0, 0, tzinfo=timezone.utc)


# ── Advisors ────────────────────────────────────────────────────────────

class FailingAdvisor:
    """Advisor whose remote side is always down: behaves like AnthropicAdvisor
    after its retry budget is spent."""

    name = "failing"

    def __init__(self):
        self.calls = 0

    async def advise(self, prompt, fallback, system=None):
        self.calls += 1
        return fallback


class EchoAdvisor:
    """Advisor that answers every prompt with a fixed phrase and records prompts."""

    name = "echo"

    def __init__(self, reply="Advisor says hello"):
        self.reply = reply
        self.prompts = []

    async def advise(self, prompt, fallback, system=None):
        self.prompts.append(prompt)
        return self.reply


@pytest.fixture
def template_advisor():
    return TemplateAdvisor()


@pytest.fixture
def echo_advisor():
    return EchoAdvisor()


@pytest.fixture
def failing_advisor():
    return FailingAdvisor()


# ── Event Factories ─────────────────────────────────────────────────────

@pytest.fixture
def make_event(frozen_now):
    """Factory fixture that creates BehaviorEvent instances with sensible defaults.

    ``minutes`` offsets the timestamp from frozen_now (negative = past).

    Usage:
        event = make_event("click", minutes=-30, element="claim", section="airdrops")
    """
    _counter = 0

    def _factory(action_kind="click", minutes=0.0, **overrides):
        nonlocal _counter
        _counter += 1
        defaults = {
            "user_id": "user-1",
            "action_kind": action_kind,
            "element": "button",
            "section": "dashboard",
            "duration_ms": None,
            "metadata": {},
            "timestamp": frozen_now + timedelta(minutes=minutes),
        }
        defaults.update(overrides)
        return BehaviorEvent.create(**defaults)

    return _factory


@pytest.fixture
def spaced_events(make_event):
    """Factory for ``n`` events ``step`` minutes apart, ending at ``end`` minutes."""

    def _factory(n, step=5, end=0.0, action_kind="click", **overrides):
        start = end - step * (n - 1)
        return [
            make_event(action_kind, minutes=start + i * step, **overrides)
            for i in range(n)
        ]

    return _factory
