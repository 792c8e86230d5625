"""Tests for the Redis-backed Event Store Gateway (fakeredis)."""

import json
from datetime import timedelta

import fakeredis
import pytest

from dropsense.errors import PersistenceError
from dropsense.store import event_store


def _outbox(r):
    return [json.loads(item) for item in r.lrange(event_store.OUTBOX_KEY, 0, -1)]


class TestAppend:
    def test_append_returns_running_count(self, r, make_event):
        assert event_store.append(make_event(), r=r) == 1
        assert event_store.append(make_event(minutes=1), r=r) == 2
        assert event_store.count("user-1", r=r) == 2
        assert event_store.tracked_users(r=r) == ["user-1"]

    def test_every_tenth_event_enqueues_analysis(self, r, spaced_events):
        for event in spaced_events(25, step=1):
            event_store.append(event, r=r)
        requests = _outbox(r)
        assert len(requests) == 2
        assert {req["user_id"] for req in requests} == {"user-1"}
        assert requests[0]["reason"] == "event_threshold"

    def test_custom_trigger_interval(self, r, spaced_events):
        for event in spaced_events(6, step=1):
            event_store.append(event, r=r, trigger_every=3)
        assert len(_outbox(r)) == 2

    def test_trigger_disabled(self, r, spaced_events):
        for event in spaced_events(10, step=1):
            event_store.append(event, r=r, trigger_every=0)
        assert _outbox(r) == []

    def test_connection_failure_raises_persistence_error(self, make_event):
        server = fakeredis.FakeServer()
        server.connected = False
        broken = fakeredis.FakeRedis(server=server, decode_responses=True)
        with pytest.raises(PersistenceError) as exc:
            event_store.append(make_event(), r=broken)
        assert exc.value.details["user_id"] == "user-1"

    def test_users_are_isolated(self, r, make_event):
        event_store.append(make_event(user_id="alice"), r=r)
        event_store.append(make_event(user_id="bob"), r=r)
        event_store.append(make_event(user_id="bob", minutes=1), r=r)
        assert event_store.count("alice", r=r) == 1
        assert len(event_store.query("bob", r=r)) == 2
        assert event_store.tracked_users(r=r) == ["alice", "bob"]


class TestQuery:
    @pytest.fixture
    def stored(self, r, spaced_events):
        events = spaced_events(5, step=10)
        # append out of order; the log is ordered by event time
        for event in reversed(events):
            event_store.append(event, r=r)
        return events

    def test_oldest_first(self, r, stored):
        assert [e.event_id for e in event_store.query("user-1", r=r)] == [e.event_id for e in stored]

    def test_newest_first_with_limit(self, r, stored):
        latest = event_store.query("user-1", limit=2, newest_first=True, r=r)
        assert [e.event_id for e in latest] == [stored[4].event_id, stored[3].event_id]

    def test_since_is_inclusive(self, r, stored, frozen_now):
        since = frozen_now - timedelta(minutes=10)
        assert [e.event_id for e in event_store.query("user-1", since=since, r=r)] == [
            stored[3].event_id, stored[4].event_id,
        ]

    def test_recent_window_is_oldest_first(self, r, stored):
        window = event_store.recent_window("user-1", 3, r=r)
        assert [e.event_id for e in window] == [e.event_id for e in stored[2:]]

    def test_round_trip_preserves_event(self, r, make_event):
        event = make_event("airdrop_interact", duration_ms=1500, metadata={"chainId": "eth", "gasSpent": 4.2})
        event_store.append(event, r=r)
        assert event_store.query("user-1", r=r) == [event]

    def test_unknown_user_is_empty(self, r):
        assert event_store.query("nobody", r=r) == []
        assert event_store.count("nobody", r=r) == 0
