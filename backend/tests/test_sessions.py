"""Tests for the Session Reconstructor."""

import random
from datetime import timedelta

from dropsense.engine.sessions import reconstruct_sessions, session_duration


class TestReconstructSessions:
    def test_empty_input_yields_no_sessions(self):
        assert reconstruct_sessions([]) == []

    def test_single_event_is_one_session_of_zero_duration(self, make_event):
        sessions = reconstruct_sessions([make_event()])
        assert len(sessions) == 1
        assert session_duration(sessions[0]) == timedelta(0)

    def test_twelve_events_then_long_gap(self, spaced_events, make_event):
        events = spaced_events(12, step=5, end=0)
        events.append(make_event(minutes=45))
        sessions = reconstruct_sessions(events)
        assert [len(s) for s in sessions] == [12, 1]

    def test_gap_of_exactly_threshold_stays_in_session(self, make_event):
        events = [make_event(minutes=0), make_event(minutes=30)]
        assert len(reconstruct_sessions(events)) == 1

    def test_gap_just_over_threshold_splits(self, make_event):
        events = [make_event(minutes=0), make_event(minutes=30.5)]
        assert len(reconstruct_sessions(events)) == 2

    def test_custom_gap(self, make_event):
        events = [make_event(minutes=0), make_event(minutes=10)]
        assert len(reconstruct_sessions(events, gap=timedelta(minutes=5))) == 2

    def test_unsorted_input_is_sorted(self, make_event):
        late = make_event(minutes=100)
        early = make_event(minutes=0)
        sessions = reconstruct_sessions([late, early])
        assert sessions[0][0] is early
        assert sessions[1][0] is late

    def test_idempotent_and_order_independent(self, spaced_events, make_event):
        events = spaced_events(8, step=20) + spaced_events(5, step=3, end=300)
        shuffled = list(events)
        random.Random(3).shuffle(shuffled)

        first = reconstruct_sessions(events)
        second = reconstruct_sessions(shuffled)
        again = reconstruct_sessions([e for s in first for e in s])

        ids = lambda sessions: [[e.event_id for e in s] for s in sessions]
        assert ids(first) == ids(second) == ids(again)

    def test_every_session_non_empty(self, spaced_events):
        events = spaced_events(20, step=40)
        sessions = reconstruct_sessions(events)
        assert len(sessions) == 20
        assert all(sessions)


class TestSessionDuration:
    def test_duration_is_last_minus_first(self, spaced_events):
        session = spaced_events(4, step=5)
        assert session_duration(session) == timedelta(minutes=15)
