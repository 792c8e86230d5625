"""Session Reconstructor.

Splits one user's events into sessions wherever consecutive events are more
than the configured gap apart. Pure and deterministic: the same events and
gap always yield the same boundaries.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Sequence

from dropsense.config.settings import SESSION_GAP_MINUTES
from dropsense.models.events import BehaviorEvent

Session = list[BehaviorEvent]


def reconstruct_sessions(
    events: Sequence[BehaviorEvent],
    gap: timedelta = timedelta(minutes=SESSION_GAP_MINUTES),
) -> list[Session]:
    """Group events into ordered, non-empty sessions.

    A gap of exactly ``gap`` stays in the same session; only a strictly
    larger gap starts a new one.
    """
    if not events:
        return []

    ordered = sorted(events, key=lambda e: (e.timestamp, e.event_id))
    sessions: list[Session] = [[ordered[0]]]
    for prev, event in zip(ordered, ordered[1:]):
        if event.timestamp - prev.timestamp > gap:
            sessions.append([event])
        else:
            sessions[-1].append(event)
    return sessions


def session_duration(session: Session) -> timedelta:
    """Last minus first timestamp. A single-event session lasts zero."""
    if len(session) < 2:
        return timedelta(0)
    return session[-1].timestamp - session[0].timestamp
