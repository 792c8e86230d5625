"""Activity Consistency & Productivity Scorer.

Aggregates the trailing activity window into per-day minutes and derives
consistency (regularity + coverage), burst detection, time-of-day
preferences and productivity metrics.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Sequence

import numpy as np

from dropsense.config.settings import ACTIVITY_LOOKBACK_DAYS, SESSION_GAP_MINUTES
from dropsense.engine.sessions import reconstruct_sessions, session_duration
from dropsense.models.events import ActionKind, BehaviorEvent
from dropsense.models.profiles import ActivityPattern

logger = logging.getLogger(__name__)

DEFAULT_EVENT_MINUTES: float = 5.0

# slot -> [start hour, end hour)
TIME_SLOTS: dict[str, tuple[int, int]] = {
    "morning": (6, 12),
    "afternoon": (12, 18),
    "evening": (18, 24),
    "night": (0, 6),
}
PEAK_HOUR_COUNT = 3
WEEKEND_DAYS = {5, 6}   # Saturday, Sunday


def event_minutes(event: BehaviorEvent) -> float:
    if event.duration_ms:
        return event.duration_ms / 60000
    return DEFAULT_EVENT_MINUTES


@dataclass
class ActivityScorer:
    lookback_days: int = ACTIVITY_LOOKBACK_DAYS
    session_gap_minutes: int = SESSION_GAP_MINUTES

    def window(self, events: Sequence[BehaviorEvent], now: datetime) -> list[BehaviorEvent]:
        cutoff = now - timedelta(days=self.lookback_days)
        return [e for e in events if cutoff <= e.timestamp <= now]

    # -- Daily / weekly --

    @staticmethod
    def daily_minutes(events: Sequence[BehaviorEvent]) -> dict[str, float]:
        daily: dict[str, float] = defaultdict(float)
        for e in events:
            daily[e.timestamp.date().isoformat()] += event_minutes(e)
        return dict(daily)

    @staticmethod
    def weekly_stats(events: Sequence[BehaviorEvent]) -> tuple[float, float]:
        """Average active days per ISO week, and weekend/weekday event ratio."""
        weeks: dict[tuple[int, int], set[str]] = defaultdict(set)
        weekend = weekday = 0
        for e in events:
            iso = e.timestamp.isocalendar()
            weeks[(iso[0], iso[1])].add(e.timestamp.date().isoformat())
            if e.timestamp.weekday() in WEEKEND_DAYS:
                weekend += 1
            else:
                weekday += 1
        active_days_per_week = (
            round(sum(len(d) for d in weeks.values()) / len(weeks), 1) if weeks else 0.0
        )
        ratio = round(weekend / weekday, 2) if weekday else 0.0
        return active_days_per_week, ratio

    # -- Time of day --

    @staticmethod
    def hourly_minutes(events: Sequence[BehaviorEvent]) -> list[float]:
        hours = [0.0] * 24
        for e in events:
            hours[e.timestamp.hour] += event_minutes(e)
        return hours

    @staticmethod
    def time_slots(hourly: list[float]) -> dict[str, float]:
        return {
            slot: round(sum(hourly[start:end]), 2)
            for slot, (start, end) in TIME_SLOTS.items()
        }

    @staticmethod
    def peak_hours(hourly: list[float]) -> list[int]:
        ranked = sorted(range(24), key=lambda h: (-hourly[h], h))
        return [h for h in ranked[:PEAK_HOUR_COUNT] if hourly[h] > 0]

    # -- Sessions --

    def session_stats(self, events: Sequence[BehaviorEvent]) -> tuple[float, float]:
        """Average session length in minutes and completed tasks per session."""
        sessions = reconstruct_sessions(events, timedelta(minutes=self.session_gap_minutes))
        if not sessions:
            return 0.0, 0.0
        minutes = [session_duration(s).total_seconds() / 60 for s in sessions]
        tasks = [
            sum(1 for e in s if e.action_kind == ActionKind.TASK_COMPLETE.value)
            for s in sessions
        ]
        return round(float(np.mean(minutes)), 1), round(float(np.mean(tasks)), 1)

    # -- Consistency --

    def consistency(self, daily: dict[str, float]) -> dict[str, float | bool]:
        """Regularity of active days plus coverage of the lookback window."""
        if not daily:
            return {"score": 0.0, "regularity_index": 0.0, "variance": 0.0, "burst": False}

        minutes = np.array(list(daily.values()), dtype=float)
        mean = float(minutes.mean())
        variance = float(minutes.var())   # population variance
        if mean > 0:
            regularity = max(0.0, 100 - (np.sqrt(variance) / mean) * 100)
        else:
            regularity = 0.0
        coverage = len(minutes) / self.lookback_days * 100
        score = min(100.0, (regularity + coverage) / 2)
        burst = bool(minutes.max() > mean * 3 and variance > mean ** 2)

        return {
            "score": round(score, 2),
            "regularity_index": round(float(regularity), 2),
            "variance": round(variance, 2),
            "burst": burst,
        }

    # -- Productivity --

    @staticmethod
    def productivity(events: Sequence[BehaviorEvent]) -> dict[str, float]:
        total_hours = sum(event_minutes(e) for e in events) / 60
        kinds = [e.action_kind for e in events]
        tasks_completed = kinds.count(ActionKind.TASK_COMPLETE.value)
        tasks_started = kinds.count(ActionKind.TASK_START.value)

        airdrop_status = [
            str(e.metadata.get("status", "")).lower()
            for e in events if e.action_kind == ActionKind.AIRDROP_INTERACT.value
        ]
        airdrops_completed = airdrop_status.count("completed")
        airdrops_started = sum(1 for s in airdrop_status if s in ("started", "in_progress"))

        tasks_per_hour = round(tasks_completed / total_hours, 1) if total_hours > 0 else 0.0

        rates = []
        if tasks_started:
            rates.append(min(100.0, tasks_completed / tasks_started * 100))
        if airdrops_started:
            rates.append(min(100.0, airdrops_completed / airdrops_started * 100))
        completion_rate = sum(rates) / len(rates) if rates else 0.0

        efficiency = min(100.0, (completion_rate + min(100.0, tasks_per_hour * 20)) / 2)
        return {
            "tasks_per_hour": tasks_per_hour,
            "completion_rate": round(completion_rate, 2),
            "efficiency_score": round(efficiency, 2),
            "tasks_started": tasks_started,
            "tasks_completed": tasks_completed,
        }

    @staticmethod
    def seasonal_distribution(events: Sequence[BehaviorEvent]) -> dict[str, float]:
        months = {str(m): 0.0 for m in range(1, 13)}
        for e in events:
            months[str(e.timestamp.month)] += event_minutes(e)
        return {m: round(v, 2) for m, v in months.items()}

    # -- Full analysis --

    def analyze(
        self,
        user_id: str,
        events: Sequence[BehaviorEvent],
        now: datetime | None = None,
    ) -> ActivityPattern:
        now = now or datetime.now(timezone.utc)
        windowed = self.window(events, now)
        if not windowed:
            return ActivityPattern(user_id=user_id, is_default=True, updated_at=now.isoformat())

        daily = self.daily_minutes(windowed)
        weekly_days, weekend_ratio = self.weekly_stats(windowed)
        hourly = self.hourly_minutes(windowed)
        session_minutes, tasks_per_session = self.session_stats(windowed)
        consistency = self.consistency(daily)

        return ActivityPattern(
            user_id=user_id,
            daily_active_minutes=round(sum(daily.values()) / len(daily), 1),
            weekly_active_days=weekly_days,
            time_slots=self.time_slots(hourly),
            peak_hours=self.peak_hours(hourly),
            session_duration_minutes=session_minutes,
            tasks_per_session=tasks_per_session,
            active_days=len(daily),
            consistency_score=consistency["score"],
            regularity_index=consistency["regularity_index"],
            daily_variance=consistency["variance"],
            burst_activity=consistency["burst"],
            weekend_activity_ratio=weekend_ratio,
            productivity=self.productivity(windowed),
            seasonal_distribution=self.seasonal_distribution(windowed),
            updated_at=now.isoformat(),
        )


def analyze_activity(
    user_id: str,
    events: Sequence[BehaviorEvent],
    now: datetime | None = None,
) -> ActivityPattern:
    return ActivityScorer().analyze(user_id, events, now=now)
