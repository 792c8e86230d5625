"""Pattern Extractor.

Reduces a user's recent event window into a BehaviorPattern: click/view
tallies, time spent per section, device and feature usage, activity level,
average session duration, success metrics and a behavioral risk baseline.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Sequence

from dropsense.config.settings import (
    ACTIVITY_LEVEL_WINDOW_DAYS,
    MIN_EVENTS_FOR_PATTERN,
    SESSION_GAP_MINUTES,
)
from dropsense.engine.sessions import reconstruct_sessions, session_duration
from dropsense.errors import InsufficientDataError
from dropsense.models.events import ActionKind, BehaviorEvent
from dropsense.models.profiles import ActivityLevel, BehaviorPattern

logger = logging.getLogger(__name__)

DEVICE_KINDS = ("mobile", "desktop", "tablet")
HIGH_RISK_LEVELS = {"HIGH", "EXTREME"}

DEFAULT_RISK_BASELINE: float = 0.5
HIGH_RISK_STEP: float = 0.02
HIGH_RISK_CAP: float = 0.3

# (upper bound exclusive, level) on events in the trailing activity window
ACTIVITY_THRESHOLDS: list[tuple[int, str]] = [
    (10, ActivityLevel.LOW),
    (25, ActivityLevel.MEDIUM),
    (50, ActivityLevel.HIGH),
]


def default_pattern(user_id: str) -> BehaviorPattern:
    """Neutral pattern for users with too little history."""
    return BehaviorPattern(user_id=user_id, is_default=True)


@dataclass
class PatternExtractor:
    """Computes a BehaviorPattern from one user's event window."""

    min_events: int = MIN_EVENTS_FOR_PATTERN
    activity_window_days: int = ACTIVITY_LEVEL_WINDOW_DAYS
    session_gap_minutes: int = SESSION_GAP_MINUTES

    # -- Tallies --

    @staticmethod
    def compute_click_patterns(events: Sequence[BehaviorEvent]) -> dict[str, int]:
        return dict(Counter(
            f"{e.section}_{e.element}" for e in events
            if e.action_kind == ActionKind.CLICK.value
        ))

    @staticmethod
    def compute_view_patterns(events: Sequence[BehaviorEvent]) -> dict[str, int]:
        return dict(Counter(
            e.section for e in events if e.action_kind == ActionKind.VIEW.value
        ))

    @staticmethod
    def compute_time_spent(events: Sequence[BehaviorEvent]) -> dict[str, int]:
        spent: dict[str, int] = {}
        for e in events:
            if e.duration_ms:
                spent[e.section] = spent.get(e.section, 0) + int(e.duration_ms)
        return spent

    @staticmethod
    def compute_device_usage(events: Sequence[BehaviorEvent]) -> dict[str, int]:
        usage = {d: 0 for d in DEVICE_KINDS}
        for e in events:
            device = e.device if e.device in usage else "desktop"
            usage[device] += 1
        return usage

    @staticmethod
    def compute_feature_usage(events: Sequence[BehaviorEvent]) -> dict[str, int]:
        return dict(Counter(e.feature for e in events))

    @staticmethod
    def compute_preferred_airdrop_types(events: Sequence[BehaviorEvent]) -> list[str]:
        counts = Counter(
            str(e.metadata["airdropType"]) for e in events if e.metadata.get("airdropType")
        )
        return [t for t, _ in counts.most_common(3)]

    # -- Activity & sessions --

    def compute_activity_level(self, events: Sequence[BehaviorEvent], now: datetime) -> str:
        cutoff = now - timedelta(days=self.activity_window_days)
        recent = sum(1 for e in events if e.timestamp >= cutoff)
        for bound, level in ACTIVITY_THRESHOLDS:
            if recent < bound:
                return level
        return ActivityLevel.VERY_HIGH

    def compute_avg_session_duration(self, events: Sequence[BehaviorEvent]) -> tuple[float, int]:
        """Mean session length in ms across all sessions, plus the session count.

        Single-event sessions add zero to the total but still count.
        """
        sessions = reconstruct_sessions(events, timedelta(minutes=self.session_gap_minutes))
        if not sessions:
            return 0.0, 0
        total_ms = sum(session_duration(s).total_seconds() * 1000 for s in sessions)
        return round(total_ms / len(sessions), 2), len(sessions)

    # -- Success & risk --

    @staticmethod
    def compute_success_metrics(events: Sequence[BehaviorEvent]) -> dict[str, float]:
        """Task outcomes derived from task_start / task_complete events.

        A completion without a recorded start still counts as one task, so
        total is never below completed.
        """
        started = sum(1 for e in events if e.action_kind == ActionKind.TASK_START.value)
        completions = [e for e in events if e.action_kind == ActionKind.TASK_COMPLETE.value]
        completed = len(completions)
        total = max(started, completed)
        return {
            "completed_tasks": completed,
            "total_tasks": total,
            "successful_airdrops": sum(1 for e in completions if e.metadata.get("airdropId")),
            "success_rate": round(completed / total, 4) if total else 0.0,
        }

    @staticmethod
    def compute_risk_baseline(
        events: Sequence[BehaviorEvent],
        assessed_score: float | None = None,
    ) -> float:
        """0-1 risk baseline: assessed score (0-100) scaled down, nudged up by
        high-risk interactions."""
        base = assessed_score / 100 if assessed_score is not None else DEFAULT_RISK_BASELINE
        high_risk = sum(
            1 for e in events
            if str(e.metadata.get("riskLevel", "")).upper() in HIGH_RISK_LEVELS
        )
        adjustment = min(high_risk * HIGH_RISK_STEP, HIGH_RISK_CAP)
        return round(min(base + adjustment, 1.0), 4)

    # -- Full extraction --

    def extract(
        self,
        user_id: str,
        events: Sequence[BehaviorEvent],
        now: datetime | None = None,
        assessed_risk_score: float | None = None,
    ) -> BehaviorPattern:
        """Build the pattern, raising InsufficientDataError below the event floor."""
        if len(events) < self.min_events:
            raise InsufficientDataError(
                "Not enough events to extract a pattern",
                {"user_id": user_id, "events": len(events), "required": self.min_events},
            )

        now = now or datetime.now(timezone.utc)
        avg_duration, session_count = self.compute_avg_session_duration(events)

        return BehaviorPattern(
            user_id=user_id,
            click_patterns=self.compute_click_patterns(events),
            view_patterns=self.compute_view_patterns(events),
            time_spent_on_sections=self.compute_time_spent(events),
            device_usage=self.compute_device_usage(events),
            feature_usage=self.compute_feature_usage(events),
            activity_level=self.compute_activity_level(events, now),
            avg_session_duration_ms=avg_duration,
            success_metrics=self.compute_success_metrics(events),
            preferred_airdrop_types=self.compute_preferred_airdrop_types(events),
            risk_tolerance_score=self.compute_risk_baseline(events, assessed_risk_score),
            total_events=len(events),
            session_count=session_count,
            computed_at=now.isoformat(),
        )


def extract_pattern(
    user_id: str,
    events: Sequence[BehaviorEvent],
    now: datetime | None = None,
    assessed_risk_score: float | None = None,
    extractor: PatternExtractor | None = None,
) -> BehaviorPattern:
    """Extract a pattern, returning the neutral default when history is too short."""
    extractor = extractor or PatternExtractor()
    try:
        return extractor.extract(user_id, events, now=now, assessed_risk_score=assessed_risk_score)
    except InsufficientDataError as exc:
        logger.debug("Default pattern for %s: %s", user_id, exc.details)
        return default_pattern(user_id)
