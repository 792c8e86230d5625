"""Derived profile models.

Everything here is a recomputable projection of the event log. Timestamps
are stored as ISO 8601 strings, like every other Redis payload in DropSense.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict, fields
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class _Serializable:
    """to_dict / from_dict shared by the flat profile dataclasses."""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        names = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        return cls(**{k: v for k, v in data.items() if k in names})


# ── Activity / risk vocabularies ─────────────────────────────────────────

class ActivityLevel:
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


class RiskCategory:
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    BALANCED = "balanced"
    GROWTH = "growth"
    AGGRESSIVE = "aggressive"


class Trend:
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


# ═══════════════════════════════════════════════════════════════════════════
# Behavior pattern
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class BehaviorPattern(_Serializable):
    user_id: str
    click_patterns: dict[str, int] = field(default_factory=dict)
    view_patterns: dict[str, int] = field(default_factory=dict)
    time_spent_on_sections: dict[str, int] = field(default_factory=dict)   # ms
    device_usage: dict[str, int] = field(
        default_factory=lambda: {"mobile": 0, "desktop": 1, "tablet": 0}
    )
    feature_usage: dict[str, int] = field(default_factory=dict)
    activity_level: str = ActivityLevel.LOW
    avg_session_duration_ms: float = 0.0
    success_metrics: dict[str, float] = field(default_factory=lambda: {
        "completed_tasks": 0,
        "total_tasks": 0,
        "successful_airdrops": 0,
        "success_rate": 0.0,
    })
    preferred_airdrop_types: list[str] = field(default_factory=list)
    risk_tolerance_score: float = 0.5      # 0-1 behavioral baseline
    total_events: int = 0
    session_count: int = 0
    is_default: bool = False
    computed_at: str = field(default_factory=_now_iso)

    @property
    def success_rate(self) -> float:
        return float(self.success_metrics.get("success_rate", 0.0))

    @property
    def distinct_features(self) -> int:
        return len(self.feature_usage)


# ═══════════════════════════════════════════════════════════════════════════
# Risk profile
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class RiskProfile(_Serializable):
    user_id: str
    risk_tolerance_score: int
    risk_category: str
    financial_capacity: str
    loss_acceptance: int
    time_horizon: str
    experience_level: str
    technical_knowledge: int
    security_consciousness: int
    risk_factors: list[dict[str, Any]] = field(default_factory=list)
    confidence_score: float = 0.5
    recommendations: list[str] = field(default_factory=list)
    assessment_answers: dict[str, int] = field(default_factory=dict)
    assessed_at: str = field(default_factory=_now_iso)

    def tracked_view(self) -> dict[str, Any]:
        """Fields whose change is worth an evolution log entry."""
        return {
            "risk_tolerance_score": self.risk_tolerance_score,
            "risk_category": self.risk_category,
            "experience_level": self.experience_level,
            "financial_capacity": self.financial_capacity,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Chain preference
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ChainPreference(_Serializable):
    user_id: str
    chain_id: str
    chain_name: str
    preference_score: int
    usage_frequency: int
    total_gas_spent: float
    success_rate: float                    # percent 0-100
    avg_gas_cost: float
    last_used_at: str | None
    preference_factors: list[dict[str, Any]] = field(default_factory=list)
    trend: str = Trend.STABLE
    recommendation: str = ""
    updated_at: str = field(default_factory=_now_iso)

    def tracked_view(self) -> dict[str, Any]:
        return {"preference_score": self.preference_score, "trend": self.trend}


# ═══════════════════════════════════════════════════════════════════════════
# Activity pattern
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ActivityPattern(_Serializable):
    user_id: str
    daily_active_minutes: float = 0.0
    weekly_active_days: float = 0.0
    time_slots: dict[str, float] = field(default_factory=lambda: {
        "morning": 0.0, "afternoon": 0.0, "evening": 0.0, "night": 0.0,
    })
    peak_hours: list[int] = field(default_factory=list)
    session_duration_minutes: float = 0.0
    tasks_per_session: float = 0.0
    active_days: int = 0
    consistency_score: float = 0.0
    regularity_index: float = 0.0
    daily_variance: float = 0.0
    burst_activity: bool = False
    weekend_activity_ratio: float = 0.0
    productivity: dict[str, float] = field(default_factory=lambda: {
        "tasks_per_hour": 0.0,
        "completion_rate": 0.0,
        "efficiency_score": 0.0,
    })
    seasonal_distribution: dict[str, float] = field(default_factory=dict)
    is_default: bool = False
    updated_at: str = field(default_factory=_now_iso)

    def tracked_view(self) -> dict[str, Any]:
        return {
            "consistency_score": self.consistency_score,
            "peak_hours": list(self.peak_hours),
            "burst_activity": self.burst_activity,
            "efficiency_score": self.productivity.get("efficiency_score", 0.0),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Adaptation config
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class AdaptationRecord(_Serializable):
    adaptation_type: str
    reason: str
    confidence: float
    changes: dict[str, Any]
    timestamp: str = field(default_factory=_now_iso)


@dataclass
class AdaptationConfig(_Serializable):
    user_id: str
    layout_density: str = "SPACIOUS"
    color_scheme: str = "DEFAULT"
    feature_prioritization: list[str] = field(default_factory=list)
    notification_level: str = "NORMAL"
    automation_level: str = "MANUAL"
    content_focus: str = "DISCOVERY"
    widget_configuration: dict[str, bool] = field(default_factory=dict)
    shortcut_preferences: dict[str, str] = field(default_factory=dict)
    updated_at: str = field(default_factory=_now_iso)

    def decision_vector(self) -> dict[str, Any]:
        """The adaptation dimensions without identity or bookkeeping fields."""
        d = self.to_dict()
        d.pop("user_id")
        d.pop("updated_at")
        return d


# ═══════════════════════════════════════════════════════════════════════════
# Insights & evolution log
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class PreferenceInsight(_Serializable):
    user_id: str
    insight_type: str                      # risk | chain | activity
    rule: str
    title: str
    description: str
    confidence_score: float
    impact_level: str                      # low | medium | high | critical
    actionable_recommendation: str
    valid_until: str
    supporting_data: dict[str, Any] = field(default_factory=dict)
    is_read: bool = False
    insight_id: str = field(default_factory=lambda: uuid4().hex)
    created_at: str = field(default_factory=_now_iso)

    def is_active(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return datetime.fromisoformat(self.valid_until) > now


@dataclass
class PreferenceEvolution(_Serializable):
    user_id: str
    category: str                          # risk | chain | activity
    old_value: dict[str, Any] | None
    new_value: dict[str, Any]
    change_reason: str
    change_trigger: str
    timestamp: str = field(default_factory=_now_iso)
