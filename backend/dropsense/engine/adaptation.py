"""Adaptation Decision Engine.

A stateless mapping from a BehaviorPattern to a UI decision vector. Each
dimension is decided independently. The result is only applied when the
pattern carries enough signal (confidence >= threshold).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from dropsense.config.settings import ADAPTATION_CONFIDENCE_THRESHOLD
from dropsense.models.profiles import (
    ActivityLevel,
    AdaptationConfig,
    AdaptationRecord,
    BehaviorPattern,
)

ADAPTATION_TYPE = "BEHAVIOR_DRIVEN"

MAX_PRIORITIZED_FEATURES = 8
FREQUENT_FEATURE_USES = 3
ANALYTICS_TIME_MS = 300_000

DEFAULT_WIDGETS: dict[str, bool] = {
    "trendingAirdrops": True,
    "quickActions": True,
    "progressOverview": True,
    "securityAlerts": True,
    "recommendations": True,
    "analytics": False,
    "socialFeed": False,
    "newsFeed": False,
}

DEFAULT_SHORTCUTS: dict[str, str] = {
    "search": "Ctrl+K",
    "wallet": "Ctrl+W",
    "settings": "Ctrl+,",
    "notifications": "Ctrl+N",
    "refresh": "Ctrl+R",
}
FEATURE_SHORTCUT_KEYS = ["Ctrl+1", "Ctrl+2", "Ctrl+3", "Ctrl+4", "Ctrl+5"]

DEFAULT_REASON = "UI adapted based on usage patterns"


# ═══════════════════════════════════════════════════════════════════════════
# Confidence
# ═══════════════════════════════════════════════════════════════════════════

def adaptation_confidence(pattern: BehaviorPattern) -> float:
    """0.5 base, up to +0.3 for volume of events, up to +0.2 for feature breadth."""
    confidence = 0.5
    confidence += min(pattern.total_events / 100, 0.3)
    confidence += min(pattern.distinct_features / 20, 0.2)
    return round(min(confidence, 1.0), 4)


def should_apply(confidence: float, threshold: float = ADAPTATION_CONFIDENCE_THRESHOLD) -> bool:
    return confidence >= threshold


# ═══════════════════════════════════════════════════════════════════════════
# Per-dimension rules
# ═══════════════════════════════════════════════════════════════════════════

def layout_density(pattern: BehaviorPattern) -> str:
    if pattern.device_usage.get("mobile", 0) > pattern.device_usage.get("desktop", 0):
        return "COMPACT"
    if pattern.activity_level in (ActivityLevel.HIGH, ActivityLevel.VERY_HIGH):
        return "COMPACT"
    if pattern.distinct_features > 10:
        return "COMFORTABLE"
    return "SPACIOUS"


def color_scheme(pattern: BehaviorPattern, hour: int) -> str:
    if hour >= 20 or hour <= 6:
        return "DARK"
    if pattern.feature_usage.get("accessibility", 0) > 0:
        return "HIGH_CONTRAST"
    if 7 <= hour <= 18:
        return "LIGHT"
    return "DEFAULT"


def content_focus(pattern: BehaviorPattern) -> str:
    if pattern.risk_tolerance_score < 0.3:
        return "SECURITY"
    if pattern.activity_level == ActivityLevel.VERY_HIGH:
        return "EFFICIENCY"
    if pattern.distinct_features > 15:
        return "DISCOVERY"
    if pattern.feature_usage.get("analytics", 0) > 0 or pattern.feature_usage.get("insights", 0) > 0:
        return "ANALYTICS"
    return "DISCOVERY"


def notification_level(pattern: BehaviorPattern) -> str:
    if pattern.success_rate > 0.8:
        return "MINIMAL"
    if pattern.activity_level == ActivityLevel.LOW:
        return "VERBOSE"
    return "NORMAL"


def automation_level(pattern: BehaviorPattern) -> str:
    if pattern.success_rate > 0.7 and pattern.activity_level == ActivityLevel.VERY_HIGH:
        return "AUTOMATED"
    if pattern.success_rate > 0.5 and pattern.activity_level != ActivityLevel.LOW:
        return "ASSISTED"
    return "MANUAL"


def prioritize_features(pattern: BehaviorPattern) -> list[str]:
    """Rank by usage*2 plus minutes spent in the same-named section."""
    scores: dict[str, float] = {}
    for feature, count in pattern.feature_usage.items():
        scores[feature] = scores.get(feature, 0.0) + count * 2
    for section, ms in pattern.time_spent_on_sections.items():
        scores[section] = scores.get(section, 0.0) + ms / 60000
    ranked = sorted(scores.items(), key=lambda kv: (-kv[1], kv[0]))
    return [name for name, _ in ranked[:MAX_PRIORITIZED_FEATURES]]


def configure_widgets(pattern: BehaviorPattern) -> dict[str, bool]:
    widgets = dict(DEFAULT_WIDGETS)
    frequent = {f for f, n in pattern.feature_usage.items() if n > FREQUENT_FEATURE_USES}
    if "analytics" in frequent or pattern.time_spent_on_sections.get("analytics", 0) > ANALYTICS_TIME_MS:
        widgets["analytics"] = True
    if "social" in frequent or "sharing" in frequent:
        widgets["socialFeed"] = True
    return widgets


def assign_shortcuts(pattern: BehaviorPattern) -> dict[str, str]:
    """Top features get Ctrl+1..5; they win over defaults on name collision."""
    top = sorted(pattern.feature_usage.items(), key=lambda kv: (-kv[1], kv[0]))
    feature_shortcuts = {
        feature: key for (feature, _), key in zip(top, FEATURE_SHORTCUT_KEYS)
    }
    return {**DEFAULT_SHORTCUTS, **feature_shortcuts}


def adaptation_reason(config: AdaptationConfig) -> str:
    reasons = []
    if config.layout_density == "COMPACT":
        reasons.append("High activity level detected - optimizing for efficiency")
    if config.automation_level == "AUTOMATED":
        reasons.append("High success rate - enabling advanced automation")
    if config.content_focus == "SECURITY":
        reasons.append("Risk-averse behavior detected - prioritizing security features")
    if config.notification_level == "MINIMAL":
        reasons.append("Experienced user - reducing notification noise")
    return ". ".join(reasons) or DEFAULT_REASON


# ═══════════════════════════════════════════════════════════════════════════
# Decision
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class AdaptationDecision:
    config: AdaptationConfig
    record: AdaptationRecord
    confidence: float
    apply: bool


def decide_adaptation(
    pattern: BehaviorPattern,
    now: datetime | None = None,
    threshold: float = ADAPTATION_CONFIDENCE_THRESHOLD,
) -> AdaptationDecision:
    """Compute the full decision vector and whether it clears the confidence gate."""
    now = now or datetime.now(timezone.utc)
    config = AdaptationConfig(
        user_id=pattern.user_id,
        layout_density=layout_density(pattern),
        color_scheme=color_scheme(pattern, now.hour),
        feature_prioritization=prioritize_features(pattern),
        notification_level=notification_level(pattern),
        automation_level=automation_level(pattern),
        content_focus=content_focus(pattern),
        widget_configuration=configure_widgets(pattern),
        shortcut_preferences=assign_shortcuts(pattern),
        updated_at=now.isoformat(),
    )
    confidence = adaptation_confidence(pattern)
    record = AdaptationRecord(
        adaptation_type=ADAPTATION_TYPE,
        reason=adaptation_reason(config),
        confidence=confidence,
        changes=config.decision_vector(),
        timestamp=now.isoformat(),
    )
    return AdaptationDecision(
        config=config,
        record=record,
        confidence=confidence,
        apply=should_apply(confidence, threshold),
    )
