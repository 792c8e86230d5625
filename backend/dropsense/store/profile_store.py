"""Profile Persistence & Evolution Log.

Current derived profiles are stored as JSON projections that are replaced on
every analysis run. Meaningful changes are also appended to an evolution
log that is never rewritten:

    profile:risk:{user_id}                 STR   RiskProfile
    profile:activity:{user_id}             STR   ActivityPattern
    profile:pattern:{user_id}              STR   BehaviorPattern
    profile:chains:{user_id}               HASH  chain_id -> ChainPreference
    profile:adaptation:{user_id}           STR   AdaptationConfig
    profile:adaptation:history:{user_id}   LIST  AdaptationRecord (append-only)
    profile:evolution:{user_id}            LIST  PreferenceEvolution (append-only)
    insights:{user_id}                     HASH  insight_id -> PreferenceInsight

All writes of one analysis run go through a single MULTI/EXEC, so a failed
run leaves the previous profile intact.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Sequence

import redis

from dropsense.config.settings import REDIS_URL
from dropsense.errors import PersistenceError
from dropsense.models.profiles import (
    ActivityPattern,
    AdaptationConfig,
    AdaptationRecord,
    BehaviorPattern,
    ChainPreference,
    PreferenceEvolution,
    PreferenceInsight,
    RiskProfile,
)

logger = logging.getLogger(__name__)

RISK_PREFIX = "profile:risk:"
ACTIVITY_PREFIX = "profile:activity:"
PATTERN_PREFIX = "profile:pattern:"
CHAINS_PREFIX = "profile:chains:"
ADAPTATION_PREFIX = "profile:adaptation:"
ADAPTATION_HISTORY_PREFIX = "profile:adaptation:history:"
EVOLUTION_PREFIX = "profile:evolution:"
INSIGHTS_PREFIX = "insights:"

DEFAULT_INSIGHT_LIMIT = 20

# Component weights for profile completeness (sum to 100)
COMPLETENESS_WEIGHTS: dict[str, int] = {
    "risk_profile": 40,
    "chain_preferences": 30,
    "activity_pattern": 30,
}


def _get_redis() -> redis.Redis:
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


def _load(r: redis.Redis, key: str) -> dict[str, Any] | None:
    raw = r.get(key)
    return json.loads(raw) if raw else None


def _evolution(
    user_id: str,
    category: str,
    old_view: dict[str, Any] | None,
    new_view: dict[str, Any],
    reason: str,
    trigger: str,
) -> PreferenceEvolution | None:
    """Evolution entry when a prior value exists and its tracked fields changed."""
    if old_view is None or old_view == new_view:
        return None
    return PreferenceEvolution(
        user_id=user_id,
        category=category,
        old_value=old_view,
        new_value=new_view,
        change_reason=reason,
        change_trigger=trigger,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Risk profile
# ═══════════════════════════════════════════════════════════════════════════

def get_risk_profile(user_id: str, r: redis.Redis | None = None) -> RiskProfile | None:
    r = r or _get_redis()
    data = _load(r, f"{RISK_PREFIX}{user_id}")
    return RiskProfile.from_dict(data) if data else None


def save_risk_profile(
    profile: RiskProfile,
    reason: str = "user_assessment_update",
    trigger: str = "risk_assessment_questionnaire",
    r: redis.Redis | None = None,
) -> PreferenceEvolution | None:
    """Upsert the risk profile, snapshotting the prior one into the log first."""
    r = r or _get_redis()
    try:
        prior = get_risk_profile(profile.user_id, r)
        entry = _evolution(
            profile.user_id, "risk",
            prior.tracked_view() if prior else None,
            profile.tracked_view(),
            reason, trigger,
        )
        pipe = r.pipeline(transaction=True)
        if entry:
            pipe.rpush(f"{EVOLUTION_PREFIX}{profile.user_id}", json.dumps(entry.to_dict()))
        pipe.set(f"{RISK_PREFIX}{profile.user_id}", json.dumps(profile.to_dict()))
        pipe.execute()
    except redis.RedisError as exc:
        raise PersistenceError("Failed to save risk profile", {"user_id": profile.user_id, "error": str(exc)}) from exc
    return entry


# ═══════════════════════════════════════════════════════════════════════════
# Activity, chains, pattern, adaptation reads
# ═══════════════════════════════════════════════════════════════════════════

def get_activity_pattern(user_id: str, r: redis.Redis | None = None) -> ActivityPattern | None:
    r = r or _get_redis()
    data = _load(r, f"{ACTIVITY_PREFIX}{user_id}")
    return ActivityPattern.from_dict(data) if data else None


def get_behavior_pattern(user_id: str, r: redis.Redis | None = None) -> BehaviorPattern | None:
    r = r or _get_redis()
    data = _load(r, f"{PATTERN_PREFIX}{user_id}")
    return BehaviorPattern.from_dict(data) if data else None


def get_chain_preferences(user_id: str, r: redis.Redis | None = None) -> list[ChainPreference]:
    """All stored chain preferences, highest score first."""
    r = r or _get_redis()
    raw = r.hgetall(f"{CHAINS_PREFIX}{user_id}")
    prefs = [ChainPreference.from_dict(json.loads(v)) for v in raw.values()]
    prefs.sort(key=lambda p: (-p.preference_score, p.chain_id))
    return prefs


def get_adaptation_config(user_id: str, r: redis.Redis | None = None) -> AdaptationConfig | None:
    r = r or _get_redis()
    data = _load(r, f"{ADAPTATION_PREFIX}{user_id}")
    return AdaptationConfig.from_dict(data) if data else None


def get_adaptation_history(user_id: str, r: redis.Redis | None = None) -> list[AdaptationRecord]:
    """Applied adaptations, oldest first."""
    r = r or _get_redis()
    raw = r.lrange(f"{ADAPTATION_HISTORY_PREFIX}{user_id}", 0, -1)
    return [AdaptationRecord.from_dict(json.loads(item)) for item in raw]


def get_evolution(
    user_id: str,
    limit: int | None = None,
    category: str | None = None,
    r: redis.Redis | None = None,
) -> list[PreferenceEvolution]:
    """Evolution log entries, newest first."""
    r = r or _get_redis()
    raw = r.lrange(f"{EVOLUTION_PREFIX}{user_id}", 0, -1)
    entries = [PreferenceEvolution.from_dict(json.loads(item)) for item in reversed(raw)]
    if category:
        entries = [e for e in entries if e.category == category]
    return entries[:limit] if limit else entries


# ═══════════════════════════════════════════════════════════════════════════
# Analysis write path
# ═══════════════════════════════════════════════════════════════════════════

def persist_analysis(
    user_id: str,
    pattern: BehaviorPattern,
    activity: ActivityPattern,
    chains: Sequence[ChainPreference] = (),
    adaptation: AdaptationConfig | None = None,
    adaptation_record: AdaptationRecord | None = None,
    insights: Sequence[PreferenceInsight] = (),
    now: datetime | None = None,
    r: redis.Redis | None = None,
) -> list[PreferenceEvolution]:
    """Write one analysis run atomically and return the evolution entries logged.

    ``adaptation`` is only passed when the run cleared the confidence gate;
    it then replaces the stored config and appends exactly one history entry.
    """
    r = r or _get_redis()
    now = now or datetime.now(timezone.utc)
    try:
        evolutions: list[PreferenceEvolution] = []

        prior_activity = get_activity_pattern(user_id, r)
        if not activity.is_default:
            entry = _evolution(
                user_id, "activity",
                prior_activity.tracked_view() if prior_activity else None,
                activity.tracked_view(),
                "pattern_update", "activity_analysis",
            )
            if entry:
                evolutions.append(entry)

        prior_chains = {c.chain_id: c for c in get_chain_preferences(user_id, r)}
        for pref in chains:
            prior = prior_chains.get(pref.chain_id)
            entry = _evolution(
                user_id, "chain",
                {"chain_id": pref.chain_id, **prior.tracked_view()} if prior else None,
                {"chain_id": pref.chain_id, **pref.tracked_view()},
                "usage_update", "chain_analysis",
            )
            if entry:
                evolutions.append(entry)

        expired = [
            insight_id for insight_id, raw in r.hgetall(f"{INSIGHTS_PREFIX}{user_id}").items()
            if not PreferenceInsight.from_dict(json.loads(raw)).is_active(now)
        ]

        pipe = r.pipeline(transaction=True)
        pipe.set(f"{PATTERN_PREFIX}{user_id}", json.dumps(pattern.to_dict()))
        if not activity.is_default or prior_activity is None:
            pipe.set(f"{ACTIVITY_PREFIX}{user_id}", json.dumps(activity.to_dict()))
        for pref in chains:
            pipe.hset(f"{CHAINS_PREFIX}{user_id}", pref.chain_id, json.dumps(pref.to_dict()))
        if adaptation is not None and adaptation_record is not None:
            pipe.set(f"{ADAPTATION_PREFIX}{user_id}", json.dumps(adaptation.to_dict()))
            pipe.rpush(f"{ADAPTATION_HISTORY_PREFIX}{user_id}", json.dumps(adaptation_record.to_dict()))
        if expired:
            pipe.hdel(f"{INSIGHTS_PREFIX}{user_id}", *expired)
        for insight in insights:
            pipe.hset(f"{INSIGHTS_PREFIX}{user_id}", insight.insight_id, json.dumps(insight.to_dict()))
        for entry in evolutions:
            pipe.rpush(f"{EVOLUTION_PREFIX}{user_id}", json.dumps(entry.to_dict()))
        pipe.execute()
    except redis.RedisError as exc:
        raise PersistenceError("Failed to persist analysis", {"user_id": user_id, "error": str(exc)}) from exc

    logger.info(
        "Persisted analysis for %s: chains=%d insights=%d evolution=%d adaptation=%s",
        user_id, len(chains), len(insights), len(evolutions),
        "applied" if adaptation is not None else "skipped",
    )
    return evolutions


# ═══════════════════════════════════════════════════════════════════════════
# Insights
# ═══════════════════════════════════════════════════════════════════════════

def _all_insights(user_id: str, r: redis.Redis) -> list[PreferenceInsight]:
    raw = r.hgetall(f"{INSIGHTS_PREFIX}{user_id}")
    return [PreferenceInsight.from_dict(json.loads(v)) for v in raw.values()]


def list_insights(
    user_id: str,
    insight_type: str | None = None,
    unread_only: bool = False,
    limit: int | None = DEFAULT_INSIGHT_LIMIT,
    now: datetime | None = None,
    r: redis.Redis | None = None,
) -> list[PreferenceInsight]:
    """Current (unexpired) insights, newest first."""
    r = r or _get_redis()
    now = now or datetime.now(timezone.utc)
    insights = [i for i in _all_insights(user_id, r) if i.is_active(now)]
    if insight_type:
        insights = [i for i in insights if i.insight_type == insight_type]
    if unread_only:
        insights = [i for i in insights if not i.is_read]
    insights.sort(key=lambda i: (i.created_at, i.insight_id), reverse=True)
    return insights[:limit] if limit else insights


def active_insight_rules(
    user_id: str,
    now: datetime | None = None,
    r: redis.Redis | None = None,
) -> set[str]:
    return {i.rule for i in list_insights(user_id, limit=None, now=now, r=r)}


def save_insights(user_id: str, insights: Sequence[PreferenceInsight], r: redis.Redis | None = None) -> None:
    if not insights:
        return
    r = r or _get_redis()
    try:
        r.hset(
            f"{INSIGHTS_PREFIX}{user_id}",
            mapping={i.insight_id: json.dumps(i.to_dict()) for i in insights},
        )
    except redis.RedisError as exc:
        raise PersistenceError("Failed to save insights", {"user_id": user_id, "error": str(exc)}) from exc


def mark_read(user_id: str, insight_id: str, r: redis.Redis | None = None) -> bool:
    """Mark one insight read. Returns False if it does not exist. Idempotent."""
    r = r or _get_redis()
    key = f"{INSIGHTS_PREFIX}{user_id}"
    raw = r.hget(key, insight_id)
    if raw is None:
        return False
    insight = PreferenceInsight.from_dict(json.loads(raw))
    if not insight.is_read:
        insight.is_read = True
        r.hset(key, insight_id, json.dumps(insight.to_dict()))
    return True


def mark_all_read(user_id: str, r: redis.Redis | None = None) -> int:
    """Mark every insight read and return how many changed."""
    r = r or _get_redis()
    key = f"{INSIGHTS_PREFIX}{user_id}"
    changed = {}
    for insight in _all_insights(user_id, r):
        if not insight.is_read:
            insight.is_read = True
            changed[insight.insight_id] = json.dumps(insight.to_dict())
    if changed:
        r.hset(key, mapping=changed)
    return len(changed)


# ═══════════════════════════════════════════════════════════════════════════
# Profile read model
# ═══════════════════════════════════════════════════════════════════════════

def profile_completeness(
    risk: RiskProfile | None,
    chains: Sequence[ChainPreference],
    activity: ActivityPattern | None,
) -> dict[str, Any]:
    present = {
        "risk_profile": risk is not None,
        "chain_preferences": bool(chains),
        "activity_pattern": activity is not None and not activity.is_default,
    }
    score = sum(COMPLETENESS_WEIGHTS[k] for k, ok in present.items() if ok)
    if score >= 90:
        level = "complete"
    elif score >= 70:
        level = "advanced"
    elif score >= 40:
        level = "intermediate"
    else:
        level = "basic"
    return {
        "score": score,
        "level": level,
        "missing_components": [k for k, ok in present.items() if not ok],
    }


def read_profile(user_id: str, now: datetime | None = None, r: redis.Redis | None = None) -> dict[str, Any]:
    """Everything the client needs to personalize, or a 'not_computed' empty state."""
    r = r or _get_redis()
    risk = get_risk_profile(user_id, r)
    chains = get_chain_preferences(user_id, r)
    activity = get_activity_pattern(user_id, r)
    adaptation = get_adaptation_config(user_id, r)

    computed = any([risk, chains, activity, adaptation])
    return {
        "user_id": user_id,
        "status": "ready" if computed else "not_computed",
        "adaptation": adaptation.to_dict() if adaptation else None,
        "risk_profile": risk.to_dict() if risk else None,
        "chain_preferences": [c.to_dict() for c in chains],
        "activity_pattern": activity.to_dict() if activity else None,
        "insights": [i.to_dict() for i in list_insights(user_id, unread_only=True, limit=5, now=now, r=r)],
        "evolution": [e.to_dict() for e in get_evolution(user_id, limit=10, r=r)],
        "completeness": profile_completeness(risk, chains, activity),
    }
