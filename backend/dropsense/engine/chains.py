"""Chain Preference Scorer.

Scores each chain the user has actually touched from five weighted factors
(usage, success rate, gas efficiency, profile fit, recency) and derives a
usage trend. Chains without any recorded interaction are left out.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Sequence

import yaml

from dropsense.config.settings import CHAIN_CATALOGUE_FILE
from dropsense.models.events import CHAIN_ACTION_KINDS, BehaviorEvent
from dropsense.models.profiles import ChainPreference, RiskProfile, Trend

logger = logging.getLogger(__name__)

CHAIN_FACTOR_WEIGHTS: dict[str, float] = {
    "usage_frequency": 0.30,
    "success_rate": 0.25,
    "gas_efficiency": 0.20,
    "chain_characteristics": 0.15,
    "recency": 0.10,
}

DEFAULT_CHAIN_ID = "eth"
NEUTRAL_CHARACTERISTIC_SCORE = 50.0
TREND_WINDOW = 3
# Per-interaction gas ceiling; keeps sums finite
MAX_GAS_SPENT = 1e9


@lru_cache(maxsize=4)
def load_chain_catalogue(path: Path = CHAIN_CATALOGUE_FILE) -> dict[str, dict[str, Any]]:
    """Static chain characteristics keyed by chain id."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


@dataclass
class ChainInteraction:
    chain_id: str
    timestamp: datetime
    gas_spent: float = 0.0
    success: bool = True
    time_spent_ms: int = 0


def parse_gas(value: Any) -> float:
    """Gas spent from event metadata. Non-numeric, non-finite or negative -> 0."""
    try:
        gas = float(value or 0)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(gas) or gas < 0:
        logger.debug("Ignoring out-of-range gasSpent %r", value)
        return 0.0
    return min(gas, MAX_GAS_SPENT)


def interactions_from_events(events: Sequence[BehaviorEvent]) -> list[ChainInteraction]:
    """Pick chain-bearing events out of the log, oldest first."""
    interactions = []
    for e in events:
        if e.action_kind not in CHAIN_ACTION_KINDS:
            continue
        interactions.append(ChainInteraction(
            chain_id=str(e.metadata.get("chainId") or DEFAULT_CHAIN_ID).lower(),
            timestamp=e.timestamp,
            gas_spent=parse_gas(e.metadata.get("gasSpent")),
            success=e.metadata.get("success") is not False,
            time_spent_ms=int(e.duration_ms or 0),
        ))
    interactions.sort(key=lambda i: i.timestamp)
    return interactions


# ── Factor scores ────────────────────────────────────────────────────────

def characteristic_score(chain: dict[str, Any] | None, risk_profile: RiskProfile | None) -> float:
    """Profile-aware fit of a chain's characteristics, 0-100.

    High-risk users are rewarded for newer, harder chains; everyone else for
    secure, mature ones. Low-capacity users favour cheap gas and low-knowledge
    users favour easy chains.
    """
    if chain is None or risk_profile is None:
        return NEUTRAL_CHARACTERISTIC_SCORE

    score = NEUTRAL_CHARACTERISTIC_SCORE
    if risk_profile.risk_tolerance_score > 70:
        score += (10 - chain["ecosystem_maturity"]) * 3
        score += chain["difficulty"] * 2
    else:
        score += chain["security_level"] * 3
        score += chain["ecosystem_maturity"] * 2

    if risk_profile.financial_capacity == "low":
        score += (10 - chain["gas_cost"]) * 4
    if risk_profile.technical_knowledge < 5:
        score += (10 - chain["difficulty"]) * 3

    return max(0.0, min(100.0, score))


def compute_trend(interactions: Sequence[ChainInteraction]) -> str:
    """Compare the last 3 interactions against the 3 before them."""
    if len(interactions) < TREND_WINDOW:
        return Trend.STABLE
    recent = interactions[-TREND_WINDOW:]
    older = interactions[-2 * TREND_WINDOW:-TREND_WINDOW]
    if not older:
        return Trend.INCREASING
    if len(recent) > len(older) * 1.5:
        return Trend.INCREASING
    if len(recent) < len(older) * 0.5:
        return Trend.DECREASING
    return Trend.STABLE


def default_chain_recommendation(chain_name: str, score: float) -> str:
    if score > 80:
        return f"Excellent match! {chain_name} suits your profile perfectly."
    if score > 60:
        return f"Good choice! {chain_name} aligns well with your preferences."
    if score > 40:
        return f"Consider {chain_name} if you want to explore new options."
    return f"{chain_name} may not be the best fit for your current profile."


def chain_recommendation_prompt(pref: ChainPreference, risk_profile: RiskProfile | None) -> str:
    risk = (
        f"{risk_profile.risk_tolerance_score}/100 ({risk_profile.risk_category})"
        if risk_profile else "unknown"
    )
    return (
        f"Write one sentence recommending how this user should approach {pref.chain_name} "
        "for airdrop hunting.\n"
        f"- Preference score: {pref.preference_score}/100 (trend: {pref.trend})\n"
        f"- Interactions: {pref.usage_frequency}, success rate {pref.success_rate}%\n"
        f"- Average gas spent: {pref.avg_gas_cost}\n"
        f"- User risk tolerance: {risk}"
    )


# ═══════════════════════════════════════════════════════════════════════════
# Scoring
# ═══════════════════════════════════════════════════════════════════════════

def _clamp_score(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(100.0, value))


def score_chain(
    user_id: str,
    chain_id: str,
    interactions: Sequence[ChainInteraction],
    risk_profile: RiskProfile | None,
    now: datetime,
    catalogue: dict[str, dict[str, Any]] | None = None,
) -> ChainPreference:
    catalogue = catalogue if catalogue is not None else load_chain_catalogue()
    chain = catalogue.get(chain_id)
    chain_name = chain["name"] if chain else chain_id

    count = len(interactions)
    successes = sum(1 for i in interactions if i.success)
    total_gas = sum(i.gas_spent for i in interactions)
    avg_gas = total_gas / count
    last_used = max(i.timestamp for i in interactions)
    days_since = max(0.0, (now - last_used).total_seconds() / 86400)

    raw_scores = {
        "usage_frequency": count * 10.0,
        "success_rate": successes / count * 100,
        "gas_efficiency": 100 - avg_gas / 2,
        "chain_characteristics": characteristic_score(chain, risk_profile),
        "recency": 100 - days_since * 2,
    }
    sub_scores = {f: _clamp_score(s) for f, s in raw_scores.items()}
    weighted = sum(sub_scores[f] * w for f, w in CHAIN_FACTOR_WEIGHTS.items())
    score = max(0, min(100, round(weighted)))

    return ChainPreference(
        user_id=user_id,
        chain_id=chain_id,
        chain_name=chain_name,
        preference_score=score,
        usage_frequency=count,
        total_gas_spent=round(total_gas, 4),
        success_rate=round(successes / count * 100, 2),
        avg_gas_cost=round(avg_gas, 4),
        last_used_at=last_used.isoformat(),
        preference_factors=[
            {"factor": f, "weight": round(w * 100), "score": round(sub_scores[f], 2)}
            for f, w in CHAIN_FACTOR_WEIGHTS.items()
        ],
        trend=compute_trend(interactions),
        recommendation=default_chain_recommendation(chain_name, score),
        updated_at=now.isoformat(),
    )


def score_chains(
    user_id: str,
    interactions: Sequence[ChainInteraction],
    risk_profile: RiskProfile | None = None,
    now: datetime | None = None,
    catalogue: dict[str, dict[str, Any]] | None = None,
) -> list[ChainPreference]:
    """Score every chain with at least one interaction, best first."""
    now = now or datetime.now(timezone.utc)
    by_chain: dict[str, list[ChainInteraction]] = defaultdict(list)
    for interaction in interactions:
        by_chain[interaction.chain_id].append(interaction)

    prefs = [
        score_chain(user_id, chain_id, chain_interactions, risk_profile, now, catalogue)
        for chain_id, chain_interactions in by_chain.items()
    ]
    prefs.sort(key=lambda p: (-p.preference_score, p.chain_id))
    return prefs
