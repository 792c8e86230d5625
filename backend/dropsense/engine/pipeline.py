"""Per-user analysis pipeline.

events -> sessions -> pattern -> {chain, activity} scores -> adaptation
+ insights -> persistence. Risk comes from the stored assessment; it is only
rescored when the user submits a new questionnaire (``assess_risk``).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import redis

from dropsense.config.settings import (
    ADAPTATION_CONFIDENCE_THRESHOLD,
    ANALYSIS_EVENT_WINDOW,
)
from dropsense.engine import risk as risk_scorer
from dropsense.engine.activity import ActivityScorer
from dropsense.engine.adaptation import AdaptationDecision, decide_adaptation
from dropsense.engine.chains import (
    chain_recommendation_prompt,
    interactions_from_events,
    score_chains,
)
from dropsense.engine.insights import generate_insights
from dropsense.engine.patterns import PatternExtractor, extract_pattern
from dropsense.models.profiles import (
    ActivityPattern,
    BehaviorPattern,
    ChainPreference,
    PreferenceEvolution,
    PreferenceInsight,
    RiskProfile,
)
from dropsense.services.advisory import get_advisor
from dropsense.store import event_store, profile_store

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    user_id: str
    pattern: BehaviorPattern
    activity: ActivityPattern
    chains: list[ChainPreference]
    decision: AdaptationDecision
    insights: list[PreferenceInsight]
    evolutions: list[PreferenceEvolution] = field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "events_analyzed": self.pattern.total_events,
            "activity_level": self.pattern.activity_level,
            "chains_scored": len(self.chains),
            "insights_created": len(self.insights),
            "evolution_entries": len(self.evolutions),
            "adaptation_confidence": self.decision.confidence,
            "adaptation_applied": self.decision.apply,
        }


@dataclass
class PersonalizationEngine:
    """Runs analysis and risk assessment for one user at a time.

    Holds no per-user state; every input is read from the stores per call.
    """

    r: redis.Redis | None = None
    advisor: Any = None
    pattern_extractor: PatternExtractor = field(default_factory=PatternExtractor)
    activity_scorer: ActivityScorer = field(default_factory=ActivityScorer)
    event_window: int = ANALYSIS_EVENT_WINDOW
    confidence_threshold: float = ADAPTATION_CONFIDENCE_THRESHOLD

    def __post_init__(self):
        self.r = self.r or event_store._get_redis()
        self.advisor = self.advisor or get_advisor()

    # ── Behavioral analysis ──────────────────────────────────────────────

    async def _recommend_chains(
        self,
        chains: list[ChainPreference],
        risk: RiskProfile | None,
    ) -> None:
        texts = await asyncio.gather(*(
            self.advisor.advise(chain_recommendation_prompt(c, risk), fallback=c.recommendation)
            for c in chains
        ))
        for pref, text in zip(chains, texts):
            pref.recommendation = text

    async def run_analysis(self, user_id: str, now: datetime | None = None) -> AnalysisResult:
        """Recompute and persist every derived profile for ``user_id``.

        Raises PersistenceError if the final write fails; nothing is
        partially written in that case.
        """
        now = now or datetime.now(timezone.utc)

        recent = event_store.recent_window(user_id, self.event_window, r=self.r)
        lookback = event_store.query(
            user_id,
            since=now - timedelta(days=self.activity_scorer.lookback_days),
            r=self.r,
        )
        risk = profile_store.get_risk_profile(user_id, r=self.r)

        pattern = extract_pattern(
            user_id, recent, now=now,
            assessed_risk_score=risk.risk_tolerance_score if risk else None,
            extractor=self.pattern_extractor,
        )
        activity = self.activity_scorer.analyze(user_id, lookback, now=now)
        chains = score_chains(user_id, interactions_from_events(lookback), risk, now=now)
        await self._recommend_chains(chains, risk)

        decision = decide_adaptation(pattern, now=now, threshold=self.confidence_threshold)
        if not decision.apply:
            logger.info(
                "Adaptation for %s below confidence gate (%.2f < %.2f), keeping current config",
                user_id, decision.confidence, self.confidence_threshold,
            )

        insights = await generate_insights(
            user_id,
            self.advisor,
            risk=risk,
            chains=chains,
            activity=activity,
            active_rules=profile_store.active_insight_rules(user_id, now=now, r=self.r),
            now=now,
        )

        evolutions = profile_store.persist_analysis(
            user_id,
            pattern=pattern,
            activity=activity,
            chains=chains,
            adaptation=decision.config if decision.apply else None,
            adaptation_record=decision.record if decision.apply else None,
            insights=insights,
            now=now,
            r=self.r,
        )
        return AnalysisResult(
            user_id=user_id,
            pattern=pattern,
            activity=activity,
            chains=chains,
            decision=decision,
            insights=insights,
            evolutions=evolutions,
        )

    # ── Risk assessment ──────────────────────────────────────────────────

    async def assess_risk(
        self,
        user_id: str,
        answers: dict[str, Any],
        now: datetime | None = None,
    ) -> RiskProfile:
        """Score a questionnaire, attach recommendations and store the profile.

        Raises ValidationError for malformed answers.
        """
        now = now or datetime.now(timezone.utc)
        profile = risk_scorer.assess_risk(user_id, answers)
        profile.assessed_at = now.isoformat()

        defaults = risk_scorer.default_recommendations(profile)
        text = await self.advisor.advise(
            risk_scorer.recommendation_prompt(profile),
            fallback="\n".join(defaults),
        )
        profile.recommendations = risk_scorer.parse_recommendations(text) or defaults

        profile_store.save_risk_profile(profile, r=self.r)
        insights = await generate_insights(
            user_id,
            self.advisor,
            risk=profile,
            active_rules=profile_store.active_insight_rules(user_id, now=now, r=self.r),
            now=now,
        )
        profile_store.save_insights(user_id, insights, r=self.r)
        logger.info(
            "Risk assessment for %s: score=%d category=%s confidence=%.2f",
            user_id, profile.risk_tolerance_score, profile.risk_category, profile.confidence_score,
        )
        return profile
