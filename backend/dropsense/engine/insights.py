"""Insight Generator.

Checks a fixed set of rules against the latest risk, chain and activity
results. Each firing rule becomes a PreferenceInsight with a validity window.
The description is phrased by the advisory capability from a structured
prompt; the rule's own template is the fallback.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

from dropsense.models.profiles import (
    ActivityPattern,
    ChainPreference,
    PreferenceInsight,
    RiskProfile,
)

logger = logging.getLogger(__name__)

RISK_VALIDITY_DAYS = 30
CHAIN_VALIDITY_DAYS = 14
ACTIVITY_VALIDITY_DAYS = 7

SECURITY_CONSCIOUSNESS_FLOOR = 6
MIN_CHAIN_DIVERSITY = 3
LOW_CONSISTENCY = 30
LONG_SESSION_MINUTES = 45
LOW_COMPLETION_RATE = 50


@dataclass
class InsightDraft:
    """A fired rule before phrasing."""

    rule: str
    insight_type: str
    title: str
    template: str
    confidence_score: float
    impact_level: str
    actionable_recommendation: str
    validity_days: int
    supporting_data: dict[str, Any] = field(default_factory=dict)

    def prompt(self) -> str:
        return (
            "Describe this personalization insight to the user in 1-2 sentences.\n"
            f"Insight: {self.title}\n"
            f"Category: {self.insight_type}\n"
            f"Supporting data: {json.dumps(self.supporting_data, sort_keys=True)}\n"
            f"Suggested action: {self.actionable_recommendation}"
        )

    def build(self, user_id: str, description: str, now: datetime) -> PreferenceInsight:
        return PreferenceInsight(
            user_id=user_id,
            insight_type=self.insight_type,
            rule=self.rule,
            title=self.title,
            description=description,
            confidence_score=self.confidence_score,
            impact_level=self.impact_level,
            actionable_recommendation=self.actionable_recommendation,
            supporting_data=self.supporting_data,
            valid_until=(now + timedelta(days=self.validity_days)).isoformat(),
            created_at=now.isoformat(),
        )


# ═══════════════════════════════════════════════════════════════════════════
# Rules
# ═══════════════════════════════════════════════════════════════════════════

# ── Risk ─────────────────────────────────────────────────────────────────

def risk_insights(risk: RiskProfile | None) -> list[InsightDraft]:
    if risk is None:
        return []
    drafts = []
    if risk.risk_tolerance_score > 70 and risk.experience_level == "beginner":
        drafts.append(InsightDraft(
            rule="high_risk_low_experience",
            insight_type="risk",
            title="High Risk Tolerance, Low Experience",
            template=(
                f"Your risk tolerance score is {risk.risk_tolerance_score}/100 but your "
                "experience level is beginner. High-risk airdrops can cost you more than "
                "you expect while you are still learning."
            ),
            confidence_score=0.8,
            impact_level="high",
            actionable_recommendation="Start with lower-risk opportunities to build experience first.",
            validity_days=RISK_VALIDITY_DAYS,
            supporting_data={
                "risk_tolerance_score": risk.risk_tolerance_score,
                "experience_level": risk.experience_level,
            },
        ))
    if risk.security_consciousness < SECURITY_CONSCIOUSNESS_FLOOR:
        drafts.append(InsightDraft(
            rule="security_awareness_gap",
            insight_type="risk",
            title="Security Awareness Gap",
            template=(
                f"Your security consciousness is {risk.security_consciousness}/10. "
                "Airdrop hunting exposes you to phishing and malicious contracts."
            ),
            confidence_score=0.9,
            impact_level="critical",
            actionable_recommendation=(
                "Review wallet security basics and use a separate wallet for airdrop interactions."
            ),
            validity_days=RISK_VALIDITY_DAYS,
            supporting_data={"security_consciousness": risk.security_consciousness},
        ))
    return drafts


# ── Chains ───────────────────────────────────────────────────────────────

def chain_insights(chains: Sequence[ChainPreference]) -> list[InsightDraft]:
    if not chains:
        return []
    drafts = []

    high_gas = [c for c in chains if c.avg_gas_cost > 50 and c.preference_score > 70]
    if high_gas:
        top = high_gas[0]
        drafts.append(InsightDraft(
            rule="high_gas_preference",
            insight_type="chain",
            title="High Gas Cost Preference",
            template=(
                f"You favour {top.chain_name} even though you spend an average of "
                f"{top.avg_gas_cost} in gas per interaction there."
            ),
            confidence_score=0.8,
            impact_level="medium",
            actionable_recommendation="Try lower-cost Layer 2 networks for similar opportunities.",
            validity_days=CHAIN_VALIDITY_DAYS,
            supporting_data={
                "chain_id": top.chain_id,
                "avg_gas_cost": top.avg_gas_cost,
                "preference_score": top.preference_score,
            },
        ))

    if len(chains) < MIN_CHAIN_DIVERSITY:
        drafts.append(InsightDraft(
            rule="limited_chain_diversity",
            insight_type="chain",
            title="Limited Chain Diversity",
            template=(
                f"You have only used {len(chains)} chain(s). Many airdrops are only "
                "available on other networks."
            ),
            confidence_score=0.9,
            impact_level="medium",
            actionable_recommendation="Explore at least one additional chain to widen your opportunities.",
            validity_days=CHAIN_VALIDITY_DAYS,
            supporting_data={"chains_used": [c.chain_id for c in chains]},
        ))

    struggling = [c for c in chains if c.success_rate < 50 and c.usage_frequency > 5]
    if struggling:
        worst = min(struggling, key=lambda c: c.success_rate)
        drafts.append(InsightDraft(
            rule="low_chain_success",
            insight_type="chain",
            title="Low Success Rate Detected",
            template=(
                f"Only {worst.success_rate}% of your {worst.usage_frequency} interactions on "
                f"{worst.chain_name} succeeded."
            ),
            confidence_score=0.8,
            impact_level="high",
            actionable_recommendation=(
                f"Review failed transactions on {worst.chain_name} and check gas settings before retrying."
            ),
            validity_days=CHAIN_VALIDITY_DAYS,
            supporting_data={
                "chain_id": worst.chain_id,
                "success_rate": worst.success_rate,
                "usage_frequency": worst.usage_frequency,
            },
        ))
    return drafts


# ── Activity ─────────────────────────────────────────────────────────────

def activity_insights(activity: ActivityPattern | None) -> list[InsightDraft]:
    if activity is None or activity.is_default:
        return []
    drafts = []

    if activity.consistency_score < LOW_CONSISTENCY:
        drafts.append(InsightDraft(
            rule="inconsistent_activity",
            insight_type="activity",
            title="Inconsistent Activity Pattern",
            template=(
                f"Your consistency score is {activity.consistency_score}/100. Irregular "
                "activity makes it easy to miss airdrop deadlines."
            ),
            confidence_score=0.8,
            impact_level="medium",
            actionable_recommendation="Set a short daily routine for checking active airdrops.",
            validity_days=ACTIVITY_VALIDITY_DAYS,
            supporting_data={
                "consistency_score": activity.consistency_score,
                "active_days": activity.active_days,
            },
        ))

    if activity.peak_hours:
        peak = activity.peak_hours[0]
        drafts.append(InsightDraft(
            rule="peak_activity_time",
            insight_type="activity",
            title="Peak Activity Time Identified",
            template=f"You are most active around {peak:02d}:00.",
            confidence_score=0.9,
            impact_level="low",
            actionable_recommendation=f"Schedule important airdrop tasks around {peak:02d}:00.",
            validity_days=ACTIVITY_VALIDITY_DAYS,
            supporting_data={"peak_hours": list(activity.peak_hours)},
        ))

    if activity.session_duration_minutes > LONG_SESSION_MINUTES:
        drafts.append(InsightDraft(
            rule="long_sessions",
            insight_type="activity",
            title="Long Session Duration",
            template=(
                f"Your sessions last {activity.session_duration_minutes} minutes on average."
            ),
            confidence_score=0.7,
            impact_level="medium",
            actionable_recommendation="Try the Pomodoro technique: 25-minute focused sessions with breaks.",
            validity_days=ACTIVITY_VALIDITY_DAYS,
            supporting_data={"session_duration_minutes": activity.session_duration_minutes},
        ))

    completion = activity.productivity.get("completion_rate", 0.0)
    if activity.productivity.get("tasks_started", 0) and completion < LOW_COMPLETION_RATE:
        drafts.append(InsightDraft(
            rule="low_task_completion",
            insight_type="activity",
            title="Low Task Completion Rate",
            template=f"You complete {completion}% of the tasks you start.",
            confidence_score=0.75,
            impact_level="high",
            actionable_recommendation="Focus on completing at least one task per session.",
            validity_days=ACTIVITY_VALIDITY_DAYS,
            supporting_data={
                "completion_rate": completion,
                "tasks_started": activity.productivity.get("tasks_started", 0),
            },
        ))
    return drafts


# ═══════════════════════════════════════════════════════════════════════════
# Generation
# ═══════════════════════════════════════════════════════════════════════════

def evaluate_rules(
    risk: RiskProfile | None = None,
    chains: Sequence[ChainPreference] = (),
    activity: ActivityPattern | None = None,
) -> list[InsightDraft]:
    return risk_insights(risk) + chain_insights(chains) + activity_insights(activity)


async def generate_insights(
    user_id: str,
    advisor,
    risk: RiskProfile | None = None,
    chains: Sequence[ChainPreference] = (),
    activity: ActivityPattern | None = None,
    active_rules: set[str] | None = None,
    now: datetime | None = None,
) -> list[PreferenceInsight]:
    """Evaluate rules and phrase each new insight.

    Rules that already have an unexpired insight (``active_rules``) are
    skipped. Phrasing runs concurrently; each call falls back to its template.
    """
    now = now or datetime.now(timezone.utc)
    active_rules = active_rules or set()
    drafts = [d for d in evaluate_rules(risk, chains, activity) if d.rule not in active_rules]
    if not drafts:
        return []

    descriptions = await asyncio.gather(
        *(advisor.advise(d.prompt(), fallback=d.template) for d in drafts)
    )
    insights = [d.build(user_id, text, now) for d, text in zip(drafts, descriptions)]
    logger.info("Generated %d insight(s) for %s", len(insights), user_id)
    return insights
