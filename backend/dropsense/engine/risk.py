"""Risk Tolerance Scorer.

Turns the 8-question risk assessment (answers 1-5) into a RiskProfile:
weighted 0-100 score, category, derived capacity/horizon/experience fields
and a consistency-based confidence.
"""

from __future__ import annotations

import logging
from typing import Any

from dropsense.errors import ValidationError
from dropsense.models.profiles import RiskCategory, RiskProfile

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Factor table
# ═══════════════════════════════════════════════════════════════════════════

RISK_FACTOR_WEIGHTS: dict[str, float] = {
    "investment_experience": 0.15,
    "risk_capacity": 0.20,
    "time_horizon": 0.15,
    "technical_knowledge": 0.10,
    "security_priority": 0.15,
    "loss_tolerance": 0.15,
    "diversification_understanding": 0.05,
    "volatility_comfort": 0.05,
}

ANSWER_MIN, ANSWER_MAX = 1, 5

# (inclusive upper bound, category) on the final score
CATEGORY_THRESHOLDS: list[tuple[int, str]] = [
    (20, RiskCategory.CONSERVATIVE),
    (40, RiskCategory.MODERATE),
    (60, RiskCategory.BALANCED),
    (80, RiskCategory.GROWTH),
]

MAX_RECOMMENDATIONS = 5

DEFAULT_RECOMMENDATIONS: dict[str, list[str]] = {
    RiskCategory.CONSERVATIVE: [
        "Focus on established projects with low risk scores",
        "Never invest more than you can afford to lose",
        "Use hardware wallets for all interactions",
    ],
    RiskCategory.AGGRESSIVE: [
        "Consider higher-risk, higher-reward opportunities",
        "Diversify across multiple risk categories",
        "Set clear stop-loss limits",
    ],
    "default": [
        "Maintain a balanced portfolio of risk levels",
        "Research each project thoroughly before participating",
        "Start with smaller investments to test the waters",
    ],
}
BEGINNER_RECOMMENDATIONS: list[str] = [
    "Start with testnet interactions to learn the process",
    "Follow educational content about DeFi security",
]


def validate_answers(answers: dict[str, Any]) -> dict[str, int]:
    """Check all 8 answers are present and numeric in [1, 5]."""
    invalid: dict[str, Any] = {}
    clean: dict[str, int] = {}
    for name in RISK_FACTOR_WEIGHTS:
        value = answers.get(name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            invalid[name] = value
            continue
        if not ANSWER_MIN <= value <= ANSWER_MAX:
            invalid[name] = value
            continue
        clean[name] = value
    if invalid:
        raise ValidationError(
            "Risk assessment answers must be numbers between 1 and 5",
            {"invalid": invalid},
        )
    return clean


# ── Derived fields ───────────────────────────────────────────────────────

def categorize(score: float) -> str:
    for bound, category in CATEGORY_THRESHOLDS:
        if score <= bound:
            return category
    return RiskCategory.AGGRESSIVE


def financial_capacity(risk_capacity: float, investment_experience: float) -> str:
    avg = (risk_capacity + investment_experience) / 2
    if avg <= 2:
        return "low"
    if avg <= 3:
        return "medium"
    if avg <= 4:
        return "high"
    return "very_high"


def time_horizon(answer: float) -> str:
    if answer <= 2:
        return "short"
    if answer <= 4:
        return "medium"
    return "long"


def experience_level(answer: float) -> str:
    if answer <= 1:
        return "beginner"
    if answer <= 3:
        return "intermediate"
    if answer <= 4:
        return "advanced"
    return "expert"


def assessment_confidence(answers: dict[str, float]) -> float:
    """Starts at 0.5; internally consistent answers raise it, capped at 1.0."""
    confidence = 0.5
    if abs(answers["investment_experience"] - answers["technical_knowledge"]) <= 1:
        confidence += 0.2
    if abs(answers["risk_capacity"] - answers["loss_tolerance"]) <= 1:
        confidence += 0.2
    if answers["security_priority"] >= 4:
        confidence += 0.1
    return round(min(confidence, 1.0), 4)


# ═══════════════════════════════════════════════════════════════════════════
# Scoring
# ═══════════════════════════════════════════════════════════════════════════

def assess_risk(user_id: str, answers: dict[str, Any]) -> RiskProfile:
    """Score a risk assessment. Raises ValidationError on malformed answers."""
    clean = validate_answers(answers)

    risk_factors: list[dict[str, Any]] = []
    weighted = 0.0
    for name, weight in RISK_FACTOR_WEIGHTS.items():
        factor_score = (clean[name] / ANSWER_MAX) * 100
        weighted += factor_score * weight
        risk_factors.append({
            "factor": name,
            "weight": round(weight * 100),
            "score": round(factor_score),
        })

    score = max(0, min(100, round(weighted)))

    return RiskProfile(
        user_id=user_id,
        risk_tolerance_score=score,
        risk_category=categorize(score),
        financial_capacity=financial_capacity(clean["risk_capacity"], clean["investment_experience"]),
        loss_acceptance=round(
            (clean["loss_tolerance"] / 5) * 20 + (clean["risk_capacity"] / 5) * 10
        ),
        time_horizon=time_horizon(clean["time_horizon"]),
        experience_level=experience_level(clean["investment_experience"]),
        technical_knowledge=round(clean["technical_knowledge"] / 5 * 10),
        security_consciousness=round(clean["security_priority"] / 5 * 10),
        risk_factors=risk_factors,
        confidence_score=assessment_confidence(clean),
        assessment_answers=clean,
    )


def default_recommendations(profile: RiskProfile) -> list[str]:
    """Template recommendations keyed by category and experience."""
    recs = list(DEFAULT_RECOMMENDATIONS.get(profile.risk_category, DEFAULT_RECOMMENDATIONS["default"]))
    if profile.experience_level == "beginner":
        recs.extend(BEGINNER_RECOMMENDATIONS)
    return recs[:MAX_RECOMMENDATIONS]


def recommendation_prompt(profile: RiskProfile) -> str:
    return (
        "Based on this risk profile, provide 3-5 specific recommendations for "
        "airdrop hunting, one per line:\n"
        f"- Risk score: {profile.risk_tolerance_score}/100 ({profile.risk_category})\n"
        f"- Experience: {profile.experience_level}\n"
        f"- Financial capacity: {profile.financial_capacity}\n"
        f"- Technical knowledge: {profile.technical_knowledge}/10\n"
        f"- Security consciousness: {profile.security_consciousness}/10\n"
        "Focus on actionable advice for airdrop selection and risk management."
    )


def parse_recommendations(text: str) -> list[str]:
    """Split advisory output into clean recommendation lines."""
    lines = []
    for raw in text.splitlines():
        line = raw.strip().lstrip("-*•0123456789.) ").strip()
        if line:
            lines.append(line)
    return lines[:MAX_RECOMMENDATIONS]
