"""Tests for the Risk Tolerance Scorer."""

import itertools
import random

import pytest

from dropsense.engine.risk import (
    RISK_FACTOR_WEIGHTS,
    assess_risk,
    categorize,
    default_recommendations,
    financial_capacity,
    parse_recommendations,
)
from dropsense.errors import ValidationError


def _answers(**overrides):
    base = {name: 3 for name in RISK_FACTOR_WEIGHTS}
    base.update(overrides)
    return base


CAUTIOUS_BEGINNER = {
    "investment_experience": 1,
    "risk_capacity": 1,
    "time_horizon": 1,
    "technical_knowledge": 1,
    "security_priority": 5,
    "loss_tolerance": 1,
    "diversification_understanding": 3,
    "volatility_comfort": 1,
}


class TestWeights:
    def test_weights_sum_to_one(self):
        assert sum(RISK_FACTOR_WEIGHTS.values()) == pytest.approx(1.0, abs=1e-3)

    def test_factor_table_matches_weights(self):
        profile = assess_risk("u", _answers())
        assert [f["factor"] for f in profile.risk_factors] == list(RISK_FACTOR_WEIGHTS)
        assert sum(f["weight"] for f in profile.risk_factors) == 100


class TestScoring:
    def test_worked_example(self):
        profile = assess_risk("u", CAUTIOUS_BEGINNER)
        assert profile.risk_tolerance_score == 34
        assert profile.risk_category == "moderate"

    def test_worked_example_derived_fields(self):
        profile = assess_risk("u", CAUTIOUS_BEGINNER)
        assert profile.financial_capacity == "low"
        assert profile.loss_acceptance == 6         # 1/5*20 + 1/5*10
        assert profile.time_horizon == "short"
        assert profile.experience_level == "beginner"
        assert profile.technical_knowledge == 2
        assert profile.security_consciousness == 10
        # exp/tech consistent (+0.2), capacity/loss consistent (+0.2), security >= 4 (+0.1)
        assert profile.confidence_score == 1.0

    def test_all_max_answers(self):
        profile = assess_risk("u", _answers(**{k: 5 for k in RISK_FACTOR_WEIGHTS}))
        assert profile.risk_tolerance_score == 100
        assert profile.risk_category == "aggressive"
        assert profile.experience_level == "expert"
        assert profile.financial_capacity == "very_high"

    def test_all_min_answers(self):
        profile = assess_risk("u", _answers(**{k: 1 for k in RISK_FACTOR_WEIGHTS}))
        assert profile.risk_tolerance_score == 20
        assert profile.risk_category == "conservative"

    def test_score_always_in_range(self):
        rng = random.Random(11)
        for _ in range(200):
            answers = {k: rng.randint(1, 5) for k in RISK_FACTOR_WEIGHTS}
            profile = assess_risk("u", answers)
            assert 0 <= profile.risk_tolerance_score <= 100
            assert 0.5 <= profile.confidence_score <= 1.0

    def test_contradictory_answers_lower_confidence(self):
        profile = assess_risk("u", _answers(
            investment_experience=5, technical_knowledge=1,
            risk_capacity=5, loss_tolerance=1, security_priority=2,
        ))
        assert profile.confidence_score == 0.5

    @pytest.mark.parametrize("score, category", [
        (0, "conservative"), (20, "conservative"), (21, "moderate"), (40, "moderate"),
        (41, "balanced"), (60, "balanced"), (61, "growth"), (80, "growth"), (81, "aggressive"),
    ])
    def test_category_boundaries(self, score, category):
        assert categorize(score) == category

    @pytest.mark.parametrize("capacity, experience, expected", [
        (1, 3, "low"), (3, 3, "medium"), (4, 4, "high"), (5, 4, "very_high"),
    ])
    def test_financial_capacity(self, capacity, experience, expected):
        assert financial_capacity(capacity, experience) == expected


class TestValidation:
    def test_missing_answer(self):
        answers = _answers()
        del answers["volatility_comfort"]
        with pytest.raises(ValidationError) as exc:
            assess_risk("u", answers)
        assert "volatility_comfort" in exc.value.details["invalid"]

    @pytest.mark.parametrize("bad", [0, 6, -1, "3", None, True])
    def test_out_of_range_or_non_numeric(self, bad):
        with pytest.raises(ValidationError):
            assess_risk("u", _answers(risk_capacity=bad))

    def test_answers_are_recorded(self):
        profile = assess_risk("u", CAUTIOUS_BEGINNER)
        assert profile.assessment_answers == CAUTIOUS_BEGINNER


class TestRecommendations:
    def test_conservative_defaults(self):
        profile = assess_risk("u", _answers(**{k: 1 for k in RISK_FACTOR_WEIGHTS}))
        recs = default_recommendations(profile)
        assert recs[0] == "Focus on established projects with low risk scores"
        assert "Start with testnet interactions to learn the process" in recs
        assert len(recs) == 5

    def test_balanced_defaults_for_experienced_user(self):
        profile = assess_risk("u", _answers())
        recs = default_recommendations(profile)
        assert recs == [
            "Maintain a balanced portfolio of risk levels",
            "Research each project thoroughly before participating",
            "Start with smaller investments to test the waters",
        ]

    def test_parse_strips_bullets_and_caps_at_five(self):
        text = "1. First\n- Second\n* Third\n\n• Fourth\n2) Fifth\nSixth"
        assert parse_recommendations(text) == ["First", "Second", "Third", "Fourth", "Fifth"]


class TestCoverage:
    def test_every_boundary_combination_categorizes(self):
        # exhaustively sweep two of the heaviest factors
        for cap, horizon in itertools.product(range(1, 6), repeat=2):
            profile = assess_risk("u", _answers(risk_capacity=cap, time_horizon=horizon))
            assert profile.risk_category == categorize(profile.risk_tolerance_score)
