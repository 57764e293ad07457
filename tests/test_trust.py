"""
Tests for the trust formula.

Validates:
- Subscore formulas and neutral values for missing data
- Safety cap for CRITICAL risk
- Weighted composite and tier cutoffs
- Trend band and bounded score history
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from trust_radar.config import RiskLevel, TrustTier, TrustTrend
from trust_radar.engine.trust import (
    compute_trust,
    extend_history,
    payout_subscore,
    quality_subscore,
    reliability_subscore,
    safety_subscore,
    tier_for_score,
    trend_for_change,
)
from trust_radar.sources.views import KpiSnapshot


class TestSubscores:
    def test_quality_for_strong_subject(self, policy, strong_kpi_factory):
        # 100 × (0.60 × 0.98 + 0.25 × 0.975 + 0.15 × 1) = 98.175
        assert quality_subscore(strong_kpi_factory("s-1"), policy) == 98

    def test_quality_neutral_without_sessions_or_reviews(self, policy):
        # 100 × (0.60 × 0.75 + 0.25 × 0.75 + 0.15 × 0) = 63.75
        assert quality_subscore(KpiSnapshot(subject_id="s-1"), policy) == 64

    def test_reliability_penalizes_cancels_and_refunds(self):
        kpi = KpiSnapshot(
            subject_id="s-1",
            bookings_total=10,
            bookings_cancelled=5,
            orders_total=10,
            refunds_count=1,
        )
        # 100 × (0.60 × 0.5 + 0.40 × (1 − 0.2)) = 62
        assert reliability_subscore(kpi) == 62

    def test_reliability_refund_component_bottoms_out(self):
        kpi = KpiSnapshot(subject_id="s-1", orders_total=10, refunds_count=6)
        assert reliability_subscore(kpi) == 60

    def test_reliability_neutral_without_activity(self):
        assert reliability_subscore(KpiSnapshot(subject_id="s-1")) == 100

    def test_safety_inverts_risk_and_applies_moderation(self, policy):
        assert safety_subscore(20, RiskLevel.MEDIUM, 2, policy) == 60

    def test_moderation_penalty_is_capped(self, policy):
        assert safety_subscore(0, RiskLevel.LOW, 12, policy) == 50

    def test_safety_capped_for_critical_risk(self, policy):
        assert safety_subscore(70, RiskLevel.CRITICAL, 0, policy) == 20
        assert safety_subscore(100, RiskLevel.CRITICAL, 0, policy) == 0

    def test_payout_neutral_without_attempts(self, policy):
        assert payout_subscore(KpiSnapshot(subject_id="s-1"), policy) == 80

    def test_payout_success_rate(self, policy):
        kpi = KpiSnapshot(subject_id="s-1", payouts_attempted=4, payouts_succeeded=3)
        assert payout_subscore(kpi, policy) == 75


class TestComputeTrust:
    def test_strong_subject_with_no_risk_is_excellent(self, policy, strong_kpi_factory):
        result = compute_trust(strong_kpi_factory("s-1"), 0, RiskLevel.LOW, policy)

        assert result.score >= 85
        assert result.tier == TrustTier.EXCELLENT
        assert result.subscores.safety == 100
        assert result.population == "creators"

    def test_critical_risk_drags_strong_subject_down(self, policy, strong_kpi_factory):
        result = compute_trust(strong_kpi_factory("s-1"), 90, RiskLevel.CRITICAL, policy)

        assert result.subscores.safety == 10
        assert result.score < compute_trust(strong_kpi_factory("s-1"), 0, RiskLevel.LOW, policy).score

    def test_all_scores_bounded(self, policy):
        kpi = KpiSnapshot(
            subject_id="s-1",
            sessions_total=10,
            sessions_completed=0,
            average_rating="1",
            reviews_count=3,
            bookings_total=5,
            bookings_cancelled=5,
            orders_total=5,
            refunds_count=5,
            payouts_attempted=5,
            payouts_succeeded=0,
            moderation_actions=20,
        )
        result = compute_trust(kpi, 100, RiskLevel.CRITICAL, policy)

        assert result.score == 0
        assert result.tier == TrustTier.NEEDS_IMPROVEMENT
        assert all(0 <= value <= 100 for value in result.subscores)

    def test_same_inputs_same_result(self, policy, strong_kpi_factory):
        first = compute_trust(strong_kpi_factory("s-1"), 12, RiskLevel.LOW, policy)
        second = compute_trust(strong_kpi_factory("s-1"), 12, RiskLevel.LOW, policy)
        assert first == second


@pytest.mark.parametrize(
    ("score", "expected"),
    [
        (100, TrustTier.EXCELLENT),
        (85, TrustTier.EXCELLENT),
        (84, TrustTier.GOOD),
        (70, TrustTier.GOOD),
        (69, TrustTier.FAIR),
        (50, TrustTier.FAIR),
        (49, TrustTier.NEEDS_IMPROVEMENT),
        (0, TrustTier.NEEDS_IMPROVEMENT),
    ],
)
def test_tier_boundaries(policy, score, expected) -> None:
    assert tier_for_score(score, policy) == expected


@pytest.mark.parametrize(
    "current,previous,expected",
    [
        (80, None, TrustTrend.STABLE),
        (80, 80, TrustTrend.STABLE),
        (82, 80, TrustTrend.STABLE),
        (78, 80, TrustTrend.STABLE),
        (83, 80, TrustTrend.IMPROVING),
        (77, 80, TrustTrend.DECLINING),
    ],
)
def test_trend_band(current, previous, expected) -> None:
    assert trend_for_change(current, previous, band=2) == expected


class TestScoreHistory:
    AT = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_newest_first(self):
        history = extend_history(None, 70, self.AT, keep=30)
        history = extend_history(history, 75, self.AT + timedelta(days=1), keep=30)

        assert [h["score"] for h in history] == [75, 70]
        assert history[0]["recalculated_at"] == "2026-03-02T12:00:00+00:00"

    def test_bounded_length(self):
        history = []
        for day in range(35):
            history = extend_history(history, day, self.AT + timedelta(days=day), keep=30)

        assert len(history) == 30
        assert history[0]["score"] == 34
        assert history[-1]["score"] == 5
