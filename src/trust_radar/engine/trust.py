"""
Trust Radar — Trust Score (Trust Aggregator core)

Trust = Σ weight_i × subscore_i, clamped to [0, 100]

Subscores (each bounded to [0, 100]):
- quality     = 100 × (0.60 × completion + 0.25 × rating + 0.15 × earnings)
- reliability = 100 × (0.60 × (1 − cancel_rate) + 0.40 × (1 − min(1, 2 × refund_rate)))
- safety      = 100 − risk_score − moderation penalty (capped at 20 when CRITICAL)
- payout      = 100 × payout success rate

Missing data maps to the neutral values of the policy, never to zero.

Tiers (policy defaults): >= 85 EXCELLENT, >= 70 GOOD, >= 50 FAIR,
otherwise NEEDS_IMPROVEMENT.

Trend compares each recompute with the previous score: a move of more than
TRUST_TREND_BAND points either way is IMPROVING or DECLINING, else STABLE.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, NamedTuple

import structlog

from trust_radar.config import RiskLevel, TrustTier, TrustTrend
from trust_radar.engine.policy import ScoringPolicy
from trust_radar.engine.risk import clamp_score
from trust_radar.sources.views import KpiSnapshot

logger = structlog.get_logger(__name__)

_ZERO = Decimal("0")
_ONE = Decimal("1")
_HUNDRED = Decimal("100")

# Blend inside the quality and reliability formulas
_QUALITY_COMPLETION_SHARE = Decimal("0.60")
_QUALITY_RATING_SHARE = Decimal("0.25")
_QUALITY_EARNINGS_SHARE = Decimal("0.15")
_RELIABILITY_CANCEL_SHARE = Decimal("0.60")
_RELIABILITY_REFUND_SHARE = Decimal("0.40")
_REFUND_RATE_AMPLIFIER = Decimal("2")


class TrustSubscores(NamedTuple):
    quality: int
    reliability: int
    safety: int
    payout: int


class TrustComputation(NamedTuple):
    """Result of combining KPIs and risk into a trust record."""
    score: int
    tier: TrustTier
    subscores: TrustSubscores
    population: str


def _ratio(part: int, whole: int) -> Decimal:
    if whole <= 0:
        return _ZERO
    return min(_ONE, Decimal(part) / Decimal(whole))


def quality_subscore(kpi: KpiSnapshot, policy: ScoringPolicy) -> int:
    """Session completion, review average and earnings volume."""
    formula = policy.trust_formula

    if kpi.sessions_total > 0:
        completion = _ratio(kpi.sessions_completed, kpi.sessions_total)
    else:
        completion = formula.neutral_completion_rate

    if kpi.reviews_count > 0 and kpi.average_rating is not None:
        rating = (Decimal(kpi.average_rating) - _ONE) / Decimal("4")
    else:
        rating = formula.neutral_rating_component

    if formula.earnings_target_tokens > 0:
        earnings = min(_ONE, Decimal(kpi.earnings_tokens) / Decimal(formula.earnings_target_tokens))
    else:
        earnings = _ONE

    raw = _HUNDRED * (
        _QUALITY_COMPLETION_SHARE * completion
        + _QUALITY_RATING_SHARE * rating
        + _QUALITY_EARNINGS_SHARE * earnings
    )
    return clamp_score(raw)


def reliability_subscore(kpi: KpiSnapshot) -> int:
    """Creator-initiated cancellations and refund rate."""
    cancel_rate = _ratio(kpi.bookings_cancelled, kpi.bookings_total)
    refund_rate = _ratio(kpi.refunds_count, kpi.orders_total)

    raw = _HUNDRED * (
        _RELIABILITY_CANCEL_SHARE * (_ONE - cancel_rate)
        + _RELIABILITY_REFUND_SHARE * (_ONE - min(_ONE, _REFUND_RATE_AMPLIFIER * refund_rate))
    )
    return clamp_score(raw)


def safety_subscore(
    risk_score: int,
    risk_level: RiskLevel,
    moderation_actions: int,
    policy: ScoringPolicy,
) -> int:
    """Inverted risk score minus a capped moderation-history penalty."""
    formula = policy.trust_formula
    penalty = min(formula.moderation_penalty_cap, moderation_actions * formula.moderation_penalty)
    safety = clamp_score(100 - risk_score - penalty)
    if risk_level == RiskLevel.CRITICAL:
        safety = min(safety, formula.critical_safety_cap)
    return safety


def payout_subscore(kpi: KpiSnapshot, policy: ScoringPolicy) -> int:
    """Payout success rate, neutral when the subject never requested a payout."""
    if kpi.payouts_attempted <= 0:
        return clamp_score(policy.trust_formula.neutral_payout_score)
    return clamp_score(_HUNDRED * _ratio(kpi.payouts_succeeded, kpi.payouts_attempted))


def tier_for_score(score: int, policy: ScoringPolicy) -> TrustTier:
    """Map a trust score to its tier. Total over all integers."""
    if score >= policy.tier_excellent_min:
        return TrustTier.EXCELLENT
    if score >= policy.tier_good_min:
        return TrustTier.GOOD
    if score >= policy.tier_fair_min:
        return TrustTier.FAIR
    return TrustTier.NEEDS_IMPROVEMENT


def trend_for_change(current: int, previous: int | None, band: int) -> TrustTrend:
    """IMPROVING or DECLINING when the score moved by more than `band` points."""
    if previous is None:
        return TrustTrend.STABLE
    diff = current - previous
    if diff > band:
        return TrustTrend.IMPROVING
    if diff < -band:
        return TrustTrend.DECLINING
    return TrustTrend.STABLE


def extend_history(
    history: list[dict[str, Any]] | None,
    score: int,
    recalculated_at: datetime,
    keep: int,
) -> list[dict[str, Any]]:
    """Prepend the new score, newest first, keeping at most `keep` entries."""
    entry = {"score": score, "recalculated_at": recalculated_at.isoformat()}
    return ([entry] + list(history or []))[:keep]


def combine_subscores(subscores: TrustSubscores, policy: ScoringPolicy) -> int:
    """Fixed weighted sum of the four subscores, clamped."""
    weights = policy.trust_weights
    raw = (
        weights.quality * subscores.quality
        + weights.reliability * subscores.reliability
        + weights.safety * subscores.safety
        + weights.payout * subscores.payout
    )
    return clamp_score(raw)


def compute_trust(
    kpi: KpiSnapshot,
    risk_score: int,
    risk_level: RiskLevel,
    policy: ScoringPolicy,
) -> TrustComputation:
    """
    Compute a subject's trust record from its KPI snapshot and risk.

    Args:
        kpi: KPI rollup over the lookback window.
        risk_score: Current risk score (0 when the subject has no signals).
        risk_level: Level matching risk_score.
        policy: Active scoring policy.

    Returns:
        TrustComputation with composite score, tier and subscores.
    """
    subscores = TrustSubscores(
        quality=quality_subscore(kpi, policy),
        reliability=reliability_subscore(kpi),
        safety=safety_subscore(risk_score, risk_level, kpi.moderation_actions, policy),
        payout=payout_subscore(kpi, policy),
    )
    score = combine_subscores(subscores, policy)
    tier = tier_for_score(score, policy)

    logger.debug(
        "trust_computed",
        subject_id=kpi.subject_id,
        score=score,
        tier=tier.value,
        quality=subscores.quality,
        reliability=subscores.reliability,
        safety=subscores.safety,
        payout=subscores.payout,
        policy_version=policy.version,
    )
    return TrustComputation(score=score, tier=tier, subscores=subscores, population=kpi.population)
