"""
Trust Radar — Risk Score (Risk Aggregator core)

Risk = clamp(round(Σ points(severity) × decay(age)), 0, 100)

Level thresholds (policy defaults):
- 0-14   LOW
- 15-34  MEDIUM
- 35-69  HIGH
- 70-100 CRITICAL

Pure function of the signal history, the policy and a reference time, so
recomputing from the same history always yields the same record.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, NamedTuple, Protocol

import structlog

from trust_radar.config import RiskLevel, SignalType
from trust_radar.engine.decay import decay_weight, signal_age_days
from trust_radar.engine.policy import ScoringPolicy
from trust_radar.utils.clock import as_utc

logger = structlog.get_logger(__name__)

SCORE_MIN = 0
SCORE_MAX = 100


class SignalFact(Protocol):
    """The slice of a Signal the risk formula needs."""

    signal_type: SignalType | str
    severity: int
    detected_at: datetime


class RiskComputation(NamedTuple):
    """Result of replaying a subject's signal history."""
    score: int
    level: RiskLevel
    signal_counts: dict[str, int]
    last_signal_at: datetime | None
    weighted_points: Decimal


def clamp_score(value: Decimal | int) -> int:
    """Round half-up to an integer and clamp into [0, 100]."""
    rounded = int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return max(SCORE_MIN, min(SCORE_MAX, rounded))


def level_for_score(score: int, policy: ScoringPolicy) -> RiskLevel:
    """Map a risk score to its level. Total over all integers."""
    if score >= policy.risk_critical_min:
        return RiskLevel.CRITICAL
    if score >= policy.risk_high_min:
        return RiskLevel.HIGH
    if score >= policy.risk_medium_min:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def severity_points(severity: int, policy: ScoringPolicy) -> int:
    """Point value of a severity, out-of-range severities are clamped to 1-5."""
    return policy.severity_points[max(1, min(5, int(severity)))]


def compute_risk(
    signals: Iterable[SignalFact],
    policy: ScoringPolicy,
    reference_time: datetime,
) -> RiskComputation:
    """
    Replay a signal history into a risk score.

    Args:
        signals: The subject's signals (any order).
        policy: Active scoring policy.
        reference_time: "Now" for decay purposes. Passing it explicitly keeps
                        the computation deterministic and testable.

    Returns:
        RiskComputation with score, level, per-type counts and last signal time.
    """
    total = Decimal("0")
    counts: dict[str, int] = {}
    last_signal_at: datetime | None = None

    for signal in signals:
        signal_type = signal.signal_type.value if isinstance(signal.signal_type, SignalType) else str(signal.signal_type)
        counts[signal_type] = counts.get(signal_type, 0) + 1

        age = signal_age_days(signal.detected_at, reference_time)
        weight = decay_weight(age, policy.decay)
        total += Decimal(severity_points(signal.severity, policy)) * weight

        detected_at = as_utc(signal.detected_at)
        if last_signal_at is None or detected_at > last_signal_at:
            last_signal_at = detected_at

    score = clamp_score(total)
    level = level_for_score(score, policy)

    logger.debug(
        "risk_computed",
        signal_count=sum(counts.values()),
        weighted_points=str(total),
        score=score,
        level=level.value,
        policy_version=policy.version,
    )
    return RiskComputation(
        score=score,
        level=level,
        signal_counts=dict(sorted(counts.items())),
        last_signal_at=last_signal_at,
        weighted_points=total,
    )
