"""
Trust Radar — Scoring Policy

The severity→points curve, decay schedule, level/tier cutoffs and trust
weights are tuning parameters, not code. They are bundled into a versioned
ScoringPolicy object that the aggregators receive explicitly. Every score
record stores the policy version it was computed with.

Detector thresholds follow the same pattern: one DetectorRule per category.
"""

from __future__ import annotations

import json
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, model_validator

from trust_radar.config import SignalType, settings

logger = structlog.get_logger(__name__)


def parse_ladder(raw: str) -> list[tuple[Decimal, int]]:
    """
    Parse a "min_value:severity" comma-separated ladder.

    Examples:
        >>> parse_ladder("5:3,7:4,10:5")
        [(Decimal('5'), 3), (Decimal('7'), 4), (Decimal('10'), 5)]
    """
    steps: list[tuple[Decimal, int]] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        value, _, severity = chunk.partition(":")
        steps.append((Decimal(value.strip()), int(severity.strip())))
    steps.sort(key=lambda step: step[0])
    return steps


# ---------------------------------------------------------------------------
# Scoring policy
# ---------------------------------------------------------------------------


class DecaySchedule(BaseModel):
    """Age-based weight applied to a signal's points."""

    full_weight_days: int = 30
    half_weight_days: int = 60
    half_weight: Decimal = Decimal("0.5")
    half_life_days: int = 30
    floor: Decimal = Decimal("0.10")

    @model_validator(mode="after")
    def check_order(self) -> "DecaySchedule":
        if not 0 <= self.full_weight_days <= self.half_weight_days:
            raise ValueError("decay bands must satisfy 0 <= full_weight_days <= half_weight_days")
        if not Decimal("0") <= self.floor <= self.half_weight <= Decimal("1"):
            raise ValueError("decay weights must satisfy 0 <= floor <= half_weight <= 1")
        if self.half_life_days <= 0:
            raise ValueError("half_life_days must be positive")
        return self


class TrustWeights(BaseModel):
    """Fixed weights of the four trust subscores."""

    quality: Decimal = Decimal("0.35")
    reliability: Decimal = Decimal("0.30")
    safety: Decimal = Decimal("0.25")
    payout: Decimal = Decimal("0.10")

    @model_validator(mode="after")
    def check_sum(self) -> "TrustWeights":
        total = self.quality + self.reliability + self.safety + self.payout
        if total != Decimal("1"):
            raise ValueError(f"trust weights must sum to 1, got {total}")
        return self


class TrustFormula(BaseModel):
    """Knobs of the bounded subscore formulas."""

    earnings_target_tokens: int = 1000
    neutral_completion_rate: Decimal = Decimal("0.75")
    neutral_rating_component: Decimal = Decimal("0.75")
    neutral_payout_score: int = 80
    moderation_penalty: int = 10
    moderation_penalty_cap: int = 50
    critical_safety_cap: int = 20


class ScoringPolicy(BaseModel):
    """
    Versioned policy object passed into the Risk and Trust aggregators.

    Level thresholds are lower bounds: a score >= critical_min is CRITICAL,
    >= high_min is HIGH, >= medium_min is MEDIUM, otherwise LOW. Tier cutoffs
    work the same way.
    """

    version: str = "v1"
    severity_points: dict[int, int] = Field(
        default_factory=lambda: {1: 2, 2: 5, 3: 10, 4: 20, 5: 40}
    )
    decay: DecaySchedule = Field(default_factory=DecaySchedule)
    risk_medium_min: int = 15
    risk_high_min: int = 35
    risk_critical_min: int = 70
    trust_weights: TrustWeights = Field(default_factory=TrustWeights)
    trust_formula: TrustFormula = Field(default_factory=TrustFormula)
    tier_excellent_min: int = 85
    tier_good_min: int = 70
    tier_fair_min: int = 50

    @model_validator(mode="after")
    def check_policy(self) -> "ScoringPolicy":
        if sorted(self.severity_points) != [1, 2, 3, 4, 5]:
            raise ValueError("severity_points must define severities 1 through 5")
        points = [self.severity_points[s] for s in range(1, 6)]
        if any(later < earlier for earlier, later in zip(points, points[1:])):
            raise ValueError("severity_points must be monotonically increasing")
        if not 0 < self.risk_medium_min < self.risk_high_min < self.risk_critical_min <= 100:
            raise ValueError("risk level thresholds must be strictly increasing within (0, 100]")
        if not 0 < self.tier_fair_min < self.tier_good_min < self.tier_excellent_min <= 100:
            raise ValueError("tier cutoffs must be strictly increasing within (0, 100]")
        return self


def _points_from_settings(raw: str) -> dict[int, int]:
    return {int(value): severity for value, severity in parse_ladder(raw)}


def load_policy(path: str | None = None) -> ScoringPolicy:
    """
    Build the active ScoringPolicy.

    A JSON file at `path` (or SCORING_POLICY_PATH) replaces the whole policy.
    Otherwise the policy is assembled from individual settings.
    """
    policy_path = path if path is not None else settings.SCORING_POLICY_PATH
    if policy_path:
        policy = ScoringPolicy.model_validate(json.loads(Path(policy_path).read_text()))
        logger.info("scoring_policy_loaded", source="file", path=policy_path, version=policy.version)
        return policy

    policy = ScoringPolicy(
        version=settings.SCORING_POLICY_VERSION,
        severity_points=_points_from_settings(settings.SEVERITY_POINTS),
        decay=DecaySchedule(
            full_weight_days=settings.DECAY_FULL_WEIGHT_DAYS,
            half_weight_days=settings.DECAY_HALF_WEIGHT_DAYS,
            half_weight=settings.DECAY_HALF_WEIGHT,
            half_life_days=settings.DECAY_HALF_LIFE_DAYS,
            floor=settings.DECAY_FLOOR,
        ),
        risk_medium_min=settings.RISK_MEDIUM_MIN,
        risk_high_min=settings.RISK_HIGH_MIN,
        risk_critical_min=settings.RISK_CRITICAL_MIN,
        trust_weights=TrustWeights(
            quality=settings.TRUST_WEIGHT_QUALITY,
            reliability=settings.TRUST_WEIGHT_RELIABILITY,
            safety=settings.TRUST_WEIGHT_SAFETY,
            payout=settings.TRUST_WEIGHT_PAYOUT,
        ),
        trust_formula=TrustFormula(
            earnings_target_tokens=settings.TRUST_EARNINGS_TARGET_TOKENS,
            neutral_completion_rate=settings.TRUST_NEUTRAL_COMPLETION_RATE,
            neutral_rating_component=settings.TRUST_NEUTRAL_RATING_COMPONENT,
            neutral_payout_score=settings.TRUST_NEUTRAL_PAYOUT_SCORE,
            moderation_penalty=settings.TRUST_MODERATION_PENALTY,
            moderation_penalty_cap=settings.TRUST_MODERATION_PENALTY_CAP,
            critical_safety_cap=settings.TRUST_CRITICAL_SAFETY_CAP,
        ),
        tier_excellent_min=settings.TRUST_TIER_EXCELLENT_MIN,
        tier_good_min=settings.TRUST_TIER_GOOD_MIN,
        tier_fair_min=settings.TRUST_TIER_FAIR_MIN,
    )
    logger.debug("scoring_policy_loaded", source="settings", version=policy.version)
    return policy


# ---------------------------------------------------------------------------
# Detector rules
# ---------------------------------------------------------------------------


class DetectorRule(BaseModel):
    """Trigger threshold, observation window and severity ladder for one category."""

    signal_type: SignalType
    window: timedelta
    threshold: Decimal
    ladder: list[tuple[Decimal, int]]

    @model_validator(mode="after")
    def check_ladder(self) -> "DetectorRule":
        if not self.ladder:
            raise ValueError(f"{self.signal_type.value}: severity ladder is empty")
        if any(not 1 <= severity <= 5 for _, severity in self.ladder):
            raise ValueError(f"{self.signal_type.value}: ladder severities must be within 1-5")
        if self.window <= timedelta(0):
            raise ValueError(f"{self.signal_type.value}: window must be positive")
        return self

    def severity_for(self, observed: Decimal | int) -> int:
        """
        Map an observed metric to a severity in [1, 5].

        Severity grows with the highest ladder step the metric reaches. A
        metric below the first step still yields severity 1 (it already
        crossed the trigger threshold if the caller asks).
        """
        value = Decimal(str(observed))
        severity = 1
        for min_value, step_severity in self.ladder:
            if value >= min_value:
                severity = step_severity
        return max(1, min(5, severity))


def load_detector_rules() -> dict[SignalType, DetectorRule]:
    """Assemble one DetectorRule per signal type from settings."""
    rules = [
        DetectorRule(
            signal_type=SignalType.TOKEN_DRAIN_PATTERN,
            window=timedelta(hours=settings.TOKEN_DRAIN_WINDOW_HOURS),
            threshold=Decimal(settings.TOKEN_DRAIN_SESSION_COUNT),
            ladder=parse_ladder(settings.TOKEN_DRAIN_SEVERITY_LADDER),
        ),
        DetectorRule(
            signal_type=SignalType.MULTI_SESSION_SPAM,
            window=timedelta(minutes=settings.MULTI_SESSION_WINDOW_MINUTES),
            threshold=Decimal(settings.MULTI_SESSION_COUNT),
            ladder=parse_ladder(settings.MULTI_SESSION_SEVERITY_LADDER),
        ),
        DetectorRule(
            signal_type=SignalType.COPY_PASTE_BEHAVIOR,
            window=timedelta(minutes=settings.COPY_PASTE_WINDOW_MINUTES),
            threshold=Decimal(settings.COPY_PASTE_MATCH_COUNT),
            ladder=parse_ladder(settings.COPY_PASTE_SEVERITY_LADDER),
        ),
        DetectorRule(
            signal_type=SignalType.FAKE_BOOKINGS,
            window=timedelta(days=settings.FAKE_BOOKINGS_WINDOW_DAYS),
            threshold=settings.FAKE_BOOKINGS_REFUND_RATE,
            ladder=parse_ladder(settings.FAKE_BOOKINGS_SEVERITY_LADDER),
        ),
        DetectorRule(
            signal_type=SignalType.SELF_REFUNDS,
            window=timedelta(days=settings.SELF_REFUND_WINDOW_DAYS),
            threshold=Decimal(settings.SELF_REFUND_CANCEL_COUNT),
            ladder=parse_ladder(settings.SELF_REFUND_SEVERITY_LADDER),
        ),
        DetectorRule(
            signal_type=SignalType.PAYOUT_ABUSE,
            window=timedelta(hours=settings.PAYOUT_WINDOW_HOURS),
            threshold=Decimal(settings.PAYOUT_ATTEMPT_COUNT),
            ladder=parse_ladder(settings.PAYOUT_SEVERITY_LADDER),
        ),
        DetectorRule(
            signal_type=SignalType.IDENTITY_MISMATCH,
            window=timedelta(days=settings.IDENTITY_WINDOW_DAYS),
            threshold=Decimal(settings.IDENTITY_REPORTER_COUNT),
            ladder=parse_ladder(settings.IDENTITY_SEVERITY_LADDER),
        ),
        DetectorRule(
            signal_type=SignalType.PANIC_RATE_SPIKE,
            window=timedelta(hours=settings.PANIC_WINDOW_HOURS),
            threshold=Decimal(settings.PANIC_TRIGGER_COUNT),
            ladder=parse_ladder(settings.PANIC_SEVERITY_LADDER),
        ),
    ]
    return {rule.signal_type: rule for rule in rules}
