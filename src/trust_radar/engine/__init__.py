from trust_radar.engine.decay import decay_weight, signal_age_days
from trust_radar.engine.policy import (
    DetectorRule,
    ScoringPolicy,
    load_detector_rules,
    load_policy,
)
from trust_radar.engine.ranking import entries_digest, order_candidates
from trust_radar.engine.risk import compute_risk, level_for_score
from trust_radar.engine.trust import compute_trust, tier_for_score

__all__ = [
    "DetectorRule",
    "ScoringPolicy",
    "compute_risk",
    "compute_trust",
    "decay_weight",
    "entries_digest",
    "level_for_score",
    "load_detector_rules",
    "load_policy",
    "order_candidates",
    "signal_age_days",
    "tier_for_score",
]
