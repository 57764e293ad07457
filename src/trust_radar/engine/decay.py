"""
Trust Radar - Signal Time Decay

Older evidence counts for less. Weight applied to a signal's points by age:
- age < 30 days: 1.0 (full weight)
- 30-60 days: 0.5 (half weight)
- > 60 days: exponential decay from 0.5 toward a 0.10 floor
  (half of the remaining distance to the floor every 30 days)

The weight never increases with age. Future-dated signals count as age 0.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from trust_radar.engine.policy import DecaySchedule
from trust_radar.utils.clock import as_utc

_SECONDS_PER_DAY = Decimal("86400")
_ONE = Decimal("1")
_HALF = Decimal("0.5")
_WEIGHT_DP = Decimal("0.000001")


def signal_age_days(detected_at: datetime, reference_time: datetime) -> Decimal:
    """Age of a signal in fractional days, never negative."""
    seconds = Decimal(str((as_utc(reference_time) - as_utc(detected_at)).total_seconds()))
    if seconds < 0:
        return Decimal("0")
    return seconds / _SECONDS_PER_DAY


def decay_weight(age_days: Decimal, schedule: DecaySchedule) -> Decimal:
    """
    Weight in [floor, 1] for a signal of the given age.

    Args:
        age_days: Age in days (fractional allowed, negatives treated as 0).
        schedule: Decay bands from the active ScoringPolicy.

    Returns:
        Decimal weight quantized to 6 decimal places.
    """
    if age_days < schedule.full_weight_days:
        return _ONE
    if age_days < schedule.half_weight_days:
        return schedule.half_weight

    # Exponential tail beyond the half-weight band
    periods = (age_days - schedule.half_weight_days) / Decimal(schedule.half_life_days)
    remaining = _HALF ** periods
    weight = schedule.floor + (schedule.half_weight - schedule.floor) * remaining
    return weight.quantize(_WEIGHT_DP, rounding=ROUND_HALF_UP)
