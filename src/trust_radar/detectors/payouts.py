"""
Trust Radar - Payout abuse detector

Flags >= 3 payout attempts within 1 hour. Severity grows with the attempt
count (3 → 3, 5 → 4, 10 → 5).
"""

from __future__ import annotations

import structlog

from trust_radar.config import SignalSource, SignalType
from trust_radar.detectors.base import Detection, window_hours
from trust_radar.engine.policy import DetectorRule
from trust_radar.signals.metadata import PayoutAbuseMetadata

logger = structlog.get_logger(__name__)


def detect_payout_abuse(
    attempt_count: int,
    payout_id: str,
    amount: int | None,
    rule: DetectorRule,
) -> Detection | None:
    """
    Evaluate payout velocity after a payout attempt.

    Args:
        attempt_count: Attempts within the window, including this one.
        payout_id: The triggering payout request.
        amount: Requested amount in tokens (kept in metadata only).
        rule: PAYOUT_ABUSE rule.
    """
    if attempt_count < rule.threshold:
        return None

    severity = rule.severity_for(attempt_count)
    logger.debug("payout_abuse_detected", attempt_count=attempt_count, severity=severity)
    return Detection(
        signal_type=SignalType.PAYOUT_ABUSE,
        source=SignalSource.WALLET,
        severity=severity,
        context_ref=payout_id,
        metadata=PayoutAbuseMetadata(
            attempt_count=attempt_count,
            window_hours=window_hours(rule.window),
            amount=amount,
        ),
        observed=str(attempt_count),
    )
