"""
Trust Radar - Safety detectors (identity reports + panic alerts)

Identity mismatch: >= 3 distinct reporters flag the same subject for
identity fraud within 30 days. Repeat reports from one reporter count once;
anonymous reports (no reporter id) do not count.

Panic-rate spike: >= 3 panic-alert triggers by the subject within 24h.
"""

from __future__ import annotations

from datetime import datetime

import structlog

from trust_radar.config import SignalSource, SignalType
from trust_radar.detectors.base import Detection, window_days, window_hours, window_start
from trust_radar.engine.policy import DetectorRule
from trust_radar.signals.metadata import IdentityMismatchMetadata, PanicRateSpikeMetadata
from trust_radar.sources.views import IdentityReportView

logger = structlog.get_logger(__name__)


def detect_identity_mismatch(
    report_id: str,
    reporter_id: str | None,
    reports: list[IdentityReportView],
    rule: DetectorRule,
    now: datetime,
) -> Detection | None:
    """Evaluate identity-fraud reports after a new one is filed."""
    since = window_start(now, rule.window)
    in_window = [r for r in reports if r.created_at >= since]

    reporters = {r.reporter_id for r in in_window if r.reporter_id}
    if reporter_id:
        reporters.add(reporter_id)
    report_ids = {r.report_id for r in in_window} | {report_id}

    unique_reporters = len(reporters)
    if unique_reporters < rule.threshold:
        return None

    severity = rule.severity_for(unique_reporters)
    logger.debug("identity_mismatch_detected", unique_reporters=unique_reporters, severity=severity)
    return Detection(
        signal_type=SignalType.IDENTITY_MISMATCH,
        source=SignalSource.IDENTITY,
        severity=severity,
        context_ref=report_id,
        metadata=IdentityMismatchMetadata(
            unique_reporters=unique_reporters,
            report_count=len(report_ids),
            window_days=window_days(rule.window),
        ),
        observed=str(unique_reporters),
    )


def detect_panic_spike(
    panic_count: int,
    panic_event_id: str,
    rule: DetectorRule,
) -> Detection | None:
    """Evaluate panic-alert frequency after a panic trigger."""
    if panic_count < rule.threshold:
        return None

    severity = rule.severity_for(panic_count)
    logger.debug("panic_spike_detected", panic_count=panic_count, severity=severity)
    return Detection(
        signal_type=SignalType.PANIC_RATE_SPIKE,
        source=SignalSource.SAFETY,
        severity=severity,
        context_ref=panic_event_id,
        metadata=PanicRateSpikeMetadata(
            panic_count=panic_count,
            window_hours=window_hours(rule.window),
        ),
        observed=str(panic_count),
    )
