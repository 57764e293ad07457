"""
Trust Radar — Signal idempotency keys

key = sha256("{subject_id}|{signal_type}|{severity}|{window_bucket}")

The bucket is the epoch-aligned window of the detector that raised the
signal, so redundant emissions for the same subject, category and severity
within one window collapse to a single stored Signal. Severity is part of
the key: an escalation inside the window is a new fact and gets its own row.

The key only guards a single bucket. The emitter also looks back one full
window before appending, which catches repeats that straddle a bucket edge.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta

from trust_radar.config import SignalType
from trust_radar.utils.clock import window_bucket


def build_idempotency_key(
    subject_id: str,
    signal_type: SignalType,
    severity: int,
    detected_at: datetime,
    window: timedelta,
) -> str:
    """Stable 64-char hex key for (subject, category, severity, window bucket)."""
    bucket = window_bucket(detected_at, window)
    raw = f"{subject_id}|{signal_type.value}|{severity}|{bucket}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
