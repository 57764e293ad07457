"""
Trust Radar — Detector result type

Every detector is a pure function of a read-only view plus its
DetectorRule. It returns a Detection when the trigger condition holds and
None otherwise. Detectors never talk to each other or to the store.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import NamedTuple

from pydantic import BaseModel

from trust_radar.config import SignalSource, SignalType


class Detection(NamedTuple):
    """A signal a detector wants emitted."""
    signal_type: SignalType
    source: SignalSource
    severity: int
    context_ref: str | None
    metadata: BaseModel
    observed: str


def window_start(now: datetime, window: timedelta) -> datetime:
    return now - window


def window_hours(window: timedelta) -> int:
    return int(window.total_seconds() // 3600)


def window_minutes(window: timedelta) -> int:
    return int(window.total_seconds() // 60)


def window_days(window: timedelta) -> int:
    return window.days
