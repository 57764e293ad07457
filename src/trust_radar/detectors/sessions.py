"""
Trust Radar - Session detectors (calls + chats)

Token drain: a subject racks up many paid sessions that end almost
immediately (>= 5 paid sessions under 30s within 24h).

Multi-session spam: a subject opens many sessions in parallel
(>= 3 distinct sessions opened within 5 minutes).

Severity grows with the session count (see DetectorRule.severity_for).
"""

from __future__ import annotations

from datetime import datetime

import structlog

from trust_radar.config import SignalSource, SignalType
from trust_radar.detectors.base import Detection, window_hours, window_minutes, window_start
from trust_radar.engine.policy import DetectorRule
from trust_radar.signals.metadata import MultiSessionSpamMetadata, TokenDrainMetadata
from trust_radar.sources.views import SessionView

logger = structlog.get_logger(__name__)

_SESSION_SOURCES = {
    "VOICE": SignalSource.AI_VOICE,
    "VIDEO": SignalSource.AI_VIDEO,
    "AI_CHAT": SignalSource.AI_CHAT,
    "CHAT": SignalSource.CHAT,
}


def source_for_session(session_type: str) -> SignalSource:
    return _SESSION_SOURCES.get(session_type.upper(), SignalSource.CHAT)


def _is_short_paid(session: SessionView, max_session_seconds: int) -> bool:
    return (
        session.tokens_cost > 0
        and session.duration_seconds is not None
        and session.duration_seconds < max_session_seconds
    )


def detect_token_drain(
    ended: SessionView,
    recent_sessions: list[SessionView],
    rule: DetectorRule,
    max_session_seconds: int,
    now: datetime,
) -> Detection | None:
    """
    Evaluate the token-drain pattern after a session ends.

    Args:
        ended: The session that just ended (the triggering event).
        recent_sessions: Subject's paid sessions within the window.
        rule: TOKEN_DRAIN_PATTERN rule.
        max_session_seconds: Sessions shorter than this count as "short".
        now: Evaluation time.

    Returns:
        Detection when the short paid session count reaches the threshold.
    """
    # Only a short paid session can push the count over the threshold
    if not _is_short_paid(ended, max_session_seconds):
        return None

    since = window_start(now, rule.window)
    short_ids = {
        s.session_id
        for s in recent_sessions
        if s.started_at >= since and _is_short_paid(s, max_session_seconds)
    }
    short_ids.add(ended.session_id)
    count = len(short_ids)

    if count < rule.threshold:
        return None

    severity = rule.severity_for(count)
    logger.debug("token_drain_detected", short_sessions=count, severity=severity)
    return Detection(
        signal_type=SignalType.TOKEN_DRAIN_PATTERN,
        source=source_for_session(ended.session_type),
        severity=severity,
        context_ref=ended.session_id,
        metadata=TokenDrainMetadata(
            short_session_count=count,
            max_session_seconds=max_session_seconds,
            window_hours=window_hours(rule.window),
            session_type=ended.session_type,
            duration_seconds=ended.duration_seconds,
            tokens_cost=ended.tokens_cost,
        ),
        observed=str(count),
    )


def detect_multi_session_spam(
    opened: SessionView,
    recent_sessions: list[SessionView],
    rule: DetectorRule,
    now: datetime,
) -> Detection | None:
    """
    Evaluate parallel session spam after a session is opened.

    Counts distinct session ids opened within the window, including the
    triggering one.
    """
    since = window_start(now, rule.window)
    session_ids = {s.session_id for s in recent_sessions if s.started_at >= since}
    session_ids.add(opened.session_id)
    count = len(session_ids)

    if count < rule.threshold:
        return None

    severity = rule.severity_for(count)
    logger.debug("multi_session_spam_detected", parallel_sessions=count, severity=severity)
    return Detection(
        signal_type=SignalType.MULTI_SESSION_SPAM,
        source=source_for_session(opened.session_type),
        severity=severity,
        context_ref=opened.session_id,
        metadata=MultiSessionSpamMetadata(
            parallel_sessions=count,
            window_minutes=window_minutes(rule.window),
        ),
        observed=str(count),
    )
