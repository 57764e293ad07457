"""
Trust Radar - Copy-paste detector (messaging)

Flags a subject who sends the same message to >= 3 distinct conversations
within 10 minutes.

Messages are normalized (lower-cased, whitespace collapsed) and hashed;
messages shorter than COPY_PASTE_MIN_MESSAGE_LENGTH are ignored because
greetings like "hi, how are you?" repeat naturally. The detector is pure:
it takes the previous fingerprint state and returns the next one, and the
runner persists it.
"""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timedelta
from typing import NamedTuple

import structlog

from trust_radar.config import SignalSource, SignalType
from trust_radar.detectors.base import Detection, window_minutes
from trust_radar.engine.policy import DetectorRule
from trust_radar.signals.metadata import CopyPasteMetadata
from trust_radar.utils.clock import as_utc

logger = structlog.get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


class FingerprintState(NamedTuple):
    """Conversations that received one message hash in the current window."""
    conversation_ids: tuple[str, ...]
    window_started_at: datetime
    expires_at: datetime


class CopyPasteOutcome(NamedTuple):
    message_hash: str | None
    state: FingerprintState | None
    detection: Detection | None


def normalize_message(text: str) -> str:
    return _WHITESPACE.sub(" ", text.strip().lower())


def message_hash(text: str) -> str:
    return hashlib.sha256(normalize_message(text).encode("utf-8")).hexdigest()


def detect_copy_paste(
    conversation_id: str,
    message_text: str,
    previous: FingerprintState | None,
    rule: DetectorRule,
    now: datetime,
    min_length: int,
    cache_ttl: timedelta,
    snippet_length: int = 100,
) -> CopyPasteOutcome:
    """
    Fold one sent message into the fingerprint state and evaluate it.

    Args:
        conversation_id: Conversation the message was sent to.
        message_text: Raw message body.
        previous: Stored state for (subject, hash), or None.
        rule: COPY_PASTE_BEHAVIOR rule (window = matching window).
        now: Evaluation time.
        min_length: Shorter normalized messages are ignored.
        cache_ttl: How long the new state stays valid.
        snippet_length: Max characters of the message kept in metadata.

    Returns:
        CopyPasteOutcome(hash, new_state, detection). hash/state are None
        for ignored messages.
    """
    normalized = normalize_message(message_text or "")
    if len(normalized) < min_length:
        return CopyPasteOutcome(message_hash=None, state=None, detection=None)

    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()

    # Stale state restarts the window with only the current conversation
    if previous is None or as_utc(previous.window_started_at) < now - rule.window:
        conversations: tuple[str, ...] = (conversation_id,)
        started = now
    else:
        conversations = previous.conversation_ids
        if conversation_id not in conversations:
            conversations = conversations + (conversation_id,)
        started = as_utc(previous.window_started_at)

    state = FingerprintState(
        conversation_ids=conversations,
        window_started_at=started,
        expires_at=now + cache_ttl,
    )

    count = len(conversations)
    if count < rule.threshold:
        return CopyPasteOutcome(message_hash=digest, state=state, detection=None)

    severity = rule.severity_for(count)
    logger.debug("copy_paste_detected", match_count=count, severity=severity)
    detection = Detection(
        signal_type=SignalType.COPY_PASTE_BEHAVIOR,
        source=SignalSource.CHAT,
        severity=severity,
        context_ref=conversation_id,
        metadata=CopyPasteMetadata(
            match_count=count,
            window_minutes=window_minutes(rule.window),
            message_hash=digest,
            message_snippet=message_text.strip()[:snippet_length],
        ),
        observed=str(count),
    )
    return CopyPasteOutcome(message_hash=digest, state=state, detection=detection)
