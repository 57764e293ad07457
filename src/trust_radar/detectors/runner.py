"""
Trust Radar — Detector Runner (event hooks)

One hook per business event. Each hook:
1. reads the narrow view its detector needs (ActivityReader, read-only)
2. runs the pure detector
3. emits the resulting signal through the SignalEmitter

Hooks are called from the business subsystems' code paths, so they NEVER
raise: every failure (view unreachable, timeout, bad payload) is logged as
`detector_failed` and dropped. The next triggering event re-evaluates
naturally, so nothing is retried here.

Callers that must not wait at all use dispatch(), which schedules the hook
in the background and returns immediately.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Coroutine

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trust_radar.aggregation.records import SubjectLocks
from trust_radar.config import SignalType, settings
from trust_radar.detectors.base import Detection
from trust_radar.detectors.bookings import detect_fake_bookings, detect_self_refunds
from trust_radar.detectors.messaging import FingerprintState, detect_copy_paste, message_hash
from trust_radar.detectors.payouts import detect_payout_abuse
from trust_radar.detectors.safety import detect_identity_mismatch, detect_panic_spike
from trust_radar.detectors.sessions import detect_multi_session_spam, detect_token_drain
from trust_radar.engine.policy import DetectorRule, load_detector_rules
from trust_radar.models.message_fingerprint import MessageFingerprint
from trust_radar.signals.emitter import EmitResult, SignalEmitter
from trust_radar.sources.views import ActivityReader, SessionView
from trust_radar.utils.clock import utcnow

logger = structlog.get_logger(__name__)


class DetectorRunner:
    """Wires business events to detectors and the emitter."""

    def __init__(
        self,
        activity: ActivityReader,
        emitter: SignalEmitter,
        session_factory: async_sessionmaker[AsyncSession],
        rules: dict[SignalType, DetectorRule] | None = None,
        timeout_seconds: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.activity = activity
        self.emitter = emitter
        self.session_factory = session_factory
        self.rules = rules or load_detector_rules()
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.DETECTOR_TIMEOUT_SECONDS
        )
        self.clock = clock
        self.fingerprint_locks = SubjectLocks()
        self._background: set[asyncio.Task] = set()

    # -----------------------------------------------------------------------
    # Event hooks
    # -----------------------------------------------------------------------

    async def on_session_ended(self, subject_id: str, session: SessionView) -> EmitResult | None:
        """Paid chat/voice/video session ended → token-drain check."""

        async def run() -> Detection | None:
            rule = self.rules[SignalType.TOKEN_DRAIN_PATTERN]
            now = self.clock()
            max_seconds = settings.TOKEN_DRAIN_MAX_SESSION_SECONDS
            # Cheap pre-check: long or free sessions never trigger
            if session.tokens_cost <= 0 or session.duration_seconds is None or session.duration_seconds >= max_seconds:
                return None
            recent = await self.activity.paid_sessions(subject_id, now - rule.window)
            return detect_token_drain(session, recent, rule, max_seconds, now)

        return await self._guarded("token_drain", subject_id, run)

    async def on_session_opened(self, subject_id: str, session: SessionView) -> EmitResult | None:
        """Session opened → multi-session spam check."""

        async def run() -> Detection | None:
            rule = self.rules[SignalType.MULTI_SESSION_SPAM]
            now = self.clock()
            recent = await self.activity.opened_sessions(subject_id, now - rule.window)
            return detect_multi_session_spam(session, recent, rule, now)

        return await self._guarded("multi_session_spam", subject_id, run)

    async def on_message_sent(
        self,
        subject_id: str,
        conversation_id: str,
        message_text: str,
    ) -> EmitResult | None:
        """Chat message sent → copy-paste check (updates the fingerprint cache)."""

        async def run() -> Detection | None:
            rule = self.rules[SignalType.COPY_PASTE_BEHAVIOR]
            now = self.clock()
            if len((message_text or "").strip()) < settings.COPY_PASTE_MIN_MESSAGE_LENGTH:
                return None

            digest = message_hash(message_text)
            async with self.fingerprint_locks.hold(f"{subject_id}|{digest}"):
                try:
                    return await self._update_fingerprint(subject_id, digest, conversation_id, message_text, rule, now)
                except IntegrityError:
                    # Another writer created the row between our read and insert
                    logger.info("fingerprint_insert_conflict", subject_id=subject_id, message_hash=digest)
                    return await self._update_fingerprint(subject_id, digest, conversation_id, message_text, rule, now)

        return await self._guarded("copy_paste", subject_id, run)

    async def _update_fingerprint(
        self,
        subject_id: str,
        digest: str,
        conversation_id: str,
        message_text: str,
        rule: DetectorRule,
        now: datetime,
    ) -> Detection | None:
        """Read-modify-write of one fingerprint row. Callers hold its lock."""
        async with self.session_factory() as db:
            row = await db.get(MessageFingerprint, (subject_id, digest))
            previous = (
                FingerprintState(
                    conversation_ids=tuple(row.conversation_ids or ()),
                    window_started_at=row.window_started_at,
                    expires_at=row.expires_at,
                )
                if row is not None
                else None
            )
            outcome = detect_copy_paste(
                conversation_id=conversation_id,
                message_text=message_text,
                previous=previous,
                rule=rule,
                now=now,
                min_length=settings.COPY_PASTE_MIN_MESSAGE_LENGTH,
                cache_ttl=timedelta(minutes=settings.COPY_PASTE_CACHE_TTL_MINUTES),
                snippet_length=settings.COPY_PASTE_SNIPPET_LENGTH,
            )
            if outcome.state is None:
                return None

            if row is None:
                db.add(
                    MessageFingerprint(
                        subject_id=subject_id,
                        message_hash=digest,
                        conversation_ids=list(outcome.state.conversation_ids),
                        window_started_at=outcome.state.window_started_at,
                        expires_at=outcome.state.expires_at,
                    )
                )
            else:
                row.conversation_ids = list(outcome.state.conversation_ids)
                row.window_started_at = outcome.state.window_started_at
                row.expires_at = outcome.state.expires_at
            await db.commit()

        return outcome.detection

    async def on_ticket_refunded(
        self,
        subject_id: str,
        event_id: str,
        ticket_id: str | None = None,
    ) -> EmitResult | None:
        """Event ticket refunded → fake-bookings check on the organizer."""

        async def run() -> Detection | None:
            rule = self.rules[SignalType.FAKE_BOOKINGS]
            now = self.clock()
            stats = await self.activity.event_refund_stats(subject_id, event_id, now - rule.window)
            return detect_fake_bookings(stats, event_id, ticket_id, rule, settings.FAKE_BOOKINGS_MIN_REFUNDS)

        return await self._guarded("fake_bookings", subject_id, run)

    async def on_booking_cancelled(self, subject_id: str, booking_id: str) -> EmitResult | None:
        """Creator cancelled a calendar booking → self-refund check."""

        async def run() -> Detection | None:
            rule = self.rules[SignalType.SELF_REFUNDS]
            now = self.clock()
            count = await self.activity.creator_cancellations(subject_id, now - rule.window)
            return detect_self_refunds(count, booking_id, rule)

        return await self._guarded("self_refunds", subject_id, run)

    async def on_payout_attempted(
        self,
        subject_id: str,
        payout_id: str,
        amount: int | None = None,
    ) -> EmitResult | None:
        """Payout requested → payout-velocity check."""

        async def run() -> Detection | None:
            rule = self.rules[SignalType.PAYOUT_ABUSE]
            now = self.clock()
            attempts = await self.activity.payout_attempts(subject_id, now - rule.window)
            return detect_payout_abuse(attempts, payout_id, amount, rule)

        return await self._guarded("payout_abuse", subject_id, run)

    async def on_identity_reported(
        self,
        subject_id: str,
        report_id: str,
        reporter_id: str | None,
    ) -> EmitResult | None:
        """Identity-fraud report filed → distinct-reporter check."""

        async def run() -> Detection | None:
            rule = self.rules[SignalType.IDENTITY_MISMATCH]
            now = self.clock()
            reports = await self.activity.identity_reports(subject_id, now - rule.window)
            return detect_identity_mismatch(report_id, reporter_id, reports, rule, now)

        return await self._guarded("identity_mismatch", subject_id, run)

    async def on_panic_triggered(self, subject_id: str, panic_event_id: str) -> EmitResult | None:
        """Panic button pressed → panic-rate check."""

        async def run() -> Detection | None:
            rule = self.rules[SignalType.PANIC_RATE_SPIKE]
            now = self.clock()
            count = await self.activity.panic_triggers(subject_id, now - rule.window)
            return detect_panic_spike(count, panic_event_id, rule)

        return await self._guarded("panic_spike", subject_id, run)

    # -----------------------------------------------------------------------
    # Fire-and-forget dispatch
    # -----------------------------------------------------------------------

    def dispatch(self, hook: Coroutine[Any, Any, Any]) -> None:
        """
        Run a hook in the background.

        Usage:
            runner.dispatch(runner.on_payout_attempted(user_id, payout_id))
        """
        try:
            task = asyncio.get_running_loop().create_task(hook)
        except RuntimeError as e:
            hook.close()
            logger.error("detector_dispatch_failed", error=str(e), error_type=type(e).__name__)
            return
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for dispatched hooks and their emissions to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.emitter.drain()

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    async def _guarded(
        self,
        detector: str,
        subject_id: str,
        run: Callable[[], Awaitable[Detection | None]],
    ) -> EmitResult | None:
        try:
            detection = await asyncio.wait_for(run(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(
                "detector_failed",
                detector=detector,
                subject_id=subject_id,
                error="timeout",
                error_type="TimeoutError",
                timeout_seconds=self.timeout_seconds,
            )
            return None
        except Exception as e:
            logger.error(
                "detector_failed",
                detector=detector,
                subject_id=subject_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        if detection is None:
            return None

        logger.info(
            "detector_triggered",
            detector=detector,
            subject_id=subject_id,
            signal_type=detection.signal_type.value,
            severity=detection.severity,
            observed=detection.observed,
        )
        return await self.emitter.emit_signal(
            subject_id=subject_id,
            source=detection.source,
            signal_type=detection.signal_type,
            severity=detection.severity,
            context_ref=detection.context_ref,
            metadata=detection.metadata,
            detected_at=self.clock(),
        )
