"""
Tests for the pure detectors.

Each detector is evaluated directly against hand-built views and the
rules loaded from settings. No database, no emitter.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from trust_radar.config import SignalSource, SignalType
from trust_radar.detectors.bookings import detect_fake_bookings, detect_self_refunds
from trust_radar.detectors.messaging import detect_copy_paste, message_hash, normalize_message
from trust_radar.detectors.payouts import detect_payout_abuse
from trust_radar.detectors.safety import detect_identity_mismatch, detect_panic_spike
from trust_radar.detectors.sessions import detect_multi_session_spam, detect_token_drain
from trust_radar.sources.views import IdentityReportView, RefundStats, SessionView


def _session(now, session_id, minutes_ago=10, duration=10, tokens=50, session_type="VOICE"):
    return SessionView(
        session_id=session_id,
        started_at=now - timedelta(minutes=minutes_ago),
        duration_seconds=duration,
        tokens_cost=tokens,
        session_type=session_type,
    )


# ---------------------------------------------------------------------------
# Token drain
# ---------------------------------------------------------------------------


class TestTokenDrain:
    def test_fifth_short_paid_session_triggers(self, rules, now):
        recent = [_session(now, f"sess-{i}") for i in range(4)]
        ended = _session(now, "sess-4")

        detection = detect_token_drain(ended, recent, rules[SignalType.TOKEN_DRAIN_PATTERN], 30, now)

        assert detection is not None
        assert detection.signal_type == SignalType.TOKEN_DRAIN_PATTERN
        assert detection.source == SignalSource.AI_VOICE
        assert detection.severity == 3
        assert detection.context_ref == "sess-4"
        assert detection.metadata.short_session_count == 5
        assert detection.metadata.window_hours == 24

    def test_below_threshold_is_silent(self, rules, now):
        recent = [_session(now, f"sess-{i}") for i in range(3)]
        assert detect_token_drain(_session(now, "sess-x"), recent, rules[SignalType.TOKEN_DRAIN_PATTERN], 30, now) is None

    def test_long_or_free_sessions_do_not_count(self, rules, now):
        recent = [_session(now, f"long-{i}", duration=600) for i in range(6)]
        recent += [_session(now, f"free-{i}", tokens=0) for i in range(6)]
        assert detect_token_drain(_session(now, "sess-x"), recent, rules[SignalType.TOKEN_DRAIN_PATTERN], 30, now) is None

    def test_long_triggering_session_short_circuits(self, rules, now):
        recent = [_session(now, f"sess-{i}") for i in range(10)]
        ended = _session(now, "sess-long", duration=45)
        assert detect_token_drain(ended, recent, rules[SignalType.TOKEN_DRAIN_PATTERN], 30, now) is None

    def test_sessions_outside_window_ignored(self, rules, now):
        recent = [_session(now, f"old-{i}", minutes_ago=60 * 25) for i in range(8)]
        assert detect_token_drain(_session(now, "sess-x"), recent, rules[SignalType.TOKEN_DRAIN_PATTERN], 30, now) is None

    def test_severity_grows_with_count(self, rules, now):
        recent = [_session(now, f"sess-{i}") for i in range(9)]
        detection = detect_token_drain(_session(now, "sess-9"), recent, rules[SignalType.TOKEN_DRAIN_PATTERN], 30, now)
        assert detection.severity == 5


class TestMultiSessionSpam:
    def test_three_parallel_sessions_trigger(self, rules, now):
        recent = [_session(now, "a", minutes_ago=2, duration=None), _session(now, "b", minutes_ago=1, duration=None)]
        detection = detect_multi_session_spam(
            _session(now, "c", minutes_ago=0, duration=None, session_type="CHAT"),
            recent,
            rules[SignalType.MULTI_SESSION_SPAM],
            now,
        )

        assert detection is not None
        assert detection.source == SignalSource.CHAT
        assert detection.metadata.parallel_sessions == 3
        assert detection.metadata.window_minutes == 5

    def test_triggering_session_counted_once(self, rules, now):
        opened = _session(now, "a", minutes_ago=0)
        recent = [opened, _session(now, "b", minutes_ago=1)]
        assert detect_multi_session_spam(opened, recent, rules[SignalType.MULTI_SESSION_SPAM], now) is None

    def test_sessions_before_window_ignored(self, rules, now):
        recent = [_session(now, "a", minutes_ago=9), _session(now, "b", minutes_ago=7)]
        assert detect_multi_session_spam(_session(now, "c", minutes_ago=0), recent, rules[SignalType.MULTI_SESSION_SPAM], now) is None


# ---------------------------------------------------------------------------
# Copy-paste
# ---------------------------------------------------------------------------


class TestCopyPaste:
    MESSAGE = "Hey! Check out my exclusive content at the link in my bio"

    def _run(self, rules, now, conversation_id, previous, text=None):
        return detect_copy_paste(
            conversation_id,
            text or self.MESSAGE,
            previous,
            rules[SignalType.COPY_PASTE_BEHAVIOR],
            now,
            min_length=20,
            cache_ttl=timedelta(minutes=15),
        )

    def test_normalization_ignores_case_and_whitespace(self):
        assert normalize_message("  Hello   THERE\nfriend ") == "hello there friend"
        assert message_hash("Hello  there") == message_hash("hello there")

    def test_third_conversation_triggers(self, rules, now):
        first = self._run(rules, now, "conv-1", None)
        second = self._run(rules, now + timedelta(minutes=1), "conv-2", first.state)
        third = self._run(rules, now + timedelta(minutes=2), "conv-3", second.state)

        assert first.detection is None
        assert second.detection is None
        assert third.detection is not None
        assert third.detection.severity == 3
        assert third.detection.metadata.match_count == 3
        assert third.detection.metadata.message_hash == first.message_hash
        assert third.state.conversation_ids == ("conv-1", "conv-2", "conv-3")

    def test_same_conversation_counts_once(self, rules, now):
        state = None
        for minute in range(5):
            outcome = self._run(rules, now + timedelta(minutes=minute), "conv-1", state)
            state = outcome.state
        assert outcome.detection is None
        assert state.conversation_ids == ("conv-1",)

    def test_stale_window_restarts(self, rules, now):
        first = self._run(rules, now, "conv-1", None)
        second = self._run(rules, now + timedelta(minutes=1), "conv-2", first.state)
        late = self._run(rules, now + timedelta(minutes=30), "conv-3", second.state)

        assert late.detection is None
        assert late.state.conversation_ids == ("conv-3",)

    def test_short_messages_ignored(self, rules, now):
        outcome = self._run(rules, now, "conv-1", None, text="hi, how are you?")
        assert outcome == (None, None, None)

    def test_snippet_is_truncated(self, rules, now):
        long_text = "buy my course " * 20
        state = None
        for i in range(3):
            outcome = self._run(rules, now, f"conv-{i}", state, text=long_text)
            state = outcome.state
        assert len(outcome.detection.metadata.message_snippet) <= 100


# ---------------------------------------------------------------------------
# Bookings, payouts, safety
# ---------------------------------------------------------------------------


class TestFakeBookings:
    def test_refund_rate_above_threshold(self, rules):
        detection = detect_fake_bookings(
            RefundStats(total_tickets=10, refunded_tickets=7), "evt-1", "tkt-9", rules[SignalType.FAKE_BOOKINGS], 3
        )

        assert detection.severity == 3
        assert detection.source == SignalSource.EVENT
        assert detection.metadata.refund_rate_pct == 70
        assert detection.metadata.ticket_id == "tkt-9"

    @pytest.mark.parametrize(
        ("refunded", "expected"),
        [(8, 4), (9, 5), (10, 5)],
    )
    def test_severity_ladder(self, rules, refunded, expected):
        detection = detect_fake_bookings(
            RefundStats(total_tickets=10, refunded_tickets=refunded), "evt-1", None, rules[SignalType.FAKE_BOOKINGS], 3
        )
        assert detection.severity == expected

    def test_too_few_refunds_ignored(self, rules):
        """2 of 2 refunded is 100% but below the absolute minimum."""
        assert detect_fake_bookings(
            RefundStats(total_tickets=2, refunded_tickets=2), "evt-1", None, rules[SignalType.FAKE_BOOKINGS], 3
        ) is None

    def test_low_rate_ignored(self, rules):
        assert detect_fake_bookings(
            RefundStats(total_tickets=100, refunded_tickets=10), "evt-1", None, rules[SignalType.FAKE_BOOKINGS], 3
        ) is None

    def test_no_tickets_ignored(self, rules):
        assert detect_fake_bookings(RefundStats(), "evt-1", None, rules[SignalType.FAKE_BOOKINGS], 3) is None


class TestSelfRefunds:
    def test_fifth_cancellation_triggers(self, rules):
        detection = detect_self_refunds(5, "bk-1", rules[SignalType.SELF_REFUNDS])
        assert detection.severity == 3
        assert detection.source == SignalSource.CALENDAR
        assert detection.metadata.window_days == 7

    def test_below_threshold(self, rules):
        assert detect_self_refunds(4, "bk-1", rules[SignalType.SELF_REFUNDS]) is None


class TestPayoutAbuse:
    @pytest.mark.parametrize(("attempts", "expected"), [(3, 3), (4, 3), (5, 4), (10, 5)])
    def test_severity_by_attempts(self, rules, attempts, expected):
        detection = detect_payout_abuse(attempts, "po-1", 2500, rules[SignalType.PAYOUT_ABUSE])
        assert detection.severity == expected
        assert detection.metadata.amount == 2500

    def test_two_attempts_ignored(self, rules):
        assert detect_payout_abuse(2, "po-1", None, rules[SignalType.PAYOUT_ABUSE]) is None


class TestIdentityMismatch:
    def _report(self, now, report_id, reporter_id, days_ago=1):
        return IdentityReportView(report_id=report_id, reporter_id=reporter_id, created_at=now - timedelta(days=days_ago))

    def test_three_distinct_reporters_trigger(self, rules, now):
        reports = [self._report(now, "r-1", "u-1"), self._report(now, "r-2", "u-2")]
        detection = detect_identity_mismatch("r-3", "u-3", reports, rules[SignalType.IDENTITY_MISMATCH], now)

        assert detection is not None
        assert detection.metadata.unique_reporters == 3
        assert detection.metadata.report_count == 3

    def test_repeat_reporter_counts_once(self, rules, now):
        reports = [self._report(now, "r-1", "u-1"), self._report(now, "r-2", "u-1")]
        assert detect_identity_mismatch("r-3", "u-2", reports, rules[SignalType.IDENTITY_MISMATCH], now) is None

    def test_anonymous_and_old_reports_ignored(self, rules, now):
        reports = [self._report(now, "r-1", None), self._report(now, "r-2", "u-2", days_ago=45)]
        assert detect_identity_mismatch("r-3", "u-3", reports, rules[SignalType.IDENTITY_MISMATCH], now) is None


class TestPanicSpike:
    def test_third_panic_triggers(self, rules):
        detection = detect_panic_spike(3, "panic-1", rules[SignalType.PANIC_RATE_SPIKE])
        assert detection.source == SignalSource.SAFETY
        assert detection.metadata.window_hours == 24

    def test_below_threshold(self, rules):
        assert detect_panic_spike(2, "panic-1", rules[SignalType.PANIC_RATE_SPIKE]) is None
