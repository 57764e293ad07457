"""
Trust Radar - Booking detectors (events + calendar)

Fake bookings: an organizer's event shows a refund rate >= 60% with at
least 3 refunds (30-day window). Severity grows with the refund rate:
>= 0.6 → 3, >= 0.8 → 4, >= 0.9 → 5.

Self-refunds: a creator cancels >= 5 of their own bookings within 7 days.
Severity grows with the cancellation count.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

import structlog

from trust_radar.config import SignalSource, SignalType
from trust_radar.detectors.base import Detection, window_days
from trust_radar.engine.policy import DetectorRule
from trust_radar.signals.metadata import FakeBookingsMetadata, SelfRefundsMetadata
from trust_radar.sources.views import RefundStats

logger = structlog.get_logger(__name__)


def detect_fake_bookings(
    stats: RefundStats,
    event_id: str,
    ticket_id: str | None,
    rule: DetectorRule,
    min_refunds: int,
) -> Detection | None:
    """
    Evaluate an event's refund profile after one of its tickets is refunded.

    Args:
        stats: Ticket totals for the event over the window.
        event_id: Event whose ticket was refunded.
        ticket_id: The refunded ticket (kept in metadata).
        rule: FAKE_BOOKINGS rule (threshold = minimum refund rate).
        min_refunds: Minimum absolute refund count.
    """
    if stats.refunded_tickets < min_refunds or stats.total_tickets <= 0:
        return None

    refunded = min(stats.refunded_tickets, stats.total_tickets)
    rate = Decimal(refunded) / Decimal(stats.total_tickets)
    if rate < rule.threshold:
        return None

    severity = rule.severity_for(rate)
    rate_pct = int((rate * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    logger.debug("fake_bookings_detected", refund_rate_pct=rate_pct, severity=severity)
    return Detection(
        signal_type=SignalType.FAKE_BOOKINGS,
        source=SignalSource.EVENT,
        severity=severity,
        context_ref=event_id,
        metadata=FakeBookingsMetadata(
            total_tickets=stats.total_tickets,
            refunded_tickets=refunded,
            refund_rate_pct=rate_pct,
            event_id=event_id,
            ticket_id=ticket_id,
        ),
        observed=str(rate),
    )


def detect_self_refunds(
    cancelled_count: int,
    booking_id: str,
    rule: DetectorRule,
) -> Detection | None:
    """Evaluate creator-initiated cancellations after a booking is cancelled."""
    if cancelled_count < rule.threshold:
        return None

    severity = rule.severity_for(cancelled_count)
    logger.debug("self_refunds_detected", cancelled_count=cancelled_count, severity=severity)
    return Detection(
        signal_type=SignalType.SELF_REFUNDS,
        source=SignalSource.CALENDAR,
        severity=severity,
        context_ref=booking_id,
        metadata=SelfRefundsMetadata(
            cancelled_count=cancelled_count,
            window_days=window_days(rule.window),
        ),
        observed=str(cancelled_count),
    )
