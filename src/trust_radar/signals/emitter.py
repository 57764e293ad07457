"""
Trust Radar — Signal Emission (ingestion contract)

emit_signal() is the only way a Signal enters the store. It is called from
the business subsystems' hot paths, so:

- It NEVER raises. Validation failures, store outages and timeouts are
  logged and reported through EmitResult.emitted=False.
- It is bounded by EMIT_TIMEOUT_SECONDS.
- It is safe to call redundantly. A repeat is dropped when a signal of the
  same subject and type with equal or higher severity already sits within
  one detector window of it; an escalation is always stored.
- emit_signal_nowait() returns immediately and runs emission in the
  background for callers that must not wait at all.

After a new signal is written, the optional on_signal_written hook (the
Risk Aggregator's best-effort recompute) is scheduled in the background.
Its failure is logged and never reaches the emitter's caller.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Coroutine, NamedTuple

import structlog

from trust_radar.config import SignalSource, SignalType, settings
from trust_radar.engine.policy import DetectorRule, load_detector_rules
from trust_radar.signals.idempotency import build_idempotency_key
from trust_radar.signals.metadata import parse_metadata
from trust_radar.signals.store import SignalDraft, SignalStore
from trust_radar.utils.clock import as_utc, utcnow

logger = structlog.get_logger(__name__)

OnSignalWritten = Callable[[str], Awaitable[Any]]


class EmitResult(NamedTuple):
    """Outcome of one emission attempt. Never an exception."""
    signal_id: uuid.UUID | None
    emitted: bool
    deduplicated: bool
    needs_risk_recalculation: bool


_NOT_EMITTED = EmitResult(signal_id=None, emitted=False, deduplicated=False, needs_risk_recalculation=False)


class SignalEmitter:
    """Non-blocking front door of the Signal Store."""

    def __init__(
        self,
        store: SignalStore,
        rules: dict[SignalType, DetectorRule] | None = None,
        on_signal_written: OnSignalWritten | None = None,
        timeout_seconds: float | None = None,
    ):
        self.store = store
        self.rules = rules or load_detector_rules()
        self.on_signal_written = on_signal_written
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.EMIT_TIMEOUT_SECONDS
        )
        self._background: set[asyncio.Task] = set()

    async def emit_signal(
        self,
        subject_id: str,
        source: SignalSource | str,
        signal_type: SignalType | str,
        severity: int,
        context_ref: str | None,
        metadata: Any,
        detected_at: datetime | None = None,
    ) -> EmitResult:
        """
        Validate, deduplicate and append a signal. Never raises.

        Args:
            subject_id: Subject the signal is about.
            source: Emitting subsystem.
            signal_type: One of the 8 categories.
            severity: 1-5. Anything else is rejected (logged, not raised).
            context_ref: Opaque pointer into the emitter's own record.
            metadata: Variant instance or dict for the signal type.
            detected_at: Detection time (default: now, UTC).

        Returns:
            EmitResult describing what happened.
        """
        try:
            return await asyncio.wait_for(
                self._emit(subject_id, source, signal_type, severity, context_ref, metadata, detected_at),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "signal_emit_timeout",
                subject_id=subject_id,
                signal_type=str(getattr(signal_type, "value", signal_type)),
                timeout_seconds=self.timeout_seconds,
            )
        except Exception as e:
            logger.error(
                "signal_emit_failed",
                subject_id=subject_id,
                signal_type=str(getattr(signal_type, "value", signal_type)),
                error=str(e),
                error_type=type(e).__name__,
            )
        return _NOT_EMITTED

    def emit_signal_nowait(self, *args: Any, **kwargs: Any) -> None:
        """Fire-and-forget emission. Must be called from a running event loop."""
        coro = self.emit_signal(*args, **kwargs)
        try:
            self._spawn(coro)
        except RuntimeError as e:
            coro.close()
            logger.error("signal_emit_schedule_failed", error=str(e), error_type=type(e).__name__)

    async def drain(self) -> None:
        """Wait for background emissions and recompute hooks to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    async def _emit(
        self,
        subject_id: str,
        source: SignalSource | str,
        signal_type: SignalType | str,
        severity: int,
        context_ref: str | None,
        metadata: Any,
        detected_at: datetime | None,
    ) -> EmitResult:
        draft = self._build_draft(subject_id, source, signal_type, severity, context_ref, metadata, detected_at)
        if draft is None:
            return _NOT_EMITTED

        window = self._window(draft.signal_type)
        nearby = await self.store.strongest_near(draft.subject_id, draft.signal_type, draft.detected_at, window)
        if nearby is not None and nearby.severity >= draft.severity:
            logger.debug(
                "signal_deduplicated",
                subject_id=draft.subject_id,
                signal_type=draft.signal_type.value,
                existing_id=str(nearby.id),
                existing_severity=nearby.severity,
            )
            return EmitResult(
                signal_id=nearby.id,
                emitted=True,
                deduplicated=True,
                needs_risk_recalculation=False,
            )

        result = await self.store.append(draft)
        if not result.inserted:
            return EmitResult(
                signal_id=result.signal_id,
                emitted=True,
                deduplicated=True,
                needs_risk_recalculation=False,
            )

        if self.on_signal_written is not None and settings.RISK_RECOMPUTE_ON_EMIT:
            self._spawn(self._notify_written(subject_id))

        return EmitResult(
            signal_id=result.signal_id,
            emitted=True,
            deduplicated=False,
            needs_risk_recalculation=True,
        )

    def _build_draft(
        self,
        subject_id: str,
        source: SignalSource | str,
        signal_type: SignalType | str,
        severity: int,
        context_ref: str | None,
        metadata: Any,
        detected_at: datetime | None,
    ) -> SignalDraft | None:
        try:
            source_enum = SignalSource(source)
            type_enum = SignalType(signal_type)
        except ValueError as e:
            logger.warning("signal_rejected", reason="unknown_enum", subject_id=subject_id, error=str(e))
            return None

        if not subject_id:
            logger.warning("signal_rejected", reason="missing_subject", signal_type=type_enum.value)
            return None

        if isinstance(severity, bool) or not isinstance(severity, int) or not 1 <= severity <= 5:
            logger.warning(
                "signal_rejected",
                reason="severity_out_of_range",
                subject_id=subject_id,
                signal_type=type_enum.value,
                severity=severity,
            )
            return None

        try:
            payload = parse_metadata(type_enum, metadata)
        except ValueError as e:
            # pydantic.ValidationError is a ValueError subclass
            logger.warning(
                "signal_rejected",
                reason="invalid_metadata",
                subject_id=subject_id,
                signal_type=type_enum.value,
                error=str(e),
            )
            return None

        when = as_utc(detected_at) if detected_at is not None else utcnow()
        return SignalDraft(
            subject_id=subject_id,
            source=source_enum,
            signal_type=type_enum,
            severity=severity,
            context_ref=context_ref,
            metadata=payload.model_dump(mode="json"),
            idempotency_key=build_idempotency_key(subject_id, type_enum, severity, when, self._window(type_enum)),
            detected_at=when,
        )

    def _window(self, signal_type: SignalType) -> timedelta:
        rule = self.rules.get(signal_type)
        return rule.window if rule is not None else timedelta(hours=1)

    async def _notify_written(self, subject_id: str) -> None:
        try:
            await self.on_signal_written(subject_id)
        except Exception as e:
            logger.warning(
                "risk_recompute_on_emit_failed",
                subject_id=subject_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
