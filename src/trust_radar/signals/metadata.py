"""
Trust Radar — Signal Metadata (closed tagged union)

Each of the 8 signal types carries its own small, typed payload. The `kind`
field is the discriminator and always equals the signal type, so a payload
can never be attached to the wrong category. Adding a ninth category means
adding a variant here and to SignalMetadata; nothing accepts an open dict.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from trust_radar.config import SignalType


class _Metadata(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}


class TokenDrainMetadata(_Metadata):
    kind: Literal["TOKEN_DRAIN_PATTERN"] = "TOKEN_DRAIN_PATTERN"
    short_session_count: int = Field(ge=0)
    max_session_seconds: int = Field(ge=0)
    window_hours: int = Field(ge=0)
    session_type: str = "CHAT"
    duration_seconds: int | None = None
    tokens_cost: int | None = None


class MultiSessionSpamMetadata(_Metadata):
    kind: Literal["MULTI_SESSION_SPAM"] = "MULTI_SESSION_SPAM"
    parallel_sessions: int = Field(ge=0)
    window_minutes: int = Field(ge=0)


class CopyPasteMetadata(_Metadata):
    kind: Literal["COPY_PASTE_BEHAVIOR"] = "COPY_PASTE_BEHAVIOR"
    match_count: int = Field(ge=0)
    window_minutes: int = Field(ge=0)
    message_hash: str
    message_snippet: str = ""


class FakeBookingsMetadata(_Metadata):
    kind: Literal["FAKE_BOOKINGS"] = "FAKE_BOOKINGS"
    total_tickets: int = Field(ge=0)
    refunded_tickets: int = Field(ge=0)
    refund_rate_pct: int = Field(ge=0, le=100)
    event_id: str
    ticket_id: str | None = None


class SelfRefundsMetadata(_Metadata):
    kind: Literal["SELF_REFUNDS"] = "SELF_REFUNDS"
    cancelled_count: int = Field(ge=0)
    window_days: int = Field(ge=0)


class PayoutAbuseMetadata(_Metadata):
    kind: Literal["PAYOUT_ABUSE"] = "PAYOUT_ABUSE"
    attempt_count: int = Field(ge=0)
    window_hours: int = Field(ge=0)
    amount: int | None = None
    pattern: str = "rapid_attempts"


class IdentityMismatchMetadata(_Metadata):
    kind: Literal["IDENTITY_MISMATCH"] = "IDENTITY_MISMATCH"
    unique_reporters: int = Field(ge=0)
    report_count: int = Field(ge=0)
    window_days: int = Field(ge=0)


class PanicRateSpikeMetadata(_Metadata):
    kind: Literal["PANIC_RATE_SPIKE"] = "PANIC_RATE_SPIKE"
    panic_count: int = Field(ge=0)
    window_hours: int = Field(ge=0)


SignalMetadata = Annotated[
    Union[
        TokenDrainMetadata,
        MultiSessionSpamMetadata,
        CopyPasteMetadata,
        FakeBookingsMetadata,
        SelfRefundsMetadata,
        PayoutAbuseMetadata,
        IdentityMismatchMetadata,
        PanicRateSpikeMetadata,
    ],
    Field(discriminator="kind"),
]

_metadata_adapter: TypeAdapter[Any] = TypeAdapter(SignalMetadata)


def parse_metadata(signal_type: SignalType, payload: Any) -> BaseModel:
    """
    Validate a metadata payload for a signal type.

    Accepts either a variant instance or a dict. A dict without `kind` is
    tagged with the signal type before validation.

    Raises:
        ValueError: payload does not match the variant for `signal_type`.
        pydantic.ValidationError: payload fails variant validation.
    """
    if isinstance(payload, BaseModel):
        data = payload.model_dump()
    else:
        data = dict(payload or {})
    data.setdefault("kind", signal_type.value)

    if data["kind"] != signal_type.value:
        raise ValueError(
            f"metadata kind {data['kind']!r} does not match signal type {signal_type.value!r}"
        )
    return _metadata_adapter.validate_python(data)
