from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from bookings.money import PaymentChannel, RefundMethod


class BookingStatus(StrEnum):
    PENDING = "pending"  # created by a wizard, awaiting payment
    CONFIRMED = "confirmed"  # paid
    CANCELLED = "cancelled"
    COMPLETED = "completed"  # last session elapsed, set by the completion sweep


class PaymentStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class DenialReason(StrEnum):
    TERMINAL_STATE = "terminal_state"
    OUTSIDE_WINDOW = "outside_window"
    SESSION_PASSED = "session_passed"


class ProviderRefundMethod(StrEnum):
    CASH = "cash"
    CREDIT = "credit"
    ORIGINAL = "original"  # follow the channel the booking was paid with


def session_start(day: date, at: time) -> datetime:
    return datetime.combine(day, at, tzinfo=timezone.utc)


class Booking(BaseModel):
    """Immutable snapshot of a booking. Transitions return modified copies."""

    id: UUID
    parent_id: UUID
    child_id: UUID
    activity_id: UUID
    venue_id: UUID
    venue_owner_id: UUID  # denormalized snapshot from the venue directory

    activity_name: str | None = None
    venue_name: str | None = None
    child_name: str | None = None

    status: BookingStatus
    payment_status: PaymentStatus

    total_amount: Decimal
    currency: str = "GBP"
    payment_channel: PaymentChannel = PaymentChannel.CARD
    card_amount: Decimal | None = None

    activity_date: date
    start_time: time
    end_time: time
    sessions_total: int = 1
    session_interval_days: int = 7

    notes: str | None = None
    special_requirements: str | None = None
    emergency_contact: str | None = None

    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True, frozen=True)

    def session_starts(self) -> list[datetime]:
        first = session_start(self.activity_date, self.start_time)
        step = timedelta(days=self.session_interval_days)
        return [first + step * k for k in range(self.sessions_total)]

    @property
    def starts_at(self) -> datetime:
        return session_start(self.activity_date, self.start_time)

    @property
    def last_session_ends_at(self) -> datetime:
        last_day = self.activity_date + timedelta(
            days=self.session_interval_days * (self.sessions_total - 1)
        )
        return session_start(last_day, self.end_time)

    @property
    def amount_paid(self) -> Decimal:
        """Money actually held for this booking."""
        if self.payment_status == PaymentStatus.PAID:
            return self.total_amount
        return Decimal("0")


class BookingDetail(Booking):
    allowed_actions: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class CancellationBreakdown(BaseModel):
    total_paid: Decimal
    sessions_used: int
    sessions_remaining: int
    value_per_session: Decimal
    refundable_amount: Decimal
    credit_amount: Decimal
    admin_fee: Decimal


class CancellationEligibility(BaseModel):
    eligible: bool
    reason: str
    denial: DenialReason | None = None
    refund_amount: Decimal
    credit_amount: Decimal
    admin_fee: Decimal
    method: RefundMethod
    currency: str = "GBP"
    breakdown: CancellationBreakdown

    model_config = ConfigDict(frozen=True)

    @property
    def moves_money(self) -> bool:
        return self.refund_amount + self.credit_amount > 0


class CancelRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)

    @field_validator("reason", mode="after")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("reason must not be blank")
        return v.strip()


class ProviderCancelRequest(CancelRequest):
    refund_method: ProviderRefundMethod = ProviderRefundMethod.ORIGINAL


class CancellationResult(BaseModel):
    booking: Booking
    eligibility: CancellationEligibility
    wallet_credit_id: UUID | None = None


# ---------------------------------------------------------------------------
# Reschedule / amend / sweep
# ---------------------------------------------------------------------------


class RescheduleRequest(BaseModel):
    activity_date: date
    start_time: time
    end_time: time | None = None

    @model_validator(mode="after")
    def validate_time_range(self) -> RescheduleRequest:
        if self.end_time is not None and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class BookingAmend(BaseModel):
    """Auxiliary fields only. Status and payment never change through an amend."""

    notes: str | None = Field(default=None, max_length=1000)
    special_requirements: str | None = Field(default=None, max_length=1000)
    emergency_contact: str | None = Field(default=None, max_length=200)

    model_config = ConfigDict(extra="forbid")


class CompletionSweepResult(BaseModel):
    completed: list[UUID]


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class BookingSelections(BaseModel):
    """Everything a booking flow collects before submitting."""

    activity_id: UUID | None = None
    child_id: UUID | None = None
    activity_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    sessions_total: int = Field(default=1, ge=1)
    payment_channel: PaymentChannel | None = None
    card_amount: Decimal | None = Field(default=None, ge=0)
    payment_confirmed: bool = False
    notes: str | None = Field(default=None, max_length=1000)
    special_requirements: str | None = Field(default=None, max_length=1000)
    emergency_contact: str | None = Field(default=None, max_length=200)

    model_config = ConfigDict(frozen=True, extra="forbid")


class BookingCreate(BaseModel):
    """Booking request from a guardian. Payment state is never client-settable."""

    activity_id: UUID
    child_id: UUID
    activity_date: date
    start_time: time
    end_time: time | None = None  # defaults to the activity duration
    sessions_total: int = Field(default=1, ge=1)
    payment_channel: PaymentChannel = PaymentChannel.CARD
    card_amount: Decimal | None = Field(default=None, ge=0)
    notes: str | None = Field(default=None, max_length=1000)
    special_requirements: str | None = Field(default=None, max_length=1000)
    emergency_contact: str | None = Field(default=None, max_length=200)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def validate_booking(self) -> BookingCreate:
        if self.end_time is not None and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        if self.payment_channel == PaymentChannel.MIXED and self.card_amount is None:
            raise ValueError("card_amount is required for mixed payments")
        return self
