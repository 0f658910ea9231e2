"""
Booking lifecycle.

Status and payment status are folded into one composite state so that only
reachable pairs exist. Every transition takes a frozen Booking and returns
either a Transition carrying the new booking and the events to publish, or
raises InvalidTransition. Nothing is mutated in place.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import StrEnum
from typing import Any

from bookings.errors import DataIntegrityError, InvalidInput, InvalidTransition
from bookings.events import BookingEvent, EventName
from bookings.schemas import (
    Booking,
    BookingStatus,
    CancellationEligibility,
    PaymentStatus,
    session_start,
)


class BookingState(StrEnum):
    PENDING_UNPAID = "pending/pending"
    PENDING_PAYMENT_FAILED = "pending/failed"
    CONFIRMED = "confirmed/paid"
    CANCELLED_UNPAID = "cancelled/pending"
    CANCELLED_PAYMENT_FAILED = "cancelled/failed"
    CANCELLED_UNREFUNDED = "cancelled/paid"
    CANCELLED_REFUNDED = "cancelled/refunded"
    COMPLETED = "completed/paid"

    @property
    def status(self) -> BookingStatus:
        return BookingStatus(self.value.split("/")[0])

    @property
    def payment_status(self) -> PaymentStatus:
        return PaymentStatus(self.value.split("/")[1])

    @property
    def is_terminal(self) -> bool:
        return self.status in (BookingStatus.CANCELLED, BookingStatus.COMPLETED)

    @classmethod
    def of(cls, status: BookingStatus, payment_status: PaymentStatus) -> BookingState:
        return cls(f"{status}/{payment_status}")


class Action(StrEnum):
    CONFIRM = "confirm"
    MARK_PAYMENT_FAILED = "mark_payment_failed"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"
    AMEND = "amend"
    COMPLETE = "complete"


_ALLOWED_ACTIONS: dict[BookingState, set[Action]] = {
    BookingState.PENDING_UNPAID: {
        Action.CONFIRM,
        Action.MARK_PAYMENT_FAILED,
        Action.CANCEL,
        Action.AMEND,
    },
    # A failed payment can be retried (confirm) or abandoned (cancel).
    BookingState.PENDING_PAYMENT_FAILED: {Action.CONFIRM, Action.CANCEL, Action.AMEND},
    BookingState.CONFIRMED: {
        Action.CANCEL,
        Action.RESCHEDULE,
        Action.AMEND,
        Action.COMPLETE,
    },
    BookingState.CANCELLED_UNPAID: set(),
    BookingState.CANCELLED_PAYMENT_FAILED: set(),
    BookingState.CANCELLED_UNREFUNDED: set(),
    BookingState.CANCELLED_REFUNDED: set(),
    BookingState.COMPLETED: set(),
}

AMENDABLE_FIELDS = frozenset({"notes", "special_requirements", "emergency_contact"})


@dataclass(frozen=True)
class Transition:
    booking: Booking
    events: tuple[BookingEvent, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class CancellationOutcome:
    accepted: bool
    booking: Booking
    eligibility: CancellationEligibility
    events: tuple[BookingEvent, ...] = field(default_factory=tuple)


def booking_state(booking: Booking) -> BookingState:
    """Composite state of a booking. Unreachable pairs are data corruption."""
    try:
        return BookingState.of(booking.status, booking.payment_status)
    except ValueError:
        raise DataIntegrityError(
            f"Booking {booking.id} has an impossible state "
            f"'{booking.status}/{booking.payment_status}'",
            booking_id=str(booking.id),
        ) from None


def allowed_actions(booking: Booking) -> list[Action]:
    return sorted(_ALLOWED_ACTIONS[booking_state(booking)])


def assert_allowed(booking: Booking, action: Action) -> BookingState:
    state = booking_state(booking)
    allowed = _ALLOWED_ACTIONS[state]
    if action not in allowed:
        raise InvalidTransition(
            f"Cannot {action} a booking in state '{state}'. "
            f"Allowed: {sorted(a.value for a in allowed)}",
            booking_id=str(booking.id),
            state=state.value,
        )
    return state


def _move(booking: Booking, target: BookingState, **changes: Any) -> Booking:
    return booking.model_copy(
        update={
            "status": target.status,
            "payment_status": target.payment_status,
            **changes,
        }
    )


def _event(name: EventName, booking: Booking, **payload: Any) -> BookingEvent:
    return BookingEvent(name=name, subject_id=booking.id, payload=payload)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def confirm(booking: Booking, now: datetime) -> Transition:
    """Payment captured: pending → confirmed/paid."""
    assert_allowed(booking, Action.CONFIRM)
    updated = _move(booking, BookingState.CONFIRMED, updated_at=now)
    return Transition(
        updated,
        (
            _event(
                EventName.BOOKING_CONFIRMED,
                updated,
                amount=str(updated.total_amount),
                currency=updated.currency,
            ),
        ),
    )


def mark_payment_failed(booking: Booking, now: datetime) -> Transition:
    assert_allowed(booking, Action.MARK_PAYMENT_FAILED)
    updated = _move(booking, BookingState.PENDING_PAYMENT_FAILED, updated_at=now)
    return Transition(updated, (_event(EventName.BOOKING_PAYMENT_FAILED, updated),))


def cancel(
    booking: Booking,
    reason: str,
    eligibility: CancellationEligibility,
    now: datetime,
) -> CancellationOutcome:
    """
    Apply a cancellation that the eligibility engine already evaluated.

    A policy denial leaves the booking untouched and comes back as an outcome
    with accepted=False. When money moves the payment becomes refunded;
    otherwise the payment status is kept as is.
    """
    state = assert_allowed(booking, Action.CANCEL)
    if not reason or not reason.strip():
        raise InvalidInput("A cancellation reason is required", booking_id=str(booking.id))

    if not eligibility.eligible:
        return CancellationOutcome(accepted=False, booking=booking, eligibility=eligibility)

    if eligibility.moves_money:
        target = BookingState.CANCELLED_REFUNDED
    else:
        target = BookingState.of(BookingStatus.CANCELLED, state.payment_status)

    updated = _move(
        booking,
        target,
        cancellation_reason=reason.strip(),
        cancelled_at=now,
        updated_at=now,
    )
    event = _event(
        EventName.BOOKING_CANCELLED,
        updated,
        reason=updated.cancellation_reason,
        refund_amount=str(eligibility.refund_amount),
        credit_amount=str(eligibility.credit_amount),
        admin_fee=str(eligibility.admin_fee),
        method=eligibility.method.value,
    )
    return CancellationOutcome(
        accepted=True, booking=updated, eligibility=eligibility, events=(event,)
    )


def reschedule(
    booking: Booking,
    new_date: date,
    new_start: time,
    new_end: time | None,
    now: datetime,
) -> Transition:
    """
    Move a confirmed booking to a new slot in the future.

    Capacity of the new slot is the caller's concern; only legality and the
    "must be in the future" rule are enforced here.
    """
    assert_allowed(booking, Action.RESCHEDULE)

    new_starts_at = session_start(new_date, new_start)
    if new_starts_at <= now:
        raise InvalidTransition(
            "The new activity time must be in the future",
            booking_id=str(booking.id),
        )
    if booking.sessions_total > 1 and booking.starts_at <= now:
        raise InvalidTransition(
            "A course that has already started cannot be rescheduled",
            booking_id=str(booking.id),
        )

    if new_end is None:
        duration = session_start(booking.activity_date, booking.end_time) - booking.starts_at
        new_end = (new_starts_at + duration).time()
    if new_end <= new_start:
        raise InvalidInput("end time must be after start time", booking_id=str(booking.id))

    updated = booking.model_copy(
        update={
            "activity_date": new_date,
            "start_time": new_start,
            "end_time": new_end,
            "updated_at": now,
        }
    )
    event = _event(
        EventName.BOOKING_RESCHEDULED,
        updated,
        previous_date=booking.activity_date.isoformat(),
        previous_start_time=booking.start_time.isoformat(),
        activity_date=new_date.isoformat(),
        start_time=new_start.isoformat(),
    )
    return Transition(updated, (event,))


def amend(booking: Booking, changes: Mapping[str, str | None], now: datetime) -> Transition:
    assert_allowed(booking, Action.AMEND)
    unknown = set(changes) - AMENDABLE_FIELDS
    if unknown:
        raise InvalidInput(
            f"Only {sorted(AMENDABLE_FIELDS)} can be amended, got {sorted(unknown)}",
            booking_id=str(booking.id),
        )
    updated = booking.model_copy(update={**changes, "updated_at": now})
    return Transition(
        updated, (_event(EventName.BOOKING_AMENDED, updated, fields=sorted(changes)),)
    )


def complete(booking: Booking, now: datetime) -> Transition:
    assert_allowed(booking, Action.COMPLETE)
    if booking.last_session_ends_at > now:
        raise InvalidTransition(
            "The activity has not finished yet",
            booking_id=str(booking.id),
        )
    updated = _move(booking, BookingState.COMPLETED, updated_at=now)
    return Transition(updated, (_event(EventName.BOOKING_COMPLETED, updated),))
