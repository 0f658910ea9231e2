"""
Cancellation eligibility.

Decides whether a booking may be cancelled right now and, when it may,
how the payment splits into cash refund, wallet credit and admin fee.
Ineligibility is an ordinary result (eligible=False with a reason); only
missing or inconsistent booking data raises.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from loguru import logger

from bookings import settings
from bookings.errors import DataIntegrityError, InvalidInput
from bookings.money import (
    Apportionment,
    PaymentChannel,
    RefundMethod,
    apportion_refund,
    quantize,
)
from bookings.schemas import (
    Booking,
    CancellationBreakdown,
    CancellationEligibility,
    DenialReason,
    ProviderRefundMethod,
)
from bookings.state_machine import CancellationOutcome, booking_state, cancel


@dataclass(frozen=True)
class CancellationPolicy:
    cutoff: timedelta
    admin_fee: Decimal

    @classmethod
    def default(cls) -> CancellationPolicy:
        return cls(
            cutoff=timedelta(hours=settings.CANCELLATION_CUTOFF_HOURS),
            admin_fee=settings.CANCELLATION_ADMIN_FEE,
        )

    @classmethod
    def for_venue(cls, venue: dict[str, Any] | None) -> CancellationPolicy:
        """Default policy with the venue's own fee and cutoff applied, if it sets them."""
        policy = cls.default()
        if not venue:
            return policy
        fee = venue.get("admin_fee_amount")
        hours = venue.get("cancellation_cutoff_hours")
        return cls(
            cutoff=timedelta(hours=float(hours)) if hours is not None else policy.cutoff,
            admin_fee=Decimal(str(fee)) if fee is not None else policy.admin_fee,
        )


def sessions_used(booking: Booking, now: datetime) -> int:
    """Sessions whose start time has been reached by ``now``."""
    return sum(1 for start in booking.session_starts() if start <= now)


def _check_integrity(booking: Booking) -> None:
    booking_state(booking)
    if booking.sessions_total < 1:
        raise DataIntegrityError(
            f"Booking {booking.id} has no contracted sessions",
            booking_id=str(booking.id),
        )
    if booking.total_amount < 0:
        raise DataIntegrityError(
            f"Booking {booking.id} has a negative total",
            booking_id=str(booking.id),
        )
    if booking.payment_channel == PaymentChannel.MIXED and (
        booking.card_amount is None or not 0 <= booking.card_amount <= booking.total_amount
    ):
        raise DataIntegrityError(
            f"Booking {booking.id} is a mixed payment without a valid card portion",
            booking_id=str(booking.id),
        )


def _breakdown(result: Apportionment) -> CancellationBreakdown:
    return CancellationBreakdown(
        total_paid=result.total_paid,
        sessions_used=result.sessions_used,
        sessions_remaining=result.sessions_remaining,
        value_per_session=result.value_per_session,
        refundable_amount=result.refundable_amount,
        credit_amount=result.credit_amount,
        admin_fee=result.admin_fee,
    )


def _denied(booking: Booking, used: int, denial: DenialReason, reason: str) -> CancellationEligibility:
    zero = quantize(0, booking.currency)
    return CancellationEligibility(
        eligible=False,
        reason=reason,
        denial=denial,
        refund_amount=zero,
        credit_amount=zero,
        admin_fee=zero,
        method=RefundMethod.CREDIT,
        currency=booking.currency,
        breakdown=CancellationBreakdown(
            total_paid=quantize(booking.amount_paid, booking.currency),
            sessions_used=used,
            sessions_remaining=booking.sessions_total - used,
            value_per_session=zero,
            refundable_amount=zero,
            credit_amount=zero,
            admin_fee=zero,
        ),
    )


def _apportion(
    booking: Booking,
    used: int,
    admin_fee: Decimal,
    channel: PaymentChannel,
    card_amount: Decimal | None,
) -> Apportionment:
    try:
        return apportion_refund(
            total_paid=booking.amount_paid,
            sessions_total=booking.sessions_total,
            sessions_used=used,
            admin_fee=admin_fee,
            payment_channel=channel,
            card_amount=card_amount,
            currency=booking.currency,
        )
    except InvalidInput as exc:
        # The booking passed the integrity check, so this is corrupt data.
        raise DataIntegrityError(
            f"Booking {booking.id} cannot be apportioned: {exc.message}",
            booking_id=str(booking.id),
        ) from exc


def _eligible(result: Apportionment, booking: Booking, reason: str) -> CancellationEligibility:
    return CancellationEligibility(
        eligible=True,
        reason=reason,
        refund_amount=result.refund_amount,
        credit_amount=result.credit_amount,
        admin_fee=result.admin_fee,
        method=result.method,
        currency=booking.currency,
        breakdown=_breakdown(result),
    )


def evaluate_cancellation(
    booking: Booking,
    now: datetime,
    policy: CancellationPolicy | None = None,
) -> CancellationEligibility:
    """
    Evaluate a guardian-initiated cancellation at ``now``.

    Order of checks:
      1. terminal booking                        → denied
      2. every session already started           → denied
      3. next session starts within the cutoff   → denied (the boundary itself
                                                   counts as inside the window)
      4. otherwise eligible, apportioned over the sessions still to come
    """
    policy = policy or CancellationPolicy.default()
    _check_integrity(booking)
    state = booking_state(booking)
    used = sessions_used(booking, now)

    if state.is_terminal:
        return _denied(
            booking, used, DenialReason.TERMINAL_STATE, "Booking already cancelled/completed"
        )

    upcoming = [start for start in booking.session_starts() if start > now]
    if not upcoming:
        return _denied(
            booking,
            used,
            DenialReason.SESSION_PASSED,
            "Session has already occurred - no refund available",
        )

    lead_time = upcoming[0] - now
    if lead_time <= policy.cutoff:
        hours = policy.cutoff.total_seconds() / 3600
        return _denied(
            booking,
            used,
            DenialReason.OUTSIDE_WINDOW,
            f"Outside cancellation window: cancellations must be made more than "
            f"{hours:g} hours before the session starts",
        )

    result = _apportion(
        booking, used, policy.admin_fee, booking.payment_channel, booking.card_amount
    )
    return _eligible(result, booking, f"Eligible: {result.sessions_remaining} sessions remaining")


def evaluate_provider_cancellation(
    booking: Booking,
    now: datetime,
    refund_method: ProviderRefundMethod = ProviderRefundMethod.ORIGINAL,
) -> CancellationEligibility:
    """
    Evaluate a venue-initiated cancellation.

    No cutoff and no admin fee apply: the value of every session not yet
    started goes back in full, by cash, credit or the original channel.
    """
    _check_integrity(booking)
    used = sessions_used(booking, now)
    if booking_state(booking).is_terminal:
        return _denied(
            booking, used, DenialReason.TERMINAL_STATE, "Booking already cancelled/completed"
        )

    if refund_method == ProviderRefundMethod.CASH:
        channel, card_amount = PaymentChannel.CARD, None
    elif refund_method == ProviderRefundMethod.CREDIT:
        channel, card_amount = PaymentChannel.VOUCHER, None
    else:
        channel, card_amount = booking.payment_channel, booking.card_amount

    result = _apportion(booking, used, Decimal("0"), channel, card_amount)
    return _eligible(
        result,
        booking,
        f"Provider cancellation: {result.sessions_remaining} sessions refunded in full",
    )


def cancel_booking(
    booking: Booking,
    reason: str,
    now: datetime,
    policy: CancellationPolicy | None = None,
) -> CancellationOutcome:
    """Evaluate and apply a guardian cancellation in one step."""
    eligibility = evaluate_cancellation(booking, now, policy)
    outcome = cancel(booking, reason, eligibility, now)
    if outcome.accepted:
        logger.info(
            "Booking cancelled: booking_id={} refund={} credit={} fee={}",
            booking.id,
            eligibility.refund_amount,
            eligibility.credit_amount,
            eligibility.admin_fee,
        )
    else:
        logger.info("Cancellation denied: booking_id={} reason={}", booking.id, eligibility.reason)
    return outcome
