"""Tests for bookings/eligibility.py — cancellation window and refund breakdown."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from bookings.eligibility import (
    CancellationPolicy,
    cancel_booking,
    evaluate_cancellation,
    evaluate_provider_cancellation,
    sessions_used,
)
from bookings.errors import DataIntegrityError, InvalidTransition
from bookings.money import RefundMethod
from bookings.schemas import BookingStatus, DenialReason, PaymentStatus, ProviderRefundMethod

from .factories import NOW, booking_model, course

POLICY = CancellationPolicy(cutoff=timedelta(hours=24), admin_fee=Decimal("2.00"))


class TestPolicy:
    def test_default_policy(self):
        policy = CancellationPolicy.default()
        assert policy.cutoff == timedelta(hours=24)
        assert policy.admin_fee == Decimal("2.00")

    def test_venue_overrides(self):
        policy = CancellationPolicy.for_venue(
            {"admin_fee_amount": "3.50", "cancellation_cutoff_hours": 48}
        )
        assert policy.admin_fee == Decimal("3.50")
        assert policy.cutoff == timedelta(hours=48)

    def test_venue_without_overrides(self):
        assert CancellationPolicy.for_venue({"name": "Hall"}) == CancellationPolicy.default()
        assert CancellationPolicy.for_venue(None) == CancellationPolicy.default()


class TestEvaluateCancellation:
    def test_card_course_four_sessions_used(self):
        result = evaluate_cancellation(course(sessions_used=4), NOW, POLICY)
        assert result.eligible
        assert result.refund_amount == Decimal("58.00")
        assert result.credit_amount == Decimal("0.00")
        assert result.admin_fee == Decimal("2.00")
        assert result.method == RefundMethod.CASH
        assert result.breakdown.sessions_used == 4
        assert result.breakdown.sessions_remaining == 6
        assert result.reason == "Eligible: 6 sessions remaining"

    def test_voucher_course_four_sessions_used(self):
        booking = course(sessions_used=4, payment_channel="voucher")
        result = evaluate_cancellation(booking, NOW, POLICY)
        assert result.refund_amount == Decimal("0.00")
        assert result.credit_amount == Decimal("58.00")
        assert result.method == RefundMethod.CREDIT

    def test_fully_used_course_is_session_passed(self):
        # All five weekly sessions started before NOW.
        booking = course(total="10.00", sessions_total=5, sessions_used=5)
        result = evaluate_cancellation(booking, NOW, POLICY)
        assert not result.eligible
        assert result.denial == DenialReason.SESSION_PASSED
        assert result.refund_amount == Decimal("0.00")
        assert result.admin_fee == Decimal("0.00")
        assert result.breakdown.sessions_used == 5

    def test_terminal_booking_denied(self):
        booking = booking_model(status="cancelled", payment_status="refunded")
        result = evaluate_cancellation(booking, NOW, POLICY)
        assert not result.eligible
        assert result.denial == DenialReason.TERMINAL_STATE
        assert result.reason == "Booking already cancelled/completed"

    def test_unpaid_booking_eligible_for_nothing(self):
        booking = booking_model(status="pending", payment_status="pending")
        result = evaluate_cancellation(booking, NOW, POLICY)
        assert result.eligible
        assert not result.moves_money
        assert result.admin_fee == Decimal("0.00")

    def test_evaluation_is_idempotent(self):
        booking = course(sessions_used=2)
        assert evaluate_cancellation(booking, NOW, POLICY) == evaluate_cancellation(
            booking, NOW, POLICY
        )

    def test_mixed_without_card_portion_is_corrupt(self):
        booking = booking_model(payment_channel="mixed", card_amount=None)
        with pytest.raises(DataIntegrityError):
            evaluate_cancellation(booking, NOW, POLICY)


class TestCutoffBoundary:
    """The default booking starts at 2026-06-04 10:00 UTC."""

    def _at(self, before_start: timedelta):
        booking = booking_model()
        return evaluate_cancellation(booking, booking.starts_at - before_start, POLICY)

    def test_exactly_at_cutoff_is_ineligible(self):
        result = self._at(timedelta(hours=24))
        assert not result.eligible
        assert result.denial == DenialReason.OUTSIDE_WINDOW
        assert result.reason.startswith("Outside cancellation window")

    def test_one_second_inside_cutoff_is_ineligible(self):
        assert not self._at(timedelta(hours=24) - timedelta(seconds=1)).eligible

    def test_one_second_before_cutoff_is_eligible(self):
        assert self._at(timedelta(hours=24) + timedelta(seconds=1)).eligible

    def test_window_measured_to_next_session_of_course(self):
        # Four sessions done, fifth starts in 12 hours.
        booking = course(sessions_used=4)
        now = booking.session_starts()[4] - timedelta(hours=12)
        result = evaluate_cancellation(booking, now, POLICY)
        assert result.denial == DenialReason.OUTSIDE_WINDOW
        assert result.breakdown.sessions_used == 4

    def test_denied_breakdown_zeroes_money_but_keeps_session_counts(self):
        booking = course(sessions_used=4)
        now = booking.session_starts()[4] - timedelta(hours=12)
        breakdown = evaluate_cancellation(booking, now, POLICY).breakdown
        assert breakdown.total_paid == Decimal("100.00")
        assert breakdown.value_per_session == Decimal("0.00")
        assert breakdown.refundable_amount == Decimal("0.00")
        assert breakdown.credit_amount == Decimal("0.00")
        assert breakdown.admin_fee == Decimal("0.00")
        assert breakdown.sessions_used + breakdown.sessions_remaining == booking.sessions_total

    def test_venue_cutoff_override(self):
        policy = CancellationPolicy(cutoff=timedelta(hours=96), admin_fee=Decimal("2.00"))
        assert not evaluate_cancellation(booking_model(), NOW, policy).eligible


class TestSessionsUsed:
    def test_counts_started_sessions(self):
        assert sessions_used(course(sessions_used=3), NOW) == 3

    def test_session_starting_now_counts_as_used(self):
        booking = booking_model()
        assert sessions_used(booking, booking.starts_at) == 1


class TestProviderCancellation:
    def test_no_fee_and_no_window(self):
        booking = booking_model()
        result = evaluate_provider_cancellation(booking, booking.starts_at - timedelta(hours=1))
        assert result.eligible
        assert result.admin_fee == Decimal("0.00")
        assert result.refund_amount == Decimal("100.00")

    def test_credit_requested_for_card_booking(self):
        result = evaluate_provider_cancellation(
            course(sessions_used=4), NOW, ProviderRefundMethod.CREDIT
        )
        assert result.credit_amount == Decimal("60.00")
        assert result.refund_amount == Decimal("0.00")

    def test_original_channel_for_mixed_booking(self):
        booking = course(sessions_used=4, payment_channel="mixed", card_amount="50.00")
        result = evaluate_provider_cancellation(booking, NOW)
        assert result.refund_amount == Decimal("30.00")
        assert result.credit_amount == Decimal("30.00")
        assert result.method == RefundMethod.MIXED

    def test_terminal_booking_denied(self):
        booking = booking_model(status="completed", payment_status="paid")
        result = evaluate_provider_cancellation(booking, NOW)
        assert result.denial == DenialReason.TERMINAL_STATE


class TestCancelBooking:
    def test_applies_eligible_cancellation(self):
        outcome = cancel_booking(course(sessions_used=4), "Child is ill", NOW, POLICY)
        assert outcome.accepted
        assert outcome.booking.status == BookingStatus.CANCELLED
        assert outcome.booking.payment_status == PaymentStatus.REFUNDED

    def test_denied_cancellation_changes_nothing(self):
        booking = booking_model()
        outcome = cancel_booking(booking, "Late", booking.starts_at - timedelta(hours=1), POLICY)
        assert not outcome.accepted
        assert outcome.booking == booking

    def test_second_cancel_raises(self):
        first = cancel_booking(course(sessions_used=4), "Ill", NOW, POLICY)
        with pytest.raises(InvalidTransition):
            cancel_booking(first.booking, "Ill", NOW, POLICY)
