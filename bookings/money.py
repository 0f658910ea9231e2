"""
Refund apportionment under the cancellation policy.

Pure Decimal arithmetic in the currency's minor unit with half-to-even
rounding, so that cash refund + wallet credit + admin fee never exceeds what
was paid.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from enum import StrEnum

from bookings.errors import InvalidInput


class PaymentChannel(StrEnum):
    CARD = "card"
    VOUCHER = "voucher"  # childcare vouchers / tax-free childcare, refunded as credit
    MIXED = "mixed"


class RefundMethod(StrEnum):
    CASH = "cash"
    CREDIT = "credit"
    MIXED = "mixed"


_ZERO = Decimal("0")

# ISO 4217 exponents that differ from the usual two decimals.
_MINOR_UNIT_EXCEPTIONS: dict[str, int] = {
    "JPY": 0,
    "KRW": 0,
    "ISK": 0,
    "BHD": 3,
    "KWD": 3,
    "OMR": 3,
}


def minor_unit(currency: str) -> int:
    """Number of decimal places in the currency's minor unit."""
    return _MINOR_UNIT_EXCEPTIONS.get(currency.upper(), 2)


def _exponent(currency: str) -> Decimal:
    return Decimal(1).scaleb(-minor_unit(currency))


def quantize(amount: Decimal | int | str, currency: str) -> Decimal:
    """Round an amount to the currency's minor unit, half to even."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise InvalidInput(f"Not a monetary amount: {amount!r}") from None
    return value.quantize(_exponent(currency), rounding=ROUND_HALF_EVEN)


def to_minor(amount: Decimal, currency: str) -> int:
    """Amount expressed as an integer count of minor units (pence, cents...)."""
    return int(quantize(amount, currency).scaleb(minor_unit(currency)))


def method_for(refund_amount: Decimal, credit_amount: Decimal) -> RefundMethod:
    if refund_amount > 0 and credit_amount > 0:
        return RefundMethod.MIXED
    if refund_amount > 0:
        return RefundMethod.CASH
    return RefundMethod.CREDIT


@dataclass(frozen=True)
class Apportionment:
    total_paid: Decimal
    sessions_used: int
    sessions_remaining: int
    value_per_session: Decimal
    refundable_amount: Decimal
    refund_amount: Decimal
    credit_amount: Decimal
    admin_fee: Decimal  # fee actually applied, never above the requested fee

    @property
    def method(self) -> RefundMethod:
        return method_for(self.refund_amount, self.credit_amount)

    @property
    def net_amount(self) -> Decimal:
        return self.refund_amount + self.credit_amount


def _validate(
    total_paid: Decimal,
    sessions_total: int,
    sessions_used: int,
    admin_fee: Decimal,
    channel: str,
    card_amount: Decimal | None,
) -> PaymentChannel:
    if total_paid < 0:
        raise InvalidInput("total_paid must be >= 0", total_paid=str(total_paid))
    if sessions_total < 1:
        raise InvalidInput("sessions_total must be >= 1", sessions_total=sessions_total)
    if not 0 <= sessions_used <= sessions_total:
        raise InvalidInput(
            "sessions_used must be between 0 and sessions_total",
            sessions_used=sessions_used,
            sessions_total=sessions_total,
        )
    if admin_fee < 0:
        raise InvalidInput("admin_fee must be >= 0", admin_fee=str(admin_fee))
    try:
        payment_channel = PaymentChannel(channel)
    except ValueError:
        raise InvalidInput(f"Unknown payment channel: {channel!r}") from None
    if payment_channel == PaymentChannel.MIXED:
        if card_amount is None:
            raise InvalidInput("Mixed payments require the card portion of the payment")
        if not 0 <= card_amount <= total_paid:
            raise InvalidInput(
                "card_amount must be between 0 and total_paid",
                card_amount=str(card_amount),
            )
    return payment_channel


def apportion_refund(
    total_paid: Decimal,
    sessions_total: int,
    sessions_used: int,
    admin_fee: Decimal,
    payment_channel: PaymentChannel | str,
    card_amount: Decimal | None = None,
    currency: str = "GBP",
) -> Apportionment:
    """
    Split the unused part of a payment into cash refund and wallet credit.

    The refundable amount is the rounded per-session value times the sessions
    not yet consumed, clamped to what was paid. The admin fee comes off that amount first and is capped at
    it. The remainder goes to cash for card payments and to credit for
    voucher payments. Mixed payments split it in the ratio of the card
    portion to the total paid.

    Raises InvalidInput when an argument is outside its domain.
    """
    total_paid = quantize(total_paid, currency)
    admin_fee = quantize(admin_fee, currency)
    if card_amount is not None:
        card_amount = quantize(card_amount, currency)
    channel = _validate(
        total_paid, sessions_total, sessions_used, admin_fee, payment_channel, card_amount
    )

    sessions_remaining = sessions_total - sessions_used
    value_per_session = quantize(total_paid / sessions_total, currency)
    refundable = value_per_session * sessions_remaining
    refundable = min(max(refundable, _ZERO), total_paid)

    fee_applied = min(admin_fee, refundable)
    net = refundable - fee_applied

    if channel == PaymentChannel.CARD:
        refund, credit = net, _ZERO
    elif channel == PaymentChannel.VOUCHER:
        refund, credit = _ZERO, net
    elif total_paid == 0:
        refund, credit = _ZERO, _ZERO
    else:
        # Credit takes the remainder so the two halves always add up to net.
        refund = quantize(net * card_amount / total_paid, currency)
        credit = net - refund

    return Apportionment(
        total_paid=total_paid,
        sessions_used=sessions_used,
        sessions_remaining=sessions_remaining,
        value_per_session=value_per_session,
        refundable_amount=refundable,
        refund_amount=refund,
        credit_amount=credit,
        admin_fee=fee_applied,
    )
