from tortoise import fields
from tortoise.models import Model

from bookings.money import PaymentChannel
from bookings.schemas import BookingStatus, PaymentStatus


class Booking(Model):
    id = fields.UUIDField(primary_key=True)

    parent_id = fields.UUIDField()  # the guardian who booked
    child_id = fields.UUIDField()
    activity_id = fields.UUIDField()
    venue_id = fields.UUIDField()
    venue_owner_id = fields.UUIDField()

    # denormalized snapshots from the activity/venue/child directory
    activity_name = fields.CharField(max_length=255, null=True)
    venue_name = fields.CharField(max_length=255, null=True)
    child_name = fields.CharField(max_length=255, null=True)

    status = fields.CharEnumField(BookingStatus, default=BookingStatus.PENDING)
    payment_status = fields.CharEnumField(PaymentStatus, default=PaymentStatus.PENDING)

    total_amount = fields.DecimalField(max_digits=10, decimal_places=2)
    currency = fields.CharField(max_length=3, default="GBP")
    payment_channel = fields.CharEnumField(PaymentChannel, default=PaymentChannel.CARD)
    card_amount = fields.DecimalField(max_digits=10, decimal_places=2, null=True)

    activity_date = fields.DateField()
    start_time = fields.TimeField()
    end_time = fields.TimeField()
    sessions_total = fields.IntField(default=1)
    session_interval_days = fields.IntField(default=7)

    notes = fields.TextField(null=True)
    special_requirements = fields.TextField(null=True)
    emergency_contact = fields.CharField(max_length=200, null=True)

    cancellation_reason = fields.TextField(null=True)
    cancelled_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        table = "bookings"
        ordering = ["-created_at"]


class WalletCredit(Model):
    id = fields.UUIDField(primary_key=True)

    parent_id = fields.UUIDField()
    booking_id = fields.UUIDField()
    venue_id = fields.UUIDField()

    amount = fields.DecimalField(max_digits=10, decimal_places=2)
    currency = fields.CharField(max_length=3, default="GBP")
    source = fields.CharField(max_length=32)  # cancellation | provider_cancellation
    status = fields.CharField(max_length=16, default="active")
    expires_at = fields.DatetimeField()
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:  # type: ignore
        table = "wallet_credits"
