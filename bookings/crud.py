from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from fastapi import HTTPException, status
from loguru import logger
from tortoise.transactions import in_transaction

from bookings import schemas, settings
from bookings.errors import InvalidTransition
from bookings.models import Booking, WalletCredit
from bookings.schemas import BookingStatus, PaymentStatus

# Fields a transition is allowed to write back.
_MUTABLE_FIELDS = [
    "status",
    "payment_status",
    "activity_date",
    "start_time",
    "end_time",
    "notes",
    "special_requirements",
    "emergency_contact",
    "cancellation_reason",
    "cancelled_at",
    "updated_at",
]


def _to_utc(dt: datetime) -> datetime:
    """Ensure a datetime is UTC-aware, handling both aware and naive inputs."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _overlaps_unavailabilities(
    start: datetime,
    end: datetime,
    unavailabilities: list[dict],
) -> bool:
    """Return True if [start, end) overlaps any unavailability window."""
    for u in unavailabilities:
        u_start = _to_utc(datetime.fromisoformat(u["start_datetime"]))
        u_end = _to_utc(datetime.fromisoformat(u["end_datetime"]))
        if start < u_end and end > u_start:
            return True
    return False


def _snapshot(inst: Booking) -> schemas.Booking:
    return schemas.Booking.model_validate(inst, from_attributes=True)


def _assert_slot_free(booking: schemas.Booking, unavailabilities: list[dict]) -> None:
    for start in booking.session_starts():
        end = start + (
            schemas.session_start(booking.activity_date, booking.end_time) - booking.starts_at
        )
        if _overlaps_unavailabilities(start, end, unavailabilities):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Booking overlaps with a venue unavailability period",
            )


class BookingCRUD:
    async def create_booking(self, unavailabilities: list[dict], **values) -> schemas.Booking:
        """Persist a new booking after checking the venue unavailability windows."""
        draft = schemas.Booking.model_construct(**values)
        _assert_slot_free(draft, unavailabilities)
        inst = await Booking.create(**values)
        logger.info(
            "Booking created: booking_id={} status={}/{}",
            inst.id,
            inst.status,
            inst.payment_status,
        )
        return _snapshot(inst)

    async def get_booking(
        self,
        booking_id: UUID,
        parent_id: UUID | None = None,
        venue_owner_id: UUID | None = None,
    ) -> schemas.Booking | None:
        if parent_id is not None:
            inst = await Booking.get_or_none(id=booking_id, parent_id=parent_id)
        elif venue_owner_id is not None:
            inst = await Booking.get_or_none(id=booking_id, venue_owner_id=venue_owner_id)
        else:
            inst = await Booking.get_or_none(id=booking_id)

        if not inst:
            return None
        return _snapshot(inst)

    async def save_transition(
        self,
        before: schemas.Booking,
        after: schemas.Booking,
    ) -> schemas.Booking:
        """
        Persist a transition computed from ``before``.

        The row is locked and its state compared with ``before`` so that a
        transition computed from a stale snapshot is never written.
        """
        async with in_transaction():
            inst = await self._lock_unchanged(before)
            self._apply(inst, after)
            await inst.save(update_fields=_MUTABLE_FIELDS)
        return _snapshot(inst)

    async def reschedule_booking(
        self,
        before: schemas.Booking,
        after: schemas.Booking,
        unavailabilities: list[dict],
    ) -> schemas.Booking:
        _assert_slot_free(after, unavailabilities)
        return await self.save_transition(before, after)

    async def save_cancellation(
        self,
        before: schemas.Booking,
        after: schemas.Booking,
        credit_amount: Decimal,
        source: str,
        now: datetime,
    ) -> tuple[schemas.Booking, UUID | None]:
        """Persist a cancellation and issue its wallet credit atomically."""
        credit_id = None
        async with in_transaction():
            inst = await self._lock_unchanged(before)
            self._apply(inst, after)
            await inst.save(update_fields=_MUTABLE_FIELDS)
            if credit_amount > 0:
                credit = await WalletCredit.create(
                    parent_id=after.parent_id,
                    booking_id=after.id,
                    venue_id=after.venue_id,
                    amount=credit_amount,
                    currency=after.currency,
                    source=source,
                    expires_at=now + timedelta(days=settings.WALLET_CREDIT_VALIDITY_DAYS),
                )
                credit_id = credit.id
                logger.info(
                    "Wallet credit issued: credit_id={} booking_id={} amount={}",
                    credit.id,
                    after.id,
                    credit_amount,
                )
        return _snapshot(inst), credit_id

    async def list_due_for_completion(self, now: datetime) -> list[schemas.Booking]:
        """Confirmed bookings whose last session has ended by ``now``."""
        candidates = await Booking.filter(
            status=BookingStatus.CONFIRMED,
            payment_status=PaymentStatus.PAID,
            activity_date__lte=now.date(),
        )
        bookings = [_snapshot(b) for b in candidates]
        return [b for b in bookings if b.last_session_ends_at <= now]

    async def delete_booking(self, booking_id: UUID) -> bool:
        return await Booking.filter(id=booking_id).delete() > 0

    async def _lock_unchanged(self, before: schemas.Booking) -> Booking:
        inst = await Booking.select_for_update().get(id=before.id)
        if (inst.status, inst.payment_status) != (before.status, before.payment_status):
            raise InvalidTransition(
                "Booking was modified by another request; reload and retry",
                booking_id=str(before.id),
            )
        return inst

    @staticmethod
    def _apply(inst: Booking, after: schemas.Booking) -> None:
        for name in _MUTABLE_FIELDS:
            setattr(inst, name, getattr(after, name))


booking_crud = BookingCRUD()
