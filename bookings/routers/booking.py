from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.encoders import jsonable_encoder
from loguru import logger

from bookings import settings, state_machine
from bookings.crud import booking_crud
from bookings.deps import (
    ChildrenClient,
    CurrentUser,
    NotificationsClient,
    PaymentsClient,
    VenuesClient,
    can_admin_delete_booking,
    can_read_booking,
    can_report_payment,
    can_run_sweep,
    can_write_booking,
    get_children_client,
    get_current_user,
    get_notifications_client,
    get_payments_client,
    get_venues_client,
)
from bookings.eligibility import (
    CancellationPolicy,
    evaluate_cancellation,
    evaluate_provider_cancellation,
)
from bookings.errors import InvalidTransition
from bookings.events import BookingEvent, EventName
from bookings.money import PaymentChannel, quantize
from bookings.schemas import (
    Booking,
    BookingAmend,
    BookingCreate,
    BookingDetail,
    BookingStatus,
    CancellationEligibility,
    CancellationResult,
    CancelRequest,
    CompletionSweepResult,
    PaymentStatus,
    ProviderCancelRequest,
    RescheduleRequest,
)
from bookings.scopes import BookingScope

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Permission helpers
# ---------------------------------------------------------------------------


def _is_admin_reader(user: CurrentUser) -> bool:
    return user.has_any(BookingScope.ADMIN, BookingScope.ADMIN_READ)


def _is_admin_writer(user: CurrentUser) -> bool:
    return user.has_any(BookingScope.ADMIN, BookingScope.ADMIN_WRITE)


def _assert_booker(booking: Booking, current_user: CurrentUser, scope: BookingScope) -> None:
    """The guardian who made the booking, holding ``scope``, or an admin."""
    if _is_admin_writer(current_user):
        return
    if not (current_user.id == booking.parent_id and scope in current_user.scopes):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Requires '{scope}' scope as the guardian who made the booking.",
        )


def _assert_venue_owner(booking: Booking, current_user: CurrentUser) -> None:
    if _is_admin_writer(current_user):
        return
    if not (
        current_user.id == booking.venue_owner_id and BookingScope.MANAGE in current_user.scopes
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Requires '{BookingScope.MANAGE}' scope and being the venue owner.",
        )


async def _load(booking_id: UUID) -> Booking:
    # Fetched without an ownership filter; permissions are checked per action.
    booking = await booking_crud.get_booking(booking_id)
    if not booking:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


def to_detail(booking: Booking) -> BookingDetail:
    return BookingDetail(
        **booking.model_dump(),
        allowed_actions=[a.value for a in state_machine.allowed_actions(booking)],
    )


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def book_activity(
    payload: BookingCreate,
    current_user: CurrentUser,
    venues_client: VenuesClient,
    children_client: ChildrenClient,
) -> Booking:
    """
    Validate a booking request against the activity directory and persist it.

    Bookings always start pending/pending. Only the payment processor moves
    them on, through the payment confirm and failed endpoints.
    """
    activity = await venues_client.get_activity(payload.activity_id, current_user)
    if activity is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Activity not found")
    if activity.get("status", "active") != "active":
        raise HTTPException(
            status_code=422,
            detail=f"Activity is not available for booking (status: {activity.get('status')})",
        )

    venue_id = UUID(activity["venue_id"])
    venue = await venues_client.get_venue(venue_id, current_user)
    if venue is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Venue not found")

    child = await children_client.get_child(payload.child_id, current_user)
    if child is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Child not found")

    remaining = await venues_client.get_remaining_capacity(
        payload.activity_id, payload.activity_date, payload.start_time, current_user
    )
    if remaining is not None and remaining <= 0:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="No places left for this activity slot",
        )

    end_time = payload.end_time
    if end_time is None:
        duration = timedelta(minutes=int(activity.get("duration_minutes", 60)))
        end_time = (datetime.combine(payload.activity_date, payload.start_time) + duration).time()
        if end_time <= payload.start_time:
            raise HTTPException(
                status_code=422,
                detail="Activity would run past midnight; pass an explicit end_time",
            )

    currency = activity.get("currency", settings.DEFAULT_CURRENCY)
    total_amount = quantize(Decimal(str(activity["price"])) * payload.sessions_total, currency)
    if payload.payment_channel == PaymentChannel.MIXED and payload.card_amount > total_amount:
        raise HTTPException(
            status_code=422,
            detail="card_amount cannot exceed the booking total",
        )

    unavailabilities = await venues_client.get_unavailabilities(venue_id, current_user)
    return await booking_crud.create_booking(
        unavailabilities=unavailabilities,
        parent_id=current_user.id,
        child_id=payload.child_id,
        activity_id=payload.activity_id,
        venue_id=venue_id,
        venue_owner_id=UUID(venue["owner_id"]),
        activity_name=activity.get("name"),
        venue_name=venue.get("name"),
        child_name=child.get("full_name") or child.get("first_name"),
        status=BookingStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        total_amount=total_amount,
        currency=currency,
        payment_channel=payload.payment_channel,
        card_amount=payload.card_amount,
        activity_date=payload.activity_date,
        start_time=payload.start_time,
        end_time=end_time,
        sessions_total=payload.sessions_total,
        session_interval_days=int(activity.get("session_interval_days", 7)),
        notes=payload.notes,
        special_requirements=payload.special_requirements,
        emergency_contact=payload.emergency_contact,
    )


def creation_events(booking: Booking) -> list[BookingEvent]:
    return [
        BookingEvent(
            name=EventName.BOOKING_CREATED,
            subject_id=booking.id,
            payload={"activity_id": str(booking.activity_id), "child_id": str(booking.child_id)},
        )
    ]


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


async def _execute_cancellation(
    booking: Booking,
    reason: str,
    eligibility: CancellationEligibility,
    source: str,
    current_user: CurrentUser,
    payments_client: PaymentsClient,
    notifications_client: NotificationsClient,
) -> CancellationResult:
    """
    Carry out an evaluated cancellation.

    The cash refund must be confirmed by payments-ms before anything is
    written; a failed refund leaves the booking untouched.
    """
    if not eligibility.eligible:
        raise HTTPException(
            status_code=422,
            detail={
                "message": eligibility.reason,
                "code": "PolicyDenied",
                "eligibility": jsonable_encoder(eligibility),
            },
        )

    now = _now()
    outcome = state_machine.cancel(booking, reason, eligibility, now)

    if eligibility.refund_amount > 0:
        refunded = await payments_client.refund_booking(
            booking.id, eligibility.refund_amount, booking.currency, current_user
        )
        if not refunded:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Refund could not be confirmed by the payment processor",
            )

    try:
        saved, credit_id = await booking_crud.save_cancellation(
            booking, outcome.booking, eligibility.credit_amount, source, now
        )
    except Exception:
        if eligibility.refund_amount > 0:
            logger.error(
                "Refund issued but cancellation not saved: booking_id={} refund={}",
                booking.id,
                eligibility.refund_amount,
            )
        raise
    logger.info(
        "Booking cancelled: booking_id={} source={} refund={} credit={} fee={}",
        booking.id,
        source,
        eligibility.refund_amount,
        eligibility.credit_amount,
        eligibility.admin_fee,
    )
    await notifications_client.publish(*outcome.events)
    return CancellationResult(booking=saved, eligibility=eligibility, wallet_credit_id=credit_id)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/", response_model=BookingDetail, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    current_user: CurrentUser = Depends(can_write_booking),
    venues_client: VenuesClient = Depends(get_venues_client),
    children_client: ChildrenClient = Depends(get_children_client),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> BookingDetail:
    booking = await book_activity(payload, current_user, venues_client, children_client)
    await notifications_client.publish(*creation_events(booking))
    return to_detail(booking)


@router.post("/complete-due", response_model=CompletionSweepResult)
async def complete_due_bookings(
    _: CurrentUser = Depends(can_run_sweep),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> CompletionSweepResult:
    """Scheduled sweep: confirmed bookings whose last session ended become completed."""
    now = _now()
    completed: list[UUID] = []
    for booking in await booking_crud.list_due_for_completion(now):
        try:
            transition = state_machine.complete(booking, now)
            await booking_crud.save_transition(booking, transition.booking)
        except InvalidTransition:
            # Changed since it was listed (cancelled meanwhile, say); next sweep re-checks.
            logger.warning("Skipping completion of booking {}", booking.id)
            continue
        await notifications_client.publish(*transition.events)
        completed.append(booking.id)
    logger.info("Completion sweep finished: completed={}", len(completed))
    return CompletionSweepResult(completed=completed)


@router.get("/{booking_id}", response_model=BookingDetail)
async def get_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_read_booking),
) -> BookingDetail:
    is_manager = BookingScope.MANAGE in current_user.scopes
    is_reader = BookingScope.READ in current_user.scopes

    if _is_admin_reader(current_user):
        booking = await booking_crud.get_booking(booking_id)
    elif is_manager and not is_reader:
        booking = await booking_crud.get_booking(booking_id, venue_owner_id=current_user.id)
    else:
        booking = await booking_crud.get_booking(booking_id, parent_id=current_user.id)

    if not booking:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return to_detail(booking)


@router.get("/{booking_id}/cancellation", response_model=CancellationEligibility)
async def preview_cancellation(
    booking_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    venues_client: VenuesClient = Depends(get_venues_client),
) -> CancellationEligibility:
    """What cancelling right now would return, without cancelling."""
    booking = await _load(booking_id)
    _assert_booker(booking, current_user, BookingScope.CANCEL)
    venue = await venues_client.get_venue(booking.venue_id, current_user)
    return evaluate_cancellation(booking, _now(), CancellationPolicy.for_venue(venue))


@router.post("/{booking_id}/cancel", response_model=CancellationResult)
async def cancel_booking(
    booking_id: UUID,
    payload: CancelRequest,
    current_user: CurrentUser = Depends(get_current_user),
    venues_client: VenuesClient = Depends(get_venues_client),
    payments_client: PaymentsClient = Depends(get_payments_client),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> CancellationResult:
    booking = await _load(booking_id)
    _assert_booker(booking, current_user, BookingScope.CANCEL)
    # Terminal bookings are rejected before any money is looked at.
    state_machine.assert_allowed(booking, state_machine.Action.CANCEL)

    venue = await venues_client.get_venue(booking.venue_id, current_user)
    eligibility = evaluate_cancellation(booking, _now(), CancellationPolicy.for_venue(venue))
    return await _execute_cancellation(
        booking,
        payload.reason,
        eligibility,
        "cancellation",
        current_user,
        payments_client,
        notifications_client,
    )


@router.post("/{booking_id}/provider-cancel", response_model=CancellationResult)
async def provider_cancel_booking(
    booking_id: UUID,
    payload: ProviderCancelRequest,
    current_user: CurrentUser = Depends(get_current_user),
    payments_client: PaymentsClient = Depends(get_payments_client),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> CancellationResult:
    """The venue cancels: no admin fee and no cancellation window."""
    booking = await _load(booking_id)
    _assert_venue_owner(booking, current_user)
    state_machine.assert_allowed(booking, state_machine.Action.CANCEL)

    eligibility = evaluate_provider_cancellation(booking, _now(), payload.refund_method)
    return await _execute_cancellation(
        booking,
        payload.reason,
        eligibility,
        "provider_cancellation",
        current_user,
        payments_client,
        notifications_client,
    )


@router.post("/{booking_id}/payment/confirm", response_model=BookingDetail)
async def confirm_payment(
    booking_id: UUID,
    _: CurrentUser = Depends(can_report_payment),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> BookingDetail:
    booking = await _load(booking_id)
    transition = state_machine.confirm(booking, _now())
    saved = await booking_crud.save_transition(booking, transition.booking)
    await notifications_client.publish(*transition.events)
    return to_detail(saved)


@router.post("/{booking_id}/payment/failed", response_model=BookingDetail)
async def report_payment_failed(
    booking_id: UUID,
    _: CurrentUser = Depends(can_report_payment),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> BookingDetail:
    booking = await _load(booking_id)
    transition = state_machine.mark_payment_failed(booking, _now())
    saved = await booking_crud.save_transition(booking, transition.booking)
    await notifications_client.publish(*transition.events)
    return to_detail(saved)


@router.post("/{booking_id}/reschedule", response_model=BookingDetail)
async def reschedule_booking(
    booking_id: UUID,
    payload: RescheduleRequest,
    current_user: CurrentUser = Depends(get_current_user),
    venues_client: VenuesClient = Depends(get_venues_client),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> BookingDetail:
    booking = await _load(booking_id)
    _assert_booker(booking, current_user, BookingScope.AMEND)
    transition = state_machine.reschedule(
        booking, payload.activity_date, payload.start_time, payload.end_time, _now()
    )

    remaining = await venues_client.get_remaining_capacity(
        booking.activity_id, payload.activity_date, payload.start_time, current_user
    )
    if remaining is not None and remaining <= 0:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="No places left in the requested slot",
        )
    unavailabilities = await venues_client.get_unavailabilities(booking.venue_id, current_user)

    saved = await booking_crud.reschedule_booking(booking, transition.booking, unavailabilities)
    await notifications_client.publish(*transition.events)
    return to_detail(saved)


@router.patch("/{booking_id}", response_model=BookingDetail)
async def amend_booking(
    booking_id: UUID,
    payload: BookingAmend,
    current_user: CurrentUser = Depends(get_current_user),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> BookingDetail:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(
            status_code=422,
            detail="Nothing to amend",
        )
    booking = await _load(booking_id)
    _assert_booker(booking, current_user, BookingScope.AMEND)
    transition = state_machine.amend(booking, changes, _now())
    saved = await booking_crud.save_transition(booking, transition.booking)
    await notifications_client.publish(*transition.events)
    return to_detail(saved)


@router.delete(
    "/{booking_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(can_admin_delete_booking)],
)
async def delete_booking(booking_id: UUID) -> None:
    deleted = await booking_crud.delete_booking(booking_id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
