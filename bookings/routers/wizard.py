from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends, status
from loguru import logger
from pydantic import BaseModel

from bookings import cache, wizard
from bookings.deps import (
    ChildrenClient,
    CurrentUser,
    NotificationsClient,
    VenuesClient,
    can_write_booking,
    get_children_client,
    get_notifications_client,
    get_venues_client,
)
from bookings.errors import NotFound
from bookings.events import BookingEvent, EventName
from bookings.routers.booking import book_activity, creation_events, to_detail
from bookings.schemas import BookingCreate, BookingDetail
from bookings.wizard import WizardState

router = APIRouter(prefix="/wizard", tags=["wizard"])


class WizardSubmission(BaseModel):
    wizard: WizardState
    booking: BookingDetail | None = None  # absent when validation failed


async def _load_owned(wizard_id: UUID, current_user: CurrentUser) -> WizardState:
    state = await cache.load_wizard(wizard_id)
    # Someone else's wizard is reported exactly like an expired one.
    if state is None or state.owner_id != current_user.id:
        raise NotFound("Booking wizard not found or expired", wizard_id=str(wizard_id))
    return state


def _step_reached(state: WizardState) -> BookingEvent:
    return BookingEvent(
        name=EventName.WIZARD_STEP_REACHED,
        subject_id=state.id,
        payload={
            "flow": state.flow,
            "step": state.current_step.key,
            "index": state.current_step_index,
        },
    )


async def _save_moved(
    before: WizardState,
    after: WizardState,
    notifications_client: NotificationsClient,
) -> WizardState:
    await cache.save_wizard(after)
    if after.current_step_index != before.current_step_index:
        await notifications_client.publish(_step_reached(after))
    return after


@router.post("/{flow}", response_model=WizardState, status_code=status.HTTP_201_CREATED)
async def start_wizard(
    flow: str,
    selections: dict[str, Any] | None = Body(default=None),
    current_user: CurrentUser = Depends(can_write_booking),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> WizardState:
    """Open a booking flow. The widget passes the activity it was opened from."""
    state = wizard.start(flow, selections, owner_id=current_user.id)
    await cache.save_wizard(state)
    await notifications_client.publish(_step_reached(state))
    logger.debug("Wizard started: wizard_id={} flow={}", state.id, flow)
    return state


@router.get("/{wizard_id}", response_model=WizardState)
async def get_wizard(
    wizard_id: UUID,
    current_user: CurrentUser = Depends(can_write_booking),
) -> WizardState:
    return await _load_owned(wizard_id, current_user)


@router.patch("/{wizard_id}", response_model=WizardState)
async def update_wizard(
    wizard_id: UUID,
    changes: dict[str, Any] = Body(...),
    current_user: CurrentUser = Depends(can_write_booking),
) -> WizardState:
    state = wizard.update(await _load_owned(wizard_id, current_user), changes)
    await cache.save_wizard(state)
    return state


@router.post("/{wizard_id}/next", response_model=WizardState)
async def next_step(
    wizard_id: UUID,
    current_user: CurrentUser = Depends(can_write_booking),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> WizardState:
    """Validate the current step and advance. Field errors come back on the state."""
    before = await _load_owned(wizard_id, current_user)
    return await _save_moved(before, wizard.go_next(before), notifications_client)


@router.post("/{wizard_id}/previous", response_model=WizardState)
async def previous_step(
    wizard_id: UUID,
    current_user: CurrentUser = Depends(can_write_booking),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> WizardState:
    before = await _load_owned(wizard_id, current_user)
    return await _save_moved(before, wizard.go_previous(before), notifications_client)


@router.post("/{wizard_id}/jump/{index}", response_model=WizardState)
async def jump_to_step(
    wizard_id: UUID,
    index: int,
    current_user: CurrentUser = Depends(can_write_booking),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> WizardState:
    before = await _load_owned(wizard_id, current_user)
    return await _save_moved(before, wizard.jump_to(before, index), notifications_client)


@router.post("/{wizard_id}/submit", response_model=WizardSubmission)
async def submit_wizard(
    wizard_id: UUID,
    current_user: CurrentUser = Depends(can_write_booking),
    venues_client: VenuesClient = Depends(get_venues_client),
    children_client: ChildrenClient = Depends(get_children_client),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> WizardSubmission:
    """
    Validate every answer and create the booking.

    The snapshot is only discarded once the booking exists. Any failure while
    creating it leaves the stored pre-submit state in place so the guardian
    can retry.
    """
    before = await _load_owned(wizard_id, current_user)
    state = wizard.submit(before)
    if not state.submitted:
        await cache.save_wizard(state)
        return WizardSubmission(wizard=state)

    selections = wizard.submission(state)
    payload = BookingCreate(
        activity_id=selections.activity_id,
        child_id=selections.child_id,
        activity_date=selections.activity_date,
        start_time=selections.start_time,
        end_time=selections.end_time,
        sessions_total=selections.sessions_total,
        payment_channel=selections.payment_channel,
        card_amount=selections.card_amount,
        notes=selections.notes,
        special_requirements=selections.special_requirements,
        emergency_contact=selections.emergency_contact,
    )
    booking = await book_activity(payload, current_user, venues_client, children_client)

    await cache.discard_wizard(wizard_id)
    await notifications_client.publish(
        *creation_events(booking),
        BookingEvent(
            name=EventName.WIZARD_SUBMITTED,
            subject_id=state.id,
            payload={"flow": state.flow, "booking_id": str(booking.id)},
        ),
    )
    logger.info("Wizard submitted: wizard_id={} booking_id={}", state.id, booking.id)
    return WizardSubmission(wizard=state, booking=to_detail(booking))
