"""Named events the core emits for notification and analytics consumers."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class EventName(StrEnum):
    BOOKING_CREATED = "booking.created"
    BOOKING_CONFIRMED = "booking.confirmed"
    BOOKING_PAYMENT_FAILED = "booking.payment_failed"
    BOOKING_CANCELLED = "booking.cancelled"
    BOOKING_RESCHEDULED = "booking.rescheduled"
    BOOKING_AMENDED = "booking.amended"
    BOOKING_COMPLETED = "booking.completed"
    WIZARD_STEP_REACHED = "wizard.step_reached"
    WIZARD_SUBMITTED = "wizard.submitted"


class BookingEvent(BaseModel):
    name: EventName
    subject_id: UUID  # booking id, or wizard id for wizard events
    payload: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)
