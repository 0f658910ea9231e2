"""
Test data builders. Defaults describe one guardian booking one weekly
Junior Football course at Riverside Sports Hall.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta
from uuid import UUID, uuid4

from bookings.deps import CurrentUser
from bookings.schemas import Booking
from bookings.scopes import BookingScope

# ---------------------------------------------------------------------------
# Fixed per test session so assertions can compare against them.
# ---------------------------------------------------------------------------

GUARDIAN_ID: UUID = uuid4()
VENUE_OWNER_ID: UUID = uuid4()
ADMIN_ID: UUID = uuid4()
OTHER_USER_ID: UUID = uuid4()

BOOKING_ID: UUID = uuid4()
VENUE_ID: UUID = uuid4()
ACTIVITY_ID: UUID = uuid4()
CHILD_ID: UUID = uuid4()

# First session of the default booking starts three days after NOW.
NOW = datetime(2026, 6, 1, 10, 0, 0, tzinfo=UTC)
SESSION_DATE = date(2026, 6, 4)
SESSION_START = time(10, 0)
SESSION_END = time(11, 0)


# ---------------------------------------------------------------------------
# User factories
# ---------------------------------------------------------------------------


def make_guardian(
    user_id: UUID = GUARDIAN_ID,
    scopes: list[str] | None = None,
) -> CurrentUser:
    """Guardian with read/write/cancel/amend booking scopes."""
    if scopes is None:
        scopes = [
            BookingScope.READ,
            BookingScope.WRITE,
            BookingScope.CANCEL,
            BookingScope.AMEND,
            "venues:read",
        ]
    return CurrentUser(id=user_id, username=f"guardian_{user_id}", scopes=scopes)


def make_venue_owner(
    user_id: UUID = VENUE_OWNER_ID,
    scopes: list[str] | None = None,
) -> CurrentUser:
    """Owner of VENUE_ID; MANAGE lets them cancel as the provider."""
    if scopes is None:
        scopes = [BookingScope.MANAGE, "venues:read"]
    return CurrentUser(id=user_id, username=f"owner_{user_id}", scopes=scopes)


def make_payments_service() -> CurrentUser:
    return CurrentUser(id=uuid4(), username="payments-ms", scopes=[BookingScope.PAYMENTS])


def make_scheduler() -> CurrentUser:
    return CurrentUser(id=uuid4(), username="scheduler", scopes=[BookingScope.SWEEP])


def make_admin() -> CurrentUser:
    admin_scopes = [s for s in BookingScope if s.value.startswith("admin:")]
    return CurrentUser(
        id=ADMIN_ID,
        username="admin",
        scopes=["admin:scopes", "venues:read", BookingScope.READ, *admin_scopes],
    )


# ---------------------------------------------------------------------------
# Bookings as the CRUD layer returns them
# ---------------------------------------------------------------------------


def booking_response(**overrides) -> dict:
    base = dict(
        id=str(BOOKING_ID),
        parent_id=str(GUARDIAN_ID),
        child_id=str(CHILD_ID),
        activity_id=str(ACTIVITY_ID),
        venue_id=str(VENUE_ID),
        venue_owner_id=str(VENUE_OWNER_ID),
        activity_name="Junior Football",
        venue_name="Riverside Sports Hall",
        child_name="Sam",
        status="confirmed",
        payment_status="paid",
        total_amount="100.00",
        currency="GBP",
        payment_channel="card",
        card_amount=None,
        activity_date=SESSION_DATE.isoformat(),
        start_time=SESSION_START.isoformat(),
        end_time=SESSION_END.isoformat(),
        sessions_total=1,
        session_interval_days=7,
        notes=None,
        special_requirements=None,
        emergency_contact=None,
        cancellation_reason=None,
        cancelled_at=None,
        updated_at=NOW.isoformat(),
    )
    return {**base, **overrides}


def booking_model(**overrides) -> Booking:
    """Booking snapshot — what the CRUD layer hands to the router."""
    return Booking(**booking_response(**overrides))


def course(
    total: str = "100.00",
    sessions_total: int = 10,
    sessions_used: int = 0,
    **overrides,
) -> Booking:
    """
    Weekly course positioned relative to NOW: ``sessions_used`` sessions have
    started and the next one begins three days after NOW.
    """
    first = SESSION_DATE - timedelta(weeks=sessions_used)
    return booking_model(
        total_amount=total,
        sessions_total=sessions_total,
        activity_date=first.isoformat(),
        **overrides,
    )


# ---------------------------------------------------------------------------
# Payloads served by venues-ms and users-ms
# ---------------------------------------------------------------------------


def venue_dict(**overrides) -> dict:
    """Minimal venues-ms venue representation used by VenuesClient mocks."""
    base = dict(
        id=str(VENUE_ID),
        owner_id=str(VENUE_OWNER_ID),
        name="Riverside Sports Hall",
        status="active",
    )
    return {**base, **overrides}


def activity_dict(**overrides) -> dict:
    base = dict(
        id=str(ACTIVITY_ID),
        venue_id=str(VENUE_ID),
        name="Junior Football",
        status="active",
        price="10.00",
        currency="GBP",
        duration_minutes=60,
        session_interval_days=7,
    )
    return {**base, **overrides}


def child_dict(**overrides) -> dict:
    """Minimal users-ms child representation used by ChildrenClient mocks."""
    base = dict(
        id=str(CHILD_ID),
        parent_id=str(GUARDIAN_ID),
        full_name="Sam Taylor",
        date_of_birth="2017-03-14",
    )
    return {**base, **overrides}


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


def booking_create_payload(**overrides) -> dict:
    base = dict(
        activity_id=str(ACTIVITY_ID),
        child_id=str(CHILD_ID),
        activity_date=SESSION_DATE.isoformat(),
        start_time=SESSION_START.isoformat(),
        end_time=SESSION_END.isoformat(),
        sessions_total=1,
        payment_channel="card",
        notes=None,
    )
    return {**base, **overrides}
