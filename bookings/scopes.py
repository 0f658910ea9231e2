from enum import StrEnum


class BookingScope(StrEnum):
    # Guardian scopes
    READ = "bookings:read"  # view own bookings
    WRITE = "bookings:write"  # book an activity for a child
    CANCEL = "bookings:cancel"  # cancel own booking
    AMEND = "bookings:amend"  # amend or reschedule own booking

    # Venue owner scopes
    MANAGE = "bookings:manage"  # cancel (as provider) bookings at own venue

    # Service scopes
    PAYMENTS = "bookings:payments"  # payment processor callbacks
    SWEEP = "bookings:sweep"  # scheduled completion sweep

    # Admin scopes
    ADMIN = "admin:bookings"
    ADMIN_READ = "admin:bookings:read"
    ADMIN_WRITE = "admin:bookings:write"
    ADMIN_DELETE = "admin:bookings:delete"


BOOKING_SCOPE_DESCRIPTIONS: dict[str, str] = {
    BookingScope.READ: "View your own bookings.",
    BookingScope.WRITE: "Book an activity for one of your children.",
    BookingScope.CANCEL: "Cancel your own pending or confirmed booking.",
    BookingScope.AMEND: "Amend or reschedule your own booking.",
    BookingScope.MANAGE: "Cancel bookings at your venue on behalf of the provider.",
    BookingScope.PAYMENTS: "Report payment outcomes for bookings (payment service).",
    BookingScope.SWEEP: "Mark finished bookings as completed (scheduler).",
    BookingScope.ADMIN_READ: "Read any booking regardless of owner (admin).",
    BookingScope.ADMIN_WRITE: "Modify any booking (admin).",
    BookingScope.ADMIN_DELETE: "Hard-delete any booking (admin).",
}
