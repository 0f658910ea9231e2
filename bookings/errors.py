"""
Error taxonomy for the booking core.

Business-rule denials (a cancellation outside the window, say) are never
raised: they come back as values with ``eligible=False`` and a reason.
Everything here aborts the current operation without partial mutation.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class BookingError(Exception):
    """Base class for every error the booking core raises."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, code: str | None = None, **details: Any) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details
        super().__init__(message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={"message": self.message, "code": self.code, **self.details},
        )


class InvalidInput(BookingError):
    """Malformed arguments to a pure function. Callers should never trigger this."""

    status_code = 422


class InvalidTransition(BookingError):
    """The requested move is not legal from the current state."""

    status_code = status.HTTP_409_CONFLICT


class DataIntegrityError(BookingError):
    """A referenced entity is missing or inconsistent. Fatal for the request."""


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
