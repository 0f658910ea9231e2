"""Tests for the pure helpers in bookings/crud.py (no DB)."""

from __future__ import annotations

import pytest
from fastapi import HTTPException

from bookings.crud import _assert_slot_free, _overlaps_unavailabilities, _to_utc

from .factories import NOW, booking_model, course


def window(start: str, end: str) -> dict:
    return {"start_datetime": start, "end_datetime": end}


class TestOverlap:
    def test_naive_datetimes_treated_as_utc(self):
        assert _to_utc(NOW.replace(tzinfo=None)) == NOW

    def test_touching_windows_do_not_overlap(self):
        booking = booking_model()
        end = booking.starts_at.isoformat()
        assert not _overlaps_unavailabilities(
            booking.starts_at, booking.last_session_ends_at, [window("2026-06-04T08:00:00", end)]
        )


class TestAssertSlotFree:
    def test_free_slot(self):
        _assert_slot_free(booking_model(), [window("2026-06-05T00:00:00", "2026-06-06T00:00:00")])

    def test_single_session_conflict(self):
        with pytest.raises(HTTPException) as exc_info:
            _assert_slot_free(
                booking_model(), [window("2026-06-04T10:30:00+00:00", "2026-06-04T12:00:00+00:00")]
            )
        assert exc_info.value.status_code == 409

    def test_later_session_of_course_conflicts(self):
        # Third weekly session of a course starting 2026-06-04.
        booking = course(sessions_total=4)
        with pytest.raises(HTTPException):
            _assert_slot_free(booking, [window("2026-06-18T09:00:00", "2026-06-18T10:30:00")])

    def test_gap_between_sessions_is_free(self):
        booking = course(sessions_total=4)
        _assert_slot_free(booking, [window("2026-06-05T00:00:00", "2026-06-10T23:59:00")])
