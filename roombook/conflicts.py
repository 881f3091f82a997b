"""Booking conflict detection.

Every booking occupies the half-open interval ``[start_time, end_time)`` on its
room and date. Two intervals overlap exactly when each one starts before the
other ends, so a booking ending at 10:00 never clashes with one starting at
10:00.
"""
from __future__ import annotations

import logging
from datetime import date, time
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from .errors import Conflict, ValidationError
from .models import LIVE_STATUSES, Booking
from .repositories import BookingRepository

logger = logging.getLogger(__name__)


def intervals_overlap(start: time, end: time, other_start: time, other_end: time) -> bool:
    return start < other_end and end > other_start


def validate_interval(start: time, end: time) -> None:
    if start >= end:
        raise ValidationError("End time must be after start time")


def overlapping(bookings: Iterable[Booking], start: time, end: time) -> List[Booking]:
    """Live bookings from ``bookings`` whose interval overlaps ``[start, end)``."""
    return [
        booking
        for booking in bookings
        if booking.status in LIVE_STATUSES
        and intervals_overlap(start, end, booking.start_time, booking.end_time)
    ]


def describe(booking: Booking) -> Dict[str, Any]:
    return {
        "id": booking.id,
        "start_time": booking.start_time.isoformat(),
        "end_time": booking.end_time.isoformat(),
        "status": booking.status.value,
    }


class ConflictResolver:
    """Read-only overlap checks against the live bookings of a room."""

    def __init__(self, bookings: BookingRepository) -> None:
        self._bookings = bookings

    def find_conflicts(
        self,
        db: Session,
        room_id: int,
        booking_date: date,
        start: time,
        end: time,
        exclude_booking_id: Optional[int] = None,
    ) -> List[Booking]:
        validate_interval(start, end)
        candidates = self._bookings.find_conflicts(db, room_id, booking_date, start, end, exclude_booking_id)
        return overlapping(candidates, start, end)

    def has_conflict(
        self,
        db: Session,
        room_id: int,
        booking_date: date,
        start: time,
        end: time,
        exclude_booking_id: Optional[int] = None,
    ) -> bool:
        return bool(self.find_conflicts(db, room_id, booking_date, start, end, exclude_booking_id))

    def ensure_free(
        self,
        db: Session,
        room_id: int,
        booking_date: date,
        start: time,
        end: time,
        exclude_booking_id: Optional[int] = None,
    ) -> None:
        conflicts = self.find_conflicts(db, room_id, booking_date, start, end, exclude_booking_id)
        if conflicts:
            logger.info(
                "Rejected %s-%s on room %s (%s): %d conflicting booking(s)",
                start, end, room_id, booking_date, len(conflicts),
            )
            raise Conflict(
                "Room is already booked for the selected time slot",
                conflicts=[describe(booking) for booking in conflicts],
            )
