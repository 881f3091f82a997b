"""Values computed from entities at read time."""
from __future__ import annotations

from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Union

from .models import Booking, BookingStatus, Room, RoomAvailability

CENTS = Decimal("0.01")


def full_name(person) -> str:
    return f"{person.first_name} {person.last_name}".strip()


def full_location(room: Room) -> str:
    return ", ".join(part for part in (room.building, room.location) if part)


def booking_start(booking: Booking) -> datetime:
    return datetime.combine(booking.booking_date, booking.start_time)


def booking_end(booking: Booking) -> datetime:
    return datetime.combine(booking.booking_date, booking.end_time)


def is_past(booking: Booking, now: datetime) -> bool:
    return booking_end(booking) <= now


def effective_status(booking: Booking, now: datetime) -> BookingStatus:
    """Stored status, except that a live booking whose end has passed reads as completed."""
    if booking.status in (BookingStatus.PENDING_APPROVAL, BookingStatus.APPROVED) and is_past(booking, now):
        return BookingStatus.COMPLETED
    return booking.status


def duration_hours(start: time, end: time) -> Decimal:
    seconds = (datetime.combine(date.min, end) - datetime.combine(date.min, start)).total_seconds()
    return Decimal(str(seconds)) / Decimal(3600)


def total_cost(start: time, end: time, hourly_rate: Union[Decimal, float, str]) -> Decimal:
    cost = duration_hours(start, end) * Decimal(str(hourly_rate))
    return cost.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def within_open_hours(windows: Iterable[RoomAvailability], start: time, end: time) -> Optional[bool]:
    """Whether ``[start, end)`` fits an open window; ``None`` when no windows are configured."""
    windows = list(windows)
    if not windows:
        return None
    return any(w.is_available and w.start_time <= start and end <= w.end_time for w in windows)
