"""Booking lifecycle: creation, approval, rejection, cancellation and updates.

Every operation that claims a slot runs its conflict check and its write in
one transaction while holding the room's single-writer lock and a row lock
on the room, so two requests for the same slot can never both pass the check.
Statuses move only along the edges listed in ``EVENT_SOURCES``; anything else
raises :class:`InvalidTransition` without writing.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, time
from decimal import Decimal
from typing import Callable, Dict, FrozenSet, Iterator, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import Settings
from .conflicts import ConflictResolver, validate_interval
from .database import store_errors
from .derived import booking_start, effective_status, total_cost
from .errors import Conflict, Forbidden, InvalidTransition, NotFound, ValidationError
from .locks import RoomLocks
from .models import Booking, BookingStatus, Room
from .references import generate_reference, unique_reference
from .repositories import Repositories
from .schemas import BookingCreate, BookingUpdate, Principal

logger = logging.getLogger(__name__)

S = BookingStatus

EVENT_SOURCES: Dict[str, FrozenSet[BookingStatus]] = {
    "approve": frozenset({S.PENDING_APPROVAL}),
    "reject": frozenset({S.PENDING_APPROVAL}),
    "update": frozenset({S.APPROVED}),
}

CANCEL_SOURCES: Dict[str, FrozenSet[BookingStatus]] = {
    "strict": frozenset({S.PENDING_APPROVAL}),
    "lenient": frozenset({S.PENDING_APPROVAL, S.APPROVED}),
}


def assert_transition(current: BookingStatus, event: str, allowed: FrozenSet[BookingStatus]) -> None:
    if current not in allowed:
        expected = ", ".join(sorted(status.value for status in allowed))
        raise InvalidTransition(
            f"Cannot {event} a booking that is {current.value} (allowed from: {expected})",
            current=current.value,
            target=event,
        )


def initial_status(room: Room) -> BookingStatus:
    return S.PENDING_APPROVAL if room.requires_approval else S.APPROVED


class BookingService:
    def __init__(
        self,
        repos: Repositories,
        settings: Settings,
        locks: Optional[RoomLocks] = None,
        clock: Callable[[], datetime] = datetime.now,
        reference_factory: Callable[[datetime], str] = generate_reference,
    ) -> None:
        self.repos = repos
        self.settings = settings
        self.resolver = ConflictResolver(repos.bookings)
        self.locks = locks or RoomLocks(timeout=settings.booking_lock_timeout)
        self.clock = clock
        self._reference_factory = reference_factory

    @contextmanager
    def _atomic(self, db: Session) -> Iterator[None]:
        """Commit on success, roll back on any failure."""
        try:
            with store_errors():
                yield
                db.commit()
        except BaseException:
            db.rollback()
            raise

    # -- lookups

    def _booking(self, db: Session, booking_id: int) -> Booking:
        booking = self.repos.bookings.get(db, booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        return booking

    def _bookable_room(self, db: Session, room_id: int, lock: bool = False) -> Room:
        getter = self.repos.rooms.get_for_update if lock else self.repos.rooms.get
        room = getter(db, room_id)
        if room is None or not room.is_available:
            raise NotFound("Room not found or not available")
        return room

    def get_for(self, db: Session, principal: Principal, booking_id: int) -> Booking:
        with store_errors():
            booking = self._booking(db, booking_id)
        if principal.kind == "visitor" and booking.visitor_id != principal.id:
            raise Forbidden("Booking belongs to another visitor")
        return booking

    def _ensure_future(self, booking_date: date, start: time) -> None:
        if datetime.combine(booking_date, start) <= self.clock():
            raise ValidationError("Booking must start in the future")

    # -- quoting

    def quote(self, db: Session, request: BookingCreate) -> tuple[Room, Decimal]:
        """Validate a prospective booking without reserving anything."""
        validate_interval(request.start_time, request.end_time)
        self._ensure_future(request.booking_date, request.start_time)
        with store_errors():
            room = self._bookable_room(db, request.room_id)
            self.resolver.ensure_free(db, room.id, request.booking_date, request.start_time, request.end_time)
        return room, total_cost(request.start_time, request.end_time, room.hourly_rate)

    # -- transitions

    def create(
        self,
        db: Session,
        principal: Principal,
        request: BookingCreate,
        *,
        reference: Optional[str] = None,
        stripe_session_id: Optional[str] = None,
        cost: Optional[Decimal] = None,
    ) -> Booking:
        if principal.kind != "visitor":
            raise Forbidden("Only visitors can create bookings")
        validate_interval(request.start_time, request.end_time)
        if stripe_session_id is None:
            self._ensure_future(request.booking_date, request.start_time)

        try:
            with self.locks.hold(request.room_id), self._atomic(db):
                if stripe_session_id is not None:
                    existing = self.repos.bookings.get_by_session(db, stripe_session_id)
                    if existing is not None:
                        logger.info("Session %s already produced booking %s", stripe_session_id, existing.booking_reference)
                        return existing

                room = self._bookable_room(db, request.room_id, lock=True)
                self.resolver.ensure_free(db, room.id, request.booking_date, request.start_time, request.end_time)
                if cost is None:
                    cost = total_cost(request.start_time, request.end_time, room.hourly_rate)
                if self.settings.require_payment and stripe_session_id is None and cost > 0:
                    raise ValidationError("Payment is required; start a checkout session instead")

                now = self.clock()
                if reference is None or self.repos.bookings.reference_exists(db, reference):
                    reference = unique_reference(db, self.repos.bookings, now, self._reference_factory)

                booking = self.repos.bookings.insert(
                    db,
                    {
                        **request.model_dump(),
                        "visitor_id": principal.id,
                        "booking_reference": reference,
                        "status": initial_status(room),
                        "total_cost": cost,
                        "stripe_session_id": stripe_session_id,
                        "payment_date": now if stripe_session_id else None,
                    },
                )
        except IntegrityError as exc:
            if stripe_session_id is not None:
                existing = self.repos.bookings.get_by_session(db, stripe_session_id)
                if existing is not None:
                    return existing
            raise Conflict("Booking reference or payment session already in use") from exc

        logger.info(
            "Booking %s created for room %s on %s %s-%s as %s",
            booking.booking_reference, booking.room_id, booking.booking_date,
            booking.start_time, booking.end_time, booking.status.value,
        )
        return booking

    def approve(self, db: Session, principal: Principal, booking_id: int) -> Booking:
        return self._decide(db, principal, booking_id, "approve", S.APPROVED)

    def reject(self, db: Session, principal: Principal, booking_id: int, reason: Optional[str] = None) -> Booking:
        return self._decide(db, principal, booking_id, "reject", S.REJECTED, cancellation_reason=reason)

    def _decide(self, db: Session, principal: Principal, booking_id: int, event: str, target: BookingStatus, **fields) -> Booking:
        if principal.kind != "admin":
            raise Forbidden("Admin access required")
        with store_errors():
            room_id = self._booking(db, booking_id).room_id
        with self.locks.hold(room_id), self._atomic(db):
            booking = self._booking(db, booking_id)
            db.refresh(booking, with_for_update=True)
            assert_transition(effective_status(booking, self.clock()), event, EVENT_SOURCES[event])
            booking = self.repos.bookings.update_status(
                db, booking.id, target, approved_by=principal.id, approved_at=self.clock(), **fields
            )
        logger.info("Booking %s %s by admin %s", booking.booking_reference, target.value, principal.id)
        return booking

    def cancel(self, db: Session, principal: Principal, booking_id: int, reason: Optional[str] = None) -> Booking:
        if principal.kind != "visitor":
            raise Forbidden("Only the booking's visitor can cancel it")
        booking = self.get_for(db, principal, booking_id)
        with self.locks.hold(booking.room_id), self._atomic(db):
            db.refresh(booking, with_for_update=True)
            now = self.clock()
            assert_transition(effective_status(booking, now), "cancel", CANCEL_SOURCES[self.settings.cancel_policy])
            if booking_start(booking) <= now:
                raise InvalidTransition("Cannot cancel a booking that has already started", current=booking.status.value, target="cancel")
            booking = self.repos.bookings.update_status(
                db, booking.id, S.CANCELLED, cancellation_reason=reason or "Cancelled by visitor"
            )
        logger.info("Booking %s cancelled by visitor %s", booking.booking_reference, principal.id)
        return booking

    def update(self, db: Session, principal: Principal, booking_id: int, changes: BookingUpdate) -> Booking:
        if principal.kind != "visitor":
            raise Forbidden("Only the booking's visitor can update it")
        booking = self.get_for(db, principal, booking_id)
        data = changes.model_dump(exclude_unset=True, exclude_none=True)
        room_id = data.get("room_id", booking.room_id)

        with self.locks.hold(booking.room_id, room_id), self._atomic(db):
            db.refresh(booking, with_for_update=True)
            now = self.clock()
            assert_transition(effective_status(booking, now), "update", EVENT_SOURCES["update"])

            booking_date = data.get("booking_date", booking.booking_date)
            start = data.get("start_time", booking.start_time)
            end = data.get("end_time", booking.end_time)
            slot_changed = (room_id, booking_date, start, end) != (
                booking.room_id, booking.booking_date, booking.start_time, booking.end_time
            )
            if slot_changed:
                validate_interval(start, end)
                self._ensure_future(booking_date, start)
                room = self._bookable_room(db, room_id, lock=True)
                self.resolver.ensure_free(db, room.id, booking_date, start, end, exclude_booking_id=booking.id)
                data["total_cost"] = total_cost(start, end, room.hourly_rate)

            booking = self.repos.bookings.update_status(db, booking.id, booking.status, **data)
        logger.info("Booking %s updated by visitor %s (slot changed: %s)", booking.booking_reference, principal.id, slot_changed)
        return booking
