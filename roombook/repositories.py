"""Repository per entity.

Repositories hold no session state: each call receives the caller's
``Session`` so that a service can run several repository calls inside a
single transaction. One instance of each is built at startup and injected
through :class:`Repositories`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy.orm import Query, Session

from .filters import AllOf, AnyOf, Eq, FilterSpec, Gt, In, Le, Lt, Ne, NotIn, to_clauses
from .models import (
    LIVE_STATUSES,
    Admin,
    Booking,
    BookingStatus,
    DayOfWeek,
    Room,
    RoomAvailability,
    Visitor,
)

T = TypeVar("T")


def paginate(query: Query, page: int, limit: int) -> Tuple[List[Any], int]:
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, total


class _Repository:
    model: type

    def get(self, db: Session, entity_id: int):
        return db.get(self.model, entity_id)

    def add(self, db: Session, entity: T) -> T:
        db.add(entity)
        db.flush()
        return entity

    def query(self, db: Session, spec: Optional[FilterSpec] = None) -> Query:
        q = db.query(self.model)
        if spec:
            q = q.filter(*to_clauses(self.model, spec))
        return q

    def count(self, db: Session, spec: Optional[FilterSpec] = None) -> int:
        return self.query(db, spec).count()


class AdminRepository(_Repository):
    model = Admin

    def get_by_email(self, db: Session, email: str) -> Optional[Admin]:
        return db.query(Admin).filter(Admin.email == email).first()

    def get_by_username(self, db: Session, username: str) -> Optional[Admin]:
        return db.query(Admin).filter(Admin.username == username).first()


class VisitorRepository(_Repository):
    model = Visitor

    def get_by_email(self, db: Session, email: str) -> Optional[Visitor]:
        return db.query(Visitor).filter(Visitor.email == email).first()

    def get_by_student_id(self, db: Session, student_id: str) -> Optional[Visitor]:
        return db.query(Visitor).filter(Visitor.student_id == student_id).first()

    def list(self, db: Session, spec: FilterSpec, page: int, limit: int) -> Tuple[List[Visitor], int]:
        return paginate(self.query(db, spec).order_by(Visitor.id), page, limit)


class RoomRepository(_Repository):
    model = Room

    def get_for_update(self, db: Session, room_id: int) -> Optional[Room]:
        """Load the room holding a row lock until the transaction ends."""
        return db.query(Room).filter(Room.id == room_id).with_for_update().first()

    def get_by_number(self, db: Session, room_number: str) -> Optional[Room]:
        return db.query(Room).filter(Room.room_number == room_number).first()

    def list(
        self,
        db: Session,
        spec: FilterSpec,
        page: int,
        limit: int,
        exclude_ids: Sequence[int] = (),
    ) -> Tuple[List[Room], int]:
        q = self.query(db, spec)
        if exclude_ids:
            q = q.filter(*to_clauses(Room, [NotIn("id", exclude_ids)]))
        return paginate(q.order_by(Room.id), page, limit)

    def has_bookings(self, db: Session, room_id: int) -> bool:
        q = db.query(Booking.id).filter(Booking.room_id == room_id)
        return db.query(q.exists()).scalar()

    def delete(self, db: Session, room: Room) -> None:
        db.delete(room)
        db.flush()

    def windows(self, db: Session, room_id: int, day: Optional[DayOfWeek] = None) -> List[RoomAvailability]:
        q = db.query(RoomAvailability).filter(RoomAvailability.room_id == room_id)
        if day is not None:
            q = q.filter(RoomAvailability.day_of_week == day)
        week = list(DayOfWeek)
        return sorted(q.all(), key=lambda window: (week.index(window.day_of_week), window.start_time))

    def replace_windows(self, db: Session, room: Room, windows: List[RoomAvailability]) -> List[RoomAvailability]:
        db.query(RoomAvailability).filter(RoomAvailability.room_id == room.id).delete()
        for window in windows:
            window.room_id = room.id
            db.add(window)
        db.flush()
        return self.windows(db, room.id)


def conflict_spec(
    room_id: int,
    booking_date: date,
    start: time,
    end: time,
    exclude_id: Optional[int] = None,
) -> FilterSpec:
    """Live bookings on the same room and date whose interval overlaps [start, end)."""
    spec = FilterSpec(
        [
            Eq("room_id", room_id),
            Eq("booking_date", booking_date),
            In("status", LIVE_STATUSES),
            Lt("start_time", end),
            Gt("end_time", start),
        ]
    )
    return spec.add_if(exclude_id, Ne("id", exclude_id))


def ended_by(now: datetime) -> AnyOf:
    today = now.date()
    return AnyOf([Lt("booking_date", today), AllOf([Eq("booking_date", today), Le("end_time", now.time())])])


def not_ended_by(now: datetime) -> AnyOf:
    today = now.date()
    return AnyOf([Gt("booking_date", today), AllOf([Eq("booking_date", today), Gt("end_time", now.time())])])


def status_predicates(status: BookingStatus, now: datetime) -> List[Any]:
    """Predicates matching bookings whose status, as read at ``now``, is ``status``."""
    awaiting_end = (BookingStatus.PENDING_APPROVAL, BookingStatus.APPROVED)
    if status == BookingStatus.COMPLETED:
        return [
            AnyOf([Eq("status", BookingStatus.COMPLETED), AllOf([In("status", awaiting_end), ended_by(now)])])
        ]
    if status in awaiting_end:
        return [Eq("status", status), not_ended_by(now)]
    return [Eq("status", status)]


class BookingRepository(_Repository):
    model = Booking

    def find_conflicts(
        self,
        db: Session,
        room_id: int,
        booking_date: date,
        start: time,
        end: time,
        exclude_id: Optional[int] = None,
    ) -> List[Booking]:
        spec = conflict_spec(room_id, booking_date, start, end, exclude_id)
        return self.query(db, spec).order_by(Booking.start_time).all()

    def booked_room_ids(self, db: Session, booking_date: date, start: time, end: time) -> List[int]:
        spec = FilterSpec(
            [
                Eq("booking_date", booking_date),
                In("status", LIVE_STATUSES),
                Lt("start_time", end),
                Gt("end_time", start),
            ]
        )
        rows = db.query(Booking.room_id).filter(*to_clauses(Booking, spec)).distinct().all()
        return [room_id for (room_id,) in rows]

    def insert(self, db: Session, data: Dict[str, Any]) -> Booking:
        return self.add(db, Booking(**data))

    def update_status(self, db: Session, booking_id: int, status: BookingStatus, **fields: Any) -> Booking:
        booking = db.get(Booking, booking_id)
        booking.status = status
        for name, value in fields.items():
            setattr(booking, name, value)
        db.flush()
        return booking

    def get_by_reference(self, db: Session, reference: str) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.booking_reference == reference).first()

    def get_by_session(self, db: Session, session_id: str) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.stripe_session_id == session_id).first()

    def reference_exists(self, db: Session, reference: str) -> bool:
        q = db.query(Booking.id).filter(Booking.booking_reference == reference)
        return db.query(q.exists()).scalar()

    def list(self, db: Session, spec: FilterSpec, page: int, limit: int) -> Tuple[List[Booking], int]:
        q = self.query(db, spec).order_by(Booking.booking_date.desc(), Booking.start_time.desc())
        return paginate(q, page, limit)


@dataclass
class Repositories:
    admins: AdminRepository = field(default_factory=AdminRepository)
    visitors: VisitorRepository = field(default_factory=VisitorRepository)
    rooms: RoomRepository = field(default_factory=RoomRepository)
    bookings: BookingRepository = field(default_factory=BookingRepository)
