import logging
from datetime import date, time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from roombook.auth import authenticate_visitor, get_password_hash, issue_token
from roombook.cache import SimpleTTLCache, room_key
from roombook.config import Settings
from roombook.conflicts import validate_interval
from roombook.database import get_db
from roombook.dependencies import (
    get_booking_service,
    get_repos,
    get_room_cache,
    get_settings_from_app,
    require_visitor,
)
from roombook.derived import within_open_hours
from roombook.errors import Conflict, NotFound, ValidationError
from roombook.filters import Eq, FilterSpec, Ge, Le, Search
from roombook.models import BookingStatus, DayOfWeek, Room, RoomType, Visitor
from roombook.rate_limit import limiter
from roombook.repositories import Repositories, status_predicates
from roombook.schemas import (
    AvailabilityCheck,
    AvailabilityWindow,
    BookingCreate,
    BookingRead,
    BookingUpdate,
    ConflictingBooking,
    LoginRequest,
    Page,
    Principal,
    ReasonRequest,
    RoomRead,
    RoomSchedule,
    VisitorAuth,
    VisitorCreate,
    VisitorPublic,
    VisitorUpdate,
)
from roombook.state_machine import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/visitor", tags=["visitor"])


def _available_room(db: Session, repos: Repositories, room_id: int) -> Room:
    room = repos.rooms.get(db, room_id)
    if room is None or not room.is_available:
        raise NotFound("Room not found or not available")
    return room


# Account


@router.post("/register", response_model=VisitorAuth, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def register(
    request: Request,
    visitor_in: VisitorCreate,
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
    settings: Settings = Depends(get_settings_from_app),
) -> VisitorAuth:
    if repos.visitors.get_by_email(db, visitor_in.email):
        raise Conflict("Visitor with this email already exists")
    if visitor_in.student_id and repos.visitors.get_by_student_id(db, visitor_in.student_id):
        raise Conflict("Visitor with this student ID already exists")
    visitor = Visitor(
        hashed_password=get_password_hash(visitor_in.password),
        **visitor_in.model_dump(exclude={"password"}),
    )
    repos.visitors.add(db, visitor)
    db.commit()
    logger.info("Visitor %s registered", visitor.id)
    return VisitorAuth(visitor=VisitorPublic.of(visitor), token=issue_token(settings, visitor))


@router.post("/login", response_model=VisitorAuth)
@limiter.limit("10/minute")
def login(
    request: Request,
    credentials: LoginRequest,
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
    settings: Settings = Depends(get_settings_from_app),
) -> VisitorAuth:
    visitor = authenticate_visitor(db, repos.visitors, credentials.email, credentials.password)
    if visitor is None:
        logger.info("Failed visitor login for %s", credentials.email)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if not visitor.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")
    return VisitorAuth(visitor=VisitorPublic.of(visitor), token=issue_token(settings, visitor))


@router.get("/profile", response_model=VisitorPublic)
def get_profile(
    principal: Principal = Depends(require_visitor),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
) -> VisitorPublic:
    return VisitorPublic.of(repos.visitors.get(db, principal.id))


@router.put("/profile", response_model=VisitorPublic)
def update_profile(
    changes: VisitorUpdate,
    principal: Principal = Depends(require_visitor),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
) -> VisitorPublic:
    visitor = repos.visitors.get(db, principal.id)
    for key, value in changes.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(visitor, key, value)
    db.commit()
    return VisitorPublic.of(visitor)


# Rooms


@router.get("/rooms", response_model=Page[RoomRead])
@limiter.limit("60/minute")
def search_rooms(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    room_type: Optional[RoomType] = None,
    capacity_min: Optional[int] = Query(None, ge=1),
    capacity_max: Optional[int] = Query(None, ge=1),
    booking_date: Optional[date] = Query(None, alias="date"),
    start_time: Optional[time] = None,
    end_time: Optional[time] = None,
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
) -> Page[RoomRead]:
    spec = (
        FilterSpec([Eq("is_available", True)])
        .add_if(search, Search(("room_name", "room_number", "location"), search or ""))
        .add_if(room_type, Eq("room_type", room_type))
        .add_if(capacity_min, Ge("capacity", capacity_min))
        .add_if(capacity_max, Le("capacity", capacity_max))
    )
    booked: list[int] = []
    if booking_date and start_time and end_time:
        validate_interval(start_time, end_time)
        booked = repos.bookings.booked_room_ids(db, booking_date, start_time, end_time)
    rooms, total = repos.rooms.list(db, spec, page, limit, exclude_ids=booked)
    return Page[RoomRead](items=[RoomRead.of(room) for room in rooms], page=page, limit=limit, total=total)


@router.get("/rooms/{room_id}", response_model=RoomRead)
def get_room(
    room_id: int,
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
    cache: SimpleTTLCache = Depends(get_room_cache),
) -> RoomRead:
    room = cache.get_or_load(room_key(room_id), lambda: RoomRead.of(_available_room(db, repos, room_id)))
    return room


@router.get("/rooms/{room_id}/availability", response_model=AvailabilityCheck)
@limiter.limit("60/minute")
def check_availability(
    request: Request,
    room_id: int,
    booking_date: date = Query(..., alias="date"),
    start_time: time = Query(...),
    end_time: time = Query(...),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
    bookings: BookingService = Depends(get_booking_service),
) -> AvailabilityCheck:
    room = _available_room(db, repos, room_id)
    conflicts = bookings.resolver.find_conflicts(db, room.id, booking_date, start_time, end_time)
    windows = repos.rooms.windows(db, room.id, DayOfWeek.for_date(booking_date))
    return AvailabilityCheck(
        room_id=room.id,
        booking_date=booking_date,
        start_time=start_time,
        end_time=end_time,
        is_available=not conflicts,
        within_open_hours=within_open_hours(windows, start_time, end_time),
        conflicting_bookings=[ConflictingBooking.model_validate(b) for b in conflicts],
    )


@router.get("/rooms/{room_id}/schedule", response_model=RoomSchedule)
def room_schedule(
    room_id: int,
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
) -> RoomSchedule:
    room = _available_room(db, repos, room_id)
    windows = repos.rooms.windows(db, room.id)
    return RoomSchedule(room_id=room.id, windows=[AvailabilityWindow.model_validate(w) for w in windows])


# Bookings


@router.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_booking(
    request: Request,
    booking_in: BookingCreate,
    principal: Principal = Depends(require_visitor),
    db: Session = Depends(get_db),
    bookings: BookingService = Depends(get_booking_service),
) -> BookingRead:
    booking = bookings.create(db, principal, booking_in)
    return BookingRead.of(booking, bookings.clock())


@router.get("/bookings", response_model=Page[BookingRead])
def list_my_bookings(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    principal: Principal = Depends(require_visitor),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
    bookings: BookingService = Depends(get_booking_service),
) -> Page[BookingRead]:
    now = bookings.clock()
    spec = FilterSpec([Eq("visitor_id", principal.id)])
    if status_filter is not None:
        spec.extend(status_predicates(status_filter, now))
    items, total = repos.bookings.list(db, spec, page, limit)
    return Page[BookingRead](items=[BookingRead.of(b, now) for b in items], page=page, limit=limit, total=total)


@router.get("/bookings/history", response_model=Page[BookingRead])
def booking_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(require_visitor),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
    bookings: BookingService = Depends(get_booking_service),
) -> Page[BookingRead]:
    now = bookings.clock()
    spec = FilterSpec([Eq("visitor_id", principal.id)]).extend(status_predicates(BookingStatus.COMPLETED, now))
    items, total = repos.bookings.list(db, spec, page, limit)
    return Page[BookingRead](items=[BookingRead.of(b, now) for b in items], page=page, limit=limit, total=total)


@router.get("/bookings/{booking_id}", response_model=BookingRead)
def get_booking(
    booking_id: int,
    principal: Principal = Depends(require_visitor),
    db: Session = Depends(get_db),
    bookings: BookingService = Depends(get_booking_service),
) -> BookingRead:
    return BookingRead.of(bookings.get_for(db, principal, booking_id), bookings.clock())


@router.put("/bookings/{booking_id}", response_model=BookingRead)
@limiter.limit("20/minute")
def update_booking(
    request: Request,
    booking_id: int,
    changes: BookingUpdate,
    principal: Principal = Depends(require_visitor),
    db: Session = Depends(get_db),
    bookings: BookingService = Depends(get_booking_service),
) -> BookingRead:
    if not changes.model_dump(exclude_unset=True, exclude_none=True):
        raise ValidationError("No changes supplied")
    booking = bookings.update(db, principal, booking_id, changes)
    return BookingRead.of(booking, bookings.clock())


@router.patch("/bookings/{booking_id}/cancel", response_model=BookingRead)
@limiter.limit("20/minute")
def cancel_booking(
    request: Request,
    booking_id: int,
    body: Optional[ReasonRequest] = None,
    principal: Principal = Depends(require_visitor),
    db: Session = Depends(get_db),
    bookings: BookingService = Depends(get_booking_service),
) -> BookingRead:
    booking = bookings.cancel(db, principal, booking_id, body.reason if body else None)
    return BookingRead.of(booking, bookings.clock())
