import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from roombook.auth import authenticate_admin, get_password_hash, issue_token
from roombook.cache import SimpleTTLCache, room_key
from roombook.config import Settings
from roombook.database import get_db
from roombook.dependencies import (
    get_booking_service,
    get_repos,
    get_room_cache,
    get_settings_from_app,
    require_admin,
    require_super_admin,
)
from roombook.errors import Conflict, NotFound
from roombook.filters import Eq, FilterSpec, Ge, Le, Search
from roombook.models import Admin, BookingStatus, Room, RoomAvailability, RoomType, UserType, Visitor
from roombook.rate_limit import limiter
from roombook.repositories import Repositories, status_predicates
from roombook.schemas import (
    AdminAuth,
    AdminCreate,
    AdminPublic,
    AvailabilityWindow,
    BookingRead,
    DashboardStats,
    LoginRequest,
    Page,
    Principal,
    ReasonRequest,
    RoomCreate,
    RoomRead,
    RoomSchedule,
    RoomUpdate,
    VisitorPublic,
)
from roombook.state_machine import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

# Room fields that may still change once bookings reference the room.
MUTABLE_WHEN_BOOKED = {"hourly_rate", "is_available"}


def _room(db: Session, repos: Repositories, room_id: int) -> Room:
    room = repos.rooms.get(db, room_id)
    if room is None:
        raise NotFound("Room not found")
    return room


def _visitor(db: Session, repos: Repositories, visitor_id: int) -> Visitor:
    visitor = repos.visitors.get(db, visitor_id)
    if visitor is None:
        raise NotFound("Visitor not found")
    return visitor


# Account


@router.post("/login", response_model=AdminAuth)
@limiter.limit("10/minute")
def login(
    request: Request,
    credentials: LoginRequest,
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
    settings: Settings = Depends(get_settings_from_app),
) -> AdminAuth:
    admin = authenticate_admin(db, repos.admins, credentials.email, credentials.password)
    if admin is None:
        logger.info("Failed admin login for %s", credentials.email)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if not admin.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")
    return AdminAuth(admin=AdminPublic.model_validate(admin), token=issue_token(settings, admin))


@router.post("/register", response_model=AdminPublic, status_code=status.HTTP_201_CREATED)
def register_admin(
    admin_in: AdminCreate,
    principal: Principal = Depends(require_super_admin),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
) -> AdminPublic:
    if repos.admins.get_by_email(db, admin_in.email) or repos.admins.get_by_username(db, admin_in.username):
        raise Conflict("Admin with this email or username already exists")
    admin = Admin(
        hashed_password=get_password_hash(admin_in.password),
        **admin_in.model_dump(exclude={"password"}),
    )
    repos.admins.add(db, admin)
    db.commit()
    logger.info("Admin %s registered by super admin %s", admin.username, principal.id)
    return AdminPublic.model_validate(admin)


@router.get("/profile", response_model=AdminPublic)
def profile(
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
) -> AdminPublic:
    return AdminPublic.model_validate(repos.admins.get(db, principal.id))


# Rooms


@router.get("/rooms", response_model=Page[RoomRead])
@limiter.limit("30/minute")
def list_rooms(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    room_type: Optional[RoomType] = None,
    is_available: Optional[bool] = None,
    _: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
) -> Page[RoomRead]:
    spec = (
        FilterSpec()
        .add_if(search, Search(("room_name", "room_number", "location"), search or ""))
        .add_if(room_type, Eq("room_type", room_type))
        .add_if(is_available, Eq("is_available", is_available))
    )
    rooms, total = repos.rooms.list(db, spec, page, limit)
    return Page[RoomRead](items=[RoomRead.of(room) for room in rooms], page=page, limit=limit, total=total)


@router.get("/rooms/{room_id}", response_model=RoomRead)
def get_room(
    room_id: int,
    _: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
) -> RoomRead:
    return RoomRead.of(_room(db, repos, room_id))


@router.post("/rooms", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_room(
    request: Request,
    room_in: RoomCreate,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
) -> RoomRead:
    if repos.rooms.get_by_number(db, room_in.room_number):
        raise Conflict("Room number already exists")
    room = repos.rooms.add(db, Room(**room_in.model_dump()))
    db.commit()
    logger.info("Room %s created by admin %s", room.room_number, principal.id)
    return RoomRead.of(room)


@router.put("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit("20/minute")
def update_room(
    request: Request,
    room_id: int,
    room_update: RoomUpdate,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
    cache: SimpleTTLCache = Depends(get_room_cache),
) -> RoomRead:
    room = _room(db, repos, room_id)
    data = room_update.model_dump(exclude_unset=True, exclude_none=True)
    changed = {key for key, value in data.items() if getattr(room, key) != value}
    locked = changed - MUTABLE_WHEN_BOOKED
    if locked and repos.rooms.has_bookings(db, room.id):
        raise Conflict(f"Room has bookings; cannot change {', '.join(sorted(locked))}")
    if "room_number" in changed:
        other = repos.rooms.get_by_number(db, data["room_number"])
        if other is not None and other.id != room.id:
            raise Conflict("Room number already exists")

    for key, value in data.items():
        setattr(room, key, value)
    db.commit()
    cache.pop(room_key(room.id))
    logger.info("Room %s updated by admin %s: %s", room.id, principal.id, sorted(changed))
    return RoomRead.of(room)


@router.delete("/rooms/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("20/minute")
def delete_room(
    request: Request,
    room_id: int,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
    cache: SimpleTTLCache = Depends(get_room_cache),
) -> None:
    room = _room(db, repos, room_id)
    if repos.rooms.has_bookings(db, room.id):
        raise Conflict("Room has bookings and cannot be deleted; mark it unavailable instead")
    repos.rooms.delete(db, room)
    db.commit()
    cache.pop(room_key(room_id))
    logger.info("Room %s deleted by admin %s", room_id, principal.id)


@router.put("/rooms/{room_id}/availability", response_model=RoomSchedule)
def replace_availability(
    room_id: int,
    windows: list[AvailabilityWindow],
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
) -> RoomSchedule:
    room = _room(db, repos, room_id)
    for window in windows:
        if window.start_time >= window.end_time:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="End time must be after start time")
    saved = repos.rooms.replace_windows(db, room, [RoomAvailability(**window.model_dump()) for window in windows])
    db.commit()
    logger.info("Opening hours of room %s replaced by admin %s (%d windows)", room.id, principal.id, len(saved))
    return RoomSchedule(room_id=room.id, windows=[AvailabilityWindow.model_validate(w) for w in saved])


# Bookings


@router.get("/bookings", response_model=Page[BookingRead])
@limiter.limit("30/minute")
def list_bookings(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    room_id: Optional[int] = None,
    visitor_id: Optional[int] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    _: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
    bookings: BookingService = Depends(get_booking_service),
) -> Page[BookingRead]:
    now = bookings.clock()
    spec = (
        FilterSpec()
        .add_if(room_id, Eq("room_id", room_id))
        .add_if(visitor_id, Eq("visitor_id", visitor_id))
        .add_if(date_from, Ge("booking_date", date_from))
        .add_if(date_to, Le("booking_date", date_to))
    )
    if status_filter is not None:
        spec.extend(status_predicates(status_filter, now))
    items, total = repos.bookings.list(db, spec, page, limit)
    return Page[BookingRead](items=[BookingRead.of(b, now) for b in items], page=page, limit=limit, total=total)


@router.get("/bookings/{booking_id}", response_model=BookingRead)
def get_booking(
    booking_id: int,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    bookings: BookingService = Depends(get_booking_service),
) -> BookingRead:
    return BookingRead.of(bookings.get_for(db, principal, booking_id), bookings.clock())


@router.patch("/bookings/{booking_id}/approve", response_model=BookingRead)
@limiter.limit("30/minute")
def approve_booking(
    request: Request,
    booking_id: int,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    bookings: BookingService = Depends(get_booking_service),
) -> BookingRead:
    booking = bookings.approve(db, principal, booking_id)
    return BookingRead.of(booking, bookings.clock())


@router.patch("/bookings/{booking_id}/reject", response_model=BookingRead)
@limiter.limit("30/minute")
def reject_booking(
    request: Request,
    booking_id: int,
    body: Optional[ReasonRequest] = None,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    bookings: BookingService = Depends(get_booking_service),
) -> BookingRead:
    reason = body.reason if body else None
    booking = bookings.reject(db, principal, booking_id, reason)
    return BookingRead.of(booking, bookings.clock())


# Visitors


@router.get("/visitors", response_model=Page[VisitorPublic])
def list_visitors(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    user_type: Optional[UserType] = None,
    is_active: Optional[bool] = None,
    _: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
) -> Page[VisitorPublic]:
    spec = (
        FilterSpec()
        .add_if(search, Search(("first_name", "last_name", "email", "student_id"), search or ""))
        .add_if(user_type, Eq("user_type", user_type))
        .add_if(is_active, Eq("is_active", is_active))
    )
    visitors, total = repos.visitors.list(db, spec, page, limit)
    return Page[VisitorPublic](items=[VisitorPublic.of(v) for v in visitors], page=page, limit=limit, total=total)


@router.get("/visitors/{visitor_id}", response_model=VisitorPublic)
def get_visitor(
    visitor_id: int,
    _: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
) -> VisitorPublic:
    return VisitorPublic.of(_visitor(db, repos, visitor_id))


def _set_active(db: Session, repos: Repositories, principal: Principal, visitor_id: int, active: bool) -> VisitorPublic:
    visitor = _visitor(db, repos, visitor_id)
    visitor.is_active = active
    db.commit()
    logger.info("Visitor %s %s by admin %s", visitor.id, "activated" if active else "deactivated", principal.id)
    return VisitorPublic.of(visitor)


@router.patch("/visitors/{visitor_id}/activate", response_model=VisitorPublic)
def activate_visitor(
    visitor_id: int,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
) -> VisitorPublic:
    return _set_active(db, repos, principal, visitor_id, True)


@router.patch("/visitors/{visitor_id}/deactivate", response_model=VisitorPublic)
def deactivate_visitor(
    visitor_id: int,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
) -> VisitorPublic:
    return _set_active(db, repos, principal, visitor_id, False)


# Dashboard


@router.get("/dashboard/stats", response_model=DashboardStats)
def dashboard_stats(
    _: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    repos: Repositories = Depends(get_repos),
    bookings: BookingService = Depends(get_booking_service),
) -> DashboardStats:
    now = bookings.clock()
    return DashboardStats(
        total_rooms=repos.rooms.count(db),
        total_visitors=repos.visitors.count(db),
        total_bookings=repos.bookings.count(db),
        pending_bookings=repos.bookings.count(db, FilterSpec(status_predicates(BookingStatus.PENDING_APPROVAL, now))),
        approved_bookings=repos.bookings.count(db, FilterSpec(status_predicates(BookingStatus.APPROVED, now))),
        today_bookings=repos.bookings.count(db, FilterSpec([Eq("booking_date", now.date())])),
    )
