"""Pydantic schemas for requests, responses and the authenticated principal."""
from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, EmailStr, Field

from .derived import effective_status, full_location, full_name
from .models import AdminRole, Booking, BookingStatus, DayOfWeek, Room, RoomType, UserType

T = TypeVar("T")


class Principal(BaseModel):
    """Identity already verified by the auth layer."""

    id: int
    kind: Literal["admin", "visitor"]
    role: Optional[AdminRole] = None


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class Page(BaseModel, Generic[T]):
    items: List[T]
    page: int
    limit: int
    total: int


# Admins


class AdminCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[a-zA-Z0-9_]+$")
    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    phone: Optional[str] = Field(None, max_length=20)
    role: AdminRole = AdminRole.ADMIN


class AdminPublic(BaseModel):
    id: int
    username: str
    email: EmailStr
    first_name: str
    last_name: str
    phone: Optional[str] = None
    role: AdminRole
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class AdminAuth(BaseModel):
    admin: AdminPublic
    token: Token


# Visitors


class VisitorCreate(BaseModel):
    student_id: Optional[str] = Field(None, max_length=20)
    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    phone: Optional[str] = Field(None, max_length=20)
    user_type: UserType = UserType.VISITOR
    department: Optional[str] = Field(None, max_length=100)


class VisitorUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = Field(None, max_length=20)
    department: Optional[str] = Field(None, max_length=100)


class VisitorPublic(BaseModel):
    id: int
    student_id: Optional[str] = None
    email: EmailStr
    first_name: str
    last_name: str
    full_name: str
    phone: Optional[str] = None
    user_type: UserType
    department: Optional[str] = None
    is_active: bool
    email_verified: bool
    created_at: datetime

    model_config = {"from_attributes": True}

    @classmethod
    def of(cls, visitor) -> "VisitorPublic":
        data = {name: getattr(visitor, name) for name in cls.model_fields if name != "full_name"}
        return cls(full_name=full_name(visitor), **data)


class VisitorAuth(BaseModel):
    visitor: VisitorPublic
    token: Token


# Rooms


class RoomBase(BaseModel):
    room_number: str = Field(..., min_length=1, max_length=20)
    room_name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    capacity: int = Field(..., ge=1)
    location: Optional[str] = Field(None, max_length=100)
    building: Optional[str] = Field(None, max_length=50)
    floor: Optional[str] = Field(None, max_length=10)
    room_type: RoomType = RoomType.CLASSROOM
    amenities: List[str] = Field(default_factory=list)
    hourly_rate: Decimal = Field(Decimal("0.00"), ge=0, max_digits=8, decimal_places=2)
    is_available: bool = True
    requires_approval: bool = False
    image_url: Optional[str] = Field(None, max_length=255)


class RoomCreate(RoomBase):
    pass


class RoomUpdate(BaseModel):
    room_number: Optional[str] = Field(None, min_length=1, max_length=20)
    room_name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=1)
    location: Optional[str] = Field(None, max_length=100)
    building: Optional[str] = Field(None, max_length=50)
    floor: Optional[str] = Field(None, max_length=10)
    room_type: Optional[RoomType] = None
    amenities: Optional[List[str]] = None
    hourly_rate: Optional[Decimal] = Field(None, ge=0, max_digits=8, decimal_places=2)
    is_available: Optional[bool] = None
    requires_approval: Optional[bool] = None
    image_url: Optional[str] = Field(None, max_length=255)


class RoomRead(RoomBase):
    id: int
    full_location: str = ""

    model_config = {"from_attributes": True}

    @classmethod
    def of(cls, room: Room) -> "RoomRead":
        return cls.model_validate(room).model_copy(update={"full_location": full_location(room)})


class AvailabilityWindow(BaseModel):
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    is_available: bool = True

    model_config = {"from_attributes": True}


class RoomSchedule(BaseModel):
    room_id: int
    windows: List[AvailabilityWindow]


class ConflictingBooking(BaseModel):
    id: int
    start_time: time
    end_time: time
    status: BookingStatus

    model_config = {"from_attributes": True}


class AvailabilityCheck(BaseModel):
    room_id: int
    booking_date: date
    start_time: time
    end_time: time
    is_available: bool
    within_open_hours: Optional[bool] = None
    conflicting_bookings: List[ConflictingBooking]


# Bookings


class BookingCreate(BaseModel):
    room_id: int = Field(..., gt=0)
    booking_date: date
    start_time: time
    end_time: time
    purpose: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    expected_attendees: int = Field(1, ge=1)


class BookingUpdate(BaseModel):
    room_id: Optional[int] = Field(None, gt=0)
    booking_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    purpose: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    expected_attendees: Optional[int] = Field(None, ge=1)


class ReasonRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class BookingRead(BaseModel):
    id: int
    booking_reference: str
    room_id: int
    visitor_id: int
    booking_date: date
    start_time: time
    end_time: time
    purpose: str
    description: Optional[str] = None
    expected_attendees: int
    status: BookingStatus
    total_cost: Decimal
    cancellation_reason: Optional[str] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    payment_date: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}

    @classmethod
    def of(cls, booking: Booking, now: datetime) -> "BookingRead":
        return cls.model_validate(booking).model_copy(update={"status": effective_status(booking, now)})


class DashboardStats(BaseModel):
    total_rooms: int
    total_visitors: int
    total_bookings: int
    pending_bookings: int
    approved_bookings: int
    today_bookings: int


# Payments


class CheckoutSession(BaseModel):
    session_id: str
    url: Optional[str] = None
    booking_reference: str
    total_cost: Decimal


class PaymentStatus(BaseModel):
    booking_id: int
    booking_reference: str
    status: BookingStatus
    is_paid: bool


class WebhookAck(BaseModel):
    received: bool = True
    event_type: str
    outcome: Literal["created", "duplicate", "rejected", "expired", "ignored"]
    booking_reference: Optional[str] = None
