"""Pydantic schemas shared across the microservices."""
from __future__ import annotations

from datetime import datetime, time, timezone
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, EmailStr, Field, model_validator

from .models import BookingStatus, RoleEnum


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


UtcDateTime = Annotated[datetime, AfterValidator(_to_naive_utc)]


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class OrganizationBase(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    regon: str = Field(..., pattern=r"^(\d{9}|\d{14})$")
    email: EmailStr


class OrganizationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    email: Optional[EmailStr] = None


class OrganizationRead(OrganizationBase):
    id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class UserBase(BaseModel):
    name: str = Field(..., max_length=100)
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    role: RoleEnum = RoleEnum.REGULAR


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None
    role: Optional[RoleEnum] = None
    password: Optional[str] = Field(None, min_length=8)
    is_active: Optional[bool] = None


class UserRead(UserBase):
    id: int
    is_active: bool
    organization_id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class UserSummary(BaseModel):
    id: int
    username: str
    name: str

    model_config = {"from_attributes": True}


class RegisterRequest(BaseModel):
    """Self-service sign-up: a new organization and its first administrator."""

    name: str = Field(..., max_length=100)
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=8)
    organization: OrganizationBase


class OrganizationDetail(OrganizationRead):
    users: List[UserSummary] = []


class RoomBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    capacity: int = Field(..., ge=1, le=200)
    size: float = Field(..., gt=0)
    equipment: List[str] = []
    location: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    is_active: bool = True


class RoomCreate(RoomBase):
    pass


class RoomUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    capacity: Optional[int] = Field(None, ge=1, le=200)
    size: Optional[float] = Field(None, gt=0)
    equipment: Optional[List[str]] = None
    location: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class RoomRead(RoomBase):
    id: int
    organization_id: int

    model_config = {"from_attributes": True}


class RoomSummary(BaseModel):
    id: int
    name: str
    location: str

    model_config = {"from_attributes": True}


class BookingBase(BaseModel):
    title: str = Field(..., min_length=3, max_length=255)
    room_id: int
    started_at: UtcDateTime
    ended_at: UtcDateTime
    participants_count: int = Field(..., gt=0)
    is_private: bool = False


class BookingCreate(BookingBase):
    participant_ids: List[int] = []


class BookingUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=3, max_length=255)
    room_id: Optional[int] = None
    started_at: Optional[UtcDateTime] = None
    ended_at: Optional[UtcDateTime] = None
    participants_count: Optional[int] = Field(None, gt=0)
    is_private: Optional[bool] = None
    participant_ids: Optional[List[int]] = None


class BookingRead(BaseModel):
    id: int
    title: str
    room_id: Optional[int]
    user_id: int
    started_at: datetime
    ended_at: datetime
    participants_count: int
    is_private: bool
    status: BookingStatus
    created_at: datetime
    room: Optional[RoomSummary] = None
    participants: List[UserSummary] = []

    model_config = {"from_attributes": True}


class BookingCounts(BaseModel):
    count: int
    active: int
    completed: int
    cancelled: int


class CancelBookingResponse(BaseModel):
    message: str
    booking: BookingRead


class StatusUpdateResult(BaseModel):
    updated: int
    checked_at: datetime



class RecurringBookingCreate(BaseModel):
    """Weekly cleaning or maintenance slots blocked by an administrator."""

    room_id: int
    type: Literal["cleaning", "maintenance"]
    start_time: time
    end_time: time
    days_of_week: List[Annotated[int, Field(ge=1, le=7)]] = Field(..., min_length=1, max_length=7)
    weeks_ahead: int = Field(12, gt=0, le=52)

    @model_validator(mode="after")
    def check_times(self) -> "RecurringBookingCreate":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class RecurringBookingResult(BaseModel):
    message: str
    created_count: int
    booking_ids: List[int]


class BookingTotals(BaseModel):
    month: int
    week: int
    today: int


class DayOccupancy(BaseModel):
    monday: float = 0.0
    tuesday: float = 0.0
    wednesday: float = 0.0
    thursday: float = 0.0
    friday: float = 0.0
    saturday: float = 0.0
    sunday: float = 0.0


class BookingTrend(BaseModel):
    """Booking counts per weekday of the start time, keyed by lower-case day name."""

    confirmed: dict[str, int]
    pending: dict[str, int]
    cancelled: dict[str, int]


class RoomUsage(BaseModel):
    room_id: int
    room_name: str
    booking_count: int
