from datetime import datetime, timedelta
from typing import List

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from common.app_factory import limiter
from common.database import get_db
from common.dependencies import allow_roles, refresh_booking_statuses
from common.models import Booking, BookingStatus, RoleEnum, Room, User
from common.schemas import BookingTotals, BookingTrend, DayOccupancy, RoomUsage

router = APIRouter(prefix="/bookings/statistics", tags=["statistics"])

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
# Bookable hours per room and day used as the occupancy denominator.
WORKING_HOURS_PER_DAY = 12


def _organization_bookings(db: Session, organization_id: int):
    return (
        db.query(Booking)
        .join(User, Booking.user_id == User.id)
        .filter(User.organization_id == organization_id)
    )


def _room_usage(db: Session, organization_id: int, limit: int, most_used: bool) -> List[RoomUsage]:
    booking_count = func.count(Booking.id)
    rows = (
        db.query(Room.id, Room.name, booking_count.label("booking_count"))
        .outerjoin(Booking, (Booking.room_id == Room.id) & (Booking.status != BookingStatus.CANCELLED))
        .filter(Room.organization_id == organization_id)
        .group_by(Room.id, Room.name)
        .order_by(booking_count.desc() if most_used else booking_count.asc(), Room.name)
        .limit(limit)
        .all()
    )
    return [
        RoomUsage(room_id=room_id, room_name=room_name, booking_count=count)
        for room_id, room_name, count in rows
    ]


@router.get("/rooms/most_used", response_model=List[RoomUsage])
@limiter.limit("30/minute")
def most_used_rooms(
    request: Request,
    limit: int = Query(5, ge=1, le=25),
    current_user: User = Depends(allow_roles(RoleEnum.ADMIN, RoleEnum.FACILITY_MANAGER)),
    db: Session = Depends(get_db),
) -> List[RoomUsage]:
    """Rooms of the caller's organization with the most non-cancelled bookings."""
    return _room_usage(db, current_user.organization_id, limit, most_used=True)


@router.get("/rooms/least_used", response_model=List[RoomUsage])
@limiter.limit("30/minute")
def least_used_rooms(
    request: Request,
    limit: int = Query(5, ge=1, le=25),
    current_user: User = Depends(allow_roles(RoleEnum.ADMIN, RoleEnum.FACILITY_MANAGER)),
    db: Session = Depends(get_db),
) -> List[RoomUsage]:
    """Rooms of the caller's organization with the fewest non-cancelled bookings, unused rooms first."""
    return _room_usage(db, current_user.organization_id, limit, most_used=False)


@router.get("/total", response_model=BookingTotals)
@limiter.limit("30/minute")
def booking_totals(
    request: Request,
    current_user: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> BookingTotals:
    """
    Count bookings created in the current month, week and day.

    Periods start at midnight UTC; weeks start on Monday.
    """
    today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    week_start = today - timedelta(days=today.weekday())
    month_start = today.replace(day=1)

    query = _organization_bookings(db, current_user.organization_id)

    def created_since(moment: datetime) -> int:
        return query.filter(Booking.created_at >= moment).with_entities(func.count(Booking.id)).scalar() or 0

    return BookingTotals(
        month=created_since(month_start),
        week=created_since(week_start),
        today=created_since(today),
    )


@router.get("/occupancy_rate", response_model=DayOccupancy)
@limiter.limit("30/minute")
def occupancy_rate(
    request: Request,
    current_user: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> DayOccupancy:
    """
    Percentage of bookable time taken on each day of the week.

    Booked hours of active and completed bookings are grouped by the weekday
    they start on and divided by the organization's room count times
    ``WORKING_HOURS_PER_DAY``. Rates are capped at 100.
    """
    room_count = (
        db.query(func.count(Room.id)).filter(Room.organization_id == current_user.organization_id).scalar() or 0
    )
    if room_count == 0:
        return DayOccupancy()

    bookings = (
        _organization_bookings(db, current_user.organization_id)
        .filter(Booking.status.in_([BookingStatus.ACTIVE, BookingStatus.COMPLETED]))
        .with_entities(Booking.started_at, Booking.ended_at)
        .all()
    )
    hours = dict.fromkeys(WEEKDAYS, 0.0)
    for started_at, ended_at in bookings:
        hours[WEEKDAYS[started_at.weekday()]] += (ended_at - started_at).total_seconds() / 3600

    available_hours = room_count * WORKING_HOURS_PER_DAY
    return DayOccupancy(
        **{day: round(min(booked / available_hours * 100, 100.0), 2) for day, booked in hours.items()}
    )


@router.get("/trend", response_model=BookingTrend, dependencies=[Depends(refresh_booking_statuses)])
@limiter.limit("30/minute")
def booking_trend(
    request: Request,
    current_user: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> BookingTrend:
    """
    Bookings per weekday of their start time, split into confirmed, pending
    and cancelled.

    Completed bookings and active bookings that have already ended count as
    confirmed; active bookings still to finish count as pending.
    """
    now = datetime.utcnow()
    trend = {key: dict.fromkeys(WEEKDAYS, 0) for key in ("confirmed", "pending", "cancelled")}
    rows = (
        _organization_bookings(db, current_user.organization_id)
        .with_entities(Booking.started_at, Booking.ended_at, Booking.status)
        .all()
    )
    for started_at, ended_at, booking_status in rows:
        day = WEEKDAYS[started_at.weekday()]
        if booking_status == BookingStatus.CANCELLED:
            trend["cancelled"][day] += 1
        elif booking_status == BookingStatus.COMPLETED or ended_at < now:
            trend["confirmed"][day] += 1
        else:
            trend["pending"][day] += 1
    return BookingTrend(**trend)
