from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import Depends, HTTPException, Query, Request, status
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from common.app_factory import create_service_app, limiter
from common.booking_lifecycle import BookingLifecycleService
from common.booking_store import SqlAlchemyBookingStore
from common.database import get_db
from common.dependencies import (
    allow_roles,
    get_current_active_user,
    get_lifecycle_service,
    refresh_booking_statuses,
    require_service_key,
)
from common.models import Booking, BookingStatus, RoleEnum, Room, User
from common.schemas import (
    BookingCounts,
    BookingCreate,
    BookingRead,
    BookingUpdate,
    CancelBookingResponse,
    RecurringBookingCreate,
    RecurringBookingResult,
    StatusUpdateResult,
)
from services.bookings.statistics import router as statistics_router

app = create_service_app("Bookings Service", "bookings")
Instrumentator().instrument(app).expose(app)
app.include_router(statistics_router)


def _find_overlap(db: Session, room_id: int, start: datetime, end: datetime, exclude_booking_id: int | None = None) -> Optional[Booking]:
    overlap_query = db.query(Booking).filter(
        Booking.room_id == room_id,
        Booking.status == BookingStatus.ACTIVE,
        Booking.started_at < end,
        Booking.ended_at > start,
    )
    if exclude_booking_id:
        overlap_query = overlap_query.filter(Booking.id != exclude_booking_id)
    return overlap_query.first()


def _ensure_availability(db: Session, room_id: int, start: datetime, end: datetime, exclude_booking_id: int | None = None) -> None:
    if _find_overlap(db, room_id, start, end, exclude_booking_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Time slot already booked")


def _ensure_end_after_start(start: datetime, end: datetime) -> None:
    if end <= start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="End time must be after start time")


def _validate_interval(start: datetime, end: datetime, check_start: bool = True) -> None:
    if check_start and start < datetime.utcnow():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot book a time in the past")
    _ensure_end_after_start(start, end)


def _get_bookable_room(db: Session, room_id: int, current_user: User) -> Room:
    room = db.query(Room).filter(Room.id == room_id, Room.is_active.is_(True)).first()
    if not room or room.organization_id != current_user.organization_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found or inactive")
    return room


def _load_participants(db: Session, participant_ids: List[int], current_user: User) -> List[User]:
    if not participant_ids:
        return []
    # Unknown ids and users from other organizations are skipped.
    return (
        db.query(User)
        .filter(User.id.in_(participant_ids), User.organization_id == current_user.organization_id)
        .all()
    )


def _get_booking(db: Session, booking_id: int, current_user: User) -> Booking:
    booking = db.get(Booking, booking_id)
    if not booking or booking.user.organization_id != current_user.organization_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


def _ensure_can_modify(booking: Booking, current_user: User) -> None:
    if current_user.role != RoleEnum.ADMIN and booking.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


def _status_counts(query) -> BookingCounts:
    total, active, completed, cancelled = query.with_entities(
        func.count(Booking.id),
        func.count(case((Booking.status == BookingStatus.ACTIVE, 1))),
        func.count(case((Booking.status == BookingStatus.COMPLETED, 1))),
        func.count(case((Booking.status == BookingStatus.CANCELLED, 1))),
    ).one()
    return BookingCounts(count=total, active=active, completed=completed, cancelled=cancelled)


@app.get("/bookings", response_model=List[BookingRead], dependencies=[Depends(refresh_booking_statuses)])
@limiter.limit("30/minute")
def list_bookings(
    request: Request,
    status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
    room_id: Optional[int] = None,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> List[Booking]:
    query = (
        db.query(Booking)
        .join(User, Booking.user_id == User.id)
        .filter(User.organization_id == current_user.organization_id)
    )
    if status_filter:
        query = query.filter(Booking.status == status_filter)
    if room_id:
        query = query.filter(Booking.room_id == room_id)
    return query.order_by(Booking.started_at.asc()).all()


@app.get("/bookings/count", response_model=BookingCounts, dependencies=[Depends(refresh_booking_statuses)])
@limiter.limit("30/minute")
def my_booking_counts(
    request: Request,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> BookingCounts:
    return _status_counts(db.query(Booking).filter(Booking.user_id == current_user.id))


@app.get(
    "/bookings/organization/count",
    response_model=BookingCounts,
    dependencies=[Depends(refresh_booking_statuses)],
)
@limiter.limit("30/minute")
def organization_booking_counts(
    request: Request,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> BookingCounts:
    query = (
        db.query(Booking)
        .join(User, Booking.user_id == User.id)
        .filter(User.organization_id == current_user.organization_id)
    )
    return _status_counts(query)


@app.get("/bookings/availability")
@limiter.limit("40/minute")
def check_availability(
    request: Request,
    room_id: int,
    started_at: datetime = Query(...),
    ended_at: datetime = Query(...),
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> dict[str, int | bool]:
    _ensure_end_after_start(started_at, ended_at)
    _get_bookable_room(db, room_id, current_user)
    available = _find_overlap(db, room_id, started_at, ended_at) is None
    return {"room_id": room_id, "available": available}


@app.post(
    "/bookings/maintenance/update-status",
    response_model=StatusUpdateResult,
    dependencies=[Depends(require_service_key)],
)
def update_booking_statuses(
    lifecycle: BookingLifecycleService = Depends(get_lifecycle_service),
) -> StatusUpdateResult:
    checked_at = lifecycle.now()
    updated = lifecycle.update_expired_booking_statuses()
    return StatusUpdateResult(updated=updated, checked_at=checked_at)


@app.get("/bookings/{booking_id}", response_model=BookingRead, dependencies=[Depends(refresh_booking_statuses)])
@limiter.limit("60/minute")
def get_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> Booking:
    return _get_booking(db, booking_id, current_user)


@app.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_booking(
    request: Request,
    booking_in: BookingCreate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> Booking:
    _validate_interval(booking_in.started_at, booking_in.ended_at)
    _get_bookable_room(db, booking_in.room_id, current_user)
    _ensure_availability(db, booking_in.room_id, booking_in.started_at, booking_in.ended_at)

    booking = Booking(
        user_id=current_user.id,
        status=BookingStatus.ACTIVE,
        participants=_load_participants(db, booking_in.participant_ids, current_user),
        **booking_in.model_dump(exclude={"participant_ids"}),
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


@app.post("/bookings/recurring", response_model=RecurringBookingResult, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
def create_recurring_bookings(
    request: Request,
    recurring_in: RecurringBookingCreate,
    current_user: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> RecurringBookingResult:
    """
    Block a room for cleaning or maintenance on the given ISO weekdays
    (1 = Monday) from tomorrow until ``weeks_ahead`` weeks from now.

    Slots that overlap an active booking are skipped.
    """
    _get_bookable_room(db, recurring_in.room_id, current_user)
    now = datetime.utcnow()
    day = now.date() + timedelta(days=1)
    last_day = (now + timedelta(weeks=recurring_in.weeks_ahead)).date()
    days_of_week = set(recurring_in.days_of_week)

    bookings: List[Booking] = []
    while day <= last_day:
        if day.isoweekday() in days_of_week:
            start = datetime.combine(day, recurring_in.start_time)
            end = datetime.combine(day, recurring_in.end_time)
            if _find_overlap(db, recurring_in.room_id, start, end) is None:
                booking = Booking(
                    title=recurring_in.type.capitalize(),
                    room_id=recurring_in.room_id,
                    user_id=current_user.id,
                    started_at=start,
                    ended_at=end,
                    participants_count=0,
                    is_private=True,
                    status=BookingStatus.ACTIVE,
                )
                db.add(booking)
                # Flush so later slots in this batch see the new row as an overlap.
                db.flush()
                bookings.append(booking)
        day += timedelta(days=1)
    db.commit()

    return RecurringBookingResult(
        message=f"Successfully created {len(bookings)} recurring bookings",
        created_count=len(bookings),
        booking_ids=[booking.id for booking in bookings],
    )


@app.put("/bookings/{booking_id}", response_model=BookingRead, dependencies=[Depends(refresh_booking_statuses)])
@limiter.limit("20/minute")
def update_booking(
    request: Request,
    booking_id: int,
    booking_update: BookingUpdate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> Booking:
    booking = _get_booking(db, booking_id, current_user)
    _ensure_can_modify(booking, current_user)
    if booking.status != BookingStatus.ACTIVE:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Cannot edit a {booking.status.value} booking")

    data = booking_update.model_dump(exclude_unset=True)
    participant_ids = data.pop("participant_ids", None)
    room_id = data.get("room_id") or booking.room_id
    start = data.get("started_at") or booking.started_at
    end = data.get("ended_at") or booking.ended_at

    if {"room_id", "started_at", "ended_at"} & data.keys():
        if room_id is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Booking has no room")
        # An ongoing booking keeps its past start; only a new start must be in the future.
        _validate_interval(start, end, check_start="started_at" in data)
        _get_bookable_room(db, room_id, current_user)
        _ensure_availability(db, room_id, start, end, exclude_booking_id=booking.id)

    for key, value in data.items():
        if value is not None:
            setattr(booking, key, value)
    if participant_ids is not None:
        booking.participants = _load_participants(db, participant_ids, current_user)
    db.commit()
    db.refresh(booking)
    return booking


@app.post(
    "/bookings/{booking_id}/cancel",
    response_model=CancelBookingResponse,
    dependencies=[Depends(refresh_booking_statuses)],
)
@limiter.limit("20/minute")
def cancel_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> CancelBookingResponse:
    booking = _get_booking(db, booking_id, current_user)
    _ensure_can_modify(booking, current_user)
    if booking.status == BookingStatus.CANCELLED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Booking already cancelled")

    store = SqlAlchemyBookingStore(db)
    # Conditional write: a booking completed in the meantime stays completed.
    changed = store.bulk_set_status([booking.id], BookingStatus.CANCELLED, expected_status=BookingStatus.ACTIVE)
    db.refresh(booking)
    if not changed:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot cancel a {booking.status.value} booking",
        )
    return CancelBookingResponse(
        message="Booking cancelled successfully",
        booking=BookingRead.model_validate(booking),
    )


@app.delete("/bookings/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("20/minute")
def delete_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> None:
    booking = _get_booking(db, booking_id, current_user)
    _ensure_can_modify(booking, current_user)
    db.delete(booking)
    db.commit()
