from datetime import datetime
from typing import List, Optional

from circuitbreaker import circuit
from fastapi import Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from common.app_factory import create_service_app, limiter
from common.cache import SimpleTTLCache
from common.config import get_settings
from common.database import get_db
from common.dependencies import get_current_active_user
from common.models import Booking, BookingStatus, RoleEnum, Room, User
from common.schemas import RoomCreate, RoomRead, RoomUpdate

settings = get_settings()
room_status_cache: SimpleTTLCache[dict[str, str]] = SimpleTTLCache(ttl=settings.room_cache_ttl)
room_list_cache: SimpleTTLCache[list[Room]] = SimpleTTLCache(ttl=settings.room_cache_ttl)

app = create_service_app("Rooms Service", "rooms")


def _room_status_key(room_id: int) -> str:
    return f"room-status:{room_id}"


def _room_list_prefix(organization_id: int) -> str:
    return f"room-list:{organization_id}:"


def _invalidate_room_cache(room_id: int, organization_id: int) -> None:
    room_status_cache.pop(_room_status_key(room_id))
    room_list_cache.pop_prefix(_room_list_prefix(organization_id))


def _require_room_manager(current_user: User) -> None:
    if current_user.role not in {RoleEnum.ADMIN, RoleEnum.FACILITY_MANAGER}:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")


def _get_room(db: Session, room_id: int, current_user: User) -> Room:
    room = db.query(Room).filter(Room.id == room_id).first()
    if not room or room.organization_id != current_user.organization_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return room


@app.post("/rooms", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def add_room(
    request: Request,
    room_in: RoomCreate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> Room:
    _require_room_manager(current_user)
    room = Room(organization_id=current_user.organization_id, **room_in.model_dump())
    db.add(room)
    db.commit()
    db.refresh(room)
    _invalidate_room_cache(room.id, room.organization_id)
    return room


@app.get("/rooms", response_model=List[RoomRead])
@circuit(failure_threshold=5, recovery_timeout=60)
def list_rooms(
    request: Request,
    capacity: Optional[int] = None,
    location: Optional[str] = None,
    equipment: Optional[List[str]] = Query(default=None),
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> List[Room]:
    cache_key = (
        f"{_room_list_prefix(current_user.organization_id)}"
        f"{capacity}:{location}:{','.join(sorted(equipment or []))}"
    )
    cached = room_list_cache.get(cache_key)
    if cached is not None:
        return cached

    query = db.query(Room).filter(
        Room.organization_id == current_user.organization_id,
        Room.is_active.is_(True),
    )
    if capacity:
        query = query.filter(Room.capacity >= capacity)
    if location:
        query = query.filter(Room.location.ilike(f"%{location}%"))
    rooms = query.order_by(Room.name).all()
    if equipment:
        rooms = [room for room in rooms if set(equipment).issubset(set(room.equipment or []))]
    room_list_cache.set(cache_key, rooms)
    return rooms


@app.get("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit("60/minute")
def get_room(
    request: Request,
    room_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> Room:
    return _get_room(db, room_id, current_user)


@app.put("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit("15/minute")
def update_room(
    request: Request,
    room_id: int,
    room_update: RoomUpdate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> Room:
    _require_room_manager(current_user)
    room = _get_room(db, room_id, current_user)

    update_data = room_update.model_dump(exclude_unset=True)
    for key, value in update_data.items():
        setattr(room, key, value)
    db.commit()
    db.refresh(room)
    _invalidate_room_cache(room.id, room.organization_id)
    return room


@app.delete("/rooms/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("15/minute")
def delete_room(
    request: Request,
    room_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> None:
    _require_room_manager(current_user)
    room = _get_room(db, room_id, current_user)
    # Bookings outlive the room; their room_id is nulled by the relationship.
    db.delete(room)
    db.commit()
    _invalidate_room_cache(room_id, current_user.organization_id)


@app.get("/rooms/{room_id}/status")
@limiter.limit("30/minute")
def room_status(
    request: Request,
    room_id: int,
    force_refresh: bool = False,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> dict[str, str]:
    _get_room(db, room_id, current_user)
    cache_key = _room_status_key(room_id)
    if not force_refresh:
        cached = room_status_cache.get(cache_key)
        if cached:
            return cached
    now = datetime.utcnow()
    active_booking = (
        db.query(Booking)
        .filter(
            Booking.room_id == room_id,
            Booking.status == BookingStatus.ACTIVE,
            Booking.started_at <= now,
            Booking.ended_at > now,
        )
        .first()
    )
    status_label = "booked" if active_booking else "available"
    payload = {
        "room_id": str(room_id),
        "status": status_label,
        "checked_at": now.isoformat(),
    }
    room_status_cache.set(cache_key, payload)
    return payload
