import os
from datetime import datetime
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")

from common.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from common.auth import get_password_hash  # noqa: E402
from common.database import Base, SessionLocal, engine  # noqa: E402
from common.models import Booking, BookingStatus, Organization, RoleEnum, Room, User  # noqa: E402
from services.bookings.app import app as bookings_app  # noqa: E402
from services.organizations.app import app as organizations_app  # noqa: E402
from services.rooms import app as rooms_module  # noqa: E402
from services.users.app import app as users_app  # noqa: E402


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clear_room_caches() -> Generator[None, None, None]:
    rooms_module.room_status_cache.clear()
    rooms_module.room_list_cache.clear()
    yield


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def users_client() -> Generator[TestClient, None, None]:
    with TestClient(users_app) as client:
        yield client


@pytest.fixture()
def rooms_client() -> Generator[TestClient, None, None]:
    with TestClient(rooms_module.app) as client:
        yield client


@pytest.fixture()
def bookings_client() -> Generator[TestClient, None, None]:
    with TestClient(bookings_app) as client:
        yield client
    bookings_app.dependency_overrides.clear()


@pytest.fixture()
def organizations_client() -> Generator[TestClient, None, None]:
    with TestClient(organizations_app) as client:
        yield client


@pytest.fixture()
def seeded_room(db_session) -> Room:
    """An organization with one regular user and one room, written straight to the database."""
    organization = Organization(name="Acme", regon="123456789", email="office@acme.example")
    user = User(
        name="Owner",
        username="owner",
        email="owner@acme.example",
        role=RoleEnum.REGULAR,
        hashed_password=get_password_hash("Passw0rd!"),
        organization=organization,
    )
    room = Room(name="Blue", capacity=8, size=20.0, equipment=["tv"], location="Floor 1", organization=organization)
    db_session.add_all([organization, user, room])
    db_session.commit()
    db_session.refresh(room)
    return room


@pytest.fixture()
def make_booking(db_session, seeded_room) -> Callable[..., Booking]:
    """Insert bookings with arbitrary times, including ones the API would reject as past."""
    owner = db_session.query(User).filter(User.username == "owner").one()

    def factory(
        started_at: datetime,
        ended_at: datetime,
        status: BookingStatus = BookingStatus.ACTIVE,
        title: str = "Standup",
    ) -> Booking:
        booking = Booking(
            title=title,
            room_id=seeded_room.id,
            user_id=owner.id,
            started_at=started_at,
            ended_at=ended_at,
            participants_count=2,
            status=status,
        )
        db_session.add(booking)
        db_session.commit()
        db_session.refresh(booking)
        return booking

    return factory
