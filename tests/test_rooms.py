from datetime import datetime, timedelta

from common.models import BookingStatus, Organization, RoleEnum, User

ADMIN_PAYLOAD = {
    "name": "Admin",
    "username": "admin",
    "email": "admin@example.com",
    "password": "Passw0rd!",
    "organization": {"name": "Acme", "regon": "123456789", "email": "office@acme.example"},
}

ROOM_PAYLOAD = {
    "name": "Board Room",
    "capacity": 10,
    "size": 35.5,
    "equipment": ["tv", "whiteboard"],
    "location": "Floor 1",
    "is_active": True,
}


def auth_header(users_client, username: str, password: str) -> dict[str, str]:
    response = users_client.post(
        "/users/login",
        data={"username": username, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def setup_admin(users_client) -> dict[str, str]:
    users_client.post("/auth/register", json=ADMIN_PAYLOAD)
    return auth_header(users_client, "admin", "Passw0rd!")


def test_room_crud(users_client, rooms_client):
    headers = setup_admin(users_client)

    create_resp = rooms_client.post("/rooms", json=ROOM_PAYLOAD, headers=headers)
    assert create_resp.status_code == 201
    room_id = create_resp.json()["id"]

    list_resp = rooms_client.get("/rooms?capacity=5", headers=headers)
    assert list_resp.status_code == 200
    assert len(list_resp.json()) == 1

    update_resp = rooms_client.put(f"/rooms/{room_id}", json={"capacity": 12}, headers=headers)
    assert update_resp.status_code == 200
    assert update_resp.json()["capacity"] == 12

    status_resp = rooms_client.get(f"/rooms/{room_id}/status", headers=headers)
    assert status_resp.status_code == 200
    assert status_resp.json()["status"] == "available"
    cached_resp = rooms_client.get(f"/rooms/{room_id}/status", headers=headers)
    assert cached_resp.status_code == 200
    assert cached_resp.json()["checked_at"] == status_resp.json()["checked_at"]

    refresh_resp = rooms_client.get(f"/rooms/{room_id}/status?force_refresh=true", headers=headers)
    assert refresh_resp.status_code == 200
    assert refresh_resp.json()["checked_at"] != status_resp.json()["checked_at"]

    assert rooms_client.delete(f"/rooms/{room_id}", headers=headers).status_code == 204
    assert rooms_client.get(f"/rooms/{room_id}", headers=headers).status_code == 404


def test_room_list_cache_is_invalidated_on_create(users_client, rooms_client):
    headers = setup_admin(users_client)
    assert rooms_client.get("/rooms", headers=headers).json() == []

    rooms_client.post("/rooms", json=ROOM_PAYLOAD, headers=headers)
    assert len(rooms_client.get("/rooms", headers=headers).json()) == 1


def test_room_filters(users_client, rooms_client):
    headers = setup_admin(users_client)
    rooms_client.post("/rooms", json=ROOM_PAYLOAD, headers=headers)
    rooms_client.post(
        "/rooms",
        json=dict(ROOM_PAYLOAD, name="Phone Booth", capacity=1, size=2, equipment=[], location="Floor 3"),
        headers=headers,
    )

    assert [room["name"] for room in rooms_client.get("/rooms?location=floor 3", headers=headers).json()] == ["Phone Booth"]
    assert [room["name"] for room in rooms_client.get("/rooms?equipment=tv", headers=headers).json()] == ["Board Room"]


def test_regular_user_cannot_manage_rooms(users_client, rooms_client):
    headers = setup_admin(users_client)
    users_client.post(
        "/users",
        json={
            "name": "Jane",
            "username": "jane",
            "email": "jane@acme.example",
            "password": "Passw0rd!",
            "role": RoleEnum.REGULAR.value,
        },
        headers=headers,
    )
    jane_headers = auth_header(users_client, "jane", "Passw0rd!")

    assert rooms_client.post("/rooms", json=ROOM_PAYLOAD, headers=jane_headers).status_code == 403


def test_room_status_ignores_cancelled_bookings(users_client, rooms_client, db_session, seeded_room, make_booking):
    now = datetime.utcnow()
    booking = make_booking(now - timedelta(minutes=30), now + timedelta(minutes=30))
    headers = auth_header(users_client, "owner", "Passw0rd!")

    booked = rooms_client.get(f"/rooms/{seeded_room.id}/status", headers=headers)
    assert booked.json()["status"] == "booked"

    booking.status = BookingStatus.CANCELLED
    db_session.commit()
    refreshed = rooms_client.get(f"/rooms/{seeded_room.id}/status?force_refresh=true", headers=headers)
    assert refreshed.json()["status"] == "available"


def test_deleting_room_keeps_bookings(users_client, rooms_client, db_session, seeded_room, make_booking):
    booking = make_booking(datetime(2099, 1, 1, 10), datetime(2099, 1, 1, 11))
    owner = db_session.query(User).filter(User.username == "owner").one()
    owner.role = RoleEnum.FACILITY_MANAGER
    db_session.commit()
    headers = auth_header(users_client, "owner", "Passw0rd!")

    assert rooms_client.delete(f"/rooms/{seeded_room.id}", headers=headers).status_code == 204

    db_session.expire_all()
    db_session.refresh(booking)
    assert booking.room_id is None
    assert db_session.query(Organization).count() == 1
