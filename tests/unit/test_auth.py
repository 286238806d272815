"""Unit tests for credentials and login tokens."""
import os
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException
from jose import jwt

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

from common.auth import (
    authenticate_user,
    create_access_token,
    create_user_token,
    decode_token,
    get_password_hash,
    verify_password,
)
from common.config import get_settings
from common.models import RoleEnum, User

settings = get_settings()


def member(password: str = "Passw0rd!", **overrides) -> User:
    fields = {
        "id": 1,
        "name": "Jane Doe",
        "username": "jane",
        "email": "jane@acme.example",
        "role": RoleEnum.REGULAR,
        "hashed_password": get_password_hash(password),
        "is_active": True,
        "organization_id": 7,
    }
    fields.update(overrides)
    return User(**fields)


def db_returning(user) -> MagicMock:
    db = MagicMock()
    db.query.return_value.filter.return_value.first.return_value = user
    return db


class TestPasswordHashing:
    """Password hashing with pbkdf2."""

    def test_hash_verifies_only_the_original_password(self):
        hashed = get_password_hash("Passw0rd!")

        assert hashed != "Passw0rd!"
        assert verify_password("Passw0rd!", hashed) is True
        assert verify_password("passw0rd!", hashed) is False

    def test_hashes_are_salted(self):
        assert get_password_hash("Passw0rd!") != get_password_hash("Passw0rd!")


class TestTokens:
    """Bearer token creation and decoding."""

    def test_access_token_carries_claims_and_expiry(self):
        token = create_access_token({"sub": "jane", "role": "regular"})

        decoded = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        assert decoded["sub"] == "jane"
        assert decoded["exp"] > decoded["iat"]

    def test_user_token_carries_role_and_organization(self):
        user = member(username="manager", role=RoleEnum.FACILITY_MANAGER)

        decoded = decode_token(create_user_token(user))

        assert decoded["sub"] == "manager"
        assert decoded["role"] == "facility_manager"
        assert decoded["org"] == 7

    def test_garbage_token_is_rejected(self):
        with pytest.raises(HTTPException) as exc_info:
            decode_token("invalid.token.here")

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Invalid token"

    def test_expired_token_is_rejected(self):
        token = create_access_token({"sub": "jane"}, expires_delta=timedelta(hours=-1))

        with pytest.raises(HTTPException) as exc_info:
            decode_token(token)

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Token has expired"

    def test_token_signed_with_another_secret_is_rejected(self):
        token = jwt.encode({"sub": "jane"}, "not-the-secret", algorithm=settings.jwt_algorithm)

        with pytest.raises(HTTPException):
            decode_token(token)


class TestAuthenticateUser:
    """Login credential checks."""

    def test_valid_credentials(self):
        user = member()

        assert authenticate_user(db_returning(user), "jane", "Passw0rd!") is user

    def test_wrong_password(self):
        assert authenticate_user(db_returning(member()), "jane", "WrongPassword") is None

    def test_unknown_username(self):
        assert authenticate_user(db_returning(None), "ghost", "Passw0rd!") is None

    def test_disabled_account(self):
        user = member(is_active=False)

        assert authenticate_user(db_returning(user), "jane", "Passw0rd!") is None
