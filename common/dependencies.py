"""Reusable FastAPI dependencies for auth, database access and booking freshness."""
import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader, OAuth2PasswordBearer
from sqlalchemy.orm import Session

from .auth import decode_token
from .booking_lifecycle import BookingLifecycleService
from .booking_store import SqlAlchemyBookingStore
from .config import get_settings
from .database import get_db
from .exceptions import StoreUnavailable
from .models import RoleEnum, User

logger = logging.getLogger(__name__)

settings = get_settings()
oauth_scheme = OAuth2PasswordBearer(tokenUrl="/users/login")
service_api_key_header = APIKeyHeader(name="X-Service-Key", auto_error=False)


def get_current_user(token: str = Depends(oauth_scheme), db: Session = Depends(get_db)) -> User:
    payload = decode_token(token)
    username: str | None = payload.get("sub")
    if username is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing subject in token")
    user = db.query(User).filter(User.username == username).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")
    return current_user


def allow_roles(*roles: RoleEnum) -> Callable[[User], User]:
    def dependency(current_user: User = Depends(get_current_active_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return dependency


def require_service_key(api_key: str = Security(service_api_key_header)) -> None:
    if not api_key or api_key != settings.service_api_key:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid service key")


def get_lifecycle_service(db: Session = Depends(get_db)) -> BookingLifecycleService:
    return BookingLifecycleService(SqlAlchemyBookingStore(db))


def refresh_booking_statuses(
    request: Request,
    lifecycle: BookingLifecycleService = Depends(get_lifecycle_service),
) -> None:
    """Complete expired bookings before a booking read is served.

    A store failure is logged and the read goes on with possibly stale data;
    the next trigger converges the state.
    """
    if not settings.booking_refresh_on_read:
        return
    try:
        count = lifecycle.update_expired_booking_statuses()
    except StoreUnavailable as exc:
        logger.error(
            "Failed to update booking statuses automatically | path=%s | error=%s",
            request.url.path,
            exc,
        )
        return
    if count:
        logger.info(
            "Booking statuses updated automatically on read | path=%s | updated_count=%d",
            request.url.path,
            count,
        )
