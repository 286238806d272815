"""Booking persistence (repository pattern).

The lifecycle service depends only on ``BookingStore``; the SQLAlchemy
implementation turns every database error into ``StoreUnavailable``
after rolling the session back.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .exceptions import StoreUnavailable
from .models import Booking, BookingStatus

logger = logging.getLogger(__name__)


class BookingStore(ABC):
    """Interface for booking status persistence."""

    @abstractmethod
    def find_active_expired_before(self, now: datetime) -> List[Booking]:
        """Return active bookings whose ``ended_at`` is at or before ``now``."""
        ...

    @abstractmethod
    def bulk_set_status(
        self,
        booking_ids: Iterable[int],
        new_status: BookingStatus,
        expected_status: BookingStatus = BookingStatus.ACTIVE,
    ) -> int:
        """Move the given bookings still in ``expected_status`` to ``new_status``.

        Returns the number of rows actually changed.
        """
        ...

    @abstractmethod
    def complete_expired(self, now: datetime) -> int:
        """Atomically complete every active booking ended at or before ``now``."""
        ...


class SqlAlchemyBookingStore(BookingStore):
    """Relational booking store backed by a SQLAlchemy session."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def find_active_expired_before(self, now: datetime) -> List[Booking]:
        query = (
            select(Booking)
            .where(Booking.status == BookingStatus.ACTIVE, Booking.ended_at <= now)
            .order_by(Booking.ended_at)
        )
        try:
            return list(self._db.scalars(query))
        except SQLAlchemyError as exc:
            self._rollback()
            raise StoreUnavailable("find_active_expired_before") from exc

    def bulk_set_status(
        self,
        booking_ids: Iterable[int],
        new_status: BookingStatus,
        expected_status: BookingStatus = BookingStatus.ACTIVE,
    ) -> int:
        ids = list(booking_ids)
        if not ids:
            return 0
        statement = (
            update(Booking)
            .where(Booking.id.in_(ids), Booking.status == expected_status)
            .values(status=new_status)
        )
        return self._execute_update(statement, "bulk_set_status")

    def complete_expired(self, now: datetime) -> int:
        # Selection and write are one statement so concurrent callers cannot claim the same row.
        statement = (
            update(Booking)
            .where(Booking.status == BookingStatus.ACTIVE, Booking.ended_at <= now)
            .values(status=BookingStatus.COMPLETED)
        )
        return self._execute_update(statement, "complete_expired")

    def _execute_update(self, statement, operation: str) -> int:
        try:
            result = self._db.execute(statement.execution_options(synchronize_session=False))
            self._db.commit()
        except SQLAlchemyError as exc:
            self._rollback()
            logger.error("Booking store operation %s failed: %s", operation, exc)
            raise StoreUnavailable(operation) from exc
        return result.rowcount

    def _rollback(self) -> None:
        try:
            self._db.rollback()
        except SQLAlchemyError:
            logger.warning("Rollback failed after booking store error")
