"""Booking lifecycle: time-driven ``active -> completed`` transitions.

``BookingLifecycleService`` is the only writer of automated status changes.
Triggers (the scheduled command, the booking read dependency and the
maintenance endpoint) call ``update_expired_booking_statuses`` and decide
themselves what to do with a ``StoreUnavailable`` failure.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

from .booking_store import BookingStore
from .models import Booking

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class BookingLifecycleService:
    """Keeps booking status consistent with wall-clock time."""

    def __init__(self, store: BookingStore, clock: Optional[Clock] = None) -> None:
        self._store = store
        self._clock = clock or datetime.utcnow

    def now(self) -> datetime:
        return self._clock()

    def update_expired_booking_statuses(self) -> int:
        """Complete every active booking whose end time has passed.

        Returns the number of bookings transitioned by this call. Bookings
        already completed or cancelled are never selected, so an immediate
        second call returns 0.

        Raises:
            StoreUnavailable: If the store cannot be reached.
        """
        now = self.now()
        count = self._store.complete_expired(now)
        if count:
            logger.info("Completed %d expired booking(s) ended at or before %s", count, now.isoformat())
        else:
            logger.debug("No expired bookings at %s", now.isoformat())
        return count

    def pending_expired_bookings(self) -> List[Booking]:
        """Bookings the next update would complete, without writing anything."""
        return self._store.find_active_expired_before(self.now())
