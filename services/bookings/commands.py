"""Console command completing bookings whose end time has passed.

Run it from cron (one pass per invocation) or let it keep its own cadence
with ``--interval``::

    update-booking-status
    update-booking-status --dry-run
    update-booking-status --interval 60
"""
from __future__ import annotations

import argparse
import sys
import time
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session

from common.booking_lifecycle import BookingLifecycleService
from common.booking_store import SqlAlchemyBookingStore
from common.config import get_settings
from common.database import SessionLocal
from common.exceptions import StoreUnavailable
from common.logging_middleware import get_service_logger

logger = get_service_logger("scheduler")

SessionFactory = Callable[[], Session]


def run_once(session_factory: SessionFactory = SessionLocal, dry_run: bool = False) -> int:
    """One scheduled pass; returns the number of bookings completed (or due, with ``dry_run``).

    ``StoreUnavailable`` propagates to the caller.
    """
    db = session_factory()
    try:
        lifecycle = BookingLifecycleService(SqlAlchemyBookingStore(db))
        print(f"Current time: {lifecycle.now():%Y-%m-%d %H:%M:%S}")
        if dry_run:
            due = lifecycle.pending_expired_bookings()
            for booking in due:
                print(f"  #{booking.id} {booking.title!r} ended {booking.ended_at:%Y-%m-%d %H:%M:%S}")
            print(f"{len(due)} booking(s) would be marked as completed.")
            return len(due)

        count = lifecycle.update_expired_booking_statuses()
        if count == 0:
            print("No bookings to update.")
        else:
            print(f"Successfully updated {count} booking(s) to completed status.")
        logger.info("booking status update | updated=%d", count)
        return count
    finally:
        db.close()


def run_forever(
    interval: int,
    session_factory: SessionFactory = SessionLocal,
    max_runs: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Repeat ``run_once`` every ``interval`` seconds; returns the number of failed runs."""
    runs = 0
    failures = 0
    while max_runs is None or runs < max_runs:
        if runs:
            sleep(interval)
        runs += 1
        try:
            run_once(session_factory)
        except StoreUnavailable as exc:
            # Not retried here; the next tick is the retry.
            failures += 1
            logger.error("booking status update failed | error=%s", exc)
            print(f"Booking store unavailable: {exc}", file=sys.stderr)
    return failures


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="update-booking-status",
        description="Updates booking statuses from active to completed for bookings that have ended",
    )
    parser.add_argument("--dry-run", action="store_true", help="only list the bookings that would be completed")
    parser.add_argument(
        "--interval",
        type=int,
        nargs="?",
        const=get_settings().booking_status_interval_seconds,
        default=None,
        help="keep running, one pass every INTERVAL seconds (default from BOOKING_STATUS_INTERVAL_SECONDS)",
    )
    parser.add_argument("--max-runs", type=int, default=None, help="stop after this many passes when looping")
    return parser


def main(argv: Optional[Sequence[str]] = None, session_factory: SessionFactory = SessionLocal) -> int:
    args = build_parser().parse_args(argv)
    if args.interval is not None:
        if args.interval < 1:
            print("--interval must be at least 1 second", file=sys.stderr)
            return 2
        failures = run_forever(args.interval, session_factory, max_runs=args.max_runs)
        return 1 if failures else 0

    try:
        run_once(session_factory, dry_run=args.dry_run)
    except StoreUnavailable as exc:
        logger.error("booking status update failed | error=%s", exc)
        print(f"Booking store unavailable: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
