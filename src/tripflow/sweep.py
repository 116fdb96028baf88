"""Periodic auto-close of booked trips whose travel has ended."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, tzinfo
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from .logging_config import get_logger
from .models import TripStatus
from .storage import Database, TripRecord, lock_trip, utcnow
from .transitions import TripOperation, apply_transition, is_legal

logger = get_logger(__name__)

SWEEP_JOB_ID = "tripflow_auto_close"

# Per segment, the first non-empty key wins.
END_DATE_KEYS: tuple[str, ...] = (
    "returnDate",
    "departureDate",
    "checkoutDate",
    "checkinDate",
    "dropoffDate",
    "pickupDate",
)


def parse_segment_date(value: Any) -> date:
    """Parse ``YYYY-MM-DD`` or an ISO timestamp into a calendar date."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) > 10 and text[10] in "T ":
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    return date.fromisoformat(text)


def segment_end_date(details: Mapping[str, Any], *, trip_id: int | None = None) -> date | None:
    for key in END_DATE_KEYS:
        value = details.get(key)
        if not value:
            continue
        try:
            return parse_segment_date(value)
        except ValueError:
            logger.warning("segment_date_unparsable", trip_id=trip_id, key=key, value=value)
            return None
    return None


def trip_end_date(
    segments: Iterable[Mapping[str, Any]], *, trip_id: int | None = None
) -> date | None:
    """Latest end date across a trip's segments, or ``None`` when none is known."""

    dates = [
        end
        for end in (segment_end_date(details, trip_id=trip_id) for details in segments)
        if end is not None
    ]
    return max(dates, default=None)


@dataclass
class AutoCloseSweep:
    """Close ``BOOKED`` trips once their last travel date is in the past.

    "Today" is the calendar day in ``timezone``, so a trip ending on the 10th
    closes on the first pass of the 11th in that zone.
    """

    database: Database
    clock: Callable[[], datetime] = utcnow
    timezone: tzinfo = UTC
    scheduler: BackgroundScheduler | None = field(default=None, init=False, repr=False)

    def due_trip_ids(self, today: date) -> list[int]:
        with self.database.transaction() as session:
            statement = (
                select(TripRecord)
                .where(TripRecord.status == TripStatus.BOOKED)
                .options(selectinload(TripRecord.itineraries))
                .order_by(TripRecord.id)
            )
            due: list[int] = []
            for trip in session.execute(statement).scalars():
                end = trip_end_date(
                    (item.details or {} for item in trip.itineraries), trip_id=trip.id
                )
                if end is not None and end < today:
                    due.append(trip.id)
            return due

    def run(self, today: date | None = None) -> list[int]:
        """Run one pass and return the ids of the trips it closed."""

        today = today or self.clock().astimezone(self.timezone).date()
        closed: list[int] = []
        for trip_id in self.due_trip_ids(today):
            if self._close(trip_id):
                closed.append(trip_id)
        logger.info("auto_close_completed", today=today.isoformat(), closed=len(closed))
        return closed

    def _close(self, trip_id: int) -> bool:
        with self.database.transaction() as session:
            trip = lock_trip(session, trip_id)
            if trip is None or not is_legal(TripStatus(trip.status), TripOperation.AUTO_CLOSE):
                logger.info("auto_close_skipped", trip_id=trip_id)
                return False
            now = self.clock()
            apply_transition(trip, TripOperation.AUTO_CLOSE, TripStatus.CLOSED, now=now)
            trip.closed_at = now
            logger.info("trip_auto_closed", trip_id=trip_id, reference_no=trip.reference_no)
            return True

    def schedule(self, interval_seconds: int, *, run_now: bool = True) -> BackgroundScheduler:
        """Run the sweep every ``interval_seconds`` on a background scheduler."""

        if self.scheduler is not None and self.scheduler.running:
            return self.scheduler
        scheduler = BackgroundScheduler(timezone=self.timezone)
        job_options: dict[str, Any] = {}
        if run_now:
            job_options["next_run_time"] = datetime.now(self.timezone)
        scheduler.add_job(
            self._scheduled_run,
            trigger=IntervalTrigger(seconds=interval_seconds, timezone=self.timezone),
            id=SWEEP_JOB_ID,
            name="Close booked trips whose travel has ended",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **job_options,
        )
        scheduler.start()
        self.scheduler = scheduler
        logger.info("auto_close_scheduled", interval_seconds=interval_seconds)
        return scheduler

    def _scheduled_run(self) -> None:
        try:
            self.run()
        except Exception:
            logger.exception("auto_close_failed")

    def stop(self, *, wait: bool = True) -> None:
        if self.scheduler is None:
            return
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("auto_close_unscheduled")
        self.scheduler = None
