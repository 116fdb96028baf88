"""Date/time-only rescheduling of booked trips."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select

from .exceptions import (
    DuplicateSegmentError,
    OwnershipError,
    RescheduleFieldError,
    SegmentNotFoundError,
)
from .files import FileStore
from .lifecycle import load_trip
from .logging_config import get_logger
from .models import FileType, Identity, ItineraryItem, RescheduleResult, TripStatus
from .notifications import Notification, Subject, TripMailer
from .resolver import ApproverResolver
from .storage import Database, FileUploadRecord, ItineraryRecord, utcnow
from .transitions import TripOperation, apply_transition

logger = get_logger(__name__)

ALLOWED_FIELDS: frozenset[str] = frozenset(
    {
        "departureDate",
        "returnDate",
        "departTime",
        "returnTime",
        "checkinDate",
        "checkoutDate",
        "checkinTime",
        "checkoutTime",
        "pickupDate",
        "dropoffDate",
        "pickupTime",
        "dropoffTime",
    }
)

PURGED_FILE_TYPES: tuple[FileType, ...] = (FileType.RECEIPTS, FileType.TRAVEL_OPTIONS)


def merge_segment_details(
    current: dict[str, Any], requested: dict[str, Any]
) -> dict[str, Any]:
    """Return ``current`` updated with the whitelisted changes in ``requested``.

    Keys whose value is unchanged are ignored whether or not they are
    whitelisted. The first differing key outside :data:`ALLOWED_FIELDS`
    raises :class:`RescheduleFieldError`.
    """

    merged = dict(current)
    for key, value in requested.items():
        if current.get(key) == value:
            continue
        if key not in ALLOWED_FIELDS:
            raise RescheduleFieldError(key)
        merged[key] = value
    return merged


@dataclass
class RescheduleFlow:
    """Move a booked trip's dates and send it back for fresh options."""

    database: Database
    mailer: TripMailer
    file_store: FileStore
    resolver: ApproverResolver = field(default_factory=ApproverResolver)
    clock: Callable[[], datetime] = utcnow

    def reschedule(
        self,
        trip_id: int,
        requester: Identity,
        segments: Sequence[ItineraryItem],
    ) -> RescheduleResult:
        outbox: list[Notification | None] = []
        with self.database.transaction() as session:
            now = self.clock()
            trip = load_trip(session, trip_id)
            if trip.requester_code != requester.user_code:
                raise OwnershipError(trip_id, "reschedule")
            apply_transition(trip, TripOperation.RESCHEDULE, TripStatus.APPROVED, now=now)

            stored = {item.id: item for item in trip.itineraries}
            updates: list[tuple[ItineraryRecord, dict[str, Any]]] = []
            seen: set[int] = set()
            for segment in segments:
                record = stored.get(segment.id) if segment.id is not None else None
                if record is None:
                    raise SegmentNotFoundError(segment.id, trip_id)
                if record.id in seen:
                    raise DuplicateSegmentError(record.id)
                seen.add(record.id)
                updates.append(
                    (record, merge_segment_details(record.details or {}, segment.details))
                )

            for record, details in updates:
                record.details = details

            trip.total_cost = None
            trip.booked_at = None
            trip.option_selected = None

            purged = list(
                session.execute(
                    select(FileUploadRecord).where(
                        FileUploadRecord.trip_id == trip_id,
                        FileUploadRecord.file_type.in_(PURGED_FILE_TYPES),
                    )
                ).scalars()
            )
            removed = [item.filepath for item in purged]
            for item in purged:
                session.delete(item)
            session.flush()

            admin = self.resolver.travel_admin(session)
            if admin is not None:
                outbox.append(
                    self.mailer.compose(
                        admin.email,
                        f"{Subject.TRIP_RESCHEDULED} - {trip.reference_no}",
                        trip,
                        "Requester has rescheduled their trip. "
                        "Please review and upload new travel options.",
                        link_path="/travel-management",
                    )
                )
            else:
                logger.warning("travel_admin_missing", trip_id=trip_id)

        # Only after commit: a rollback must leave every recorded file in place.
        for path in removed:
            self._remove_file(trip_id, path)

        logger.info(
            "trip_rescheduled",
            trip_id=trip_id,
            segments=len(updates),
            removed_files=len(removed),
        )
        self.mailer.dispatch(outbox)
        return RescheduleResult(
            trip_id=trip_id,
            status=TripStatus.APPROVED,
            updated_segments=[record.id for record, _ in updates],
            removed_files=removed,
        )

    def _remove_file(self, trip_id: int, path: str) -> None:
        try:
            if self.file_store.exists(path):
                self.file_store.delete(path)
        except (OSError, ValueError):
            logger.exception("file_delete_failed", trip_id=trip_id, path=path)
