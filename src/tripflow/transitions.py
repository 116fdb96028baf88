"""Explicit transition table for the trip state machine."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import TYPE_CHECKING

from .exceptions import IllegalTransitionError
from .models import TripStatus

if TYPE_CHECKING:
    from datetime import datetime

    from .storage import TripRecord


class TripOperation(StrEnum):
    """Operations that move a trip between statuses."""

    SELECT_OPTION = "select_option"
    DECIDE = "decide"
    MARK_OPTIONS_UPLOADED = "mark_options_uploaded"
    RECORD_BOOKING = "record_booking"
    RECORD_VISA_UPLOAD = "record_visa_upload"
    CLOSE = "close"
    REQUEST_CANCELLATION = "request_cancellation"
    CONFIRM_CANCELLATION = "confirm_cancellation"
    RESCHEDULE = "reschedule"
    AUTO_CLOSE = "auto_close"


TERMINAL_STATUSES: frozenset[TripStatus] = frozenset(
    {TripStatus.CLOSED, TripStatus.CANCELLED, TripStatus.REJECTED}
)

PENDING_DECISION_STATUSES: frozenset[TripStatus] = frozenset(
    {TripStatus.RM_PENDING, TripStatus.TRAVEL_ADMIN_PENDING}
)


# Close is owner-gated only; it accepts every status.
LEGAL_SOURCES: Mapping[TripOperation, frozenset[TripStatus]] = {
    TripOperation.SELECT_OPTION: frozenset({TripStatus.SELECT_OPTION}),
    TripOperation.DECIDE: PENDING_DECISION_STATUSES,
    TripOperation.MARK_OPTIONS_UPLOADED: frozenset({TripStatus.APPROVED}),
    TripOperation.RECORD_BOOKING: frozenset({TripStatus.OPTION_SELECTED}),
    TripOperation.RECORD_VISA_UPLOAD: frozenset({TripStatus.VISA_PENDING}),
    TripOperation.CLOSE: frozenset(TripStatus),
    TripOperation.REQUEST_CANCELLATION: frozenset(TripStatus)
    - TERMINAL_STATUSES
    - {TripStatus.CANCELLATION_PENDING},
    TripOperation.CONFIRM_CANCELLATION: frozenset({TripStatus.CANCELLATION_PENDING}),
    TripOperation.RESCHEDULE: frozenset({TripStatus.BOOKED}),
    TripOperation.AUTO_CLOSE: frozenset({TripStatus.BOOKED}),
}

LEGAL_TARGETS: Mapping[TripOperation, frozenset[TripStatus]] = {
    TripOperation.SELECT_OPTION: frozenset(
        {
            TripStatus.RM_PENDING,
            TripStatus.TRAVEL_ADMIN_PENDING,
            TripStatus.APPROVED,
        }
    ),
    TripOperation.DECIDE: frozenset(
        {
            TripStatus.TRAVEL_ADMIN_PENDING,
            TripStatus.APPROVED,
            TripStatus.BOOKED,
            TripStatus.VISA_PENDING,
            TripStatus.REJECTED,
            TripStatus.EDIT,
        }
    ),
    TripOperation.MARK_OPTIONS_UPLOADED: frozenset({TripStatus.SELECT_OPTION}),
    TripOperation.RECORD_BOOKING: frozenset({TripStatus.BOOKED}),
    TripOperation.RECORD_VISA_UPLOAD: frozenset({TripStatus.VISA_UPLOADED}),
    TripOperation.CLOSE: frozenset({TripStatus.CLOSED}),
    TripOperation.REQUEST_CANCELLATION: frozenset(
        {TripStatus.CANCELLATION_PENDING, TripStatus.CANCELLED}
    ),
    TripOperation.CONFIRM_CANCELLATION: frozenset({TripStatus.CANCELLED}),
    TripOperation.RESCHEDULE: frozenset({TripStatus.APPROVED}),
    TripOperation.AUTO_CLOSE: frozenset({TripStatus.CLOSED}),
}


def is_legal(status: TripStatus, operation: TripOperation) -> bool:
    """Return True when ``operation`` may run while a trip is in ``status``."""

    return status in LEGAL_SOURCES[operation]


def require_legal(
    status: TripStatus, operation: TripOperation, *, trip_id: int | None = None
) -> None:
    """Raise :class:`IllegalTransitionError` unless the pair is in the table."""

    if not is_legal(status, operation):
        raise IllegalTransitionError(status, operation, trip_id=trip_id)


def apply_transition(
    trip: TripRecord,
    operation: TripOperation,
    new_status: TripStatus,
    *,
    now: datetime,
) -> TripStatus:
    """Validate and write a status change on a loaded trip row.

    Returns the previous status.
    """

    previous = TripStatus(trip.status)
    require_legal(previous, operation, trip_id=trip.id)
    if new_status not in LEGAL_TARGETS[operation]:
        msg = f"'{operation.value}' cannot move a trip to {new_status.value}"
        raise ValueError(msg)
    trip.status = new_status
    trip.updated_at = now
    return previous
