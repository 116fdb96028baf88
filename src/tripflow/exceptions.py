"""Error taxonomy for trip lifecycle operations.

Every error raised by the engine derives from :class:`TripflowError` and also
from the builtin exception callers would expect for the same situation, so
``except KeyError`` or ``except PermissionError`` keep working at the edges.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import TripStatus
    from .transitions import TripOperation


class TripflowError(Exception):
    """Base class for all engine errors."""


class NotFoundError(TripflowError, KeyError):
    """A trip, approval, identity or itinerary segment does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class TripNotFoundError(NotFoundError):
    def __init__(self, trip_id: int) -> None:
        super().__init__(f"Trip {trip_id} not found")
        self.trip_id = trip_id


class ApprovalNotFoundError(NotFoundError):
    def __init__(self, approval_id: int) -> None:
        super().__init__(f"Approval {approval_id} not found")
        self.approval_id = approval_id


class IdentityNotFoundError(NotFoundError):
    def __init__(self, identifier: int | str) -> None:
        super().__init__(f"User '{identifier}' not found")
        self.identifier = identifier


class SegmentNotFoundError(NotFoundError):
    def __init__(self, segment_id: int | None, trip_id: int) -> None:
        super().__init__(f"Itinerary item {segment_id} not found on trip {trip_id}")
        self.segment_id = segment_id
        self.trip_id = trip_id


class PreconditionError(TripflowError, ValueError):
    """The trip or approval is not in a state that permits the operation."""


class IllegalTransitionError(PreconditionError):
    """The requested operation is not legal from the trip's current status."""

    def __init__(
        self,
        status: TripStatus,
        operation: TripOperation,
        *,
        trip_id: int | None = None,
    ) -> None:
        target = f"Trip {trip_id}" if trip_id is not None else "Trip"
        super().__init__(
            f"{target} is {status.value}; '{operation.value}' is not permitted"
        )
        self.status = status
        self.operation = operation
        self.trip_id = trip_id


class ApprovalAlreadyDecidedError(PreconditionError):
    def __init__(self, approval_id: int) -> None:
        super().__init__(f"Approval {approval_id} has already been decided")
        self.approval_id = approval_id


class OpenApprovalExistsError(PreconditionError):
    def __init__(self, trip_id: int, approval_id: int) -> None:
        super().__init__(
            f"Trip {trip_id} already has an undecided approval ({approval_id})"
        )
        self.trip_id = trip_id
        self.approval_id = approval_id


class OwnershipError(TripflowError, PermissionError):
    """Only the original requester may perform the operation."""

    def __init__(self, trip_id: int, operation: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Unauthorized: only the requester may {operation} trip {trip_id}"
        )
        self.trip_id = trip_id
        self.operation = operation


class TripAccessError(OwnershipError):
    """The viewer is neither the requester, an approver on the trip nor an admin."""

    def __init__(self, trip_id: int, user_code: str) -> None:
        super().__init__(
            trip_id, "view", f"Unauthorized: {user_code} may not view trip {trip_id}"
        )
        self.user_code = user_code


class RescheduleFieldError(TripflowError, ValueError):
    """A reschedule payload changes a field outside the date/time whitelist."""

    def __init__(self, field: str) -> None:
        super().__init__(
            f"Cannot modify field: {field}. Only date and time fields can be "
            "updated during reschedule."
        )
        self.field = field


class DuplicateSegmentError(TripflowError, ValueError):
    """A reschedule payload names the same itinerary item more than once."""

    def __init__(self, segment_id: int) -> None:
        super().__init__(f"Itinerary item {segment_id} appears more than once")
        self.segment_id = segment_id


class InvalidCostError(TripflowError, ValueError):
    def __init__(self, cost: object, requirement: str = "a positive integer") -> None:
        super().__init__(f"Invalid cost provided - must be {requirement}, got {cost!r}")
        self.cost = cost
