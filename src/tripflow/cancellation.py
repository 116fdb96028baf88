"""Requester-initiated cancellation and admin confirmation of booked trips."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from .exceptions import InvalidCostError
from .ledger import ApprovalLedger
from .lifecycle import load_trip
from .logging_config import get_logger
from .models import CancellationResult, TripStatus
from .notifications import Notification, Subject, TripMailer
from .resolver import ApproverResolver
from .storage import Database, utcnow
from .transitions import TripOperation, apply_transition

logger = get_logger(__name__)


@dataclass
class CancellationFlow:
    """Cancel trips directly, or via a pending step once they are booked.

    A booked trip carries booking costs, so it moves to
    ``CANCELLATION_PENDING`` and waits for a travel admin to record the
    cancellation fee. Any other open trip is cancelled straight away.
    """

    database: Database
    mailer: TripMailer
    resolver: ApproverResolver = field(default_factory=ApproverResolver)
    ledger: ApprovalLedger = field(default_factory=ApprovalLedger)
    clock: Callable[[], datetime] = utcnow

    def request(self, trip_id: int, reason: str) -> CancellationResult:
        outbox: list[Notification | None] = []
        with self.database.transaction() as session:
            now = self.clock()
            trip = load_trip(session, trip_id)
            booked = trip.status == TripStatus.BOOKED
            new_status = TripStatus.CANCELLATION_PENDING if booked else TripStatus.CANCELLED
            apply_transition(trip, TripOperation.REQUEST_CANCELLATION, new_status, now=now)
            trip.cancellation_reason = reason

            self.ledger.withdraw(session, trip_id, "Cancelled by requester", now=now)

            if booked:
                outbox.append(
                    self.mailer.compose(
                        trip.requester_email,
                        Subject.TRIP_CANCELLATION_REQUESTED,
                        trip,
                        f"Cancellation requested for Trip {trip.reference_no}.\n"
                        f"Reason: {reason}\n"
                        "Status is now pending Travel Admin confirmation.",
                        link_path="/my-trips",
                    )
                )
                admin = self.resolver.travel_admin(session)
                if admin is None:
                    logger.warning("travel_admin_missing", trip_id=trip_id)
                else:
                    outbox.append(
                        self.mailer.compose(
                            admin.email,
                            f"{Subject.CANCELLATION_ACTION_REQUIRED} #{trip.reference_no}",
                            trip,
                            "Requester has requested cancellation for a booked trip.\n"
                            f"Reason: {reason}\n"
                            "Please process cancellation charges.",
                            link_path="/admin/cancellations",
                        )
                    )
            else:
                outbox.append(
                    self.mailer.compose(
                        trip.requester_email,
                        Subject.TRIP_CANCELLED,
                        trip,
                        f"Your trip {trip.reference_no} has been cancelled.\n"
                        f"Reason: {reason}",
                        link_path="/my-trips",
                    )
                )

        logger.info("cancellation_requested", trip_id=trip_id, status=new_status.value)
        self.mailer.dispatch(outbox)
        return CancellationResult(trip_id=trip_id, status=new_status)

    def confirm(self, trip_id: int, cancellation_cost: int) -> CancellationResult:
        """Record the cancellation fee and finish a pending cancellation."""

        if (
            isinstance(cancellation_cost, bool)
            or not isinstance(cancellation_cost, int)
            or cancellation_cost < 0
        ):
            raise InvalidCostError(cancellation_cost, "a non-negative integer")

        outbox: list[Notification | None] = []
        with self.database.transaction() as session:
            now = self.clock()
            trip = load_trip(session, trip_id)
            apply_transition(
                trip, TripOperation.CONFIRM_CANCELLATION, TripStatus.CANCELLED, now=now
            )
            trip.cancellation_cost = cancellation_cost
            outbox.append(
                self.mailer.compose(
                    trip.requester_email,
                    Subject.CANCELLATION_CONFIRMED,
                    trip,
                    "Your trip cancellation has been processed.\n"
                    f"Cancellation Charges: {cancellation_cost:,}",
                    link_path="/my-trips",
                )
            )

        logger.info(
            "cancellation_confirmed", trip_id=trip_id, cancellation_cost=cancellation_cost
        )
        self.mailer.dispatch(outbox)
        return CancellationResult(trip_id=trip_id, status=TripStatus.CANCELLED)
