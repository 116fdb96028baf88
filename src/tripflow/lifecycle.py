"""Trip creation and status transitions driven by approvals and bookings."""

from __future__ import annotations

import secrets
import string
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from .exceptions import (
    ApprovalAlreadyDecidedError,
    IdentityNotFoundError,
    InvalidCostError,
    OpenApprovalExistsError,
    OwnershipError,
    TripAccessError,
    TripNotFoundError,
)
from .ledger import ApprovalLedger
from .logging_config import get_logger
from .models import (
    ApprovalAction,
    ApproverRole,
    CreateTripRequest,
    CreateTripResult,
    DecisionResult,
    FileType,
    Identity,
    TripStatus,
    TripView,
    UploadedFile,
)
from .notifications import Notification, Subject, TripMailer
from .partner import BookingPartner, NullBookingPartner
from .resolver import ApproverResolver
from .storage import (
    Database,
    FileUploadRecord,
    ItineraryRecord,
    TripRecord,
    lock_trip,
    utcnow,
)
from .transitions import TripOperation, apply_transition, require_legal

logger = get_logger(__name__)

_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def generate_reference_no(now: datetime) -> str:
    """Return a reference like ``TRIP-241025-X7Y8Z9``."""

    suffix = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(6))
    return f"TRIP-{now:%y%m%d}-{suffix}"


def require_positive_cost(cost: object) -> int:
    if isinstance(cost, bool) or not isinstance(cost, int) or cost <= 0:
        raise InvalidCostError(cost)
    return cost


def load_trip(session: Session, trip_id: int) -> TripRecord:
    """Lock and return a trip row or raise :class:`TripNotFoundError`."""

    trip = lock_trip(session, trip_id)
    if trip is None:
        raise TripNotFoundError(trip_id)
    return trip


def attach_files(
    session: Session,
    trip: TripRecord,
    file_type: FileType,
    files: Sequence[UploadedFile],
    *,
    now: datetime,
) -> list[FileUploadRecord]:
    records = [
        FileUploadRecord(
            trip_id=trip.id,
            uploaded_by=item.uploaded_by,
            file_type=file_type,
            filename=item.filename,
            filepath=item.filepath,
            uploaded_at=now,
        )
        for item in files
    ]
    session.add_all(records)
    return records


@dataclass
class TripLifecycle:
    """Own the trip status field and the approval side effects of each change."""

    database: Database
    mailer: TripMailer
    resolver: ApproverResolver = field(default_factory=ApproverResolver)
    ledger: ApprovalLedger = field(default_factory=ApprovalLedger)
    partner: BookingPartner = field(default_factory=NullBookingPartner)
    clock: Callable[[], datetime] = utcnow

    # ------------------------------------------------------------------ create

    def create(self, requester: Identity, request: CreateTripRequest) -> CreateTripResult:
        """Open a trip, computing its initial status and first approver."""

        outbox: list[Notification | None] = []
        with self.database.transaction() as session:
            now = self.clock()
            decision = self.resolver.resolve(session, requester)
            status = decision.status
            approver = decision.approver

            if request.intent.defers_booking and not request.is_visa_request:
                status = TripStatus.SELECT_OPTION
                approver = None
            elif decision.status == TripStatus.APPROVED and request.is_visa_request:
                status = TripStatus.VISA_PENDING

            trip = TripRecord(
                reference_no=self._unique_reference(session, now),
                requester_code=requester.user_code,
                requester_name=requester.username,
                designation=requester.designation,
                department=requester.department,
                trip_name=request.trip_name,
                travel_type=request.travel_type,
                destination_country=request.destination_country,
                visa_required=request.visa_required,
                business_purpose=request.business_purpose,
                status=status,
                is_visa_request=request.is_visa_request,
                expected_journey_date=request.expected_journey_date,
                created_at=now,
                submitted_at=now,
                updated_at=now,
            )
            trip.itineraries = [
                ItineraryRecord(type=item.type, details=dict(item.details), created_at=now)
                for item in request.itineraries
            ]
            session.add(trip)
            session.flush()

            if approver is not None:
                self.ledger.open(
                    session, trip.id, approver.id, decision.approver_role, now=now
                )
            elif status in (TripStatus.RM_PENDING, TripStatus.TRAVEL_ADMIN_PENDING):
                logger.warning("trip_unrouted", trip_id=trip.id, status=status.value)

            outbox.append(
                self.mailer.compose(
                    requester.email,
                    Subject.TRIP_SUBMITTED,
                    trip,
                    "Your trip request has been submitted.",
                    link_path="/my-trips",
                )
            )
            if approver is not None:
                outbox.append(
                    self.mailer.compose(
                        approver.email,
                        Subject.NEW_APPROVAL_REQUIRED,
                        trip,
                        "A new trip request requires your approval.",
                        link_path="/approvals",
                    )
                )
            result = CreateTripResult(
                trip_id=trip.id, reference_no=trip.reference_no, status=status
            )

        logger.info(
            "trip_created",
            trip_id=result.trip_id,
            reference_no=result.reference_no,
            status=result.status.value,
        )
        self.mailer.dispatch(outbox)
        return result

    def _unique_reference(self, session: Session, now: datetime) -> str:
        for _ in range(10):
            candidate = generate_reference_no(now)
            exists = session.execute(
                select(TripRecord.id).where(TripRecord.reference_no == candidate)
            ).first()
            if exists is None:
                return candidate
        raise RuntimeError("Unable to generate a unique trip reference number")

    # ----------------------------------------------------------- select option

    def select_option(
        self,
        trip_id: int,
        option_text: str,
        cost: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> TripStatus:
        """Record the requester's chosen option and start a fresh approval cycle."""

        outbox: list[Notification | None] = []
        with self.database.transaction() as session:
            now = self.clock()
            trip = load_trip(session, trip_id)
            require_legal(trip.status, TripOperation.SELECT_OPTION, trip_id=trip_id)
            pending = self.ledger.open_for_trip(session, trip_id)
            if pending is not None:
                raise OpenApprovalExistsError(trip_id, pending.id)

            requester = self.resolver.directory.get_by_code(session, trip.requester_code)
            if requester is None:
                raise IdentityNotFoundError(trip.requester_code)
            decision = self.resolver.resolve(session, requester)

            apply_transition(trip, TripOperation.SELECT_OPTION, decision.status, now=now)
            trip.option_selected = option_text
            if cost is not None:
                trip.total_cost = cost
            trip.booking_payload = dict(payload) if payload else None

            if decision.approver is not None:
                self.ledger.open(
                    session,
                    trip_id,
                    decision.approver.id,
                    decision.approver_role,
                    now=now,
                )
                outbox.append(
                    self.mailer.compose(
                        decision.approver.email,
                        Subject.NEW_APPROVAL_REQUIRED,
                        trip,
                        "Requester has selected an option. Please review.\n"
                        f"Selected: {option_text}\n"
                        f"Est. Cost: {cost if cost is not None else 'N/A'}",
                        link_path="/approvals",
                    )
                )
            else:
                logger.warning(
                    "trip_unrouted",
                    trip_id=trip_id,
                    status=decision.status.value,
                )
            status = TripStatus(trip.status)

        logger.info("option_selected", trip_id=trip_id, status=status.value)
        self.mailer.dispatch(outbox)
        return status

    # ------------------------------------------------------------------ decide

    def decide(
        self,
        approval_id: int,
        action: ApprovalAction,
        comments: str | None = None,
    ) -> DecisionResult:
        """Apply an approver's decision to the open record and its trip."""

        outbox: list[Notification | None] = []
        partner_payload: dict[str, Any] | None = None
        next_approval_id: int | None = None

        if not action.is_decision:
            raise ValueError(f"'{action.value}' is not an approver decision")

        with self.database.transaction() as session:
            now = self.clock()
            # Trip row first, then the approval row, matching close and cancel.
            trip = load_trip(session, self.ledger.trip_id_for(session, approval_id))
            record = self.ledger.load(session, approval_id)
            if not record.is_open:
                raise ApprovalAlreadyDecidedError(approval_id)
            require_legal(trip.status, TripOperation.DECIDE, trip_id=trip.id)

            self.ledger.close(session, approval_id, action, comments, now=now)
            requester_email = trip.requester_email

            if action == ApprovalAction.ACCEPT:
                if record.approver_role == ApproverRole.REPORTING_MANAGER:
                    next_approval_id = self._escalate_to_travel_admin(
                        session, trip, now, outbox
                    )
                elif trip.option_selected:
                    partner_payload = {**(trip.booking_payload or {}), "ta_approved": True}
                    apply_transition(trip, TripOperation.DECIDE, TripStatus.BOOKED, now=now)
                    trip.booked_at = now
                    trip.booking_payload = partner_payload
                    outbox.append(
                        self.mailer.compose(
                            requester_email,
                            Subject.BOOKING_CONFIRMED_PARTNER,
                            trip,
                            "Your trip has been booked successfully via the booking partner.",
                            link_path="/my-trips",
                        )
                    )
                else:
                    next_status = (
                        TripStatus.VISA_PENDING
                        if trip.is_visa_request
                        else TripStatus.APPROVED
                    )
                    apply_transition(trip, TripOperation.DECIDE, next_status, now=now)
                    outbox.append(
                        self.mailer.compose(
                            requester_email,
                            Subject.TRIP_APPROVED,
                            trip,
                            "Travel Admin reviewed your request.",
                            link_path="/my-trips",
                        )
                    )
            elif action == ApprovalAction.REJECT:
                apply_transition(trip, TripOperation.DECIDE, TripStatus.REJECTED, now=now)
                outbox.append(
                    self.mailer.compose(
                        requester_email,
                        Subject.TRIP_REJECTED,
                        trip,
                        "Trip rejected",
                        link_path="/my-trips",
                    )
                )
            else:
                apply_transition(trip, TripOperation.DECIDE, TripStatus.EDIT, now=now)
                outbox.append(
                    self.mailer.compose(
                        requester_email,
                        Subject.TRIP_SENT_BACK,
                        trip,
                        "Please edit and resubmit",
                        link_path="/my-trips",
                    )
                )

            result = DecisionResult(
                approval_id=approval_id,
                trip_id=trip.id,
                action=action,
                trip_status=TripStatus(trip.status),
                next_approval_id=next_approval_id,
            )

        logger.info(
            "approval_decided",
            approval_id=approval_id,
            trip_id=result.trip_id,
            action=action.value,
            status=result.trip_status.value,
        )
        self.mailer.dispatch(outbox)
        if partner_payload is not None:
            payload = partner_payload
            self.mailer.dispatcher.submit(
                lambda: self.partner.finalize(payload),
                description=f"partner_finalize:{result.trip_id}",
            )
        return result

    def _escalate_to_travel_admin(
        self,
        session: Session,
        trip: TripRecord,
        now: datetime,
        outbox: list[Notification | None],
    ) -> int | None:
        admin = self.resolver.travel_admin(session)
        if admin is None:
            logger.warning("travel_admin_missing", trip_id=trip.id)
            apply_transition(trip, TripOperation.DECIDE, TripStatus.APPROVED, now=now)
            return None

        apply_transition(
            trip, TripOperation.DECIDE, TripStatus.TRAVEL_ADMIN_PENDING, now=now
        )
        trip.booking_payload = {**(trip.booking_payload or {}), "rm_approved": True}
        record = self.ledger.open(
            session, trip.id, admin.id, ApproverRole.TRAVEL_ADMIN, now=now
        )
        subject = Subject.NEW_APPROVAL_REQUIRED.value
        if trip.option_selected:
            subject = f"{subject} (Partner)"
        outbox.append(
            self.mailer.compose(
                admin.email,
                subject,
                trip,
                "Reporting manager approved. Please finalize.",
                link_path="/approvals",
            )
        )
        return record.id

    # ------------------------------------------------------- admin-side steps

    def mark_options_uploaded(
        self, trip_id: int, files: Sequence[UploadedFile] = ()
    ) -> TripStatus:
        """Travel admin has uploaded candidate options for the requester."""

        outbox: list[Notification | None] = []
        with self.database.transaction() as session:
            now = self.clock()
            trip = load_trip(session, trip_id)
            apply_transition(
                trip, TripOperation.MARK_OPTIONS_UPLOADED, TripStatus.SELECT_OPTION, now=now
            )
            attach_files(session, trip, FileType.TRAVEL_OPTIONS, files, now=now)
            admin = self.resolver.travel_admin(session)
            outbox.append(
                self.mailer.compose(
                    trip.requester_email,
                    f"Trip #{trip.reference_no} - {Subject.OPTIONS_AVAILABLE}",
                    trip,
                    "Travel options uploaded by Travel Admin. "
                    "Please select your preferred option.",
                    link_path="/my-trips",
                    attachments=[item.filepath for item in files],
                    cc=admin.email if admin is not None else None,
                )
            )

        logger.info("options_uploaded", trip_id=trip_id, files=len(files))
        self.mailer.dispatch(outbox)
        return TripStatus.SELECT_OPTION

    def record_booking(
        self, trip_id: int, cost: int, files: Sequence[UploadedFile] = ()
    ) -> TripStatus:
        """Manual booking: receipts uploaded by a travel admin."""

        cost = require_positive_cost(cost)
        outbox: list[Notification | None] = []
        with self.database.transaction() as session:
            now = self.clock()
            trip = load_trip(session, trip_id)
            apply_transition(trip, TripOperation.RECORD_BOOKING, TripStatus.BOOKED, now=now)
            trip.total_cost = cost
            trip.booked_at = now
            attach_files(session, trip, FileType.RECEIPTS, files, now=now)
            suffix = ", receipts uploaded by Travel Admin" if files else ""
            outbox.append(
                self.mailer.compose(
                    trip.requester_email,
                    f"Trip #{trip.reference_no} - {Subject.BOOKING_CONFIRMED}",
                    trip,
                    f"Trip booked successfully - Total Cost: {cost:,}{suffix}",
                    link_path="/my-trips",
                    attachments=[item.filepath for item in files],
                )
            )

        logger.info("booking_recorded", trip_id=trip_id, cost=cost)
        self.mailer.dispatch(outbox)
        return TripStatus.BOOKED

    def record_visa_upload(
        self, trip_id: int, cost: int, file: UploadedFile | None = None
    ) -> TripStatus:
        cost = require_positive_cost(cost)
        outbox: list[Notification | None] = []
        with self.database.transaction() as session:
            now = self.clock()
            trip = load_trip(session, trip_id)
            apply_transition(
                trip, TripOperation.RECORD_VISA_UPLOAD, TripStatus.VISA_UPLOADED, now=now
            )
            trip.total_cost = cost
            if file is not None:
                attach_files(session, trip, FileType.VISA, [file], now=now)
            outbox.append(
                self.mailer.compose(
                    trip.requester_email,
                    Subject.VISA_UPLOADED,
                    trip,
                    "Your Visa has been processed and uploaded.",
                    link_path="/my-trips",
                )
            )

        logger.info("visa_uploaded", trip_id=trip_id, cost=cost)
        self.mailer.dispatch(outbox)
        return TripStatus.VISA_UPLOADED

    # ------------------------------------------------------------------- close

    def close(self, trip_id: int, requester: Identity) -> TripStatus:
        """Close a trip on behalf of its requester, whatever its status."""

        with self.database.transaction() as session:
            now = self.clock()
            trip = load_trip(session, trip_id)
            if trip.requester_code != requester.user_code:
                raise OwnershipError(trip_id, "close")
            self.ledger.withdraw(session, trip_id, "Closed by requester", now=now)
            apply_transition(trip, TripOperation.CLOSE, TripStatus.CLOSED, now=now)
            trip.closed_at = now

        logger.info("trip_closed", trip_id=trip_id, by=requester.user_code)
        return TripStatus.CLOSED

    # ------------------------------------------------------------------- reads

    def get_trip(self, trip_id: int, viewer: Identity) -> TripView:
        """Return a trip snapshot visible to ``viewer``.

        The requester, travel and super admins, and anyone who has held an
        approval record on the trip may view it.
        """

        with self.database.transaction() as session:
            trip = session.get(TripRecord, trip_id)
            if trip is None:
                raise TripNotFoundError(trip_id)
            if not (
                viewer.sees_all_trips
                or trip.requester_code == viewer.user_code
                or any(record.approver_id == viewer.id for record in trip.approvals)
            ):
                raise TripAccessError(trip_id, viewer.user_code)
            return TripView.model_validate(trip)
