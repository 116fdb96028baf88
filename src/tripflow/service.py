"""Service facade wiring storage, routing, flows and collaborators together."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, date, datetime, tzinfo
from typing import Any

from .cancellation import CancellationFlow
from .config import TripflowSettings
from .directory import IdentityDirectory, SqlIdentityDirectory
from .exceptions import IdentityNotFoundError
from .files import FileStore, LocalFileStore
from .ledger import ApprovalLedger
from .lifecycle import TripLifecycle
from .logging_config import configure_logging, get_logger
from .models import (
    ApprovalAction,
    ApprovalCounts,
    CancellationResult,
    CreateTripRequest,
    CreateTripResult,
    DecisionResult,
    Identity,
    ItineraryItem,
    PartnerSelection,
    RescheduleResult,
    TripStatus,
    TripView,
    UploadedFile,
)
from .notifications import LoggingNotifier, NotificationDispatcher, Notifier, TripMailer
from .partner import BookingPartner, HttpBookingPartner, NullBookingPartner
from .queries import ApprovalFilter, ApprovalInboxItem, TripQueries
from .reschedule import RescheduleFlow
from .resolver import ApproverResolver
from .storage import Database, utcnow
from .sweep import AutoCloseSweep

logger = get_logger(__name__)


class TripflowService:
    """Single entry point for the trip lifecycle.

    The service owns the :class:`Database` and the notification dispatcher;
    call :meth:`close` (or use it as a context manager) to release both.
    """

    def __init__(
        self,
        database: Database,
        *,
        notifier: Notifier | None = None,
        partner: BookingPartner | None = None,
        file_store: FileStore | None = None,
        dispatcher: NotificationDispatcher | None = None,
        directory: IdentityDirectory | None = None,
        frontend_url: str = "http://localhost:3000",
        clock: Callable[[], datetime] = utcnow,
        sweep_timezone: tzinfo = UTC,
    ) -> None:
        self.database = database
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.directory = directory or SqlIdentityDirectory()
        self.mailer = TripMailer(
            notifier=notifier or LoggingNotifier(),
            dispatcher=self.dispatcher,
            frontend_url=frontend_url,
        )
        resolver = ApproverResolver(directory=self.directory)
        ledger = ApprovalLedger()

        self.lifecycle = TripLifecycle(
            database=database,
            mailer=self.mailer,
            resolver=resolver,
            ledger=ledger,
            partner=partner or NullBookingPartner(),
            clock=clock,
        )
        self.cancellations = CancellationFlow(
            database=database,
            mailer=self.mailer,
            resolver=resolver,
            ledger=ledger,
            clock=clock,
        )
        self.rescheduling = RescheduleFlow(
            database=database,
            mailer=self.mailer,
            file_store=file_store or LocalFileStore("uploads"),
            resolver=resolver,
            clock=clock,
        )
        self.sweep = AutoCloseSweep(database=database, clock=clock, timezone=sweep_timezone)
        self.queries = TripQueries(database)

    @classmethod
    def from_settings(
        cls,
        settings: TripflowSettings,
        *,
        notifier: Notifier | None = None,
        partner: BookingPartner | None = None,
        configure_logs: bool = True,
        start_sweep: bool = False,
    ) -> TripflowService:
        """Build a service from settings, opening the database and worker pool.

        With ``start_sweep`` the auto-close sweep is scheduled every
        ``settings.sweep_interval_seconds``; :meth:`close` stops it.
        """

        if configure_logs:
            configure_logging(settings.log_level, settings.log_format)
        if partner is None and settings.partner_complete_url:
            partner = HttpBookingPartner(
                complete_url=settings.partner_complete_url,
                timeout=settings.partner_timeout_seconds,
            )
        service = cls(
            Database(settings.database_url),
            notifier=notifier,
            partner=partner,
            file_store=LocalFileStore(settings.upload_root),
            dispatcher=NotificationDispatcher(max_workers=settings.notification_workers),
            frontend_url=settings.frontend_url,
            sweep_timezone=settings.tzinfo,
        )
        if start_sweep:
            service.sweep.schedule(settings.sweep_interval_seconds)
        logger.info("service_started", workers=settings.notification_workers)
        return service

    def close(self) -> None:
        self.sweep.stop()
        self.dispatcher.shutdown(wait_for_jobs=True)
        self.database.dispose()

    def __enter__(self) -> TripflowService:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ---------------------------------------------------------------- identity

    def identity(self, user_id: int) -> Identity:
        with self.database.transaction() as session:
            identity = self.directory.get(session, user_id)
        if identity is None:
            raise IdentityNotFoundError(user_id)
        return identity

    # --------------------------------------------------------------- lifecycle

    def create_trip(
        self, requester: Identity, request: CreateTripRequest | Mapping[str, Any]
    ) -> CreateTripResult:
        if not isinstance(request, CreateTripRequest):
            request = CreateTripRequest.model_validate(request)
        return self.lifecycle.create(requester, request)

    def select_option(
        self,
        trip_id: int,
        option_text: str,
        cost: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> TripStatus:
        return self.lifecycle.select_option(trip_id, option_text, cost, payload)

    def handle_partner_selection(
        self, selection: PartnerSelection | Mapping[str, Any]
    ) -> TripStatus:
        """Apply an option chosen on the booking partner's site."""

        if not isinstance(selection, PartnerSelection):
            selection = PartnerSelection.model_validate(selection)
        logger.info("partner_selection_received", trip_id=selection.trip_id)
        return self.lifecycle.select_option(
            selection.trip_id, selection.option, selection.cost, selection.payload
        )

    def decide(
        self,
        approval_id: int,
        action: ApprovalAction | str,
        comments: str | None = None,
    ) -> DecisionResult:
        return self.lifecycle.decide(approval_id, ApprovalAction(action), comments)

    def mark_options_uploaded(
        self, trip_id: int, files: Sequence[UploadedFile] = ()
    ) -> TripStatus:
        return self.lifecycle.mark_options_uploaded(trip_id, files)

    def record_booking(
        self, trip_id: int, cost: int, files: Sequence[UploadedFile] = ()
    ) -> TripStatus:
        return self.lifecycle.record_booking(trip_id, cost, files)

    def record_visa_upload(
        self, trip_id: int, cost: int, file: UploadedFile | None = None
    ) -> TripStatus:
        return self.lifecycle.record_visa_upload(trip_id, cost, file)

    def close_trip(self, trip_id: int, requester: Identity) -> TripStatus:
        return self.lifecycle.close(trip_id, requester)

    def get_trip(self, trip_id: int, viewer: Identity) -> TripView:
        return self.lifecycle.get_trip(trip_id, viewer)

    # ------------------------------------------------------ cancel/reschedule

    def request_cancellation(self, trip_id: int, reason: str) -> CancellationResult:
        return self.cancellations.request(trip_id, reason)

    def confirm_cancellation(self, trip_id: int, cancellation_cost: int) -> CancellationResult:
        return self.cancellations.confirm(trip_id, cancellation_cost)

    def reschedule(
        self,
        trip_id: int,
        requester: Identity,
        segments: Sequence[ItineraryItem | Mapping[str, Any]],
    ) -> RescheduleResult:
        items = [
            item if isinstance(item, ItineraryItem) else ItineraryItem.model_validate(item)
            for item in segments
        ]
        return self.rescheduling.reschedule(trip_id, requester, items)

    def auto_close(self, today: date | None = None) -> list[int]:
        return self.sweep.run(today)

    # ----------------------------------------------------------------- queries

    def approval_counts(self, approver_id: int) -> ApprovalCounts:
        return self.queries.approval_counts(approver_id)

    def approvals_for(
        self,
        approver_id: int,
        status: ApprovalFilter | str | None = None,
        *,
        limit: int = 20,
        offset: int = 0,
    ) -> list[ApprovalInboxItem]:
        status_filter = ApprovalFilter(status) if status is not None else None
        return self.queries.approvals_for(
            approver_id, status_filter, limit=limit, offset=offset
        )

    def my_trips(self, requester: Identity) -> list[TripView]:
        return self.queries.trips_for_requester(requester.user_code)

    def booking_queue(
        self, status: TripStatus | None = None, *, limit: int = 20, offset: int = 0
    ) -> list[TripView]:
        return self.queries.booking_queue(status, limit=limit, offset=offset)

    def cancellation_queue(self, *, limit: int = 20, offset: int = 0) -> list[TripView]:
        return self.queries.cancellation_queue(limit=limit, offset=offset)

    def visa_queue(self, *, limit: int = 20, offset: int = 0) -> list[TripView]:
        return self.queries.visa_queue(limit=limit, offset=offset)
