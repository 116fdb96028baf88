"""Outbound trip notifications and the background dispatcher that sends them.

Transitions never wait on delivery: the engine commits first, then submits
notification jobs to :class:`NotificationDispatcher`. A failing job is logged
and dropped.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

from pydantic import BaseModel, Field

from .logging_config import get_logger

logger = get_logger(__name__)


class Subject(StrEnum):
    """Notification subject lines."""

    TRIP_SUBMITTED = "Trip Submitted Successfully"
    NEW_APPROVAL_REQUIRED = "New Trip Approval Required"
    TRIP_APPROVED = "Trip Approved"
    TRIP_REJECTED = "Trip Rejected"
    TRIP_SENT_BACK = "Trip Sent Back for Edit"
    BOOKING_CONFIRMED = "Booking Confirmed & Receipts Attached"
    BOOKING_CONFIRMED_PARTNER = "Trip Booking Confirmed (Partner)"
    OPTIONS_AVAILABLE = "Travel Options Available"
    VISA_UPLOADED = "Visa Uploaded"
    TRIP_CANCELLED = "Trip Cancelled"
    TRIP_CANCELLATION_REQUESTED = "Trip Cancellation Requested"
    CANCELLATION_ACTION_REQUIRED = "ACTION REQUIRED: Cancellation Request for Booked Trip"
    CANCELLATION_CONFIRMED = "Trip Cancellation Confirmed"
    TRIP_RESCHEDULED = "Trip Rescheduled"


class Notification(BaseModel):
    """A single message addressed to one recipient."""

    recipient: str = Field(..., description="Recipient email address")
    subject: str = Field(..., description="Subject line")
    message: str = Field(..., description="Plain-text body")
    trip: dict[str, Any] = Field(
        default_factory=dict, description="Trip snapshot rendered into the message"
    )
    attachments: list[str] = Field(
        default_factory=list, description="Paths of files to attach"
    )
    cc: str | None = Field(default=None, description="Optional cc address")
    action_link: str | None = Field(
        default=None, description="Deep link into the portal"
    )


class Notifier(Protocol):
    """Delivery channel for notifications."""

    def notify(self, notification: Notification) -> None: ...


class LoggingNotifier:
    """Notifier that only records deliveries in the log."""

    def notify(self, notification: Notification) -> None:
        logger.info(
            "notification_sent",
            recipient=notification.recipient,
            subject=notification.subject,
            reference_no=notification.trip.get("reference_no"),
            attachments=len(notification.attachments),
        )


@dataclass
class RecordingNotifier:
    """In-memory notifier keeping every delivered notification."""

    sent: list[Notification] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def notify(self, notification: Notification) -> None:
        with self._lock:
            self.sent.append(notification)

    def subjects_for(self, recipient: str) -> list[str]:
        with self._lock:
            return [n.subject for n in self.sent if n.recipient == recipient]


class NotificationDispatcher:
    """Run fire-and-forget jobs on a small worker pool."""

    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="tripflow-notify"
        )
        self._pending: set[Future[None]] = set()
        self._lock = threading.Lock()

    def submit(self, job: Callable[[], None], *, description: str) -> Future[None]:
        """Schedule ``job``; exceptions are logged, never re-raised."""

        def _run() -> None:
            try:
                job()
            except Exception:
                logger.exception("background_job_failed", job=description)

        future = self._executor.submit(_run)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def send(self, notifier: Notifier, notification: Notification) -> Future[None]:
        return self.submit(
            lambda: notifier.notify(notification),
            description=f"notify:{notification.subject}",
        )

    def _forget(self, future: Future[None]) -> None:
        with self._lock:
            self._pending.discard(future)

    def drain(self, timeout: float | None = None) -> None:
        """Block until every job submitted so far has finished."""

        with self._lock:
            pending = set(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def cancel_pending(self) -> int:
        """Cancel jobs that have not started yet and return how many were cancelled."""

        with self._lock:
            pending = set(self._pending)
        return sum(1 for future in pending if future.cancel())

    def shutdown(self, *, wait_for_jobs: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_jobs, cancel_futures=not wait_for_jobs)


def trip_snapshot(trip: Any) -> dict[str, Any]:
    """Flatten a loaded trip row into the fields rendered by notifications."""

    return {
        "trip_id": trip.id,
        "reference_no": trip.reference_no,
        "trip_name": trip.trip_name,
        "requester_name": trip.requester_name,
        "requester_code": trip.requester_code,
        "designation": trip.designation,
        "department": trip.department,
        "status": str(trip.status),
        "travel_type": str(trip.travel_type),
        "destination_country": trip.destination_country,
        "business_purpose": trip.business_purpose,
        "option_selected": trip.option_selected,
        "total_cost": trip.total_cost,
        "itineraries": [
            {"type": str(item.type), "details": dict(item.details or {})}
            for item in trip.itineraries
        ],
    }


@dataclass
class TripMailer:
    """Compose trip notifications and hand them to the dispatcher."""

    notifier: Notifier
    dispatcher: NotificationDispatcher
    frontend_url: str = "http://localhost:3000"

    def compose(
        self,
        recipient: str | None,
        subject: str,
        trip: Any,
        message: str,
        *,
        link_path: str,
        attachments: list[str] | None = None,
        cc: str | None = None,
    ) -> Notification | None:
        """Build a notification from a trip row; ``None`` when there is no recipient."""

        if not recipient:
            logger.warning(
                "notification_without_recipient",
                subject=subject,
                trip_id=getattr(trip, "id", None),
            )
            return None
        return Notification(
            recipient=recipient,
            subject=subject,
            message=message,
            trip=trip_snapshot(trip),
            attachments=attachments or [],
            cc=cc,
            action_link=f"{self.frontend_url.rstrip('/')}{link_path}",
        )

    def dispatch(self, outbox: list[Notification | None]) -> list[Future[None]]:
        return [
            self.dispatcher.send(self.notifier, notification)
            for notification in outbox
            if notification is not None
        ]
