"""TripFlow - Trip lifecycle and approval routing engine."""

from .cancellation import CancellationFlow
from .config import TripflowSettings
from .exceptions import (
    ApprovalAlreadyDecidedError,
    ApprovalNotFoundError,
    DuplicateSegmentError,
    IdentityNotFoundError,
    IllegalTransitionError,
    InvalidCostError,
    NotFoundError,
    OpenApprovalExistsError,
    OwnershipError,
    PreconditionError,
    RescheduleFieldError,
    SegmentNotFoundError,
    TripAccessError,
    TripflowError,
    TripNotFoundError,
)
from .files import FileStore, LocalFileStore
from .ledger import ApprovalLedger
from .lifecycle import TripLifecycle
from .models import (
    ApprovalAction,
    ApprovalCounts,
    ApprovalView,
    ApproverRole,
    BookingIntent,
    CancellationResult,
    CreateTripRequest,
    CreateTripResult,
    DecisionResult,
    FileType,
    Identity,
    ItineraryItem,
    ItineraryType,
    PartnerSelection,
    RescheduleResult,
    RoutingDecision,
    TravelType,
    TripStatus,
    TripView,
    UploadedFile,
    UserRole,
)
from .notifications import (
    LoggingNotifier,
    Notification,
    NotificationDispatcher,
    Notifier,
    RecordingNotifier,
    Subject,
    TripMailer,
)
from .partner import (
    BookingPartner,
    HttpBookingPartner,
    NullBookingPartner,
    RecordingBookingPartner,
)
from .queries import ApprovalFilter, ApprovalInboxItem, TripQueries
from .reschedule import ALLOWED_FIELDS, RescheduleFlow
from .resolver import ApproverResolver
from .service import TripflowService
from .storage import Database
from .sweep import AutoCloseSweep
from .transitions import TripOperation

__version__ = "0.1.0"

__all__ = [
    "ALLOWED_FIELDS",
    "ApprovalAction",
    "ApprovalAlreadyDecidedError",
    "ApprovalCounts",
    "ApprovalFilter",
    "ApprovalInboxItem",
    "ApprovalLedger",
    "ApprovalNotFoundError",
    "ApprovalView",
    "ApproverResolver",
    "ApproverRole",
    "AutoCloseSweep",
    "BookingIntent",
    "BookingPartner",
    "CancellationFlow",
    "CancellationResult",
    "CreateTripRequest",
    "CreateTripResult",
    "Database",
    "DecisionResult",
    "DuplicateSegmentError",
    "FileStore",
    "FileType",
    "HttpBookingPartner",
    "Identity",
    "IdentityNotFoundError",
    "IllegalTransitionError",
    "InvalidCostError",
    "ItineraryItem",
    "ItineraryType",
    "LocalFileStore",
    "LoggingNotifier",
    "NotFoundError",
    "Notification",
    "NotificationDispatcher",
    "Notifier",
    "NullBookingPartner",
    "OpenApprovalExistsError",
    "OwnershipError",
    "PartnerSelection",
    "PreconditionError",
    "RecordingBookingPartner",
    "RecordingNotifier",
    "RescheduleFieldError",
    "RescheduleFlow",
    "RescheduleResult",
    "RoutingDecision",
    "SegmentNotFoundError",
    "Subject",
    "TravelType",
    "TripAccessError",
    "TripLifecycle",
    "TripNotFoundError",
    "TripOperation",
    "TripQueries",
    "TripStatus",
    "TripView",
    "TripflowError",
    "TripflowService",
    "TripflowSettings",
    "UploadedFile",
    "UserRole",
    "__version__",
]
