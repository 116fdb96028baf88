"""Core models for trips, itineraries and approval routing."""

from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TripStatus(StrEnum):
    """Status of a trip request."""

    SELECT_OPTION = "SELECT_OPTION"
    RM_PENDING = "RM_PENDING"
    TRAVEL_ADMIN_PENDING = "TRAVEL_ADMIN_PENDING"
    APPROVED = "APPROVED"
    VISA_PENDING = "VISA_PENDING"
    VISA_UPLOADED = "VISA_UPLOADED"
    OPTION_SELECTED = "OPTION_SELECTED"
    BOOKED = "BOOKED"
    REJECTED = "REJECTED"
    EDIT = "EDIT"
    CLOSED = "CLOSED"
    CANCELLATION_PENDING = "CANCELLATION_PENDING"
    CANCELLED = "CANCELLED"


class UserRole(StrEnum):
    """Roles recorded on user identities."""

    EMPLOYEE = "employee"
    TRAVEL_ADMIN = "travel_admin"
    SUPER_ADMIN = "super_admin"


class ApproverRole(StrEnum):
    """Role under which an approval record was opened."""

    REPORTING_MANAGER = "reporting_manager"
    TRAVEL_ADMIN = "travel_admin"

    @classmethod
    def for_status(cls, status: TripStatus) -> ApproverRole:
        """Map a pending trip status to the role that decides it."""

        if status == TripStatus.RM_PENDING:
            return cls.REPORTING_MANAGER
        return cls.TRAVEL_ADMIN


class ApprovalAction(StrEnum):
    """Decision written onto an approval record."""

    ACCEPT = "accept"
    REJECT = "reject"
    SEND_BACK = "send_back"
    # Written by the engine when the requester closes or cancels a pending trip.
    WITHDRAWN = "withdrawn"

    @property
    def is_decision(self) -> bool:
        """True for actions an approver may submit."""

        return self is not ApprovalAction.WITHDRAWN


class TravelType(StrEnum):
    DOMESTIC = "Domestic"
    INTERNATIONAL = "International"


class ItineraryType(StrEnum):
    FLIGHT = "flight"
    HOTEL = "hotel"
    CAR = "car"
    TRAIN = "train"


class FileType(StrEnum):
    """Kinds of documents attached to a trip."""

    VISA = "visa"
    TRAVEL_OPTIONS = "travel_options"
    RECEIPTS = "receipts"
    INVOICE = "invoice"


class BookingIntent(StrEnum):
    """How the requester wants the trip handled after submission."""

    SUBMIT = "submit"
    SAVE = "save"
    PARTNER_REDIRECT = "partner_redirect"

    @property
    def defers_booking(self) -> bool:
        """True when approval waits until an option has been selected."""

        return self in (BookingIntent.SAVE, BookingIntent.PARTNER_REDIRECT)


class Identity(BaseModel):
    """Read-only view of a user as consumed by the routing logic."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int = Field(..., description="Internal user identifier")
    user_code: str = Field(..., description="Employee code, e.g. RML1042")
    username: str = Field(..., description="Display name")
    email: str = Field(..., description="Notification address")
    role: UserRole = Field(default=UserRole.EMPLOYEE, description="Portal role")
    designation: str | None = Field(default=None, description="Job title")
    department: str | None = Field(default=None, description="Department name")
    reporting_manager_code: str | None = Field(
        default=None, description="Employee code of this user's own approver"
    )

    @property
    def is_travel_admin(self) -> bool:
        return self.role == UserRole.TRAVEL_ADMIN

    @property
    def sees_all_trips(self) -> bool:
        return self.role in (UserRole.TRAVEL_ADMIN, UserRole.SUPER_ADMIN)


class ItineraryItem(BaseModel):
    """One leg of a trip with type-specific details."""

    id: int | None = Field(default=None, description="Stored segment id")
    type: ItineraryType = Field(..., description="Segment type")
    details: dict[str, Any] = Field(
        default_factory=dict, description="Type-specific structured details"
    )


class CreateTripRequest(BaseModel):
    """Payload submitted by a requester to open a trip."""

    trip_name: str = Field(..., min_length=1, description="Short trip name")
    travel_type: TravelType = Field(
        default=TravelType.INTERNATIONAL, description="Domestic or international"
    )
    destination_country: str | None = Field(
        default=None, description="Destination country"
    )
    visa_required: bool = Field(default=True, description="Whether a visa is needed")
    business_purpose: str | None = Field(
        default=None, description="Business justification"
    )
    itineraries: list[ItineraryItem] = Field(
        default_factory=list, description="Requested itinerary segments"
    )
    is_visa_request: bool = Field(
        default=False, description="True for visa-only requests"
    )
    expected_journey_date: date | None = Field(
        default=None, description="Planned start of travel"
    )
    intent: BookingIntent = Field(
        default=BookingIntent.SUBMIT, description="Submission intent"
    )


class UploadedFile(BaseModel):
    """Document recorded against a trip by an upload step."""

    filename: str = Field(..., description="Original file name")
    filepath: str = Field(..., description="Path relative to the upload root")
    uploaded_by: int | None = Field(
        default=None, description="User id of the uploader"
    )


class RoutingDecision(BaseModel):
    """Next status and approver produced by a single routing hop."""

    model_config = ConfigDict(frozen=True)

    status: TripStatus
    approver: Identity | None = None

    @property
    def approver_role(self) -> ApproverRole:
        return ApproverRole.for_status(self.status)


class CreateTripResult(BaseModel):
    trip_id: int
    reference_no: str
    status: TripStatus


class DecisionResult(BaseModel):
    """Outcome of an approval decision, echoing the action taken."""

    approval_id: int
    trip_id: int
    action: ApprovalAction
    trip_status: TripStatus
    next_approval_id: int | None = None

    @property
    def message(self) -> str:
        return f"Trip {self.action.value.replace('_', ' ')}"


class CancellationResult(BaseModel):
    trip_id: int
    status: TripStatus


class RescheduleResult(BaseModel):
    trip_id: int
    status: TripStatus
    updated_segments: list[int] = Field(default_factory=list)
    removed_files: list[str] = Field(default_factory=list)


class PartnerSelection(BaseModel):
    """Inbound booking-partner callback: the requester picked an option."""

    trip_id: int = Field(..., description="Trip the selection belongs to")
    option: str = Field(..., min_length=1, description="Selected option text")
    cost: int | None = Field(default=None, description="Quoted cost")
    payload: dict[str, Any] = Field(
        default_factory=dict, description="Partner booking identifiers and flags"
    )

    @field_validator("cost")
    @classmethod
    def _validate_cost(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError("cost must not be negative")
        return value


class ItineraryView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: ItineraryType
    details: dict[str, Any]


class ApprovalView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    trip_id: int
    approver_id: int
    approver_role: ApproverRole
    action: ApprovalAction | None
    comments: str | None
    timestamp: datetime

    @property
    def is_open(self) -> bool:
        return self.action is None


class FileView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    file_type: FileType
    filename: str
    filepath: str
    uploaded_by: int | None
    uploaded_at: datetime


class TripView(BaseModel):
    """Snapshot of a trip with its segments, approvals and files."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    reference_no: str
    requester_code: str
    requester_name: str
    requester_email: str | None = None
    designation: str | None = None
    department: str | None = None
    trip_name: str
    travel_type: TravelType
    destination_country: str | None = None
    visa_required: bool | None = None
    business_purpose: str | None = None
    status: TripStatus
    option_selected: str | None = None
    total_cost: int | None = None
    booking_payload: dict[str, Any] | None = None
    cancellation_reason: str | None = None
    cancellation_cost: int | None = None
    is_visa_request: bool = False
    expected_journey_date: date | None = None
    created_at: datetime
    submitted_at: datetime | None = None
    booked_at: datetime | None = None
    closed_at: datetime | None = None
    updated_at: datetime
    itineraries: list[ItineraryView] = Field(default_factory=list)
    approvals: list[ApprovalView] = Field(default_factory=list)
    files: list[FileView] = Field(default_factory=list)

    def open_approval(self) -> ApprovalView | None:
        """Return the undecided approval record, if any."""

        return next((a for a in self.approvals if a.is_open), None)


class ApprovalCounts(BaseModel):
    """Per-approver tally used by approval inboxes."""

    pending: int = 0
    approved: int = 0
    rejected: int = 0
