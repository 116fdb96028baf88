"""Relational store for trips, itineraries, approvals and file uploads.

Uses SQLAlchemy 2.x. :class:`Database` owns the engine and session factory;
it is opened once at process start, handed to every component, and disposed
at shutdown. Each engine operation runs inside :meth:`Database.transaction`.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    relationship,
    sessionmaker,
)
from sqlalchemy.pool import StaticPool

from .logging_config import get_logger
from .models import (
    ApprovalAction,
    ApproverRole,
    FileType,
    ItineraryType,
    TravelType,
    TripStatus,
    UserRole,
)

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


def _enum(enum_cls: type, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        validate_strings=True,
        values_callable=lambda members: [member.value for member in members],
        length=32,
    )


class Base(DeclarativeBase):
    """Declarative base for all tables."""


class UserRecord(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    designation: Mapped[str | None] = mapped_column(String(100))
    department: Mapped[str | None] = mapped_column(String(100))
    reporting_manager_code: Mapped[str | None] = mapped_column(String(50))
    role: Mapped[UserRole] = mapped_column(
        _enum(UserRole, "user_role"), nullable=False, default=UserRole.EMPLOYEE
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    def __repr__(self) -> str:
        return f"<UserRecord(id={self.id}, user_code={self.user_code}, role={self.role})>"


class TripRecord(Base):
    __tablename__ = "trips"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reference_no: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    requester_code: Mapped[str] = mapped_column(
        String(50), ForeignKey("users.user_code"), nullable=False, index=True
    )
    requester_name: Mapped[str] = mapped_column(String(255), nullable=False)
    designation: Mapped[str | None] = mapped_column(String(100))
    department: Mapped[str | None] = mapped_column(String(100))

    trip_name: Mapped[str] = mapped_column(String(255), nullable=False)
    travel_type: Mapped[TravelType] = mapped_column(
        _enum(TravelType, "travel_type"), nullable=False
    )
    destination_country: Mapped[str | None] = mapped_column(String(100))
    visa_required: Mapped[bool | None] = mapped_column(Boolean)
    business_purpose: Mapped[str | None] = mapped_column(Text)

    status: Mapped[TripStatus] = mapped_column(
        _enum(TripStatus, "trip_status"), nullable=False, index=True
    )
    option_selected: Mapped[str | None] = mapped_column(Text)
    total_cost: Mapped[int | None] = mapped_column(Integer)
    booking_payload: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    cancellation_reason: Mapped[str | None] = mapped_column(Text)
    cancellation_cost: Mapped[int | None] = mapped_column(Integer)
    is_visa_request: Mapped[bool] = mapped_column(Boolean, default=False)
    expected_journey_date: Mapped[date | None] = mapped_column(Date)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    booked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    requester: Mapped[UserRecord] = relationship(UserRecord)
    itineraries: Mapped[list[ItineraryRecord]] = relationship(
        back_populates="trip",
        cascade="all, delete-orphan",
        order_by="ItineraryRecord.id",
    )
    approvals: Mapped[list[ApprovalRecord]] = relationship(
        back_populates="trip",
        cascade="all, delete-orphan",
        order_by="ApprovalRecord.id",
    )
    files: Mapped[list[FileUploadRecord]] = relationship(
        back_populates="trip",
        cascade="all, delete-orphan",
        order_by="FileUploadRecord.id",
    )

    @property
    def requester_email(self) -> str | None:
        return self.requester.email if self.requester is not None else None

    def __repr__(self) -> str:
        return f"<TripRecord(id={self.id}, reference_no={self.reference_no}, status={self.status})>"


class ItineraryRecord(Base):
    __tablename__ = "itineraries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trip_id: Mapped[int] = mapped_column(
        ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[ItineraryType] = mapped_column(
        _enum(ItineraryType, "itinerary_type"), nullable=False
    )
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    trip: Mapped[TripRecord] = relationship(back_populates="itineraries")


class ApprovalRecord(Base):
    __tablename__ = "approvals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trip_id: Mapped[int] = mapped_column(
        ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True
    )
    approver_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    approver_role: Mapped[ApproverRole] = mapped_column(
        _enum(ApproverRole, "approver_role"), nullable=False
    )
    action: Mapped[ApprovalAction | None] = mapped_column(
        _enum(ApprovalAction, "approval_action")
    )
    comments: Mapped[str | None] = mapped_column(Text)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    trip: Mapped[TripRecord] = relationship(back_populates="approvals")
    approver: Mapped[UserRecord] = relationship(UserRecord)

    @property
    def is_open(self) -> bool:
        return self.action is None


class FileUploadRecord(Base):
    __tablename__ = "file_uploads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trip_id: Mapped[int] = mapped_column(
        ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True
    )
    uploaded_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    file_type: Mapped[FileType] = mapped_column(
        _enum(FileType, "file_type"), nullable=False
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    filepath: Mapped[str] = mapped_column(Text, nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    trip: Mapped[TripRecord] = relationship(back_populates="files")


def _build_engine(url: str, echo: bool) -> Engine:
    if url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") == "sqlite:"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=echo, pool_pre_ping=True)


class Database:
    """Scoped handle on the backing store's connection pool."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        self.engine = _build_engine(url, echo)
        self.session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )

    def create_all(self) -> None:
        """Create any missing tables."""

        Base.metadata.create_all(self.engine)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on error."""

        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        """Release pooled connections."""

        self.engine.dispose()
        logger.debug("database_disposed", url=self.engine.url.render_as_string())

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()


def lock_trip(session: Session, trip_id: int) -> TripRecord | None:
    """Load a trip row for update; concurrent writers on the same trip serialize."""

    statement = select(TripRecord).where(TripRecord.id == trip_id).with_for_update()
    return session.execute(statement).scalar_one_or_none()
