"""Read-side queries backing approval inboxes and admin work queues."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel
from sqlalchemy import case, func, select
from sqlalchemy.orm import Session, selectinload

from .models import ApprovalAction, ApprovalCounts, ApprovalView, TripStatus, TripView
from .storage import ApprovalRecord, Database, TripRecord


class ApprovalFilter(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalInboxItem(BaseModel):
    """An approval record paired with the trip it decides."""

    approval: ApprovalView
    trip: TripView


BOOKING_QUEUE_STATUSES: frozenset[TripStatus] = frozenset(
    {
        TripStatus.APPROVED,
        TripStatus.SELECT_OPTION,
        TripStatus.OPTION_SELECTED,
        TripStatus.BOOKED,
    }
)

VISA_QUEUE_STATUSES: frozenset[TripStatus] = frozenset(
    {TripStatus.VISA_PENDING, TripStatus.VISA_UPLOADED}
)


def _trip_options():
    return (
        selectinload(TripRecord.itineraries),
        selectinload(TripRecord.approvals),
        selectinload(TripRecord.files),
        selectinload(TripRecord.requester),
    )


class TripQueries:
    """Paginated read models; every call runs in its own short transaction."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def approval_counts(self, approver_id: int) -> ApprovalCounts:
        statement = select(
            func.count(case((ApprovalRecord.action.is_(None), 1))),
            func.count(case((ApprovalRecord.action == ApprovalAction.ACCEPT, 1))),
            func.count(case((ApprovalRecord.action == ApprovalAction.REJECT, 1))),
        ).where(ApprovalRecord.approver_id == approver_id)
        with self.database.transaction() as session:
            pending, approved, rejected = session.execute(statement).one()
        return ApprovalCounts(pending=pending, approved=approved, rejected=rejected)

    def approvals_for(
        self,
        approver_id: int,
        status: ApprovalFilter | None = None,
        *,
        limit: int = 20,
        offset: int = 0,
    ) -> list[ApprovalInboxItem]:
        """Approval records assigned to ``approver_id``, newest first."""

        statement = select(ApprovalRecord).where(ApprovalRecord.approver_id == approver_id)
        if status == ApprovalFilter.PENDING:
            statement = statement.where(ApprovalRecord.action.is_(None))
        elif status == ApprovalFilter.APPROVED:
            statement = statement.where(ApprovalRecord.action == ApprovalAction.ACCEPT)
        elif status == ApprovalFilter.REJECTED:
            statement = statement.where(ApprovalRecord.action == ApprovalAction.REJECT)
        statement = (
            statement.options(
                selectinload(ApprovalRecord.trip).options(*_trip_options())
            )
            .order_by(ApprovalRecord.timestamp.desc(), ApprovalRecord.id.desc())
            .limit(limit)
            .offset(offset)
        )
        with self.database.transaction() as session:
            return [
                ApprovalInboxItem(
                    approval=ApprovalView.model_validate(record),
                    trip=TripView.model_validate(record.trip),
                )
                for record in session.execute(statement).scalars()
            ]

    def trips_for_requester(self, requester_code: str) -> list[TripView]:
        statement = (
            select(TripRecord)
            .where(TripRecord.requester_code == requester_code)
            .options(*_trip_options())
            .order_by(TripRecord.created_at.desc(), TripRecord.id.desc())
        )
        with self.database.transaction() as session:
            return self._views(session, statement)

    def booking_queue(
        self,
        status: TripStatus | None = None,
        *,
        limit: int = 20,
        offset: int = 0,
    ) -> list[TripView]:
        """Trips a travel admin still has to find options for or book."""

        condition = (
            TripRecord.status == status
            if status is not None
            else TripRecord.status.in_(BOOKING_QUEUE_STATUSES)
        )
        statement = self._page(condition, limit, offset)
        with self.database.transaction() as session:
            return self._views(session, statement)

    def cancellation_queue(self, *, limit: int = 20, offset: int = 0) -> list[TripView]:
        """Pending cancellations plus cancelled trips that had been booked."""

        condition = (TripRecord.status == TripStatus.CANCELLATION_PENDING) | (
            (TripRecord.status == TripStatus.CANCELLED) & TripRecord.booked_at.is_not(None)
        )
        statement = self._page(condition, limit, offset)
        with self.database.transaction() as session:
            return self._views(session, statement)

    def visa_queue(self, *, limit: int = 20, offset: int = 0) -> list[TripView]:
        condition = TripRecord.is_visa_request.is_(True) & TripRecord.status.in_(
            VISA_QUEUE_STATUSES
        )
        statement = self._page(condition, limit, offset)
        with self.database.transaction() as session:
            return self._views(session, statement)

    @staticmethod
    def _page(condition, limit: int, offset: int):
        return (
            select(TripRecord)
            .where(condition)
            .options(*_trip_options())
            .order_by(TripRecord.created_at.desc(), TripRecord.id.desc())
            .limit(limit)
            .offset(offset)
        )

    @staticmethod
    def _views(session: Session, statement) -> list[TripView]:
        return [TripView.model_validate(trip) for trip in session.execute(statement).scalars()]
