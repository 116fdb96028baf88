"""Approval record bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from .exceptions import (
    ApprovalAlreadyDecidedError,
    ApprovalNotFoundError,
    OpenApprovalExistsError,
)
from .logging_config import get_logger
from .models import ApprovalAction, ApproverRole
from .storage import ApprovalRecord, utcnow

logger = get_logger(__name__)


@dataclass
class ApprovalLedger:
    """Open and close approval records, one per routing hop.

    A trip never has more than one record whose action is still null; ``open``
    refuses to create a second one.
    """

    def open_for_trip(self, session: Session, trip_id: int) -> ApprovalRecord | None:
        statement = select(ApprovalRecord).where(
            ApprovalRecord.trip_id == trip_id, ApprovalRecord.action.is_(None)
        )
        return session.execute(statement).scalars().first()

    def open(
        self,
        session: Session,
        trip_id: int,
        approver_id: int,
        role: ApproverRole,
        *,
        now: datetime | None = None,
    ) -> ApprovalRecord:
        existing = self.open_for_trip(session, trip_id)
        if existing is not None:
            raise OpenApprovalExistsError(trip_id, existing.id)

        record = ApprovalRecord(
            trip_id=trip_id,
            approver_id=approver_id,
            approver_role=role,
            timestamp=now or utcnow(),
        )
        session.add(record)
        session.flush()
        logger.info(
            "approval_opened",
            approval_id=record.id,
            trip_id=trip_id,
            approver_id=approver_id,
            role=role.value,
        )
        return record

    def trip_id_for(self, session: Session, approval_id: int) -> int:
        """Return the owning trip id without locking the record."""

        statement = select(ApprovalRecord.trip_id).where(ApprovalRecord.id == approval_id)
        trip_id = session.execute(statement).scalar_one_or_none()
        if trip_id is None:
            raise ApprovalNotFoundError(approval_id)
        return trip_id

    def withdraw(
        self,
        session: Session,
        trip_id: int,
        reason: str,
        *,
        now: datetime | None = None,
    ) -> ApprovalRecord | None:
        """Close the trip's open record, if any, without an approver decision."""

        pending = self.open_for_trip(session, trip_id)
        if pending is None:
            return None
        return self.close(session, pending.id, ApprovalAction.WITHDRAWN, reason, now=now)

    def load(self, session: Session, approval_id: int) -> ApprovalRecord:
        """Load a record for update."""

        statement = (
            select(ApprovalRecord)
            .where(ApprovalRecord.id == approval_id)
            .with_for_update()
        )
        record = session.execute(statement).scalar_one_or_none()
        if record is None:
            raise ApprovalNotFoundError(approval_id)
        return record

    def close(
        self,
        session: Session,
        approval_id: int,
        action: ApprovalAction,
        comments: str | None = None,
        *,
        now: datetime | None = None,
    ) -> ApprovalRecord:
        record = self.load(session, approval_id)
        if not record.is_open:
            raise ApprovalAlreadyDecidedError(approval_id)

        record.action = action
        record.comments = comments
        record.timestamp = now or utcnow()
        session.flush()
        logger.info(
            "approval_closed",
            approval_id=approval_id,
            trip_id=record.trip_id,
            action=action.value,
        )
        return record

    def history(self, session: Session, trip_id: int) -> list[ApprovalRecord]:
        statement = (
            select(ApprovalRecord)
            .where(ApprovalRecord.trip_id == trip_id)
            .order_by(ApprovalRecord.id)
        )
        return list(session.execute(statement).scalars())
