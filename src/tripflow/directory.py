"""Read-only identity lookups used by approver routing."""

from __future__ import annotations

from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from .exceptions import IdentityNotFoundError
from .models import Identity, UserRole
from .storage import UserRecord


class IdentityDirectory(Protocol):
    """Lookup service over user identities."""

    def get(self, session: Session, user_id: int) -> Identity | None: ...

    def get_by_code(self, session: Session, user_code: str) -> Identity | None: ...

    def first_with_role(self, session: Session, role: UserRole) -> Identity | None: ...


class SqlIdentityDirectory:
    """Identity directory backed by the ``users`` table.

    When several users share a role, ``first_with_role`` returns the one with
    the lowest id, so the choice is stable across calls.
    """

    def get(self, session: Session, user_id: int) -> Identity | None:
        record = session.get(UserRecord, user_id)
        return Identity.model_validate(record) if record is not None else None

    def get_by_code(self, session: Session, user_code: str) -> Identity | None:
        statement = select(UserRecord).where(UserRecord.user_code == user_code)
        record = session.execute(statement).scalar_one_or_none()
        return Identity.model_validate(record) if record is not None else None

    def first_with_role(self, session: Session, role: UserRole) -> Identity | None:
        statement = (
            select(UserRecord)
            .where(UserRecord.role == role)
            .order_by(UserRecord.id)
            .limit(1)
        )
        record = session.execute(statement).scalar_one_or_none()
        return Identity.model_validate(record) if record is not None else None

    def require(self, session: Session, user_id: int) -> Identity:
        identity = self.get(session, user_id)
        if identity is None:
            raise IdentityNotFoundError(user_id)
        return identity
