"""Single-hop approver routing."""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from .directory import IdentityDirectory, SqlIdentityDirectory
from .logging_config import get_logger
from .models import Identity, RoutingDecision, TripStatus, UserRole

logger = get_logger(__name__)


@dataclass
class ApproverResolver:
    """Compute the next required approver for a requester.

    Only one level of "who approves for this user" is resolved per call; the
    requester -> manager -> travel admin chain unfolds one decision at a time.
    """

    directory: IdentityDirectory = field(default_factory=SqlIdentityDirectory)

    def resolve(self, session: Session, requester: Identity) -> RoutingDecision:
        if requester.is_travel_admin:
            return RoutingDecision(status=TripStatus.APPROVED, approver=None)

        if requester.reporting_manager_code:
            manager = self.directory.get_by_code(
                session, requester.reporting_manager_code
            )
            if manager is not None:
                return RoutingDecision(status=TripStatus.RM_PENDING, approver=manager)
            logger.warning(
                "reporting_manager_missing",
                requester=requester.user_code,
                manager_code=requester.reporting_manager_code,
            )

        return RoutingDecision(
            status=TripStatus.TRAVEL_ADMIN_PENDING,
            approver=self.travel_admin(session),
        )

    def travel_admin(self, session: Session) -> Identity | None:
        """Return the travel admin who receives admin-level approvals."""

        return self.directory.first_with_role(session, UserRole.TRAVEL_ADMIN)
