from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace

import pytest

from tripflow import IllegalTransitionError, PreconditionError, TripOperation, TripStatus
from tripflow.transitions import (
    LEGAL_SOURCES,
    LEGAL_TARGETS,
    TERMINAL_STATUSES,
    apply_transition,
    is_legal,
    require_legal,
)

NOW = datetime(2024, 1, 1, tzinfo=UTC)


def test_every_operation_has_sources_and_targets() -> None:
    assert set(LEGAL_SOURCES) == set(TripOperation)
    assert set(LEGAL_TARGETS) == set(TripOperation)
    for targets in LEGAL_TARGETS.values():
        assert targets <= set(TripStatus)


@pytest.mark.parametrize(
    ("status", "operation", "expected"),
    [
        (TripStatus.SELECT_OPTION, TripOperation.SELECT_OPTION, True),
        (TripStatus.RM_PENDING, TripOperation.SELECT_OPTION, False),
        (TripStatus.RM_PENDING, TripOperation.DECIDE, True),
        (TripStatus.TRAVEL_ADMIN_PENDING, TripOperation.DECIDE, True),
        (TripStatus.APPROVED, TripOperation.DECIDE, False),
        (TripStatus.APPROVED, TripOperation.MARK_OPTIONS_UPLOADED, True),
        (TripStatus.OPTION_SELECTED, TripOperation.RECORD_BOOKING, True),
        (TripStatus.VISA_PENDING, TripOperation.RECORD_VISA_UPLOAD, True),
        (TripStatus.BOOKED, TripOperation.RESCHEDULE, True),
        (TripStatus.APPROVED, TripOperation.RESCHEDULE, False),
        (TripStatus.BOOKED, TripOperation.AUTO_CLOSE, True),
        (TripStatus.CANCELLATION_PENDING, TripOperation.CONFIRM_CANCELLATION, True),
        (TripStatus.BOOKED, TripOperation.CONFIRM_CANCELLATION, False),
        (TripStatus.REJECTED, TripOperation.CLOSE, True),
    ],
)
def test_transition_table(status, operation, expected) -> None:
    assert is_legal(status, operation) is expected


def test_cancellation_refused_for_terminal_and_pending_statuses() -> None:
    refused = TERMINAL_STATUSES | {TripStatus.CANCELLATION_PENDING}
    for status in TripStatus:
        assert is_legal(status, TripOperation.REQUEST_CANCELLATION) is (status not in refused)


def test_require_legal_raises_with_context() -> None:
    with pytest.raises(IllegalTransitionError) as excinfo:
        require_legal(TripStatus.CLOSED, TripOperation.RESCHEDULE, trip_id=7)

    error = excinfo.value
    assert isinstance(error, PreconditionError)
    assert isinstance(error, ValueError)
    assert error.status == TripStatus.CLOSED
    assert error.operation == TripOperation.RESCHEDULE
    assert error.trip_id == 7


def test_apply_transition_updates_status_and_timestamp() -> None:
    trip = SimpleNamespace(id=1, status=TripStatus.BOOKED, updated_at=None)

    previous = apply_transition(trip, TripOperation.AUTO_CLOSE, TripStatus.CLOSED, now=NOW)

    assert previous == TripStatus.BOOKED
    assert trip.status == TripStatus.CLOSED
    assert trip.updated_at == NOW


def test_apply_transition_rejects_unlisted_target() -> None:
    trip = SimpleNamespace(id=1, status=TripStatus.BOOKED, updated_at=None)

    with pytest.raises(ValueError):
        apply_transition(trip, TripOperation.AUTO_CLOSE, TripStatus.APPROVED, now=NOW)

    assert trip.status == TripStatus.BOOKED
