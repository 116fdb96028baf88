"""Test configuration for adding src to the import path."""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterator
from concurrent.futures import Future
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from tripflow import (
    CreateTripRequest,
    Database,
    Identity,
    ItineraryItem,
    ItineraryType,
    LocalFileStore,
    NotificationDispatcher,
    RecordingBookingPartner,
    RecordingNotifier,
    TripflowService,
    TripStatus,
    TripView,
    UserRole,
)
from tripflow.storage import TripRecord, UserRecord


class ImmediateDispatcher(NotificationDispatcher):
    """Dispatcher that runs jobs inline so assertions see their effects."""

    def __init__(self) -> None:
        super().__init__(max_workers=1)
        self.failures: list[str] = []

    def submit(self, job: Callable[[], None], *, description: str) -> Future[None]:
        future: Future[None] = Future()
        try:
            job()
        except Exception as exc:
            self.failures.append(description)
            future.set_exception(exc)
        else:
            future.set_result(None)
        return future


USERS: dict[str, dict[str, Any]] = {
    "admin": {
        "user_code": "TA001",
        "username": "Priya Nair",
        "email": "travel.admin@example.com",
        "role": UserRole.TRAVEL_ADMIN,
        "designation": "Travel Desk",
        "department": "Administration",
    },
    "manager": {
        "user_code": "RM100",
        "username": "Marcus Hale",
        "email": "marcus.hale@example.com",
        "role": UserRole.EMPLOYEE,
        "designation": "Engineering Manager",
        "department": "Engineering",
    },
    "employee": {
        "user_code": "EMP200",
        "username": "Dana Ortiz",
        "email": "dana.ortiz@example.com",
        "role": UserRole.EMPLOYEE,
        "designation": "Software Engineer",
        "department": "Engineering",
        "reporting_manager_code": "RM100",
    },
    "orphan": {
        "user_code": "EMP300",
        "username": "Sam Lee",
        "email": "sam.lee@example.com",
        "role": UserRole.EMPLOYEE,
        "designation": "Analyst",
        "department": "Finance",
        "reporting_manager_code": "GONE999",
    },
}


@pytest.fixture()
def database() -> Iterator[Database]:
    db = Database("sqlite:///:memory:")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture()
def users(database: Database) -> dict[str, Identity]:
    with database.transaction() as session:
        records = {name: UserRecord(**data) for name, data in USERS.items()}
        session.add_all(records.values())
        session.flush()
        return {name: Identity.model_validate(record) for name, record in records.items()}


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def dispatcher() -> Iterator[ImmediateDispatcher]:
    immediate = ImmediateDispatcher()
    yield immediate
    immediate.shutdown()


@pytest.fixture()
def partner() -> RecordingBookingPartner:
    return RecordingBookingPartner()


@pytest.fixture()
def file_store(tmp_path: Path) -> LocalFileStore:
    root = tmp_path / "uploads"
    root.mkdir()
    return LocalFileStore(root)


@pytest.fixture()
def service(
    database: Database,
    users: dict[str, Identity],
    notifier: RecordingNotifier,
    dispatcher: ImmediateDispatcher,
    partner: RecordingBookingPartner,
    file_store: LocalFileStore,
) -> TripflowService:
    return TripflowService(
        database,
        notifier=notifier,
        partner=partner,
        file_store=file_store,
        dispatcher=dispatcher,
        frontend_url="https://portal.example.com",
    )


@pytest.fixture()
def trip_request_factory() -> Callable[..., CreateTripRequest]:
    def _factory(**overrides: object) -> CreateTripRequest:
        data: dict[str, Any] = {
            "trip_name": "Client workshop",
            "destination_country": "Singapore",
            "business_purpose": "Quarterly planning with the APAC team",
            "itineraries": [
                ItineraryItem(
                    type=ItineraryType.FLIGHT,
                    details={
                        "from": "BLR",
                        "to": "SIN",
                        "departureDate": "2024-01-03",
                        "returnDate": "2024-01-10",
                        "departTime": "09:00",
                    },
                ),
                ItineraryItem(
                    type=ItineraryType.HOTEL,
                    details={
                        "hotel": "Marina Bay",
                        "checkinDate": "2024-01-03",
                        "checkoutDate": "2024-01-09",
                    },
                ),
            ],
        }
        data.update(overrides)
        return CreateTripRequest(**data)

    return _factory


@pytest.fixture()
def force_status(database: Database) -> Callable[..., None]:
    """Write a status straight onto a trip row for states the engine cannot reach."""

    def _force(trip_id: int, status: TripStatus, **fields: object) -> None:
        with database.transaction() as session:
            trip = session.get(TripRecord, trip_id)
            assert trip is not None
            trip.status = status
            for name, value in fields.items():
                setattr(trip, name, value)

    return _force


@pytest.fixture()
def trip_view(service: TripflowService, users: dict[str, Identity]) -> Callable[[int], TripView]:
    """Read trips as the travel admin, who may view every trip."""

    def _view(trip_id: int) -> TripView:
        return service.get_trip(trip_id, users["admin"])

    return _view
