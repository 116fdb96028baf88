"""Tests for the auto-close sweep."""

from __future__ import annotations

import threading
from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from tripflow import AutoCloseSweep, ItineraryItem, TripStatus
from tripflow.storage import TripRecord
from tripflow.sweep import (
    SWEEP_JOB_ID,
    parse_segment_date,
    segment_end_date,
    trip_end_date,
)

TODAY = date(2024, 2, 1)


@pytest.fixture()
def make_booked(service, users, trip_request_factory, force_status):
    def _make(*segments: dict[str, str], status: TripStatus = TripStatus.BOOKED) -> int:
        request = trip_request_factory(
            itineraries=[ItineraryItem(type="flight", details=dict(d)) for d in segments]
        )
        created = service.create_trip(users["admin"], request)
        force_status(created.trip_id, status)
        return created.trip_id

    return _make


def test_segment_end_date_prefers_return_date() -> None:
    details = {"departureDate": "2024-01-03", "returnDate": "2024-01-10"}

    assert segment_end_date(details) == date(2024, 1, 10)


def test_segment_end_date_uses_first_non_empty_key() -> None:
    details = {"returnDate": "", "checkoutDate": "2024-03-01", "checkinDate": "2024-02-20"}

    assert segment_end_date(details) == date(2024, 3, 1)


def test_trip_end_date_takes_latest_segment() -> None:
    segments = [
        {"departureDate": "2024-01-03"},
        {"checkinDate": "2024-01-03", "checkoutDate": "2024-01-20"},
        {"pickupDate": "2024-01-05"},
    ]

    assert trip_end_date(segments) == date(2024, 1, 20)
    assert trip_end_date([{"from": "BLR"}]) is None


def test_parse_segment_date_accepts_timestamps() -> None:
    assert parse_segment_date("2024-01-10T22:15:00.000Z") == date(2024, 1, 10)
    assert parse_segment_date("2024-01-10") == date(2024, 1, 10)


def test_sweep_closes_finished_booked_trip(service, make_booked, trip_view) -> None:
    trip_id = make_booked({"departureDate": "2024-01-03", "returnDate": "2024-01-10"})

    closed = service.auto_close(TODAY)

    assert closed == [trip_id]
    trip = trip_view(trip_id)
    assert trip.status == TripStatus.CLOSED
    assert trip.closed_at is not None


def test_sweep_keeps_trip_ending_today_or_later(service, make_booked, trip_view) -> None:
    ending_today = make_booked({"returnDate": "2024-02-01"})
    ending_later = make_booked({"departureDate": "2024-01-03"}, {"checkoutDate": "2024-02-05"})

    assert service.auto_close(TODAY) == []
    assert trip_view(ending_today).status == TripStatus.BOOKED
    assert trip_view(ending_later).status == TripStatus.BOOKED


def test_sweep_ignores_trips_that_are_not_booked(service, make_booked, trip_view) -> None:
    trip_id = make_booked({"returnDate": "2023-12-01"}, status=TripStatus.APPROVED)

    assert service.auto_close(TODAY) == []
    assert trip_view(trip_id).status == TripStatus.APPROVED


def test_sweep_never_closes_trip_without_dates(service, make_booked, trip_view) -> None:
    trip_id = make_booked({"from": "BLR", "to": "SIN"})

    assert service.auto_close(TODAY) == []
    assert trip_view(trip_id).status == TripStatus.BOOKED


def test_sweep_skips_unparsable_dates(service, make_booked, trip_view) -> None:
    broken = make_booked({"returnDate": "next tuesday"})
    finished = make_booked({"returnDate": "2024-01-15"})

    assert service.auto_close(TODAY) == [finished]
    assert trip_view(broken).status == TripStatus.BOOKED


def test_today_follows_the_configured_timezone(database, make_booked) -> None:
    trip_id = make_booked({"returnDate": "2024-01-10"})
    singapore = timezone(timedelta(hours=8))

    def clock() -> datetime:
        # 20:00 UTC on the 10th is already the 11th in Singapore.
        return datetime(2024, 1, 10, 20, 0, tzinfo=UTC)

    assert AutoCloseSweep(database, clock=clock).run() == []
    assert AutoCloseSweep(database, clock=clock, timezone=singapore).run() == [trip_id]


def test_scheduled_sweep_runs_until_stopped(database, make_booked) -> None:
    trip_id = make_booked({"returnDate": "2020-05-01"})
    sweep = AutoCloseSweep(database)
    ran = threading.Event()
    real_run = sweep.run

    def _run(today=None):
        result = real_run(today)
        ran.set()
        return result

    sweep.run = _run
    scheduler = sweep.schedule(interval_seconds=3600)
    try:
        assert scheduler.get_job(SWEEP_JOB_ID) is not None
        assert sweep.schedule(interval_seconds=60) is scheduler
        assert ran.wait(timeout=5)
    finally:
        sweep.stop()

    assert not scheduler.running
    assert sweep.scheduler is None
    with database.transaction() as session:
        assert session.get(TripRecord, trip_id).status == TripStatus.CLOSED


def test_scheduled_sweep_logs_and_survives_failures(database) -> None:
    sweep = AutoCloseSweep(database)
    failed = threading.Event()

    def _broken(today=None):
        failed.set()
        raise RuntimeError("database went away")

    sweep.run = _broken
    sweep.schedule(interval_seconds=3600)
    try:
        assert failed.wait(timeout=5)
    finally:
        sweep.stop()


def test_stop_without_schedule_is_a_no_op(database) -> None:
    AutoCloseSweep(database).stop()
