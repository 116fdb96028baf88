"""Tests for rescheduling booked trips."""

from __future__ import annotations

import pytest
from sqlalchemy import event

from tripflow import (
    DuplicateSegmentError,
    FileType,
    IllegalTransitionError,
    ItineraryItem,
    OwnershipError,
    RescheduleFieldError,
    SegmentNotFoundError,
    Subject,
    TripStatus,
    UploadedFile,
)
from tripflow.reschedule import merge_segment_details


@pytest.fixture()
def booked_trip(service, users, trip_request_factory, force_status, file_store) -> int:
    for relative in ("travel_options/options.pdf", "receipts/ticket.pdf", "visa/visa.pdf"):
        path = file_store.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"%PDF-1.4")

    created = service.create_trip(users["admin"], trip_request_factory())
    service.mark_options_uploaded(
        created.trip_id,
        [UploadedFile(filename="options.pdf", filepath="travel_options/options.pdf")],
    )
    force_status(created.trip_id, TripStatus.OPTION_SELECTED, option_selected="SQ 511")
    service.record_booking(
        created.trip_id,
        61000,
        [UploadedFile(filename="ticket.pdf", filepath="receipts/ticket.pdf")],
    )
    return created.trip_id


def _segments(trip_view, trip_id: int) -> list[ItineraryItem]:
    return [
        ItineraryItem(id=item.id, type=item.type, details=dict(item.details))
        for item in trip_view(trip_id).itineraries
    ]


def test_merge_ignores_unchanged_fields() -> None:
    current = {"from": "BLR", "departureDate": "2024-01-03", "stops": ["DXB"]}

    merged = merge_segment_details(
        current, {"from": "BLR", "stops": ["DXB"], "departureDate": "2024-01-05"}
    )

    assert merged == {"from": "BLR", "departureDate": "2024-01-05", "stops": ["DXB"]}
    assert current["departureDate"] == "2024-01-03"


def test_merge_rejects_changed_non_date_field() -> None:
    with pytest.raises(RescheduleFieldError) as excinfo:
        merge_segment_details({"to": "SIN"}, {"returnDate": "2024-01-12", "to": "HKG"})

    assert excinfo.value.field == "to"
    assert "Only date and time fields" in str(excinfo.value)


def test_reschedule_updates_dates_and_resets_booking(
    service, users, notifier, file_store, booked_trip, trip_view
) -> None:
    segments = _segments(trip_view, booked_trip)
    segments[0].details["returnDate"] = "2024-01-14"
    segments[0].details["returnTime"] = "18:30"
    segments[1].details["checkoutDate"] = "2024-01-13"

    result = service.reschedule(booked_trip, users["admin"], segments)

    assert result.status == TripStatus.APPROVED
    assert result.updated_segments == [segments[0].id, segments[1].id]
    assert sorted(result.removed_files) == [
        "receipts/ticket.pdf",
        "travel_options/options.pdf",
    ]

    trip = trip_view(booked_trip)
    assert trip.status == TripStatus.APPROVED
    assert trip.total_cost is None
    assert trip.booked_at is None
    assert trip.option_selected is None
    assert trip.itineraries[0].details["returnDate"] == "2024-01-14"
    assert trip.itineraries[0].details["returnTime"] == "18:30"
    assert trip.itineraries[0].details["from"] == "BLR"
    assert trip.itineraries[1].details["checkoutDate"] == "2024-01-13"
    assert trip.files == []

    assert not file_store.exists("receipts/ticket.pdf")
    assert not file_store.exists("travel_options/options.pdf")
    assert file_store.exists("visa/visa.pdf")
    assert notifier.sent[-1].subject.startswith(Subject.TRIP_RESCHEDULED)
    assert notifier.sent[-1].recipient == users["admin"].email


def test_reschedule_is_all_or_nothing(service, users, file_store, booked_trip, trip_view) -> None:
    segments = _segments(trip_view, booked_trip)
    segments[0].details["returnDate"] = "2024-01-14"
    segments[1].details["hotel"] = "Raffles"
    before = trip_view(booked_trip)

    with pytest.raises(RescheduleFieldError) as excinfo:
        service.reschedule(booked_trip, users["admin"], segments)

    assert excinfo.value.field == "hotel"
    after = trip_view(booked_trip)
    assert after.status == TripStatus.BOOKED
    assert after.itineraries == before.itineraries
    assert after.total_cost == 61000
    assert {f.file_type for f in after.files} == {
        FileType.TRAVEL_OPTIONS,
        FileType.RECEIPTS,
    }
    assert file_store.exists("receipts/ticket.pdf")


def test_reschedule_unknown_segment(service, users, file_store, booked_trip, trip_view) -> None:
    segments = _segments(trip_view, booked_trip)
    segments.append(ItineraryItem(id=9999, type="car", details={"pickupDate": "2024-01-04"}))

    with pytest.raises(SegmentNotFoundError):
        service.reschedule(booked_trip, users["admin"], segments)

    assert trip_view(booked_trip).status == TripStatus.BOOKED
    assert file_store.exists("receipts/ticket.pdf")


def test_reschedule_requires_owner(service, users, booked_trip, trip_view) -> None:
    with pytest.raises(OwnershipError):
        service.reschedule(booked_trip, users["employee"], _segments(trip_view, booked_trip))


def test_reschedule_requires_booked(service, users, trip_request_factory) -> None:
    created = service.create_trip(users["admin"], trip_request_factory())

    with pytest.raises(IllegalTransitionError):
        service.reschedule(created.trip_id, users["admin"], [])


def test_reschedule_accepts_plain_mappings(service, users, booked_trip, trip_view) -> None:
    segment = trip_view(booked_trip).itineraries[0]

    result = service.reschedule(
        booked_trip,
        users["admin"],
        [{"id": segment.id, "type": "flight", "details": {"departureDate": "2024-01-04"}}],
    )

    assert result.updated_segments == [segment.id]
    assert trip_view(booked_trip).itineraries[0].details["departureDate"] == "2024-01-04"


def test_reschedule_rejects_repeated_segment(
    service, users, file_store, booked_trip, trip_view
) -> None:
    segment = trip_view(booked_trip).itineraries[0]
    repeated = [
        ItineraryItem(id=segment.id, type=segment.type, details={"returnDate": "2024-01-20"}),
        ItineraryItem(id=segment.id, type=segment.type, details={"returnTime": "20:00"}),
    ]

    with pytest.raises(DuplicateSegmentError) as excinfo:
        service.reschedule(booked_trip, users["admin"], repeated)

    assert excinfo.value.segment_id == segment.id
    trip = trip_view(booked_trip)
    assert trip.status == TripStatus.BOOKED
    assert trip.itineraries[0].details == segment.details
    assert file_store.exists("receipts/ticket.pdf")


def test_failed_commit_keeps_files_on_disk(
    service, users, database, file_store, booked_trip, trip_view
) -> None:
    def _fail_commit(session) -> None:
        raise RuntimeError("commit refused")

    event.listen(database.session_factory, "before_commit", _fail_commit)
    try:
        with pytest.raises(RuntimeError):
            service.reschedule(booked_trip, users["admin"], [])
    finally:
        event.remove(database.session_factory, "before_commit", _fail_commit)

    trip = trip_view(booked_trip)
    assert trip.status == TripStatus.BOOKED
    assert sorted(f.filepath for f in trip.files) == [
        "receipts/ticket.pdf",
        "travel_options/options.pdf",
    ]
    assert file_store.exists("receipts/ticket.pdf")
    assert file_store.exists("travel_options/options.pdf")
