from datetime import UTC, datetime

import pytest
from fastapi import HTTPException

from realty_scheduling.core.config import Settings
from realty_scheduling.schemas.broker_schedule import (
    AvailabilityCreateRequest,
    AvailabilityUpdateRequest,
    BlockedTimeCreateRequest,
)
from realty_scheduling.services.broker_schedule_service import BrokerScheduleService
from realty_scheduling.services.broker_schedule_store import InMemoryBrokerScheduleStore
from realty_scheduling.services.property_directory_store import InMemoryPropertyDirectoryStore
from realty_scheduling.services.viewing_store import InMemoryViewingStore

FIXED_NOW = datetime(2026, 3, 1, 8, 30, tzinfo=UTC)


@pytest.fixture
def directory_store() -> InMemoryPropertyDirectoryStore:
    return InMemoryPropertyDirectoryStore()


@pytest.fixture
def viewing_store() -> InMemoryViewingStore:
    return InMemoryViewingStore()


@pytest.fixture
def broker_id(directory_store: InMemoryPropertyDirectoryStore) -> str:
    return directory_store.create_broker(full_name="Mona Adel", email="mona@example.com")["_id"]


@pytest.fixture
def service(
    directory_store: InMemoryPropertyDirectoryStore,
    viewing_store: InMemoryViewingStore,
) -> BrokerScheduleService:
    return BrokerScheduleService(
        Settings(data_store="memory"),
        schedule_store=InMemoryBrokerScheduleStore(),
        viewing_store=viewing_store,
        directory_store=directory_store,
        now_provider=lambda: FIXED_NOW,
    )


def _availability(
    date: str = "2026-03-02",
    start: str = "09:00",
    end: str = "12:00",
    **extra,
) -> AvailabilityCreateRequest:
    return AvailabilityCreateRequest(date=date, start_time=start, end_time=end, break_between_slots=0, **extra)


def _book(viewing_store: InMemoryViewingStore, broker_id: str, viewing_time: str, property_id: str = "p1") -> dict:
    hours, minutes = (int(part) for part in viewing_time.split(":"))
    return viewing_store.insert_viewing_if_free(
        {
            "property_id": property_id,
            "broker_id": broker_id,
            "viewing_date": "2026-03-02",
            "viewing_time": viewing_time,
            "end_time": f"{hours + 1:02d}:{minutes:02d}",
            "duration_minutes": 60,
            "status": "scheduled",
        },
        max_group_size=5,
    )


def _expect_http_error(status_code: int, func, *args, **kwargs) -> HTTPException:
    with pytest.raises(HTTPException) as exc_info:
        func(*args, **kwargs)
    assert exc_info.value.status_code == status_code
    return exc_info.value


def test_create_availability_and_list_window(service: BrokerScheduleService, broker_id: str) -> None:
    created = service.create_availability(broker_id, _availability(max_bookings=2, notes="Bring ID"))

    assert created.availability.date == "2026-03-02"
    assert created.availability.max_bookings == 2
    assert created.availability.current_bookings == 0
    assert created.recurring_created == 0

    listing = service.list_availability(broker_id, on_date="2026-03-02")
    assert [slot.id for slot in listing.availability] == [created.availability.id]

    default_window = service.list_availability(broker_id)
    assert default_window.start_date == "2026-03-01"
    assert default_window.end_date == "2026-03-31"
    assert len(default_window.availability) == 1


def test_overlapping_availability_is_rejected(service: BrokerScheduleService, broker_id: str) -> None:
    first = service.create_availability(broker_id, _availability())

    error = _expect_http_error(409, service.create_availability, broker_id, _availability(start="11:00", end="13:00"))

    assert error.detail["error"] == "Time slot conflicts with existing availability"
    assert error.detail["conflicts"] == [{"id": first.availability.id, "start_time": "09:00", "end_time": "12:00"}]
    service.create_availability(broker_id, _availability(start="12:00", end="14:00"))


@pytest.mark.parametrize(
    ("payload", "detail"),
    [
        ({"date": "02/03/2026"}, "Invalid date format. Use YYYY-MM-DD"),
        ({"start": "9am"}, "Invalid time format. Use HH:MM"),
        ({"start": "12:00", "end": "09:00"}, "End time must be after start time"),
        ({"date": "2026-02-28"}, "Cannot create availability in the past"),
    ],
)
def test_invalid_availability_requests(
    service: BrokerScheduleService,
    broker_id: str,
    payload: dict,
    detail: str,
) -> None:
    error = _expect_http_error(400, service.create_availability, broker_id, _availability(**payload))

    assert error.detail == detail


def test_recurring_availability_skips_conflicting_days(service: BrokerScheduleService, broker_id: str) -> None:
    service.create_availability(broker_id, _availability(date="2026-03-04", start="10:00", end="11:00"))

    created = service.create_availability(
        broker_id,
        _availability(recurring_pattern="daily", recurring_until="2026-03-06"),
    )

    assert created.recurring_created == 3
    assert created.recurring_skipped == 1
    dates = [
        slot.date
        for slot in service.list_availability(broker_id, start_date="2026-03-01", end_date="2026-03-10").availability
        if slot.start_time == "09:00"
    ]
    assert dates == ["2026-03-02", "2026-03-03", "2026-03-05", "2026-03-06"]


def test_recurring_availability_requires_until(service: BrokerScheduleService, broker_id: str) -> None:
    _expect_http_error(400, service.create_availability, broker_id, _availability(recurring_pattern="weekly"))
    _expect_http_error(400, service.create_availability, broker_id, _availability(recurring_pattern="hourly"))


def test_update_availability_checks_bookings_and_overlap(
    service: BrokerScheduleService,
    viewing_store: InMemoryViewingStore,
    broker_id: str,
) -> None:
    slot = service.create_availability(broker_id, _availability(max_bookings=3)).availability
    other = service.create_availability(broker_id, _availability(start="13:00", end="15:00")).availability
    _book(viewing_store, broker_id, "10:00")
    _book(viewing_store, broker_id, "10:00")

    error = _expect_http_error(
        400,
        service.update_availability,
        broker_id,
        slot.id,
        AvailabilityUpdateRequest(max_bookings=1),
    )
    assert error.detail == "Cannot reduce max bookings below current bookings (2)"

    _expect_http_error(
        409,
        service.update_availability,
        broker_id,
        other.id,
        AvailabilityUpdateRequest(start_time="11:00"),
    )

    updated = service.update_availability(
        broker_id,
        slot.id,
        AvailabilityUpdateRequest(end_time="12:30", notes="Updated"),
    )
    assert updated.availability.end_time == "12:30"
    assert updated.availability.notes == "Updated"
    assert updated.availability.max_bookings == 3
    assert updated.availability.current_bookings == 2


def test_slot_bookings_count_largest_viewing_group(
    service: BrokerScheduleService,
    viewing_store: InMemoryViewingStore,
    broker_id: str,
) -> None:
    slot = service.create_availability(broker_id, _availability(end="17:00")).availability
    _book(viewing_store, broker_id, "10:00")
    _book(viewing_store, broker_id, "13:00")

    listing = service.list_availability(broker_id, on_date="2026-03-02")
    assert listing.availability[0].current_bookings == 1

    updated = service.update_availability(broker_id, slot.id, AvailabilityUpdateRequest(max_bookings=1))
    assert updated.availability.max_bookings == 1
    assert updated.availability.current_bookings == 1

    error = _expect_http_error(409, service.delete_availability, broker_id, slot.id)
    assert "2 existing booking(s)" in error.detail


def test_update_availability_rejects_past_date_and_unknown_slot(
    service: BrokerScheduleService,
    broker_id: str,
) -> None:
    slot = service.create_availability(broker_id, _availability()).availability

    error = _expect_http_error(
        400,
        service.update_availability,
        broker_id,
        slot.id,
        AvailabilityUpdateRequest(date="2026-02-01"),
    )
    assert error.detail == "Cannot edit availability in the past"
    _expect_http_error(404, service.update_availability, broker_id, "999", AvailabilityUpdateRequest(notes="x"))


def test_delete_availability_with_bookings_is_rejected(
    service: BrokerScheduleService,
    viewing_store: InMemoryViewingStore,
    broker_id: str,
) -> None:
    booked_slot = service.create_availability(broker_id, _availability()).availability
    empty_slot = service.create_availability(broker_id, _availability(start="14:00", end="16:00")).availability
    viewing = _book(viewing_store, broker_id, "09:00")

    error = _expect_http_error(409, service.delete_availability, broker_id, booked_slot.id)
    assert error.detail == (
        "Cannot delete availability slot with 1 existing booking(s). Please cancel bookings first."
    )

    assert service.delete_availability(broker_id, empty_slot.id).success is True
    viewing_store.update_viewing_status(viewing["_id"], "cancelled")
    assert service.delete_availability(broker_id, booked_slot.id).success is True
    assert service.list_availability(broker_id, on_date="2026-03-02").availability == []


def test_unknown_broker_is_not_found(service: BrokerScheduleService) -> None:
    _expect_http_error(404, service.list_availability, "missing")
    _expect_http_error(404, service.create_availability, "missing", _availability())
    _expect_http_error(404, service.list_blocked_times, "missing")


def test_create_blocked_time_with_monthly_recurrence(service: BrokerScheduleService, broker_id: str) -> None:
    created = service.create_blocked_time(
        broker_id,
        BlockedTimeCreateRequest(
            start_datetime="2026-03-31T09:00:00Z",
            end_datetime="2026-03-31T10:00:00Z",
            reason="Team meeting",
            block_type="meeting",
            recurring_pattern="monthly",
            recurring_until="2026-06-30",
        ),
    )

    assert created.blocked_time.start_datetime == datetime(2026, 3, 31, 9, 0, tzinfo=UTC)
    assert created.blocked_time.block_type == "meeting"
    assert created.recurring_created == 3

    listing = service.list_blocked_times(
        broker_id,
        start="2026-03-01T00:00:00Z",
        end="2026-07-01T00:00:00Z",
    )
    assert [blocked.start_datetime.date().isoformat() for blocked in listing.blocked_times] == [
        "2026-03-31",
        "2026-04-30",
        "2026-05-31",
        "2026-06-30",
    ]


def test_blocked_time_validation(service: BrokerScheduleService, broker_id: str) -> None:
    service.create_blocked_time(
        broker_id,
        BlockedTimeCreateRequest(start_datetime="2026-03-02T09:00:00+00:00", end_datetime="2026-03-02T11:00:00+00:00"),
    )

    overlap = _expect_http_error(
        409,
        service.create_blocked_time,
        broker_id,
        BlockedTimeCreateRequest(start_datetime="2026-03-02T10:00:00Z", end_datetime="2026-03-02T12:00:00Z"),
    )
    assert overlap.detail["error"] == "Time period conflicts with existing blocked time"

    naive = _expect_http_error(
        400,
        service.create_blocked_time,
        broker_id,
        BlockedTimeCreateRequest(start_datetime="2026-03-03T09:00:00", end_datetime="2026-03-03T10:00:00"),
    )
    assert "timezone" in naive.detail

    reversed_range = _expect_http_error(
        400,
        service.create_blocked_time,
        broker_id,
        BlockedTimeCreateRequest(start_datetime="2026-03-03T10:00:00Z", end_datetime="2026-03-03T09:00:00Z"),
    )
    assert reversed_range.detail == "End datetime must be after start datetime"

    past = _expect_http_error(
        400,
        service.create_blocked_time,
        broker_id,
        BlockedTimeCreateRequest(start_datetime="2026-03-01T07:00:00Z", end_datetime="2026-03-01T09:00:00Z"),
    )
    assert past.detail == "Cannot create blocked time in the past"

    current_hour = service.create_blocked_time(
        broker_id,
        BlockedTimeCreateRequest(start_datetime="2026-03-01T08:00:00Z", end_datetime="2026-03-01T09:00:00Z"),
    )
    assert current_hour.success is True
