import threading
from datetime import UTC, datetime
from typing import Any

import pytest

from realty_scheduling.core.config import Settings
from realty_scheduling.schemas.viewing import BookViewingRequest
from realty_scheduling.services.booking_conflict_resolver import BookingConflictResolver, BookingErrorKind
from realty_scheduling.services.broker_schedule_store import InMemoryBrokerScheduleStore
from realty_scheduling.services.property_directory_store import InMemoryPropertyDirectoryStore
from realty_scheduling.services.viewing_store import InMemoryViewingStore

VIEWING_DATE = "2026-03-02"
FIXED_NOW = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)


class _RecordingNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[dict[str, Any]] = []

    def notify_viewing_booked(self, **kwargs: Any) -> dict[str, str]:
        self.calls.append(kwargs)
        if self.fail:
            raise RuntimeError("mail relay down")
        return {"visitor_email": "sent", "broker_email": "sent", "webhook": "sent"}


class _StaleViewingStore(InMemoryViewingStore):
    """Returns no viewings from reads, as if another request committed after our pre-check."""

    def list_broker_viewings(self, broker_id, viewing_date, *, statuses=None):  # type: ignore[no-untyped-def]
        return []


class _BookingSetup:
    def __init__(self, viewing_store: InMemoryViewingStore | None = None) -> None:
        self.settings = Settings(
            data_store="memory",
            mailgun_api_key="",
            notification_webhook_url="",
        )
        self.directory = InMemoryPropertyDirectoryStore()
        self.schedule = InMemoryBrokerScheduleStore()
        self.viewings = viewing_store or InMemoryViewingStore()
        self.notifier = _RecordingNotifier()

        self.property_a = self.directory.create_property(
            title="Sunset Villa",
            address="12 Palm Road",
            city="Cairo",
        )["_id"]
        self.property_b = self.directory.create_property(
            title="Harbor Loft",
            address="4 Dock Street",
            city="Alexandria",
        )["_id"]
        self.broker = self.directory.create_broker(
            full_name="Mona Adel",
            email="mona@example.com",
            phone="+20100000000",
        )["_id"]
        for property_id in (self.property_a, self.property_b):
            self.directory.upsert_property_broker(property_id=property_id, broker_id=self.broker)

    def add_slot(self, start_time: str, end_time: str, max_bookings: int = 1) -> None:
        self.schedule.create_availability_slots(
            [
                {
                    "broker_id": self.broker,
                    "date": VIEWING_DATE,
                    "start_time": start_time,
                    "end_time": end_time,
                    "is_available": True,
                    "max_bookings": max_bookings,
                    "slot_duration_minutes": 60,
                    "break_between_slots": 0,
                },
            ],
        )

    def resolver(self, notifier: Any | None = None) -> BookingConflictResolver:
        return BookingConflictResolver(
            self.settings,
            directory_store=self.directory,
            schedule_store=self.schedule,
            viewing_store=self.viewings,
            notifier=notifier or self.notifier,
            now_provider=lambda: FIXED_NOW,
        )

    def book(self, property_id: str, viewing_time: str, **overrides: Any):  # type: ignore[no-untyped-def]
        payload = {
            "broker_id": self.broker,
            "viewing_date": VIEWING_DATE,
            "viewing_time": viewing_time,
            "duration_minutes": 60,
            "visitor_name": "Omar Visitor",
            "visitor_email": "omar@example.com",
        }
        payload.update(overrides)
        return self.resolver().resolve(property_id, BookViewingRequest(**payload))


@pytest.fixture
def booking_setup() -> _BookingSetup:
    setup = _BookingSetup()
    setup.add_slot("09:00", "17:00", max_bookings=1)
    return setup


def test_cross_property_overlap_is_rejected_with_conflict_details(booking_setup: _BookingSetup) -> None:
    first = booking_setup.book(booking_setup.property_a, "10:00")
    assert first.accepted

    second = booking_setup.book(booking_setup.property_b, "10:30")

    assert not second.accepted
    assert second.error.kind is BookingErrorKind.BROKER_DOUBLE_BOOKED
    assert second.error.kind.status_code == 409
    details = second.error.conflict_details
    assert details.conflicting_property_id == booking_setup.property_a
    assert details.conflicting_property == "Sunset Villa"
    assert details.conflicting_property_address == "12 Palm Road"
    assert details.conflicting_time == "10:00 - 11:00"
    assert details.conflicting_viewing_id == first.viewing.id
    assert "Sunset Villa" in second.error.message


def test_abutting_viewings_on_different_properties_are_accepted(booking_setup: _BookingSetup) -> None:
    assert booking_setup.book(booking_setup.property_a, "10:00").accepted

    resolution = booking_setup.book(booking_setup.property_b, "11:00")

    assert resolution.accepted
    assert resolution.viewing.viewing_time == "11:00"
    assert resolution.viewing.end_time == "12:00"
    assert resolution.viewing.status == "scheduled"
    assert resolution.viewing.confirmation_code.startswith("VW-")


def test_request_outside_every_slot_is_slot_unavailable(booking_setup: _BookingSetup) -> None:
    resolution = booking_setup.book(booking_setup.property_a, "18:00")

    assert resolution.error.kind is BookingErrorKind.SLOT_UNAVAILABLE
    assert resolution.error.message == "Time slot not available"


def test_same_property_same_time_fills_slot_capacity(booking_setup: _BookingSetup) -> None:
    assert booking_setup.book(booking_setup.property_a, "10:00").accepted

    resolution = booking_setup.book(booking_setup.property_a, "10:00", visitor_email="second@example.com")

    assert resolution.error.kind is BookingErrorKind.SLOT_FULL
    assert resolution.error.conflict_details is None


def test_full_group_and_other_property_at_same_time_fail_differently(booking_setup: _BookingSetup) -> None:
    first = booking_setup.book(booking_setup.property_a, "14:00")
    assert first.accepted

    same_property = booking_setup.book(booking_setup.property_a, "14:00", visitor_email="second@example.com")
    other_property = booking_setup.book(booking_setup.property_b, "14:00", visitor_email="third@example.com")

    assert same_property.error.kind is BookingErrorKind.SLOT_FULL
    assert other_property.error.kind is BookingErrorKind.BROKER_DOUBLE_BOOKED
    assert other_property.error.conflict_details.conflicting_property_id == booking_setup.property_a
    assert other_property.error.conflict_details.conflicting_time == "14:00 - 15:00"
    assert other_property.error.conflict_details.conflicting_viewing_id == first.viewing.id


def test_viewing_group_accepts_up_to_max_bookings() -> None:
    setup = _BookingSetup()
    setup.add_slot("09:00", "17:00", max_bookings=2)

    assert setup.book(setup.property_a, "10:00").accepted
    assert setup.book(setup.property_a, "10:00", visitor_email="two@example.com").accepted
    third = setup.book(setup.property_a, "10:00", visitor_email="three@example.com")

    assert third.error.kind is BookingErrorKind.SLOT_FULL


def test_same_property_overlap_at_different_start_is_double_booking() -> None:
    setup = _BookingSetup()
    setup.add_slot("09:00", "17:00", max_bookings=3)
    assert setup.book(setup.property_a, "10:00").accepted

    resolution = setup.book(setup.property_a, "10:30")

    assert resolution.error.kind is BookingErrorKind.BROKER_DOUBLE_BOOKED


def test_narrowest_slot_governs_capacity() -> None:
    setup = _BookingSetup()
    setup.add_slot("09:00", "17:00", max_bookings=3)
    setup.add_slot("10:00", "12:00", max_bookings=1)
    assert setup.book(setup.property_a, "10:00").accepted

    resolution = setup.book(setup.property_a, "10:00", visitor_email="again@example.com")

    assert resolution.error.kind is BookingErrorKind.SLOT_FULL


def test_blocked_time_intersecting_the_viewing_is_rejected(booking_setup: _BookingSetup) -> None:
    booking_setup.schedule.create_blocked_times(
        [
            {
                "broker_id": booking_setup.broker,
                "start_datetime": datetime(2026, 3, 2, 12, 0, tzinfo=UTC),
                "end_datetime": datetime(2026, 3, 2, 13, 0, tzinfo=UTC),
            },
        ],
    )

    blocked = booking_setup.book(booking_setup.property_a, "11:30")
    clear = booking_setup.book(booking_setup.property_a, "11:00")

    assert blocked.error.kind is BookingErrorKind.SLOT_BLOCKED
    assert clear.accepted


def test_past_requests_are_rejected_before_availability(booking_setup: _BookingSetup) -> None:
    resolution = booking_setup.book(booking_setup.property_a, "07:00", viewing_date="2026-03-01")

    assert resolution.error.kind is BookingErrorKind.INVALID_REQUEST
    assert resolution.error.message == "Cannot book viewings in the past"


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"viewing_date": "2026-3-2"}, "Invalid date or time format"),
        ({"viewing_time": "9:00"}, "Invalid date or time format"),
        ({"viewing_time": "25:00"}, "Invalid date or time format"),
        ({"visitor_email": "not-an-email"}, "Invalid email format"),
        ({"visitor_name": "  "}, None),
        ({"duration_minutes": 0}, None),
        ({"party_size": 0}, None),
        ({"viewing_time": "23:30"}, "Viewings must end before midnight"),
    ],
)
def test_malformed_requests_are_invalid(
    booking_setup: _BookingSetup,
    overrides: dict[str, Any],
    message: str | None,
) -> None:
    payload = dict(overrides)
    resolution = booking_setup.book(booking_setup.property_a, payload.pop("viewing_time", "10:00"), **payload)

    assert resolution.error.kind is BookingErrorKind.INVALID_REQUEST
    if message:
        assert resolution.error.message == message


def test_unknown_property_and_unassigned_broker_are_not_found(booking_setup: _BookingSetup) -> None:
    unknown_property = booking_setup.book("999", "10:00")
    other_broker = booking_setup.directory.create_broker(full_name="Sami Said", email="sami@example.com")["_id"]
    unassigned = booking_setup.book(booking_setup.property_a, "10:00", broker_id=other_broker)

    assert unknown_property.error.kind is BookingErrorKind.NOT_FOUND
    assert unknown_property.error.message == "Property not found"
    assert unassigned.error.kind is BookingErrorKind.NOT_FOUND
    assert unassigned.error.message == "Broker not found or not assigned to this property"


def test_inactive_assignment_is_not_found(booking_setup: _BookingSetup) -> None:
    booking_setup.directory.upsert_property_broker(
        property_id=booking_setup.property_a,
        broker_id=booking_setup.broker,
        is_active=False,
    )

    resolution = booking_setup.book(booking_setup.property_a, "10:00")

    assert resolution.error.kind is BookingErrorKind.NOT_FOUND


def test_cancelled_viewing_frees_the_broker(booking_setup: _BookingSetup) -> None:
    first = booking_setup.book(booking_setup.property_a, "10:00")
    booking_setup.viewings.update_viewing_status(first.viewing.id, "cancelled")

    resolution = booking_setup.book(booking_setup.property_b, "10:00")

    assert resolution.accepted


def test_storage_guard_rejects_overlap_missed_by_stale_read() -> None:
    setup = _BookingSetup(viewing_store=_StaleViewingStore())
    setup.add_slot("09:00", "17:00", max_bookings=1)
    first = setup.book(setup.property_a, "10:00")

    second = setup.book(setup.property_b, "10:30")

    assert first.accepted
    assert second.error.kind is BookingErrorKind.BROKER_DOUBLE_BOOKED
    assert second.error.conflict_details.conflicting_viewing_id == first.viewing.id
    assert second.error.conflict_details.conflicting_time == "10:00 - 11:00"


def test_storage_guard_rejects_full_group_missed_by_stale_read() -> None:
    setup = _BookingSetup(viewing_store=_StaleViewingStore())
    setup.add_slot("09:00", "17:00", max_bookings=1)
    assert setup.book(setup.property_a, "10:00").accepted

    second = setup.book(setup.property_a, "10:00", visitor_email="late@example.com")

    assert second.error.kind is BookingErrorKind.SLOT_FULL


def test_concurrent_overlapping_requests_commit_exactly_one(booking_setup: _BookingSetup) -> None:
    properties = [booking_setup.property_a, booking_setup.property_b]
    start_times = ["10:00", "10:15", "10:30", "10:45", "10:00", "10:20", "10:40", "10:10"]
    barrier = threading.Barrier(len(start_times))
    results: list[Any] = [None] * len(start_times)

    def _book(index: int) -> None:
        barrier.wait()
        results[index] = booking_setup.book(properties[index % 2], start_times[index])

    threads = [threading.Thread(target=_book, args=(index,)) for index in range(len(start_times))]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    accepted = [result for result in results if result.accepted]
    assert len(accepted) == 1
    assert all(
        result.error.kind in {BookingErrorKind.BROKER_DOUBLE_BOOKED, BookingErrorKind.SLOT_FULL}
        for result in results
        if not result.accepted
    )
    active = booking_setup.viewings.list_broker_viewings(booking_setup.broker, VIEWING_DATE)
    assert len(active) == 1


def test_notifier_receives_committed_viewing(booking_setup: _BookingSetup) -> None:
    resolution = booking_setup.book(booking_setup.property_a, "10:00")

    assert resolution.accepted
    assert len(booking_setup.notifier.calls) == 1
    call = booking_setup.notifier.calls[0]
    assert call["viewing"]["id"] == resolution.viewing.id
    assert call["property_record"]["title"] == "Sunset Villa"
    assert call["broker_record"]["full_name"] == "Mona Adel"


def test_notifier_failure_does_not_roll_back_booking(booking_setup: _BookingSetup) -> None:
    failing_notifier = _RecordingNotifier(fail=True)
    resolution = booking_setup.resolver(notifier=failing_notifier).resolve(
        booking_setup.property_a,
        BookViewingRequest(
            broker_id=booking_setup.broker,
            viewing_date=VIEWING_DATE,
            viewing_time="10:00",
            visitor_name="Omar Visitor",
            visitor_email="omar@example.com",
        ),
    )

    assert resolution.accepted
    assert booking_setup.viewings.get_viewing(resolution.viewing.id) is not None


def test_committed_viewing_carries_metadata(booking_setup: _BookingSetup) -> None:
    resolution = booking_setup.resolver().resolve(
        booking_setup.property_a,
        BookViewingRequest(
            broker_id=booking_setup.broker,
            viewing_date=VIEWING_DATE,
            viewing_time="14:00",
            visitor_name="Omar Visitor",
            visitor_email="Omar@Example.com",
            metadata={"campaign": "spring"},
        ),
        client_metadata={"user_agent": "pytest", "ip_address": "127.0.0.1"},
    )

    viewing = resolution.viewing
    assert viewing.duration_minutes == 60
    assert viewing.visitor_email == "omar@example.com"
    assert viewing.metadata["campaign"] == "spring"
    assert viewing.metadata["property_title"] == "Sunset Villa"
    assert viewing.metadata["broker_name"] == "Mona Adel"
    assert viewing.metadata["user_agent"] == "pytest"
    assert viewing.property.title == "Sunset Villa"
    assert viewing.broker.name == "Mona Adel"
