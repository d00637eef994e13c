from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time
from typing import Any

ACTIVE_VIEWING_STATUSES: tuple[str, ...] = ("scheduled", "confirmed")
VIEWING_STATUSES: tuple[str, ...] = ("scheduled", "confirmed", "completed", "cancelled")
VIEWING_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "scheduled": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

MINUTES_PER_DAY = 24 * 60

_ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_CLOCK_TIME_PATTERN = re.compile(r"^\d{2}:\d{2}$")


def parse_iso_date(value: str | None) -> date | None:
    cleaned_value = (value or "").strip()
    if not _ISO_DATE_PATTERN.match(cleaned_value):
        return None
    try:
        return date.fromisoformat(cleaned_value)
    except ValueError:
        return None


def parse_clock_time(value: str | None) -> time | None:
    cleaned_value = (value or "").strip()
    if not _CLOCK_TIME_PATTERN.match(cleaned_value):
        return None
    hours, minutes = (int(part) for part in cleaned_value.split(":"))
    if hours > 23 or minutes > 59:
        return None
    return time(hours, minutes)


def minutes_since_midnight(value: str | time) -> int:
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    hours, minutes = value.strip()[:5].split(":")
    return int(hours) * 60 + int(minutes)


def format_clock_minutes(total_minutes: int) -> str:
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours:02d}:{minutes:02d}"


def intervals_overlap(first_start: Any, first_end: Any, second_start: Any, second_end: Any) -> bool:
    """Half-open overlap: ``[a, b)`` and ``[c, d)`` share an instant iff ``a < d and b > c``.

    Works for any ordered values (minutes, datetimes). Touching intervals do not overlap.
    """
    return first_start < second_end and first_end > second_start


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True)
class ViewingInterval:
    viewing_id: str
    property_id: str
    start_minute: int
    end_minute: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "viewing_id": self.viewing_id,
            "property_id": self.property_id,
            "start_minute": self.start_minute,
            "end_minute": self.end_minute,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> ViewingInterval:
        return cls(
            viewing_id=str(record.get("viewing_id", "")),
            property_id=str(record.get("property_id", "")),
            start_minute=int(record.get("start_minute", 0)),
            end_minute=int(record.get("end_minute", 0)),
        )


@dataclass
class AvailabilitySlot:
    id: str
    broker_id: str
    date: str
    start_time: str
    end_time: str
    is_available: bool = True
    max_bookings: int = 1
    slot_duration_minutes: int = 60
    break_between_slots: int = 15
    booking_type: str = "property_viewing"
    notes: str = ""

    @property
    def start_minute(self) -> int:
        return minutes_since_midnight(self.start_time)

    @property
    def end_minute(self) -> int:
        return minutes_since_midnight(self.end_time)

    def contains_start(self, start_minute: int) -> bool:
        return self.start_minute <= start_minute <= self.end_minute

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "broker_id": self.broker_id,
            "date": self.date,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "is_available": self.is_available,
            "max_bookings": self.max_bookings,
            "slot_duration_minutes": self.slot_duration_minutes,
            "break_between_slots": self.break_between_slots,
            "booking_type": self.booking_type,
            "notes": self.notes,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> AvailabilitySlot:
        break_between_slots = record.get("break_between_slots")
        return cls(
            id=str(record.get("_id", record.get("id", ""))),
            broker_id=str(record.get("broker_id", "")),
            date=str(record.get("date", "")),
            start_time=str(record.get("start_time", ""))[:5],
            end_time=str(record.get("end_time", ""))[:5],
            is_available=bool(record.get("is_available", True)),
            max_bookings=max(int(record.get("max_bookings") or 1), 1),
            slot_duration_minutes=int(record.get("slot_duration_minutes") or 60),
            break_between_slots=15 if break_between_slots is None else int(break_between_slots),
            booking_type=str(record.get("booking_type") or "property_viewing"),
            notes=str(record.get("notes") or ""),
        )


@dataclass
class BlockedTime:
    id: str
    broker_id: str
    start_datetime: datetime
    end_datetime: datetime
    reason: str = ""
    block_type: str = "personal"

    def intersects(self, start: datetime, end: datetime) -> bool:
        return intervals_overlap(start, end, self.start_datetime, self.end_datetime)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "broker_id": self.broker_id,
            "start_datetime": self.start_datetime,
            "end_datetime": self.end_datetime,
            "reason": self.reason,
            "block_type": self.block_type,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> BlockedTime:
        return cls(
            id=str(record.get("_id", record.get("id", ""))),
            broker_id=str(record.get("broker_id", "")),
            start_datetime=ensure_utc(record["start_datetime"]),
            end_datetime=ensure_utc(record["end_datetime"]),
            reason=str(record.get("reason") or ""),
            block_type=str(record.get("block_type") or "personal"),
        )


@dataclass
class PropertyViewing:
    id: str
    property_id: str
    broker_id: str
    viewing_date: str
    viewing_time: str
    end_time: str
    duration_minutes: int
    status: str = "scheduled"
    confirmation_code: str = ""
    visitor_name: str = ""
    visitor_email: str = ""
    visitor_phone: str | None = None
    party_size: int = 1
    viewing_type: str = "in_person"
    special_requests: str | None = None
    booking_source: str = "website"
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_VIEWING_STATUSES

    @property
    def start_minute(self) -> int:
        return minutes_since_midnight(self.viewing_time)

    @property
    def end_minute(self) -> int:
        return self.start_minute + self.duration_minutes

    def interval(self) -> ViewingInterval:
        return ViewingInterval(
            viewing_id=self.id,
            property_id=self.property_id,
            start_minute=self.start_minute,
            end_minute=self.end_minute,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "property_id": self.property_id,
            "broker_id": self.broker_id,
            "viewing_date": self.viewing_date,
            "viewing_time": self.viewing_time,
            "end_time": self.end_time,
            "duration_minutes": self.duration_minutes,
            "status": self.status,
            "confirmation_code": self.confirmation_code,
            "visitor_name": self.visitor_name,
            "visitor_email": self.visitor_email,
            "visitor_phone": self.visitor_phone,
            "party_size": self.party_size,
            "viewing_type": self.viewing_type,
            "special_requests": self.special_requests,
            "booking_source": self.booking_source,
            "metadata": dict(self.metadata),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> PropertyViewing:
        raw_metadata = record.get("metadata")
        return cls(
            id=str(record.get("_id", record.get("id", ""))),
            property_id=str(record.get("property_id", "")),
            broker_id=str(record.get("broker_id", "")),
            viewing_date=str(record.get("viewing_date", "")),
            viewing_time=str(record.get("viewing_time", ""))[:5],
            end_time=str(record.get("end_time", ""))[:5],
            duration_minutes=int(record.get("duration_minutes") or 60),
            status=str(record.get("status") or "scheduled").strip().lower(),
            confirmation_code=str(record.get("confirmation_code") or ""),
            visitor_name=str(record.get("visitor_name") or ""),
            visitor_email=str(record.get("visitor_email") or ""),
            visitor_phone=record.get("visitor_phone"),
            party_size=int(record.get("party_size") or 1),
            viewing_type=str(record.get("viewing_type") or "in_person"),
            special_requests=record.get("special_requests"),
            booking_source=str(record.get("booking_source") or "website"),
            metadata=dict(raw_metadata) if isinstance(raw_metadata, Mapping) else {},
            created_at=record.get("created_at"),
            updated_at=record.get("updated_at"),
        )


def active_intervals(viewings: Iterable[PropertyViewing]) -> list[ViewingInterval]:
    return [viewing.interval() for viewing in viewings if viewing.is_active]
