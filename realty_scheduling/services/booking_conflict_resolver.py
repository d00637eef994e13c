"""Accept or reject a property-viewing request for a broker."""

from __future__ import annotations

import logging
import re
import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any
from zoneinfo import ZoneInfo

from fastapi import status

from realty_scheduling.core.config import Settings, get_settings
from realty_scheduling.schemas.viewing import BookViewingRequest, ConflictDetails, ViewingResponse
from realty_scheduling.services.broker_schedule_store import BrokerScheduleStore, create_broker_schedule_store
from realty_scheduling.services.property_directory_store import (
    PropertyDirectoryStore,
    create_property_directory_store,
)
from realty_scheduling.services.viewing_conflicts import (
    count_viewing_group,
    find_conflicting_interval,
    select_capacity_slot,
)
from realty_scheduling.services.viewing_models import (
    ACTIVE_VIEWING_STATUSES,
    MINUTES_PER_DAY,
    AvailabilitySlot,
    BlockedTime,
    PropertyViewing,
    active_intervals,
    format_clock_minutes,
    minutes_since_midnight,
    parse_clock_time,
    parse_iso_date,
)
from realty_scheduling.services.viewing_notification_dispatcher import ViewingNotificationDispatcher
from realty_scheduling.services.viewing_service import map_viewing_response
from realty_scheduling.services.viewing_store import (
    ViewingCapacityError,
    ViewingOverlapError,
    ViewingStore,
    create_viewing_store,
)

logger = logging.getLogger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class BookingErrorKind(StrEnum):
    INVALID_REQUEST = "invalid_request"
    NOT_FOUND = "not_found"
    SLOT_UNAVAILABLE = "slot_unavailable"
    SLOT_BLOCKED = "slot_blocked"
    BROKER_DOUBLE_BOOKED = "broker_double_booked"
    SLOT_FULL = "slot_full"

    @property
    def status_code(self) -> int:
        if self is BookingErrorKind.NOT_FOUND:
            return status.HTTP_404_NOT_FOUND
        if self is BookingErrorKind.BROKER_DOUBLE_BOOKED:
            return status.HTTP_409_CONFLICT
        return status.HTTP_400_BAD_REQUEST


@dataclass
class BookingError:
    kind: BookingErrorKind
    message: str
    conflict_details: ConflictDetails | None = None


@dataclass
class ViewingResolution:
    viewing: ViewingResponse | None = None
    error: BookingError | None = None

    @property
    def accepted(self) -> bool:
        return self.viewing is not None and self.error is None


class _Rejected(Exception):
    def __init__(self, error: BookingError) -> None:
        super().__init__(error.message)
        self.error = error


class BookingConflictResolver:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        directory_store: PropertyDirectoryStore | None = None,
        schedule_store: BrokerScheduleStore | None = None,
        viewing_store: ViewingStore | None = None,
        notifier: ViewingNotificationDispatcher | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.directory_store = directory_store or create_property_directory_store(self.settings)
        self.schedule_store = schedule_store or create_broker_schedule_store(self.settings)
        self.viewing_store = viewing_store or create_viewing_store(self.settings)
        self.notifier = notifier or ViewingNotificationDispatcher(self.settings)
        self.now_provider = now_provider or (lambda: datetime.now(UTC))
        self.timezone = ZoneInfo(self.settings.viewing_timezone)

    def resolve(
        self,
        property_id: str,
        request: BookViewingRequest,
        *,
        client_metadata: Mapping[str, Any] | None = None,
    ) -> ViewingResolution:
        try:
            resolution = self._resolve(property_id, request, client_metadata or {})
        except _Rejected as rejection:
            logger.info(
                "Viewing booking rejected property_id=%s broker_id=%s kind=%s reason=%s",
                property_id,
                request.broker_id,
                rejection.error.kind.value,
                rejection.error.message,
            )
            return ViewingResolution(error=rejection.error)

        logger.info(
            "Viewing booking accepted property_id=%s broker_id=%s viewing_id=%s date=%s time=%s",
            property_id,
            request.broker_id,
            resolution.viewing.id if resolution.viewing else None,
            request.viewing_date,
            request.viewing_time,
        )
        return resolution

    def _resolve(
        self,
        property_id: str,
        request: BookViewingRequest,
        client_metadata: Mapping[str, Any],
    ) -> ViewingResolution:
        normalized_property_id = property_id.strip()
        broker_id = request.broker_id.strip()
        viewing_date, start_minute, duration_minutes = self._validate_request(request)
        end_minute = start_minute + duration_minutes

        property_record, broker_record = self._load_participants(normalized_property_id, broker_id)

        slot = select_capacity_slot(
            [
                AvailabilitySlot.from_record(record)
                for record in self.schedule_store.list_availability(
                    broker_id,
                    start_date=viewing_date,
                    end_date=viewing_date,
                )
            ],
            start_minute,
        )
        if not slot:
            raise _Rejected(BookingError(BookingErrorKind.SLOT_UNAVAILABLE, "Time slot not available"))

        window_start = self._to_utc(viewing_date, start_minute)
        window_end = window_start + timedelta(minutes=duration_minutes)
        blocked_times = [
            BlockedTime.from_record(record)
            for record in self.schedule_store.list_blocked_times(
                broker_id,
                window_start=window_start,
                window_end=window_end,
            )
        ]
        if any(blocked_time.intersects(window_start, window_end) for blocked_time in blocked_times):
            raise _Rejected(BookingError(BookingErrorKind.SLOT_BLOCKED, "Time slot is blocked"))

        active_viewings = {
            viewing.id: viewing
            for viewing in (
                PropertyViewing.from_record(record)
                for record in self.viewing_store.list_broker_viewings(
                    broker_id,
                    viewing_date,
                    statuses=ACTIVE_VIEWING_STATUSES,
                )
            )
        }
        intervals = active_intervals(active_viewings.values())
        conflict = find_conflicting_interval(
            intervals,
            property_id=normalized_property_id,
            start_minute=start_minute,
            end_minute=end_minute,
        )
        if conflict:
            raise _Rejected(self._double_booked_error(active_viewings[conflict.viewing_id]))

        group_size = count_viewing_group(
            intervals,
            property_id=normalized_property_id,
            start_minute=start_minute,
        )
        if group_size >= slot.max_bookings:
            raise _Rejected(BookingError(BookingErrorKind.SLOT_FULL, "Time slot is fully booked"))

        record = self._build_viewing_record(
            property_id=normalized_property_id,
            broker_id=broker_id,
            viewing_date=viewing_date,
            start_minute=start_minute,
            duration_minutes=duration_minutes,
            request=request,
            property_record=property_record,
            broker_record=broker_record,
            client_metadata=client_metadata,
        )
        try:
            stored_record = self.viewing_store.insert_viewing_if_free(record, max_group_size=slot.max_bookings)
        except ViewingOverlapError as exc:
            logger.warning(
                "Viewing guard rejected overlap property_id=%s broker_id=%s date=%s time=%s",
                normalized_property_id,
                broker_id,
                viewing_date,
                request.viewing_time,
            )
            raise _Rejected(
                self._double_booked_error(PropertyViewing.from_record(exc.conflicting_viewing)),
            ) from exc
        except ViewingCapacityError as exc:
            logger.warning(
                "Viewing guard rejected full group property_id=%s broker_id=%s date=%s time=%s size=%s",
                normalized_property_id,
                broker_id,
                viewing_date,
                request.viewing_time,
                exc.group_size,
            )
            raise _Rejected(BookingError(BookingErrorKind.SLOT_FULL, "Time slot is fully booked")) from exc

        viewing = map_viewing_response(
            stored_record,
            property_record=property_record,
            broker_record=broker_record,
        )
        self._notify(viewing, property_record, broker_record)
        return ViewingResolution(viewing=viewing)

    def _validate_request(self, request: BookViewingRequest) -> tuple[str, int, int]:
        if not (
            request.broker_id.strip()
            and request.viewing_date.strip()
            and request.viewing_time.strip()
            and request.visitor_name.strip()
            and request.visitor_email.strip()
        ):
            raise _Rejected(
                BookingError(
                    BookingErrorKind.INVALID_REQUEST,
                    "Missing required fields: broker_id, viewing_date, viewing_time, visitor_name, visitor_email",
                ),
            )
        if not _EMAIL_PATTERN.match(request.visitor_email.strip()):
            raise _Rejected(BookingError(BookingErrorKind.INVALID_REQUEST, "Invalid email format"))

        parsed_date = parse_iso_date(request.viewing_date)
        parsed_time = parse_clock_time(request.viewing_time)
        if not parsed_date or not parsed_time:
            raise _Rejected(BookingError(BookingErrorKind.INVALID_REQUEST, "Invalid date or time format"))

        duration_minutes = request.duration_minutes
        if duration_minutes is None:
            duration_minutes = self.settings.default_viewing_duration_minutes
        if duration_minutes <= 0:
            raise _Rejected(
                BookingError(BookingErrorKind.INVALID_REQUEST, "Viewing duration must be a positive number of minutes"),
            )
        if request.party_size < 1:
            raise _Rejected(BookingError(BookingErrorKind.INVALID_REQUEST, "Party size must be at least 1"))

        start_minute = minutes_since_midnight(parsed_time)
        if start_minute + duration_minutes >= MINUTES_PER_DAY:
            raise _Rejected(BookingError(BookingErrorKind.INVALID_REQUEST, "Viewings must end before midnight"))

        viewing_date = parsed_date.isoformat()
        if self._to_utc(viewing_date, start_minute) <= self.now_provider():
            raise _Rejected(BookingError(BookingErrorKind.INVALID_REQUEST, "Cannot book viewings in the past"))
        return viewing_date, start_minute, duration_minutes

    def _load_participants(self, property_id: str, broker_id: str) -> tuple[dict[str, Any], dict[str, Any]]:
        property_record = self.directory_store.get_property(property_id)
        if not property_record:
            raise _Rejected(BookingError(BookingErrorKind.NOT_FOUND, "Property not found"))

        assignment = self.directory_store.get_property_broker(property_id, broker_id)
        broker_record = self.directory_store.get_broker(broker_id)
        if (
            not assignment
            or not assignment.get("is_active")
            or not broker_record
            or not broker_record.get("is_active")
        ):
            raise _Rejected(
                BookingError(BookingErrorKind.NOT_FOUND, "Broker not found or not assigned to this property"),
            )
        return property_record, broker_record

    def _double_booked_error(self, conflicting_viewing: PropertyViewing) -> BookingError:
        conflicting_property = self.directory_store.get_property(conflicting_viewing.property_id) or {}
        details = build_conflict_details(conflicting_viewing, conflicting_property)
        property_label = details.conflicting_property or "another property"
        return BookingError(
            BookingErrorKind.BROKER_DOUBLE_BOOKED,
            f"Broker is already booked at {property_label} from {details.conflicting_time}",
            conflict_details=details,
        )

    def _build_viewing_record(
        self,
        *,
        property_id: str,
        broker_id: str,
        viewing_date: str,
        start_minute: int,
        duration_minutes: int,
        request: BookViewingRequest,
        property_record: Mapping[str, Any],
        broker_record: Mapping[str, Any],
        client_metadata: Mapping[str, Any],
    ) -> dict[str, Any]:
        metadata = {
            **request.metadata,
            **client_metadata,
            "property_title": property_record.get("title"),
            "property_address": property_record.get("address"),
            "broker_name": broker_record.get("full_name"),
            "booked_at": self.now_provider().isoformat(),
        }
        return {
            "property_id": property_id,
            "broker_id": broker_id,
            "viewing_date": viewing_date,
            "viewing_time": format_clock_minutes(start_minute),
            "end_time": format_clock_minutes(start_minute + duration_minutes),
            "duration_minutes": duration_minutes,
            "status": "scheduled",
            "confirmation_code": _generate_confirmation_code(),
            "visitor_name": request.visitor_name.strip(),
            "visitor_email": request.visitor_email.strip().lower(),
            "visitor_phone": (request.visitor_phone or "").strip() or None,
            "party_size": request.party_size,
            "viewing_type": request.viewing_type.strip() or "in_person",
            "special_requests": request.special_requests,
            "booking_source": request.booking_source.strip() or "website",
            "metadata": metadata,
        }

    def _notify(
        self,
        viewing: ViewingResponse,
        property_record: Mapping[str, Any],
        broker_record: Mapping[str, Any],
    ) -> None:
        try:
            self.notifier.notify_viewing_booked(
                viewing=viewing.model_dump(),
                property_record=property_record,
                broker_record=broker_record,
            )
        except Exception:
            logger.exception("Viewing notification dispatch failed viewing_id=%s", viewing.id)

    def _to_utc(self, viewing_date: str, start_minute: int) -> datetime:
        hours, minutes = divmod(start_minute, 60)
        local_start = datetime.fromisoformat(viewing_date).replace(
            hour=hours,
            minute=minutes,
            tzinfo=self.timezone,
        )
        return local_start.astimezone(UTC)


def build_conflict_details(
    conflicting_viewing: PropertyViewing,
    conflicting_property: Mapping[str, Any],
) -> ConflictDetails:
    title = conflicting_property.get("title") or conflicting_viewing.metadata.get("property_title")
    address = conflicting_property.get("address") or conflicting_viewing.metadata.get("property_address")
    return ConflictDetails(
        conflicting_property_id=conflicting_viewing.property_id,
        conflicting_property=title,
        conflicting_property_address=address,
        conflicting_time=(
            f"{format_clock_minutes(conflicting_viewing.start_minute)} - "
            f"{format_clock_minutes(conflicting_viewing.end_minute)}"
        ),
        conflicting_viewing_id=conflicting_viewing.id or None,
    )


def _generate_confirmation_code() -> str:
    return f"VW-{secrets.token_hex(4).upper()}"
