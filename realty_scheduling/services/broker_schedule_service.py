from __future__ import annotations

import calendar
import logging
from collections import Counter
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from fastapi import HTTPException, status

from realty_scheduling.core.config import Settings, get_settings
from realty_scheduling.schemas.broker_schedule import (
    AvailabilityCreateRequest,
    AvailabilityCreateResponse,
    AvailabilityDeleteResponse,
    AvailabilityListResponse,
    AvailabilitySlotResponse,
    AvailabilityUpdateRequest,
    AvailabilityUpdateResponse,
    BlockedTimeCreateRequest,
    BlockedTimeCreateResponse,
    BlockedTimeListResponse,
    BlockedTimeResponse,
)
from realty_scheduling.services.broker_schedule_store import BrokerScheduleStore, create_broker_schedule_store
from realty_scheduling.services.property_directory_store import (
    PropertyDirectoryStore,
    create_property_directory_store,
)
from realty_scheduling.services.viewing_models import (
    ACTIVE_VIEWING_STATUSES,
    AvailabilitySlot,
    BlockedTime,
    PropertyViewing,
    intervals_overlap,
    minutes_since_midnight,
    parse_clock_time,
    parse_iso_date,
)
from realty_scheduling.services.viewing_store import ViewingStore, create_viewing_store

logger = logging.getLogger(__name__)

AVAILABILITY_RECURRING_PATTERNS = ("none", "daily", "weekly")
BLOCKED_TIME_RECURRING_PATTERNS = ("daily", "weekly", "monthly")
MAX_RECURRING_SPAN_DAYS = 366


class BrokerScheduleService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        schedule_store: BrokerScheduleStore | None = None,
        viewing_store: ViewingStore | None = None,
        directory_store: PropertyDirectoryStore | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.schedule_store = schedule_store or create_broker_schedule_store(self.settings)
        self.viewing_store = viewing_store or create_viewing_store(self.settings)
        self.directory_store = directory_store or create_property_directory_store(self.settings)
        self.now_provider = now_provider or (lambda: datetime.now(UTC))
        self.timezone = ZoneInfo(self.settings.viewing_timezone)

    def list_availability(
        self,
        broker_id: str,
        *,
        on_date: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> AvailabilityListResponse:
        normalized_broker_id = self._require_broker(broker_id)
        if on_date:
            window_start = window_end = self._parse_date(on_date)
        elif start_date and end_date:
            window_start = self._parse_date(start_date)
            window_end = self._parse_date(end_date)
            if window_end < window_start:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="end_date must not be before start_date.",
                )
        else:
            window_start = self._today()
            window_end = window_start + timedelta(days=self.settings.availability_default_window_days)

        records = self.schedule_store.list_availability(
            normalized_broker_id,
            start_date=window_start.isoformat(),
            end_date=window_end.isoformat(),
        )
        slots = [AvailabilitySlot.from_record(record) for record in records]
        viewings_by_date: dict[str, list[PropertyViewing]] = {}
        for slot in slots:
            if slot.date not in viewings_by_date:
                viewings_by_date[slot.date] = self._active_viewings(normalized_broker_id, slot.date)
        return AvailabilityListResponse(
            broker_id=normalized_broker_id,
            start_date=window_start.isoformat(),
            end_date=window_end.isoformat(),
            availability=[
                self._map_slot(slot, _largest_viewing_group(slot, viewings_by_date[slot.date]))
                for slot in slots
            ],
        )

    def create_availability(
        self,
        broker_id: str,
        payload: AvailabilityCreateRequest,
    ) -> AvailabilityCreateResponse:
        normalized_broker_id = self._require_broker(broker_id)
        slot_date = self._parse_date(payload.date)
        start_minute, end_minute = self._parse_time_range(payload.start_time, payload.end_time)
        if slot_date < self._today():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot create availability in the past",
            )
        self._validate_slot_settings(
            max_bookings=payload.max_bookings,
            slot_duration_minutes=payload.slot_duration_minutes,
            break_between_slots=payload.break_between_slots,
        )

        recurring_pattern = payload.recurring_pattern.strip().lower() or "none"
        if recurring_pattern not in AVAILABILITY_RECURRING_PATTERNS:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid recurring_pattern. Allowed values: {', '.join(AVAILABILITY_RECURRING_PATTERNS)}.",
            )
        recurring_until = None
        if recurring_pattern != "none":
            recurring_until = self._parse_recurring_until(payload.recurring_until, slot_date)

        conflicts = self._overlapping_slots(normalized_broker_id, slot_date, start_minute, end_minute)
        if conflicts:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={
                    "error": "Time slot conflicts with existing availability",
                    "conflicts": [_slot_conflict(slot) for slot in conflicts],
                },
            )

        base_record = {
            "broker_id": normalized_broker_id,
            "date": slot_date.isoformat(),
            "start_time": payload.start_time.strip(),
            "end_time": payload.end_time.strip(),
            "is_available": payload.is_available,
            "max_bookings": payload.max_bookings,
            "slot_duration_minutes": payload.slot_duration_minutes,
            "break_between_slots": payload.break_between_slots,
            "booking_type": payload.booking_type.strip() or "property_viewing",
            "notes": payload.notes,
            "recurring_pattern": recurring_pattern,
            "recurring_until": recurring_until.isoformat() if recurring_until else None,
        }
        created = self.schedule_store.create_availability_slots([base_record])

        recurring_records: list[dict[str, Any]] = []
        skipped = 0
        if recurring_until:
            step = timedelta(days=1 if recurring_pattern == "daily" else 7)
            occurrence = slot_date + step
            while occurrence <= recurring_until:
                if self._overlapping_slots(normalized_broker_id, occurrence, start_minute, end_minute):
                    skipped += 1
                else:
                    recurring_records.append(
                        {
                            **base_record,
                            "date": occurrence.isoformat(),
                            "recurring_pattern": "none",
                            "recurring_until": None,
                        },
                    )
                occurrence += step
            self.schedule_store.create_availability_slots(recurring_records)

        logger.info(
            "Availability created broker_id=%s date=%s start=%s end=%s recurring_created=%s recurring_skipped=%s",
            normalized_broker_id,
            slot_date.isoformat(),
            payload.start_time,
            payload.end_time,
            len(recurring_records),
            skipped,
        )
        return AvailabilityCreateResponse(
            availability=self._map_slot(AvailabilitySlot.from_record(created[0]), 0),
            recurring_created=len(recurring_records),
            recurring_skipped=skipped,
        )

    def update_availability(
        self,
        broker_id: str,
        slot_id: str,
        payload: AvailabilityUpdateRequest,
    ) -> AvailabilityUpdateResponse:
        normalized_broker_id = self._require_broker(broker_id)
        existing_slot = self._require_slot(normalized_broker_id, slot_id)
        updates = payload.model_dump(exclude_unset=True, exclude_none=True)

        if "date" in updates:
            new_date = self._parse_date(updates["date"])
            if new_date < self._today():
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Cannot edit availability in the past",
                )
            updates["date"] = new_date.isoformat()
        for time_field in ("start_time", "end_time"):
            if time_field in updates:
                updates[time_field] = updates[time_field].strip()

        check_date = parse_iso_date(updates.get("date", existing_slot.date)) or self._today()
        start_minute, end_minute = self._parse_time_range(
            updates.get("start_time", existing_slot.start_time),
            updates.get("end_time", existing_slot.end_time),
        )
        self._validate_slot_settings(
            max_bookings=updates.get("max_bookings", existing_slot.max_bookings),
            slot_duration_minutes=updates.get("slot_duration_minutes", existing_slot.slot_duration_minutes),
            break_between_slots=updates.get("break_between_slots", existing_slot.break_between_slots),
        )

        if {"date", "start_time", "end_time"} & updates.keys():
            conflicts = [
                slot
                for slot in self._overlapping_slots(normalized_broker_id, check_date, start_minute, end_minute)
                if slot.id != existing_slot.id
            ]
            if conflicts:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail={
                        "error": "Time slot conflicts with existing availability",
                        "conflicts": [_slot_conflict(slot) for slot in conflicts],
                    },
                )

        current_bookings = _largest_viewing_group(
            existing_slot,
            self._active_viewings(normalized_broker_id, existing_slot.date),
        )
        if "max_bookings" in updates and updates["max_bookings"] < current_bookings:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot reduce max bookings below current bookings ({current_bookings})",
            )

        updated_record = self.schedule_store.update_availability_slot(existing_slot.id, updates)
        if not updated_record:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Availability slot not found.",
            )
        updated_slot = AvailabilitySlot.from_record(updated_record)
        return AvailabilityUpdateResponse(
            availability=self._map_slot(
                updated_slot,
                _largest_viewing_group(
                    updated_slot,
                    self._active_viewings(normalized_broker_id, updated_slot.date),
                ),
            ),
        )

    def delete_availability(self, broker_id: str, slot_id: str) -> AvailabilityDeleteResponse:
        normalized_broker_id = self._require_broker(broker_id)
        existing_slot = self._require_slot(normalized_broker_id, slot_id)

        current_bookings = _count_viewings_in_slot(
            existing_slot,
            self._active_viewings(normalized_broker_id, existing_slot.date),
        )
        if current_bookings > 0:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=(
                    f"Cannot delete availability slot with {current_bookings} existing booking(s). "
                    "Please cancel bookings first."
                ),
            )
        slot_date = parse_iso_date(existing_slot.date)
        if slot_date and slot_date < self._today():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete past availability slots",
            )

        if not self.schedule_store.delete_availability_slot(existing_slot.id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Availability slot not found.",
            )
        logger.info("Availability deleted broker_id=%s slot_id=%s", normalized_broker_id, existing_slot.id)
        return AvailabilityDeleteResponse()

    def list_blocked_times(
        self,
        broker_id: str,
        *,
        start: str | None = None,
        end: str | None = None,
    ) -> BlockedTimeListResponse:
        normalized_broker_id = self._require_broker(broker_id)
        if start and end:
            window_start = self._parse_datetime(start)
            window_end = self._parse_datetime(end)
        else:
            window_start = self.now_provider()
            window_end = window_start + timedelta(days=self.settings.blocked_times_default_window_days)

        records = self.schedule_store.list_blocked_times(
            normalized_broker_id,
            window_start=window_start,
            window_end=window_end,
        )
        return BlockedTimeListResponse(
            broker_id=normalized_broker_id,
            blocked_times=[_map_blocked_time(BlockedTime.from_record(record)) for record in records],
        )

    def create_blocked_time(
        self,
        broker_id: str,
        payload: BlockedTimeCreateRequest,
    ) -> BlockedTimeCreateResponse:
        normalized_broker_id = self._require_broker(broker_id)
        start = self._parse_datetime(payload.start_datetime)
        end = self._parse_datetime(payload.end_datetime)
        if end <= start:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="End datetime must be after start datetime",
            )
        current_hour = self.now_provider().astimezone(UTC).replace(minute=0, second=0, microsecond=0)
        if start < current_hour:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot create blocked time in the past",
            )

        recurring_pattern = (payload.recurring_pattern or "").strip().lower()
        recurring_until = None
        if recurring_pattern:
            if recurring_pattern not in BLOCKED_TIME_RECURRING_PATTERNS:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Invalid recurring_pattern. Allowed values: {', '.join(BLOCKED_TIME_RECURRING_PATTERNS)}.",
                )
            recurring_until = self._parse_recurring_until(payload.recurring_until, start.date())

        conflicts = self._overlapping_blocked_times(normalized_broker_id, start, end)
        if conflicts:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={
                    "error": "Time period conflicts with existing blocked time",
                    "conflicts": [
                        _map_blocked_time(blocked_time).model_dump(mode="json") for blocked_time in conflicts
                    ],
                },
            )

        base_record = {
            "broker_id": normalized_broker_id,
            "start_datetime": start,
            "end_datetime": end,
            "reason": payload.reason,
            "block_type": payload.block_type.strip() or "personal",
        }
        created = self.schedule_store.create_blocked_times([base_record])

        recurring_records: list[dict[str, Any]] = []
        skipped = 0
        if recurring_until:
            duration = end - start
            occurrence_index = 1
            while True:
                occurrence_start = _shift(start, recurring_pattern, occurrence_index)
                if occurrence_start.date() > recurring_until:
                    break
                occurrence_end = occurrence_start + duration
                if self._overlapping_blocked_times(normalized_broker_id, occurrence_start, occurrence_end):
                    skipped += 1
                else:
                    recurring_records.append(
                        {
                            **base_record,
                            "start_datetime": occurrence_start,
                            "end_datetime": occurrence_end,
                        },
                    )
                occurrence_index += 1
            self.schedule_store.create_blocked_times(recurring_records)

        logger.info(
            "Blocked time created broker_id=%s start=%s end=%s recurring_created=%s recurring_skipped=%s",
            normalized_broker_id,
            start.isoformat(),
            end.isoformat(),
            len(recurring_records),
            skipped,
        )
        return BlockedTimeCreateResponse(
            blocked_time=_map_blocked_time(BlockedTime.from_record(created[0])),
            recurring_created=len(recurring_records),
            recurring_skipped=skipped,
        )

    def _require_broker(self, broker_id: str) -> str:
        normalized_broker_id = broker_id.strip()
        if not self.directory_store.get_broker(normalized_broker_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Broker not found.",
            )
        return normalized_broker_id

    def _require_slot(self, broker_id: str, slot_id: str) -> AvailabilitySlot:
        record = self.schedule_store.get_availability_slot(slot_id)
        if not record or str(record.get("broker_id", "")) != broker_id:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Availability slot not found.",
            )
        return AvailabilitySlot.from_record(record)

    def _overlapping_slots(
        self,
        broker_id: str,
        slot_date: date,
        start_minute: int,
        end_minute: int,
    ) -> list[AvailabilitySlot]:
        records = self.schedule_store.list_availability(
            broker_id,
            start_date=slot_date.isoformat(),
            end_date=slot_date.isoformat(),
        )
        return [
            slot
            for slot in (AvailabilitySlot.from_record(record) for record in records)
            if intervals_overlap(start_minute, end_minute, slot.start_minute, slot.end_minute)
        ]

    def _overlapping_blocked_times(self, broker_id: str, start: datetime, end: datetime) -> list[BlockedTime]:
        records = self.schedule_store.list_blocked_times(broker_id, window_start=start, window_end=end)
        return [BlockedTime.from_record(record) for record in records]

    def _active_viewings(self, broker_id: str, viewing_date: str) -> list[PropertyViewing]:
        return [
            PropertyViewing.from_record(record)
            for record in self.viewing_store.list_broker_viewings(
                broker_id,
                viewing_date,
                statuses=ACTIVE_VIEWING_STATUSES,
            )
        ]

    def _validate_slot_settings(
        self,
        *,
        max_bookings: int,
        slot_duration_minutes: int,
        break_between_slots: int,
    ) -> None:
        if max_bookings < 1:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="max_bookings must be at least 1.",
            )
        if slot_duration_minutes <= 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="slot_duration_minutes must be positive.",
            )
        if break_between_slots < 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="break_between_slots must not be negative.",
            )

    def _parse_time_range(self, start_time: str, end_time: str) -> tuple[int, int]:
        parsed_start = parse_clock_time(start_time)
        parsed_end = parse_clock_time(end_time)
        if not parsed_start or not parsed_end:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid time format. Use HH:MM",
            )
        start_minute = minutes_since_midnight(parsed_start)
        end_minute = minutes_since_midnight(parsed_end)
        if start_minute >= end_minute:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="End time must be after start time",
            )
        return start_minute, end_minute

    def _parse_date(self, raw_date: str) -> date:
        parsed_date = parse_iso_date(raw_date)
        if not parsed_date:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid date format. Use YYYY-MM-DD",
            )
        return parsed_date

    def _parse_recurring_until(self, raw_until: str | None, first_date: date) -> date:
        until = parse_iso_date(raw_until)
        if not until:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="recurring_until is required for recurring schedules. Use YYYY-MM-DD",
            )
        if until < first_date:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="recurring_until must not be before the first occurrence.",
            )
        if (until - first_date).days > MAX_RECURRING_SPAN_DAYS:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Recurring schedules may span at most {MAX_RECURRING_SPAN_DAYS} days.",
            )
        return until

    def _parse_datetime(self, raw_value: str) -> datetime:
        try:
            parsed_value = datetime.fromisoformat(raw_value.strip())
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid datetime format. Use ISO 8601 format (YYYY-MM-DDTHH:MM:SSZ)",
            ) from exc
        if parsed_value.tzinfo is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Datetimes must include a timezone offset (YYYY-MM-DDTHH:MM:SSZ)",
            )
        return parsed_value.astimezone(UTC)

    def _today(self) -> date:
        return self.now_provider().astimezone(self.timezone).date()

    def _map_slot(self, slot: AvailabilitySlot, current_bookings: int) -> AvailabilitySlotResponse:
        return AvailabilitySlotResponse(**slot.to_dict(), current_bookings=current_bookings)


def _count_viewings_in_slot(slot: AvailabilitySlot, viewings: list[PropertyViewing]) -> int:
    return sum(1 for viewing in viewings if viewing.is_active and slot.contains_start(viewing.start_minute))


def _largest_viewing_group(slot: AvailabilitySlot, viewings: list[PropertyViewing]) -> int:
    groups = Counter(
        (viewing.property_id, viewing.start_minute)
        for viewing in viewings
        if viewing.is_active and slot.contains_start(viewing.start_minute)
    )
    return max(groups.values(), default=0)


def _slot_conflict(slot: AvailabilitySlot) -> dict[str, str]:
    return {"id": slot.id, "start_time": slot.start_time, "end_time": slot.end_time}


def _map_blocked_time(blocked_time: BlockedTime) -> BlockedTimeResponse:
    return BlockedTimeResponse(**blocked_time.to_dict())


def _shift(start: datetime, pattern: str, occurrences: int) -> datetime:
    if pattern == "daily":
        return start + timedelta(days=occurrences)
    if pattern == "weekly":
        return start + timedelta(weeks=occurrences)
    month_index = start.month - 1 + occurrences
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)

