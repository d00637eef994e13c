from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from fastapi import HTTPException, status

from realty_scheduling.core.config import Settings, get_settings
from realty_scheduling.schemas.viewing import AvailableSlotsResponse, AvailableTimeSlot, BrokerAvailableSlots
from realty_scheduling.services.booking_conflict_resolver import build_conflict_details
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
    AvailabilitySlot,
    BlockedTime,
    PropertyViewing,
    format_clock_minutes,
    parse_iso_date,
)
from realty_scheduling.services.viewing_store import ViewingStore, create_viewing_store

CONFLICT_OTHER_PROPERTY = "broker_busy_other_property"
CONFLICT_SAME_PROPERTY = "broker_busy_same_property"


class ViewingSlotService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        directory_store: PropertyDirectoryStore | None = None,
        schedule_store: BrokerScheduleStore | None = None,
        viewing_store: ViewingStore | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.directory_store = directory_store or create_property_directory_store(self.settings)
        self.schedule_store = schedule_store or create_broker_schedule_store(self.settings)
        self.viewing_store = viewing_store or create_viewing_store(self.settings)
        self.now_provider = now_provider or (lambda: datetime.now(UTC))
        self.timezone = ZoneInfo(self.settings.viewing_timezone)

    def list_available_slots(
        self,
        property_id: str,
        raw_date: str | None,
        broker_id: str | None = None,
    ) -> AvailableSlotsResponse:
        if not raw_date:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Date parameter is required",
            )
        viewing_date = parse_iso_date(raw_date)
        if not viewing_date:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid date format. Use YYYY-MM-DD",
            )
        now = self.now_provider()
        if viewing_date < now.astimezone(self.timezone).date():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot book slots in the past",
            )

        normalized_property_id = property_id.strip()
        if not self.directory_store.get_property(normalized_property_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Property not found.",
            )

        assignments = [
            assignment
            for assignment in self.directory_store.list_property_brokers(normalized_property_id)
            if assignment.get("is_active")
            and (not broker_id or assignment.get("broker_id") == broker_id.strip())
        ]
        brokers = {
            str(broker.get("_id", "")): broker
            for broker in self.directory_store.list_brokers_by_ids(
                [str(assignment.get("broker_id", "")) for assignment in assignments],
            )
            if broker.get("is_active")
        }

        property_cache: dict[str, dict[str, Any]] = {}
        broker_slots: list[BrokerAvailableSlots] = []
        for assignment in assignments:
            assigned_broker_id = str(assignment.get("broker_id", ""))
            broker = brokers.get(assigned_broker_id)
            if not broker:
                continue
            broker_slots.append(
                BrokerAvailableSlots(
                    broker_id=assigned_broker_id,
                    broker_name=str(broker.get("full_name", "")),
                    broker_email=broker.get("email"),
                    broker_phone=broker.get("phone"),
                    is_primary=bool(assignment.get("is_primary")),
                    time_slots=self._build_time_slots(
                        property_id=normalized_property_id,
                        broker_id=assigned_broker_id,
                        viewing_date=viewing_date,
                        now=now,
                        property_cache=property_cache,
                    ),
                ),
            )

        return AvailableSlotsResponse(
            property_id=normalized_property_id,
            date=viewing_date.isoformat(),
            slots=broker_slots,
        )

    def _build_time_slots(
        self,
        *,
        property_id: str,
        broker_id: str,
        viewing_date: date,
        now: datetime,
        property_cache: dict[str, dict[str, Any]],
    ) -> list[AvailableTimeSlot]:
        day_start = datetime.combine(viewing_date, datetime.min.time(), tzinfo=self.timezone).astimezone(UTC)
        day_end = day_start + timedelta(days=1)
        open_slots = [
            slot
            for slot in (
                AvailabilitySlot.from_record(record)
                for record in self.schedule_store.list_availability(
                    broker_id,
                    start_date=viewing_date.isoformat(),
                    end_date=viewing_date.isoformat(),
                )
            )
            if slot.is_available
        ]
        blocked_times = [
            BlockedTime.from_record(record)
            for record in self.schedule_store.list_blocked_times(
                broker_id,
                window_start=day_start,
                window_end=day_end,
            )
        ]
        viewings = {
            viewing.id: viewing
            for viewing in (
                PropertyViewing.from_record(record)
                for record in self.viewing_store.list_broker_viewings(
                    broker_id,
                    viewing_date.isoformat(),
                    statuses=ACTIVE_VIEWING_STATUSES,
                )
            )
        }
        intervals = [viewing.interval() for viewing in viewings.values()]

        time_slots: list[AvailableTimeSlot] = []
        for slot in open_slots:
            slot_start = day_start + timedelta(minutes=slot.start_minute)
            slot_end = day_start + timedelta(minutes=slot.end_minute)
            if any(blocked_time.intersects(slot_start, slot_end) for blocked_time in blocked_times):
                continue

            candidate_minute = slot.start_minute
            while candidate_minute + slot.slot_duration_minutes <= slot.end_minute:
                candidate_end = candidate_minute + slot.slot_duration_minutes
                capacity_slot = select_capacity_slot(open_slots, candidate_minute) or slot
                conflict = find_conflicting_interval(
                    intervals,
                    property_id=property_id,
                    start_minute=candidate_minute,
                    end_minute=candidate_end,
                )
                current_bookings = count_viewing_group(
                    intervals,
                    property_id=property_id,
                    start_minute=candidate_minute,
                )
                is_future = day_start + timedelta(minutes=candidate_minute) > now

                conflict_details = None
                conflict_reason = None
                if conflict:
                    conflicting_viewing = viewings[conflict.viewing_id]
                    if conflicting_viewing.property_id not in property_cache:
                        property_cache[conflicting_viewing.property_id] = (
                            self.directory_store.get_property(conflicting_viewing.property_id) or {}
                        )
                    conflict_details = build_conflict_details(
                        conflicting_viewing,
                        property_cache[conflicting_viewing.property_id],
                    )
                    conflict_reason = (
                        CONFLICT_SAME_PROPERTY
                        if conflicting_viewing.property_id == property_id
                        else CONFLICT_OTHER_PROPERTY
                    )

                time_slots.append(
                    AvailableTimeSlot(
                        time=format_clock_minutes(candidate_minute),
                        end_time=format_clock_minutes(candidate_end),
                        available=(
                            is_future
                            and conflict is None
                            and current_bookings < capacity_slot.max_bookings
                        ),
                        max_bookings=capacity_slot.max_bookings,
                        current_bookings=current_bookings,
                        availability_id=slot.id,
                        duration_minutes=slot.slot_duration_minutes,
                        booking_type=slot.booking_type,
                        notes=slot.notes,
                        has_conflict=conflict is not None,
                        conflict_reason=conflict_reason,
                        conflict_details=conflict_details,
                    ),
                )
                candidate_minute += slot.slot_duration_minutes + slot.break_between_slots

        time_slots.sort(key=lambda time_slot: (time_slot.time, time_slot.availability_id))
        return time_slots
