from datetime import datetime

from pydantic import BaseModel, Field


class AvailabilityCreateRequest(BaseModel):
    date: str
    start_time: str
    end_time: str
    is_available: bool = True
    max_bookings: int = 1
    slot_duration_minutes: int = 60
    break_between_slots: int = 15
    booking_type: str = "property_viewing"
    notes: str = ""
    recurring_pattern: str = "none"
    recurring_until: str | None = None


class AvailabilityUpdateRequest(BaseModel):
    date: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    is_available: bool | None = None
    max_bookings: int | None = None
    slot_duration_minutes: int | None = None
    break_between_slots: int | None = None
    booking_type: str | None = None
    notes: str | None = None


class AvailabilitySlotResponse(BaseModel):
    id: str
    broker_id: str
    date: str
    start_time: str
    end_time: str
    is_available: bool = True
    max_bookings: int = 1
    current_bookings: int = 0
    slot_duration_minutes: int = 60
    break_between_slots: int = 15
    booking_type: str = "property_viewing"
    notes: str = ""


class AvailabilityListResponse(BaseModel):
    success: bool = True
    broker_id: str
    start_date: str
    end_date: str
    availability: list[AvailabilitySlotResponse] = Field(default_factory=list)


class AvailabilityCreateResponse(BaseModel):
    success: bool = True
    message: str = "Availability created successfully"
    availability: AvailabilitySlotResponse
    recurring_created: int = 0
    recurring_skipped: int = 0


class AvailabilityUpdateResponse(BaseModel):
    success: bool = True
    message: str = "Availability updated successfully"
    availability: AvailabilitySlotResponse


class AvailabilityDeleteResponse(BaseModel):
    success: bool = True
    message: str = "Availability deleted successfully"


class BlockedTimeCreateRequest(BaseModel):
    start_datetime: str
    end_datetime: str
    reason: str = ""
    block_type: str = "personal"
    recurring_pattern: str | None = None
    recurring_until: str | None = None


class BlockedTimeResponse(BaseModel):
    id: str
    broker_id: str
    start_datetime: datetime
    end_datetime: datetime
    reason: str = ""
    block_type: str = "personal"


class BlockedTimeListResponse(BaseModel):
    success: bool = True
    broker_id: str
    blocked_times: list[BlockedTimeResponse] = Field(default_factory=list)


class BlockedTimeCreateResponse(BaseModel):
    success: bool = True
    message: str = "Blocked time created successfully"
    blocked_time: BlockedTimeResponse
    recurring_created: int = 0
    recurring_skipped: int = 0
