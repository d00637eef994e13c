from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class BookViewingRequest(BaseModel):
    broker_id: str
    viewing_date: str
    viewing_time: str
    duration_minutes: int | None = None
    visitor_name: str
    visitor_email: str
    visitor_phone: str | None = None
    party_size: int = 1
    viewing_type: str = "in_person"
    special_requests: str | None = None
    booking_source: str = "website"
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConflictDetails(BaseModel):
    conflicting_property_id: str
    conflicting_property: str | None = None
    conflicting_property_address: str | None = None
    conflicting_time: str
    conflicting_viewing_id: str | None = None


class ViewingPropertySummary(BaseModel):
    title: str
    address: str
    city: str | None = None


class ViewingBrokerSummary(BaseModel):
    name: str
    email: str | None = None
    phone: str | None = None


class ViewingResponse(BaseModel):
    id: str
    confirmation_code: str
    property_id: str
    broker_id: str
    viewing_date: str
    viewing_time: str
    end_time: str
    duration_minutes: int
    status: str
    visitor_name: str
    visitor_email: str
    visitor_phone: str | None = None
    party_size: int = 1
    viewing_type: str = "in_person"
    special_requests: str | None = None
    booking_source: str = "website"
    metadata: dict[str, Any] = Field(default_factory=dict)
    property: ViewingPropertySummary | None = None
    broker: ViewingBrokerSummary | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class BookViewingResponse(BaseModel):
    success: bool = True
    viewing: ViewingResponse
    message: str = "Viewing booked successfully! You will receive a confirmation email shortly."


class BookingErrorResponse(BaseModel):
    success: bool = False
    error: str
    error_code: str
    conflict_details: ConflictDetails | None = Field(default=None, serialization_alias="conflictDetails")


class ViewingListResponse(BaseModel):
    broker_id: str
    date: str
    viewings: list[ViewingResponse] = Field(default_factory=list)


class ViewingStatusUpdateRequest(BaseModel):
    status: str


class AvailableTimeSlot(BaseModel):
    time: str
    end_time: str
    available: bool
    max_bookings: int
    current_bookings: int
    availability_id: str
    duration_minutes: int
    booking_type: str = "property_viewing"
    notes: str = ""
    has_conflict: bool = False
    conflict_reason: str | None = None
    conflict_details: ConflictDetails | None = None


class BrokerAvailableSlots(BaseModel):
    broker_id: str
    broker_name: str
    broker_email: str | None = None
    broker_phone: str | None = None
    is_primary: bool = False
    time_slots: list[AvailableTimeSlot] = Field(default_factory=list)


class AvailableSlotsResponse(BaseModel):
    success: bool = True
    property_id: str
    date: str
    slots: list[BrokerAvailableSlots] = Field(default_factory=list)
