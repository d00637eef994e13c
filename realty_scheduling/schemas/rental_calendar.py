from datetime import datetime

from pydantic import BaseModel, Field


class RentalCalendarBulkUpdateRequest(BaseModel):
    start_date: str
    end_date: str
    is_available: bool | None = None
    nightly_rate: float | None = None
    minimum_stay: int | None = None
    is_special_pricing: bool | None = None
    special_pricing_reason: str | None = None


class RentalCalendarBulkUpdateResponse(BaseModel):
    success: bool = True
    listing_id: str
    start_date: str
    end_date: str
    days_updated: int
    applied_fields: list[str] = Field(default_factory=list)


class RentalCalendarDay(BaseModel):
    date: str
    is_available: bool = True
    nightly_rate: float | None = None
    minimum_stay: int | None = None
    is_special_pricing: bool = False
    special_pricing_reason: str | None = None
    updated_at: datetime | None = None


class RentalCalendarResponse(BaseModel):
    success: bool = True
    listing_id: str
    start_date: str
    end_date: str
    days: list[RentalCalendarDay] = Field(default_factory=list)


class RentalAvailabilityResponse(BaseModel):
    success: bool = True
    listing_id: str
    check_in: str
    check_out: str
    available: bool
    blocked_dates: list[str] = Field(default_factory=list)
