from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

from fastapi import HTTPException, status

from realty_scheduling.core.config import Settings, get_settings
from realty_scheduling.schemas.rental_calendar import (
    RentalAvailabilityResponse,
    RentalCalendarBulkUpdateRequest,
    RentalCalendarBulkUpdateResponse,
    RentalCalendarDay,
    RentalCalendarResponse,
)
from realty_scheduling.services.rental_calendar_store import RentalCalendarStore, create_rental_calendar_store
from realty_scheduling.services.viewing_models import parse_iso_date

logger = logging.getLogger(__name__)

_NULLABLE_PATCH_FIELDS = ("nightly_rate", "minimum_stay", "special_pricing_reason")
_FLAG_PATCH_FIELDS = ("is_available", "is_special_pricing")


class InvalidCalendarRangeError(Exception):
    pass


class RentalCalendarService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        calendar_store: RentalCalendarStore | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.calendar_store = calendar_store or create_rental_calendar_store(self.settings)

    def bulk_update(
        self,
        listing_id: str,
        payload: RentalCalendarBulkUpdateRequest,
    ) -> RentalCalendarBulkUpdateResponse:
        start_date, end_date = self._parse_range(payload.start_date, payload.end_date)
        patch = self._build_patch(payload)
        if not patch:
            raise HTTPException(
                status_code=422,
                detail="Calendar update must set at least one field.",
            )

        dates = [
            (start_date + timedelta(days=offset)).isoformat()
            for offset in range((end_date - start_date).days + 1)
        ]
        days_updated = self.calendar_store.upsert_days(listing_id, dates, patch)
        logger.info(
            "Rental calendar updated listing_id=%s start_date=%s end_date=%s days=%s fields=%s",
            listing_id,
            start_date.isoformat(),
            end_date.isoformat(),
            days_updated,
            ",".join(sorted(patch)),
        )
        return RentalCalendarBulkUpdateResponse(
            listing_id=listing_id.strip(),
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            days_updated=days_updated,
            applied_fields=sorted(patch),
        )

    def get_calendar(self, listing_id: str, raw_start_date: str, raw_end_date: str) -> RentalCalendarResponse:
        start_date, end_date = self._parse_range(raw_start_date, raw_end_date)
        records = self.calendar_store.list_days(
            listing_id,
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
        )
        return RentalCalendarResponse(
            listing_id=listing_id.strip(),
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            days=[RentalCalendarDay(**_calendar_day_fields(record)) for record in records],
        )

    def check_availability(
        self,
        listing_id: str,
        raw_check_in: str,
        raw_check_out: str,
    ) -> RentalAvailabilityResponse:
        check_in, check_out = self._parse_range(raw_check_in, raw_check_out)
        if check_out <= check_in:
            raise InvalidCalendarRangeError("check_out must be after check_in.")

        records = self.calendar_store.list_days(
            listing_id,
            start_date=check_in.isoformat(),
            end_date=(check_out - timedelta(days=1)).isoformat(),
        )
        blocked_dates = [str(record["date"]) for record in records if record.get("is_available") is False]
        return RentalAvailabilityResponse(
            listing_id=listing_id.strip(),
            check_in=check_in.isoformat(),
            check_out=check_out.isoformat(),
            available=not blocked_dates,
            blocked_dates=blocked_dates,
        )

    def _parse_range(self, raw_start: str, raw_end: str) -> tuple[date, date]:
        start_date = parse_iso_date(raw_start)
        end_date = parse_iso_date(raw_end)
        if not start_date or not end_date:
            raise InvalidCalendarRangeError("Invalid date format. Use YYYY-MM-DD.")
        if end_date < start_date:
            raise InvalidCalendarRangeError("end_date must not be before start_date.")
        if (end_date - start_date).days + 1 > self.settings.rental_calendar_max_range_days:
            raise InvalidCalendarRangeError(
                f"Date range may cover at most {self.settings.rental_calendar_max_range_days} days.",
            )
        return start_date, end_date

    def _build_patch(self, payload: RentalCalendarBulkUpdateRequest) -> dict[str, Any]:
        provided = payload.model_dump(exclude_unset=True)
        patch: dict[str, Any] = {}
        for field_name in _FLAG_PATCH_FIELDS:
            if provided.get(field_name) is not None:
                patch[field_name] = bool(provided[field_name])
        for field_name in _NULLABLE_PATCH_FIELDS:
            if field_name in provided:
                patch[field_name] = provided[field_name]

        if "special_pricing_reason" in patch:
            reason = (patch["special_pricing_reason"] or "").strip() or None
            patch["special_pricing_reason"] = reason
            patch.setdefault("is_special_pricing", reason is not None)

        if patch.get("nightly_rate") is not None and patch["nightly_rate"] < 0:
            raise HTTPException(
                status_code=422,
                detail="nightly_rate must not be negative.",
            )
        if patch.get("minimum_stay") is not None and patch["minimum_stay"] < 1:
            raise HTTPException(
                status_code=422,
                detail="minimum_stay must be at least 1 night.",
            )
        return patch


def _calendar_day_fields(record: dict[str, Any]) -> dict[str, Any]:
    return {
        "date": str(record.get("date", "")),
        "is_available": bool(record.get("is_available", True)),
        "nightly_rate": record.get("nightly_rate"),
        "minimum_stay": record.get("minimum_stay"),
        "is_special_pricing": bool(record.get("is_special_pricing", False)),
        "special_pricing_reason": record.get("special_pricing_reason"),
        "updated_at": record.get("updated_at"),
    }
