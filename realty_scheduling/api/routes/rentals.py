from fastapi import APIRouter, HTTPException, Query, status

from realty_scheduling.schemas.rental_calendar import (
    RentalAvailabilityResponse,
    RentalCalendarBulkUpdateRequest,
    RentalCalendarBulkUpdateResponse,
    RentalCalendarResponse,
)
from realty_scheduling.services.rental_calendar_service import InvalidCalendarRangeError, RentalCalendarService

router = APIRouter(prefix="/rentals", tags=["rentals"])


@router.put("/{listing_id}/calendar", response_model=RentalCalendarBulkUpdateResponse)
def bulk_update_rental_calendar(
    listing_id: str,
    payload: RentalCalendarBulkUpdateRequest,
) -> RentalCalendarBulkUpdateResponse:
    service = RentalCalendarService()
    try:
        return service.bulk_update(listing_id, payload)
    except InvalidCalendarRangeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.get("/{listing_id}/calendar", response_model=RentalCalendarResponse)
def get_rental_calendar(
    listing_id: str,
    start_date: str = Query(...),
    end_date: str = Query(...),
) -> RentalCalendarResponse:
    service = RentalCalendarService()
    try:
        return service.get_calendar(listing_id, start_date, end_date)
    except InvalidCalendarRangeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.get("/{listing_id}/availability", response_model=RentalAvailabilityResponse)
def check_rental_availability(
    listing_id: str,
    check_in: str = Query(...),
    check_out: str = Query(...),
) -> RentalAvailabilityResponse:
    service = RentalCalendarService()
    try:
        return service.check_availability(listing_id, check_in, check_out)
    except InvalidCalendarRangeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
