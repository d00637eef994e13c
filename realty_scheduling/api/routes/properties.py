from fastapi import APIRouter, Query, Request, status
from fastapi.responses import JSONResponse

from realty_scheduling.schemas.property_directory import (
    PropertyBrokerAssignRequest,
    PropertyBrokerListResponse,
    PropertyBrokerResponse,
    PropertyCreateRequest,
    PropertyResponse,
)
from realty_scheduling.schemas.viewing import (
    AvailableSlotsResponse,
    BookingErrorResponse,
    BookViewingRequest,
    BookViewingResponse,
)
from realty_scheduling.services.booking_conflict_resolver import BookingConflictResolver
from realty_scheduling.services.property_directory_service import PropertyDirectoryService
from realty_scheduling.services.viewing_slot_service import ViewingSlotService

router = APIRouter(prefix="/properties", tags=["properties"])


@router.post(
    "",
    response_model=PropertyResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_property(payload: PropertyCreateRequest) -> PropertyResponse:
    service = PropertyDirectoryService()
    return service.create_property(payload)


@router.get("/{property_id}", response_model=PropertyResponse)
def get_property(property_id: str) -> PropertyResponse:
    service = PropertyDirectoryService()
    return service.get_property(property_id)


@router.post(
    "/{property_id}/brokers",
    response_model=PropertyBrokerResponse,
    status_code=status.HTTP_201_CREATED,
)
def assign_property_broker(
    property_id: str,
    payload: PropertyBrokerAssignRequest,
) -> PropertyBrokerResponse:
    service = PropertyDirectoryService()
    return service.assign_broker(property_id, payload)


@router.get("/{property_id}/brokers", response_model=PropertyBrokerListResponse)
def list_property_brokers(property_id: str) -> PropertyBrokerListResponse:
    service = PropertyDirectoryService()
    return service.list_property_brokers(property_id)


@router.get("/{property_id}/available-slots", response_model=AvailableSlotsResponse)
def list_available_slots(
    property_id: str,
    date: str | None = Query(default=None),
    broker_id: str | None = Query(default=None),
) -> AvailableSlotsResponse:
    service = ViewingSlotService()
    return service.list_available_slots(property_id, date, broker_id=broker_id)


@router.post(
    "/{property_id}/book-viewing",
    response_model=BookViewingResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": BookingErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": BookingErrorResponse},
        status.HTTP_409_CONFLICT: {"model": BookingErrorResponse},
    },
)
def book_viewing(
    property_id: str,
    payload: BookViewingRequest,
    request: Request,
) -> BookViewingResponse | JSONResponse:
    resolver = BookingConflictResolver()
    resolution = resolver.resolve(
        property_id,
        payload,
        client_metadata=_client_metadata(request),
    )
    if resolution.error:
        error_body = BookingErrorResponse(
            error=resolution.error.message,
            error_code=resolution.error.kind.value,
            conflict_details=resolution.error.conflict_details,
        )
        return JSONResponse(
            status_code=resolution.error.kind.status_code,
            content=error_body.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
    return BookViewingResponse(viewing=resolution.viewing)


def _client_metadata(request: Request) -> dict[str, str | None]:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip()
    elif request.client:
        ip_address = request.client.host
    else:
        ip_address = "unknown"
    return {
        "user_agent": request.headers.get("user-agent"),
        "ip_address": ip_address,
    }
