from fastapi import APIRouter, Query, status

from realty_scheduling.schemas.broker_schedule import (
    AvailabilityCreateRequest,
    AvailabilityCreateResponse,
    AvailabilityDeleteResponse,
    AvailabilityListResponse,
    AvailabilityUpdateRequest,
    AvailabilityUpdateResponse,
    BlockedTimeCreateRequest,
    BlockedTimeCreateResponse,
    BlockedTimeListResponse,
)
from realty_scheduling.schemas.property_directory import BrokerCreateRequest, BrokerResponse
from realty_scheduling.schemas.viewing import ViewingListResponse
from realty_scheduling.services.broker_schedule_service import BrokerScheduleService
from realty_scheduling.services.property_directory_service import PropertyDirectoryService
from realty_scheduling.services.viewing_service import ViewingService

router = APIRouter(prefix="/brokers", tags=["brokers"])


@router.post(
    "",
    response_model=BrokerResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_broker(payload: BrokerCreateRequest) -> BrokerResponse:
    service = PropertyDirectoryService()
    return service.create_broker(payload)


@router.get("/{broker_id}", response_model=BrokerResponse)
def get_broker(broker_id: str) -> BrokerResponse:
    service = PropertyDirectoryService()
    return service.get_broker(broker_id)


@router.get("/{broker_id}/viewings", response_model=ViewingListResponse)
def list_broker_viewings(
    broker_id: str,
    date: str = Query(...),
) -> ViewingListResponse:
    service = ViewingService()
    return service.list_broker_viewings(broker_id, date)


@router.get("/{broker_id}/availability", response_model=AvailabilityListResponse)
def list_broker_availability(
    broker_id: str,
    date: str | None = Query(default=None),
    start_date: str | None = Query(default=None),
    end_date: str | None = Query(default=None),
) -> AvailabilityListResponse:
    service = BrokerScheduleService()
    return service.list_availability(
        broker_id,
        on_date=date,
        start_date=start_date,
        end_date=end_date,
    )


@router.post(
    "/{broker_id}/availability",
    response_model=AvailabilityCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_broker_availability(
    broker_id: str,
    payload: AvailabilityCreateRequest,
) -> AvailabilityCreateResponse:
    service = BrokerScheduleService()
    return service.create_availability(broker_id, payload)


@router.put(
    "/{broker_id}/availability/{slot_id}",
    response_model=AvailabilityUpdateResponse,
)
def update_broker_availability(
    broker_id: str,
    slot_id: str,
    payload: AvailabilityUpdateRequest,
) -> AvailabilityUpdateResponse:
    service = BrokerScheduleService()
    return service.update_availability(broker_id, slot_id, payload)


@router.delete(
    "/{broker_id}/availability/{slot_id}",
    response_model=AvailabilityDeleteResponse,
)
def delete_broker_availability(broker_id: str, slot_id: str) -> AvailabilityDeleteResponse:
    service = BrokerScheduleService()
    return service.delete_availability(broker_id, slot_id)


@router.get("/{broker_id}/blocked-times", response_model=BlockedTimeListResponse)
def list_broker_blocked_times(
    broker_id: str,
    start_date: str | None = Query(default=None),
    end_date: str | None = Query(default=None),
) -> BlockedTimeListResponse:
    service = BrokerScheduleService()
    return service.list_blocked_times(broker_id, start=start_date, end=end_date)


@router.post(
    "/{broker_id}/blocked-times",
    response_model=BlockedTimeCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_broker_blocked_time(
    broker_id: str,
    payload: BlockedTimeCreateRequest,
) -> BlockedTimeCreateResponse:
    service = BrokerScheduleService()
    return service.create_blocked_time(broker_id, payload)
