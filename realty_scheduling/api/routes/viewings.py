from fastapi import APIRouter

from realty_scheduling.schemas.viewing import ViewingResponse, ViewingStatusUpdateRequest
from realty_scheduling.services.viewing_service import ViewingService

router = APIRouter(prefix="/viewings", tags=["viewings"])


@router.get("/{viewing_id}", response_model=ViewingResponse)
def get_viewing(viewing_id: str) -> ViewingResponse:
    service = ViewingService()
    return service.get_viewing(viewing_id)


@router.patch("/{viewing_id}/status", response_model=ViewingResponse)
def update_viewing_status(
    viewing_id: str,
    payload: ViewingStatusUpdateRequest,
) -> ViewingResponse:
    service = ViewingService()
    return service.update_status(viewing_id, payload.status)
