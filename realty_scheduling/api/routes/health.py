from fastapi import APIRouter

from realty_scheduling.core.config import get_settings
from realty_scheduling.schemas.health import HealthResponse
from realty_scheduling.services.health_service import HealthService

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def healthcheck() -> HealthResponse:
    settings = get_settings()
    service = HealthService(settings)
    return service.get_status()
