from fastapi import APIRouter

from realty_scheduling.api.routes.brokers import router as brokers_router
from realty_scheduling.api.routes.health import router as health_router
from realty_scheduling.api.routes.properties import router as properties_router
from realty_scheduling.api.routes.rentals import router as rentals_router
from realty_scheduling.api.routes.viewings import router as viewings_router

api_router = APIRouter()
v1_router = APIRouter(prefix="/v1")

api_router.include_router(health_router)

# Unversioned routes used by the current frontend.
api_router.include_router(properties_router)
api_router.include_router(brokers_router)
api_router.include_router(viewings_router)
api_router.include_router(rentals_router)

# Versioned routes for long-term API evolution.
v1_router.include_router(properties_router)
v1_router.include_router(brokers_router)
v1_router.include_router(viewings_router)
v1_router.include_router(rentals_router)
api_router.include_router(v1_router)
