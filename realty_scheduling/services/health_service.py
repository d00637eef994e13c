from datetime import UTC, datetime

from realty_scheduling.core.config import Settings
from realty_scheduling.schemas.health import HealthResponse


class HealthService:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def get_status(self) -> HealthResponse:
        return HealthResponse(
            status="ok",
            service=self.settings.app_name,
            version=self.settings.app_version,
            environment=self.settings.app_env,
            data_store=self.settings.data_store,
            timestamp=datetime.now(UTC),
        )
