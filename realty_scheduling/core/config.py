from functools import lru_cache
from typing import Annotated
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ALLOWED_ENV_FIELD_NAMES = frozenset(
    {
        "app_name",
        "app_env",
        "app_version",
        "api_prefix",
        "allowed_origins",
        "data_store",
        "mongodb_uri",
        "mongodb_db_name",
        "mongodb_properties_collection",
        "mongodb_brokers_collection",
        "mongodb_property_brokers_collection",
        "mongodb_availability_collection",
        "mongodb_blocked_times_collection",
        "mongodb_viewings_collection",
        "mongodb_viewing_ledgers_collection",
        "mongodb_rental_calendar_collection",
        "mongodb_connect_timeout_ms",
        "viewing_timezone",
        "default_viewing_duration_minutes",
        "viewing_guard_max_attempts",
        "rental_calendar_max_range_days",
        "availability_default_window_days",
        "blocked_times_default_window_days",
        "mailgun_api_key",
        "mailgun_domain",
        "mailgun_api_base_url",
        "mailgun_from_email",
        "notification_webhook_url",
        "notification_timeout_seconds",
    },
)


class Settings(BaseSettings):
    app_name: str = "Realty Scheduling API"
    app_env: str = "development"
    app_version: str = "0.1.0"
    api_prefix: str = "/api"
    allowed_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    data_store: str = "mongodb"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "realty_scheduling"
    mongodb_properties_collection: str = "properties"
    mongodb_brokers_collection: str = "brokers"
    mongodb_property_brokers_collection: str = "property_brokers"
    mongodb_availability_collection: str = "broker_availability"
    mongodb_blocked_times_collection: str = "broker_blocked_times"
    mongodb_viewings_collection: str = "property_viewings"
    mongodb_viewing_ledgers_collection: str = "broker_viewing_ledgers"
    mongodb_rental_calendar_collection: str = "rental_calendar"
    mongodb_connect_timeout_ms: int = 2000
    viewing_timezone: str = "UTC"
    default_viewing_duration_minutes: int = 60
    viewing_guard_max_attempts: int = 5
    rental_calendar_max_range_days: int = 366
    availability_default_window_days: int = 30
    blocked_times_default_window_days: int = 90
    mailgun_api_key: str = ""
    mailgun_domain: str = ""
    mailgun_api_base_url: str = "https://api.mailgun.net/v3"
    mailgun_from_email: str = ""
    notification_webhook_url: str = ""
    notification_timeout_seconds: float = 10.0

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def _filter_allowed_env_fields(source):
            return {
                field_name: raw_value
                for field_name, raw_value in source().items()
                if field_name in ALLOWED_ENV_FIELD_NAMES
            }

        return (
            init_settings,
            lambda: _filter_allowed_env_fields(env_settings),
            lambda: _filter_allowed_env_fields(dotenv_settings),
            file_secret_settings,
        )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("data_store", mode="before")
    @classmethod
    def normalize_data_store(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("viewing_timezone", mode="before")
    @classmethod
    def normalize_viewing_timezone(cls, value: str) -> str:
        cleaned_value = (value or "").strip()
        if not cleaned_value:
            return "UTC"
        try:
            ZoneInfo(cleaned_value)
        except (ZoneInfoNotFoundError, ValueError):
            return "UTC"
        return cleaned_value

    @field_validator("default_viewing_duration_minutes", mode="before")
    @classmethod
    def normalize_default_viewing_duration(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 60
        return parsed_value

    @field_validator("viewing_guard_max_attempts", mode="before")
    @classmethod
    def normalize_viewing_guard_max_attempts(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 5
        return parsed_value

    @field_validator("rental_calendar_max_range_days", mode="before")
    @classmethod
    def normalize_rental_calendar_max_range_days(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 366
        return parsed_value

    @field_validator("notification_timeout_seconds", mode="before")
    @classmethod
    def normalize_notification_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 10.0
        return parsed_value


@lru_cache
def get_settings() -> Settings:
    return Settings()
