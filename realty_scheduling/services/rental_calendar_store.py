from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from realty_scheduling.core.config import Settings
from realty_scheduling.services.storage_errors import translate_storage_errors

CALENDAR_DAY_DEFAULTS: dict[str, Any] = {
    "is_available": True,
    "nightly_rate": None,
    "minimum_stay": None,
    "is_special_pricing": False,
    "special_pricing_reason": None,
}


class RentalCalendarStore(ABC):
    @abstractmethod
    def upsert_days(
        self,
        listing_id: str,
        dates: list[str],
        patch: Mapping[str, Any],
    ) -> int:
        """Write ``patch`` onto every day in ``dates``; days not stored yet get defaults.

        Returns the number of days written.
        """
        raise NotImplementedError

    @abstractmethod
    def list_days(self, listing_id: str, *, start_date: str, end_date: str) -> list[dict[str, Any]]:
        raise NotImplementedError


class InMemoryRentalCalendarStore(RentalCalendarStore):
    def __init__(self) -> None:
        self._days_by_key: dict[tuple[str, str], dict[str, Any]] = {}

    def upsert_days(
        self,
        listing_id: str,
        dates: list[str],
        patch: Mapping[str, Any],
    ) -> int:
        normalized_listing_id = listing_id.strip()
        now = datetime.now(UTC)
        for day in dates:
            key = (normalized_listing_id, day)
            record = self._days_by_key.get(key)
            if record is None:
                record = {
                    "listing_id": normalized_listing_id,
                    "date": day,
                    **CALENDAR_DAY_DEFAULTS,
                    "created_at": now,
                }
                self._days_by_key[key] = record
            record.update(dict(patch))
            record["updated_at"] = now
        return len(dates)

    def list_days(self, listing_id: str, *, start_date: str, end_date: str) -> list[dict[str, Any]]:
        normalized_listing_id = listing_id.strip()
        days = [
            dict(record)
            for (day_listing_id, day), record in self._days_by_key.items()
            if day_listing_id == normalized_listing_id and start_date <= day <= end_date
        ]
        days.sort(key=lambda record: record["date"])
        return days


class MongoRentalCalendarStore(RentalCalendarStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        self._collection = self._client[db_name][collection_name]
        self._collection.create_index([("listing_id", 1), ("date", 1)], unique=True)

    def upsert_days(
        self,
        listing_id: str,
        dates: list[str],
        patch: Mapping[str, Any],
    ) -> int:
        from pymongo import UpdateOne

        if not dates:
            return 0

        normalized_listing_id = listing_id.strip()
        now = datetime.now(UTC)
        set_fields = {**dict(patch), "updated_at": now}
        insert_defaults = {
            field_name: default_value
            for field_name, default_value in CALENDAR_DAY_DEFAULTS.items()
            if field_name not in patch
        }
        insert_defaults["created_at"] = now

        operations = [
            UpdateOne(
                {"listing_id": normalized_listing_id, "date": day},
                {"$set": set_fields, "$setOnInsert": insert_defaults},
                upsert=True,
            )
            for day in dates
        ]
        with translate_storage_errors("upsert_rental_calendar_days"):
            self._collection.bulk_write(operations, ordered=False)
        return len(dates)

    def list_days(self, listing_id: str, *, start_date: str, end_date: str) -> list[dict[str, Any]]:
        query = {
            "listing_id": listing_id.strip(),
            "date": {"$gte": start_date, "$lte": end_date},
        }
        with translate_storage_errors("list_rental_calendar_days"):
            records = list(self._collection.find(query, {"_id": 0}).sort("date", 1))
        return records


def create_rental_calendar_store(settings: Settings) -> RentalCalendarStore:
    return _create_rental_calendar_store_cached(
        data_store=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_rental_calendar_collection=settings.mongodb_rental_calendar_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_rental_calendar_store_cached(
    *,
    data_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_rental_calendar_collection: str,
    mongodb_connect_timeout_ms: int,
) -> RentalCalendarStore:
    if data_store == "mongodb":
        return MongoRentalCalendarStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_rental_calendar_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryRentalCalendarStore()


def clear_rental_calendar_store_cache() -> None:
    _create_rental_calendar_store_cached.cache_clear()
