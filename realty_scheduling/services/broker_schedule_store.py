from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from realty_scheduling.core.config import Settings
from realty_scheduling.services.storage_errors import translate_storage_errors
from realty_scheduling.services.viewing_models import ensure_utc


class BrokerScheduleStore(ABC):
    @abstractmethod
    def create_availability_slots(self, slots: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def get_availability_slot(self, slot_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def list_availability(
        self,
        broker_id: str,
        *,
        start_date: str,
        end_date: str,
    ) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def update_availability_slot(self, slot_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def delete_availability_slot(self, slot_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def create_blocked_times(self, blocked_times: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def list_blocked_times(
        self,
        broker_id: str,
        *,
        window_start: datetime,
        window_end: datetime,
    ) -> list[dict[str, Any]]:
        """Blocked times of the broker intersecting ``[window_start, window_end)``."""
        raise NotImplementedError


class InMemoryBrokerScheduleStore(BrokerScheduleStore):
    def __init__(self) -> None:
        self._next_slot_id = 1
        self._next_blocked_time_id = 1
        self._slots_by_id: dict[str, dict[str, Any]] = {}
        self._blocked_times_by_id: dict[str, dict[str, Any]] = {}

    def create_availability_slots(self, slots: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
        now = datetime.now(UTC)
        created: list[dict[str, Any]] = []
        for slot in slots:
            slot_id = str(self._next_slot_id)
            self._next_slot_id += 1
            record = dict(slot)
            record["_id"] = slot_id
            record["created_at"] = now
            record["updated_at"] = now
            self._slots_by_id[slot_id] = record
            created.append(dict(record))
        return created

    def get_availability_slot(self, slot_id: str) -> dict[str, Any] | None:
        record = self._slots_by_id.get(slot_id.strip())
        if not record:
            return None
        return dict(record)

    def list_availability(
        self,
        broker_id: str,
        *,
        start_date: str,
        end_date: str,
    ) -> list[dict[str, Any]]:
        normalized_broker_id = broker_id.strip()
        slots = [
            dict(record)
            for record in self._slots_by_id.values()
            if record.get("broker_id") == normalized_broker_id
            and start_date <= str(record.get("date", "")) <= end_date
        ]
        slots.sort(key=lambda record: (str(record.get("date", "")), str(record.get("start_time", ""))))
        return slots

    def update_availability_slot(self, slot_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        record = self._slots_by_id.get(slot_id.strip())
        if not record:
            return None
        record.update(dict(updates))
        record["updated_at"] = datetime.now(UTC)
        return dict(record)

    def delete_availability_slot(self, slot_id: str) -> bool:
        return self._slots_by_id.pop(slot_id.strip(), None) is not None

    def create_blocked_times(self, blocked_times: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
        now = datetime.now(UTC)
        created: list[dict[str, Any]] = []
        for blocked_time in blocked_times:
            blocked_time_id = str(self._next_blocked_time_id)
            self._next_blocked_time_id += 1
            record = dict(blocked_time)
            record["_id"] = blocked_time_id
            record["created_at"] = now
            self._blocked_times_by_id[blocked_time_id] = record
            created.append(dict(record))
        return created

    def list_blocked_times(
        self,
        broker_id: str,
        *,
        window_start: datetime,
        window_end: datetime,
    ) -> list[dict[str, Any]]:
        normalized_broker_id = broker_id.strip()
        blocked_times = [
            dict(record)
            for record in self._blocked_times_by_id.values()
            if record.get("broker_id") == normalized_broker_id
            and ensure_utc(record["start_datetime"]) < window_end
            and ensure_utc(record["end_datetime"]) > window_start
        ]
        blocked_times.sort(key=lambda record: ensure_utc(record["start_datetime"]))
        return blocked_times


class MongoBrokerScheduleStore(BrokerScheduleStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        availability_collection_name: str,
        blocked_times_collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
            tz_aware=True,
        )
        database = self._client[db_name]
        self._availability = database[availability_collection_name]
        self._blocked_times = database[blocked_times_collection_name]

        self._availability.create_index([("broker_id", 1), ("date", 1), ("start_time", 1)])
        self._blocked_times.create_index([("broker_id", 1), ("start_datetime", 1)])

    def create_availability_slots(self, slots: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
        if not slots:
            return []
        now = datetime.now(UTC)
        payloads = [{**dict(slot), "created_at": now, "updated_at": now} for slot in slots]
        with translate_storage_errors("create_availability_slots"):
            insert_result = self._availability.insert_many(payloads)
            records = list(self._availability.find({"_id": {"$in": insert_result.inserted_ids}}))
        by_id = {record["_id"]: _serialize_record(record) for record in records}
        return [by_id[inserted_id] for inserted_id in insert_result.inserted_ids if inserted_id in by_id]

    def get_availability_slot(self, slot_id: str) -> dict[str, Any] | None:
        object_id = _to_object_id(slot_id)
        if not object_id:
            return None
        with translate_storage_errors("get_availability_slot"):
            record = self._availability.find_one({"_id": object_id})
        return _serialize_record(record)

    def list_availability(
        self,
        broker_id: str,
        *,
        start_date: str,
        end_date: str,
    ) -> list[dict[str, Any]]:
        query = {
            "broker_id": broker_id.strip(),
            "date": {"$gte": start_date, "$lte": end_date},
        }
        with translate_storage_errors("list_availability"):
            records = list(self._availability.find(query).sort([("date", 1), ("start_time", 1)]))
        return [_serialize_record(record) for record in records]

    def update_availability_slot(self, slot_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        object_id = _to_object_id(slot_id)
        if not object_id:
            return None
        with translate_storage_errors("update_availability_slot"):
            self._availability.update_one(
                {"_id": object_id},
                {"$set": {**dict(updates), "updated_at": datetime.now(UTC)}},
            )
            record = self._availability.find_one({"_id": object_id})
        return _serialize_record(record)

    def delete_availability_slot(self, slot_id: str) -> bool:
        object_id = _to_object_id(slot_id)
        if not object_id:
            return False
        with translate_storage_errors("delete_availability_slot"):
            delete_result = self._availability.delete_one({"_id": object_id})
        return delete_result.deleted_count > 0

    def create_blocked_times(self, blocked_times: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
        if not blocked_times:
            return []
        now = datetime.now(UTC)
        payloads = [{**dict(blocked_time), "created_at": now} for blocked_time in blocked_times]
        with translate_storage_errors("create_blocked_times"):
            insert_result = self._blocked_times.insert_many(payloads)
            records = list(self._blocked_times.find({"_id": {"$in": insert_result.inserted_ids}}))
        by_id = {record["_id"]: _serialize_record(record) for record in records}
        return [by_id[inserted_id] for inserted_id in insert_result.inserted_ids if inserted_id in by_id]

    def list_blocked_times(
        self,
        broker_id: str,
        *,
        window_start: datetime,
        window_end: datetime,
    ) -> list[dict[str, Any]]:
        query = {
            "broker_id": broker_id.strip(),
            "start_datetime": {"$lt": window_end},
            "end_datetime": {"$gt": window_start},
        }
        with translate_storage_errors("list_blocked_times"):
            records = list(self._blocked_times.find(query).sort("start_datetime", 1))
        return [_serialize_record(record) for record in records]


def _to_object_id(record_id: str) -> Any | None:
    from bson import ObjectId
    from bson.errors import InvalidId

    try:
        return ObjectId(record_id.strip())
    except (InvalidId, TypeError):
        return None


def _serialize_record(record: Any) -> dict[str, Any] | None:
    if not record:
        return None
    payload = dict(record)
    payload["_id"] = str(record.get("_id", ""))
    return payload


def create_broker_schedule_store(settings: Settings) -> BrokerScheduleStore:
    return _create_broker_schedule_store_cached(
        data_store=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_availability_collection=settings.mongodb_availability_collection,
        mongodb_blocked_times_collection=settings.mongodb_blocked_times_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_broker_schedule_store_cached(
    *,
    data_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_availability_collection: str,
    mongodb_blocked_times_collection: str,
    mongodb_connect_timeout_ms: int,
) -> BrokerScheduleStore:
    if data_store == "mongodb":
        return MongoBrokerScheduleStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            availability_collection_name=mongodb_availability_collection,
            blocked_times_collection_name=mongodb_blocked_times_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryBrokerScheduleStore()


def clear_broker_schedule_store_cache() -> None:
    _create_broker_schedule_store_cached.cache_clear()
