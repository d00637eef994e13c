from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from realty_scheduling.core.config import Settings
from realty_scheduling.services.storage_errors import translate_storage_errors


class PropertyDirectoryStore(ABC):
    @abstractmethod
    def create_property(
        self,
        *,
        title: str,
        address: str,
        city: str,
        price: float | None = None,
    ) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def get_property(self, property_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def create_broker(
        self,
        *,
        full_name: str,
        email: str,
        phone: str | None = None,
        is_active: bool = True,
    ) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def get_broker(self, broker_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def list_brokers_by_ids(self, broker_ids: list[str]) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def upsert_property_broker(
        self,
        *,
        property_id: str,
        broker_id: str,
        is_primary: bool = False,
        is_active: bool = True,
    ) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def get_property_broker(self, property_id: str, broker_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def list_property_brokers(self, property_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError


class InMemoryPropertyDirectoryStore(PropertyDirectoryStore):
    def __init__(self) -> None:
        self._next_property_id = 1
        self._next_broker_id = 1
        self._next_assignment_id = 1

        self._properties_by_id: dict[str, dict[str, Any]] = {}
        self._brokers_by_id: dict[str, dict[str, Any]] = {}
        self._assignments_by_key: dict[tuple[str, str], dict[str, Any]] = {}

    def create_property(
        self,
        *,
        title: str,
        address: str,
        city: str,
        price: float | None = None,
    ) -> dict[str, Any]:
        now = datetime.now(UTC)
        property_id = str(self._next_property_id)
        self._next_property_id += 1
        record = {
            "_id": property_id,
            "title": title.strip(),
            "address": address.strip(),
            "city": city.strip(),
            "price": price,
            "created_at": now,
            "updated_at": now,
        }
        self._properties_by_id[property_id] = record
        return dict(record)

    def get_property(self, property_id: str) -> dict[str, Any] | None:
        record = self._properties_by_id.get(property_id.strip())
        if not record:
            return None
        return dict(record)

    def create_broker(
        self,
        *,
        full_name: str,
        email: str,
        phone: str | None = None,
        is_active: bool = True,
    ) -> dict[str, Any]:
        now = datetime.now(UTC)
        broker_id = str(self._next_broker_id)
        self._next_broker_id += 1
        record = {
            "_id": broker_id,
            "full_name": full_name.strip(),
            "email": email.strip().lower(),
            "phone": (phone or "").strip() or None,
            "is_active": bool(is_active),
            "created_at": now,
            "updated_at": now,
        }
        self._brokers_by_id[broker_id] = record
        return dict(record)

    def get_broker(self, broker_id: str) -> dict[str, Any] | None:
        record = self._brokers_by_id.get(broker_id.strip())
        if not record:
            return None
        return dict(record)

    def list_brokers_by_ids(self, broker_ids: list[str]) -> list[dict[str, Any]]:
        brokers: list[dict[str, Any]] = []
        for broker_id in broker_ids:
            broker = self.get_broker(broker_id)
            if broker:
                brokers.append(broker)
        return brokers

    def upsert_property_broker(
        self,
        *,
        property_id: str,
        broker_id: str,
        is_primary: bool = False,
        is_active: bool = True,
    ) -> dict[str, Any]:
        key = (property_id.strip(), broker_id.strip())
        now = datetime.now(UTC)
        existing = self._assignments_by_key.get(key)
        if existing:
            existing["is_primary"] = bool(is_primary)
            existing["is_active"] = bool(is_active)
            existing["updated_at"] = now
            return dict(existing)

        assignment_id = str(self._next_assignment_id)
        self._next_assignment_id += 1
        record = {
            "_id": assignment_id,
            "property_id": key[0],
            "broker_id": key[1],
            "is_primary": bool(is_primary),
            "is_active": bool(is_active),
            "created_at": now,
            "updated_at": now,
        }
        self._assignments_by_key[key] = record
        return dict(record)

    def get_property_broker(self, property_id: str, broker_id: str) -> dict[str, Any] | None:
        record = self._assignments_by_key.get((property_id.strip(), broker_id.strip()))
        if not record:
            return None
        return dict(record)

    def list_property_brokers(self, property_id: str) -> list[dict[str, Any]]:
        normalized_property_id = property_id.strip()
        assignments = [
            dict(record)
            for (assigned_property_id, _), record in self._assignments_by_key.items()
            if assigned_property_id == normalized_property_id
        ]
        assignments.sort(key=lambda record: (not record.get("is_primary"), str(record.get("broker_id", ""))))
        return assignments


class MongoPropertyDirectoryStore(PropertyDirectoryStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        properties_collection_name: str,
        brokers_collection_name: str,
        property_brokers_collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        database = self._client[db_name]
        self._properties = database[properties_collection_name]
        self._brokers = database[brokers_collection_name]
        self._property_brokers = database[property_brokers_collection_name]

        self._brokers.create_index("email")
        self._property_brokers.create_index([("property_id", 1), ("broker_id", 1)], unique=True)
        self._property_brokers.create_index([("broker_id", 1), ("is_active", 1)])

    def create_property(
        self,
        *,
        title: str,
        address: str,
        city: str,
        price: float | None = None,
    ) -> dict[str, Any]:
        now = datetime.now(UTC)
        payload = {
            "title": title.strip(),
            "address": address.strip(),
            "city": city.strip(),
            "price": price,
            "created_at": now,
            "updated_at": now,
        }
        with translate_storage_errors("create_property"):
            insert_result = self._properties.insert_one(payload)
        return self.get_property(str(insert_result.inserted_id)) or {}

    def get_property(self, property_id: str) -> dict[str, Any] | None:
        object_id = _to_object_id(property_id)
        if not object_id:
            return None
        with translate_storage_errors("get_property"):
            record = self._properties.find_one({"_id": object_id})
        return _serialize_record(record)

    def create_broker(
        self,
        *,
        full_name: str,
        email: str,
        phone: str | None = None,
        is_active: bool = True,
    ) -> dict[str, Any]:
        now = datetime.now(UTC)
        payload = {
            "full_name": full_name.strip(),
            "email": email.strip().lower(),
            "phone": (phone or "").strip() or None,
            "is_active": bool(is_active),
            "created_at": now,
            "updated_at": now,
        }
        with translate_storage_errors("create_broker"):
            insert_result = self._brokers.insert_one(payload)
        return self.get_broker(str(insert_result.inserted_id)) or {}

    def get_broker(self, broker_id: str) -> dict[str, Any] | None:
        object_id = _to_object_id(broker_id)
        if not object_id:
            return None
        with translate_storage_errors("get_broker"):
            record = self._brokers.find_one({"_id": object_id})
        return _serialize_record(record)

    def list_brokers_by_ids(self, broker_ids: list[str]) -> list[dict[str, Any]]:
        object_ids = []
        for broker_id in broker_ids:
            object_id = _to_object_id(broker_id)
            if object_id:
                object_ids.append(object_id)
        if not object_ids:
            return []
        with translate_storage_errors("list_brokers_by_ids"):
            records = list(self._brokers.find({"_id": {"$in": object_ids}}))
        by_id = {str(record.get("_id")): _serialize_record(record) for record in records}
        return [by_id[broker_id] for broker_id in broker_ids if broker_id in by_id]

    def upsert_property_broker(
        self,
        *,
        property_id: str,
        broker_id: str,
        is_primary: bool = False,
        is_active: bool = True,
    ) -> dict[str, Any]:
        query = {
            "property_id": property_id.strip(),
            "broker_id": broker_id.strip(),
        }
        now = datetime.now(UTC)
        with translate_storage_errors("upsert_property_broker"):
            self._property_brokers.update_one(
                query,
                {
                    "$set": {
                        "is_primary": bool(is_primary),
                        "is_active": bool(is_active),
                        "updated_at": now,
                    },
                    "$setOnInsert": {"created_at": now},
                },
                upsert=True,
            )
            record = self._property_brokers.find_one(query)
        return _serialize_record(record) or {}

    def get_property_broker(self, property_id: str, broker_id: str) -> dict[str, Any] | None:
        with translate_storage_errors("get_property_broker"):
            record = self._property_brokers.find_one(
                {
                    "property_id": property_id.strip(),
                    "broker_id": broker_id.strip(),
                },
            )
        return _serialize_record(record)

    def list_property_brokers(self, property_id: str) -> list[dict[str, Any]]:
        with translate_storage_errors("list_property_brokers"):
            records = list(
                self._property_brokers.find({"property_id": property_id.strip()}).sort(
                    [("is_primary", -1), ("broker_id", 1)],
                ),
            )
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


def create_property_directory_store(settings: Settings) -> PropertyDirectoryStore:
    return _create_property_directory_store_cached(
        data_store=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_properties_collection=settings.mongodb_properties_collection,
        mongodb_brokers_collection=settings.mongodb_brokers_collection,
        mongodb_property_brokers_collection=settings.mongodb_property_brokers_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_property_directory_store_cached(
    *,
    data_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_properties_collection: str,
    mongodb_brokers_collection: str,
    mongodb_property_brokers_collection: str,
    mongodb_connect_timeout_ms: int,
) -> PropertyDirectoryStore:
    if data_store == "mongodb":
        return MongoPropertyDirectoryStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            properties_collection_name=mongodb_properties_collection,
            brokers_collection_name=mongodb_brokers_collection,
            property_brokers_collection_name=mongodb_property_brokers_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryPropertyDirectoryStore()


def clear_property_directory_store_cache() -> None:
    _create_property_directory_store_cached.cache_clear()
