from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from realty_scheduling.core.config import Settings
from realty_scheduling.services.storage_errors import StorageError, translate_storage_errors
from realty_scheduling.services.viewing_conflicts import count_viewing_group, find_conflicting_interval
from realty_scheduling.services.viewing_models import (
    ACTIVE_VIEWING_STATUSES,
    PropertyViewing,
    ViewingInterval,
    format_clock_minutes,
)

logger = logging.getLogger(__name__)


class ViewingOverlapError(Exception):
    def __init__(self, conflicting_viewing: Mapping[str, Any]) -> None:
        super().__init__("Broker already has an overlapping viewing.")
        self.conflicting_viewing = dict(conflicting_viewing)


class ViewingCapacityError(Exception):
    def __init__(self, group_size: int) -> None:
        super().__init__("Viewing group is already full.")
        self.group_size = group_size


class ViewingStore(ABC):
    @abstractmethod
    def list_broker_viewings(
        self,
        broker_id: str,
        viewing_date: str,
        *,
        statuses: tuple[str, ...] | None = None,
    ) -> list[dict[str, Any]]:
        """Viewings of the broker on ``viewing_date`` across every property."""
        raise NotImplementedError

    @abstractmethod
    def get_viewing(self, viewing_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def insert_viewing_if_free(
        self,
        viewing: Mapping[str, Any],
        *,
        max_group_size: int,
    ) -> dict[str, Any]:
        """Insert ``viewing`` only if the broker is free for its interval.

        The overlap and group-capacity rules are re-checked atomically with the
        insert. Raises ``ViewingOverlapError`` or ``ViewingCapacityError``.
        """
        raise NotImplementedError

    @abstractmethod
    def update_viewing_status(self, viewing_id: str, status: str) -> dict[str, Any] | None:
        raise NotImplementedError


class InMemoryViewingStore(ViewingStore):
    def __init__(self) -> None:
        self._next_id = 1
        self._viewings_by_id: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def list_broker_viewings(
        self,
        broker_id: str,
        viewing_date: str,
        *,
        statuses: tuple[str, ...] | None = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            return self._list_broker_viewings_unlocked(broker_id, viewing_date, statuses=statuses)

    def get_viewing(self, viewing_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._viewings_by_id.get(viewing_id.strip())
            if not record:
                return None
            return dict(record)

    def insert_viewing_if_free(
        self,
        viewing: Mapping[str, Any],
        *,
        max_group_size: int,
    ) -> dict[str, Any]:
        candidate = PropertyViewing.from_record(viewing)
        with self._lock:
            active_viewings = [
                PropertyViewing.from_record(record)
                for record in self._list_broker_viewings_unlocked(
                    candidate.broker_id,
                    candidate.viewing_date,
                    statuses=ACTIVE_VIEWING_STATUSES,
                )
            ]
            intervals = [active_viewing.interval() for active_viewing in active_viewings]
            conflict = find_conflicting_interval(
                intervals,
                property_id=candidate.property_id,
                start_minute=candidate.start_minute,
                end_minute=candidate.end_minute,
            )
            if conflict:
                raise ViewingOverlapError(self._viewings_by_id[conflict.viewing_id])

            group_size = count_viewing_group(
                intervals,
                property_id=candidate.property_id,
                start_minute=candidate.start_minute,
            )
            if group_size >= max_group_size:
                raise ViewingCapacityError(group_size)

            viewing_id = str(self._next_id)
            self._next_id += 1
            now = datetime.now(UTC)
            record = dict(viewing)
            record["_id"] = viewing_id
            record["created_at"] = now
            record["updated_at"] = now
            self._viewings_by_id[viewing_id] = record
            return dict(record)

    def update_viewing_status(self, viewing_id: str, status: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._viewings_by_id.get(viewing_id.strip())
            if not record:
                return None
            record["status"] = status.strip().lower()
            record["updated_at"] = datetime.now(UTC)
            return dict(record)

    def _list_broker_viewings_unlocked(
        self,
        broker_id: str,
        viewing_date: str,
        *,
        statuses: tuple[str, ...] | None,
    ) -> list[dict[str, Any]]:
        normalized_broker_id = broker_id.strip()
        viewings = [
            dict(record)
            for record in self._viewings_by_id.values()
            if record.get("broker_id") == normalized_broker_id
            and record.get("viewing_date") == viewing_date
            and (statuses is None or record.get("status") in statuses)
        ]
        viewings.sort(key=lambda record: (str(record.get("viewing_time", "")), str(record.get("_id", ""))))
        return viewings


class MongoViewingStore(ViewingStore):
    """Viewings plus a per-broker-day ledger guarded by a revision counter."""

    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        viewings_collection_name: str,
        ledgers_collection_name: str,
        connect_timeout_ms: int = 2000,
        max_attempts: int = 5,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        database = self._client[db_name]
        self._viewings = database[viewings_collection_name]
        self._ledgers = database[ledgers_collection_name]
        self._max_attempts = max_attempts

        self._viewings.create_index([("broker_id", 1), ("viewing_date", 1), ("status", 1)])
        self._viewings.create_index([("property_id", 1), ("viewing_date", 1)])
        self._viewings.create_index("confirmation_code", unique=True, sparse=True)

    def list_broker_viewings(
        self,
        broker_id: str,
        viewing_date: str,
        *,
        statuses: tuple[str, ...] | None = None,
    ) -> list[dict[str, Any]]:
        query: dict[str, Any] = {
            "broker_id": broker_id.strip(),
            "viewing_date": viewing_date,
        }
        if statuses is not None:
            query["status"] = {"$in": list(statuses)}
        with translate_storage_errors("list_broker_viewings"):
            records = list(self._viewings.find(query).sort([("viewing_time", 1), ("_id", 1)]))
        return [_serialize_record(record) for record in records]

    def get_viewing(self, viewing_id: str) -> dict[str, Any] | None:
        object_id = _to_object_id(viewing_id)
        if not object_id:
            return None
        with translate_storage_errors("get_viewing"):
            record = self._viewings.find_one({"_id": object_id})
        return _serialize_record(record)

    def insert_viewing_if_free(
        self,
        viewing: Mapping[str, Any],
        *,
        max_group_size: int,
    ) -> dict[str, Any]:
        from bson import ObjectId
        from pymongo.errors import DuplicateKeyError

        candidate = PropertyViewing.from_record(viewing)
        ledger_id = _ledger_id(candidate.broker_id, candidate.viewing_date)
        viewing_object_id = ObjectId()
        candidate_interval = ViewingInterval(
            viewing_id=str(viewing_object_id),
            property_id=candidate.property_id,
            start_minute=candidate.start_minute,
            end_minute=candidate.end_minute,
        )

        with translate_storage_errors("insert_viewing_if_free"):
            for _ in range(self._max_attempts):
                ledger = self._ledgers.find_one({"_id": ledger_id})
                intervals = [
                    ViewingInterval.from_record(raw_interval)
                    for raw_interval in (ledger or {}).get("intervals", [])
                ]
                conflict = find_conflicting_interval(
                    intervals,
                    property_id=candidate.property_id,
                    start_minute=candidate.start_minute,
                    end_minute=candidate.end_minute,
                )
                if conflict:
                    raise ViewingOverlapError(self._conflicting_record(conflict))

                group_size = count_viewing_group(
                    intervals,
                    property_id=candidate.property_id,
                    start_minute=candidate.start_minute,
                )
                if group_size >= max_group_size:
                    raise ViewingCapacityError(group_size)

                now = datetime.now(UTC)
                if ledger is None:
                    try:
                        self._ledgers.insert_one(
                            {
                                "_id": ledger_id,
                                "broker_id": candidate.broker_id,
                                "viewing_date": candidate.viewing_date,
                                "revision": 1,
                                "intervals": [candidate_interval.to_dict()],
                                "updated_at": now,
                            },
                        )
                    except DuplicateKeyError:
                        continue
                else:
                    update_result = self._ledgers.update_one(
                        {"_id": ledger_id, "revision": ledger.get("revision", 0)},
                        {
                            "$inc": {"revision": 1},
                            "$push": {"intervals": candidate_interval.to_dict()},
                            "$set": {"updated_at": now},
                        },
                    )
                    if update_result.modified_count == 0:
                        continue

                payload = dict(viewing)
                payload["_id"] = viewing_object_id
                payload["created_at"] = now
                payload["updated_at"] = now
                try:
                    self._viewings.insert_one(payload)
                except Exception:
                    self._release_interval(ledger_id, candidate_interval.viewing_id)
                    raise
                return _serialize_record(payload) or {}

        raise StorageError(
            f"Could not reserve viewing interval for broker_id={candidate.broker_id} "
            f"viewing_date={candidate.viewing_date} after {self._max_attempts} attempts.",
        )

    def update_viewing_status(self, viewing_id: str, status: str) -> dict[str, Any] | None:
        from pymongo import ReturnDocument

        object_id = _to_object_id(viewing_id)
        if not object_id:
            return None
        normalized_status = status.strip().lower()
        with translate_storage_errors("update_viewing_status"):
            record = self._viewings.find_one_and_update(
                {"_id": object_id},
                {"$set": {"status": normalized_status, "updated_at": datetime.now(UTC)}},
                return_document=ReturnDocument.AFTER,
            )
            if not record:
                return None
            if normalized_status not in ACTIVE_VIEWING_STATUSES:
                self._release_interval(
                    _ledger_id(str(record.get("broker_id", "")), str(record.get("viewing_date", ""))),
                    str(object_id),
                )
        return _serialize_record(record)

    def _release_interval(self, ledger_id: str, viewing_id: str) -> None:
        self._ledgers.update_one(
            {"_id": ledger_id},
            {
                "$pull": {"intervals": {"viewing_id": viewing_id}},
                "$inc": {"revision": 1},
                "$set": {"updated_at": datetime.now(UTC)},
            },
        )

    def _conflicting_record(self, interval: ViewingInterval) -> dict[str, Any]:
        record = self.get_viewing(interval.viewing_id)
        if record:
            return record
        logger.warning(
            "Viewing ledger interval has no stored viewing viewing_id=%s property_id=%s",
            interval.viewing_id,
            interval.property_id,
        )
        return {
            "_id": interval.viewing_id,
            "property_id": interval.property_id,
            "viewing_time": format_clock_minutes(interval.start_minute),
            "end_time": format_clock_minutes(interval.end_minute),
            "duration_minutes": interval.end_minute - interval.start_minute,
        }


def _ledger_id(broker_id: str, viewing_date: str) -> str:
    return f"{broker_id.strip()}:{viewing_date}"


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


def create_viewing_store(settings: Settings) -> ViewingStore:
    return _create_viewing_store_cached(
        data_store=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_viewings_collection=settings.mongodb_viewings_collection,
        mongodb_viewing_ledgers_collection=settings.mongodb_viewing_ledgers_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
        viewing_guard_max_attempts=settings.viewing_guard_max_attempts,
    )


@lru_cache
def _create_viewing_store_cached(
    *,
    data_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_viewings_collection: str,
    mongodb_viewing_ledgers_collection: str,
    mongodb_connect_timeout_ms: int,
    viewing_guard_max_attempts: int,
) -> ViewingStore:
    if data_store == "mongodb":
        return MongoViewingStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            viewings_collection_name=mongodb_viewings_collection,
            ledgers_collection_name=mongodb_viewing_ledgers_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
            max_attempts=viewing_guard_max_attempts,
        )

    return InMemoryViewingStore()


def clear_viewing_store_cache() -> None:
    _create_viewing_store_cached.cache_clear()
