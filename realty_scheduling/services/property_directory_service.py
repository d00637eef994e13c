from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from fastapi import HTTPException, status

from realty_scheduling.core.config import Settings, get_settings
from realty_scheduling.schemas.property_directory import (
    BrokerCreateRequest,
    BrokerResponse,
    PropertyBrokerAssignRequest,
    PropertyBrokerListResponse,
    PropertyBrokerResponse,
    PropertyCreateRequest,
    PropertyResponse,
)
from realty_scheduling.services.property_directory_store import (
    PropertyDirectoryStore,
    create_property_directory_store,
)

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class PropertyDirectoryService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        directory_store: PropertyDirectoryStore | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.directory_store = directory_store or create_property_directory_store(self.settings)

    def create_property(self, payload: PropertyCreateRequest) -> PropertyResponse:
        if not payload.title.strip() or not payload.address.strip() or not payload.city.strip():
            raise HTTPException(
                status_code=422,
                detail="Property title, address and city are required.",
            )
        if payload.price is not None and payload.price < 0:
            raise HTTPException(
                status_code=422,
                detail="Property price must not be negative.",
            )
        record = self.directory_store.create_property(
            title=payload.title,
            address=payload.address,
            city=payload.city,
            price=payload.price,
        )
        return _map_property(record)

    def get_property(self, property_id: str) -> PropertyResponse:
        record = self.directory_store.get_property(property_id)
        if not record:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Property not found.",
            )
        return _map_property(record)

    def create_broker(self, payload: BrokerCreateRequest) -> BrokerResponse:
        if not payload.full_name.strip():
            raise HTTPException(
                status_code=422,
                detail="Broker full name is required.",
            )
        if not _EMAIL_PATTERN.match(payload.email.strip()):
            raise HTTPException(
                status_code=422,
                detail="Invalid broker email.",
            )
        record = self.directory_store.create_broker(
            full_name=payload.full_name,
            email=payload.email,
            phone=payload.phone,
            is_active=payload.is_active,
        )
        return _map_broker(record)

    def get_broker(self, broker_id: str) -> BrokerResponse:
        record = self.directory_store.get_broker(broker_id)
        if not record:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Broker not found.",
            )
        return _map_broker(record)

    def assign_broker(
        self,
        property_id: str,
        payload: PropertyBrokerAssignRequest,
    ) -> PropertyBrokerResponse:
        self.get_property(property_id)
        broker = self.get_broker(payload.broker_id)
        record = self.directory_store.upsert_property_broker(
            property_id=property_id,
            broker_id=broker.id,
            is_primary=payload.is_primary,
            is_active=payload.is_active,
        )
        return PropertyBrokerResponse(
            property_id=str(record.get("property_id", "")),
            broker_id=str(record.get("broker_id", "")),
            is_primary=bool(record.get("is_primary")),
            is_active=bool(record.get("is_active")),
            broker=broker,
        )

    def list_property_brokers(self, property_id: str) -> PropertyBrokerListResponse:
        self.get_property(property_id)
        assignments = self.directory_store.list_property_brokers(property_id)
        brokers = {
            str(broker.get("_id", "")): broker
            for broker in self.directory_store.list_brokers_by_ids(
                [str(assignment.get("broker_id", "")) for assignment in assignments],
            )
        }
        return PropertyBrokerListResponse(
            property_id=property_id.strip(),
            brokers=[
                PropertyBrokerResponse(
                    property_id=str(assignment.get("property_id", "")),
                    broker_id=str(assignment.get("broker_id", "")),
                    is_primary=bool(assignment.get("is_primary")),
                    is_active=bool(assignment.get("is_active")),
                    broker=(
                        _map_broker(brokers[str(assignment.get("broker_id", ""))])
                        if str(assignment.get("broker_id", "")) in brokers
                        else None
                    ),
                )
                for assignment in assignments
            ],
        )


def _map_property(record: Mapping[str, Any]) -> PropertyResponse:
    return PropertyResponse(
        id=str(record.get("_id", "")),
        title=str(record.get("title", "")),
        address=str(record.get("address", "")),
        city=str(record.get("city", "")),
        price=record.get("price"),
        created_at=record.get("created_at"),
    )


def _map_broker(record: Mapping[str, Any]) -> BrokerResponse:
    return BrokerResponse(
        id=str(record.get("_id", "")),
        full_name=str(record.get("full_name", "")),
        email=str(record.get("email", "")),
        phone=record.get("phone"),
        is_active=bool(record.get("is_active", True)),
        created_at=record.get("created_at"),
    )
