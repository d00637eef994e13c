from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from fastapi import HTTPException, status

from realty_scheduling.core.config import Settings, get_settings
from realty_scheduling.schemas.viewing import (
    ViewingBrokerSummary,
    ViewingListResponse,
    ViewingPropertySummary,
    ViewingResponse,
)
from realty_scheduling.services.property_directory_store import (
    PropertyDirectoryStore,
    create_property_directory_store,
)
from realty_scheduling.services.viewing_models import (
    VIEWING_STATUS_TRANSITIONS,
    VIEWING_STATUSES,
    PropertyViewing,
    parse_iso_date,
)
from realty_scheduling.services.viewing_store import ViewingStore, create_viewing_store

logger = logging.getLogger(__name__)


class ViewingService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        viewing_store: ViewingStore | None = None,
        directory_store: PropertyDirectoryStore | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.viewing_store = viewing_store or create_viewing_store(self.settings)
        self.directory_store = directory_store or create_property_directory_store(self.settings)

    def get_viewing(self, viewing_id: str) -> ViewingResponse:
        record = self.viewing_store.get_viewing(viewing_id)
        if not record:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Viewing not found.",
            )
        return map_viewing_response(record)

    def list_broker_viewings(self, broker_id: str, viewing_date: str) -> ViewingListResponse:
        parsed_date = parse_iso_date(viewing_date)
        if not parsed_date:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid date format. Use YYYY-MM-DD.",
            )
        if not self.directory_store.get_broker(broker_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Broker not found.",
            )

        records = self.viewing_store.list_broker_viewings(broker_id, parsed_date.isoformat())
        return ViewingListResponse(
            broker_id=broker_id.strip(),
            date=parsed_date.isoformat(),
            viewings=[map_viewing_response(record) for record in records],
        )

    def update_status(self, viewing_id: str, new_status: str) -> ViewingResponse:
        normalized_status = new_status.strip().lower()
        if normalized_status not in VIEWING_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid viewing status. Allowed values: {', '.join(VIEWING_STATUSES)}.",
            )

        record = self.viewing_store.get_viewing(viewing_id)
        if not record:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Viewing not found.",
            )

        current_status = PropertyViewing.from_record(record).status
        if normalized_status not in VIEWING_STATUS_TRANSITIONS.get(current_status, frozenset()):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Cannot change viewing status from {current_status} to {normalized_status}.",
            )

        updated_record = self.viewing_store.update_viewing_status(viewing_id, normalized_status)
        if not updated_record:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Viewing not found.",
            )
        logger.info(
            "Viewing status changed viewing_id=%s from=%s to=%s",
            viewing_id,
            current_status,
            normalized_status,
        )
        return map_viewing_response(updated_record)


def map_viewing_response(
    record: Mapping[str, Any],
    *,
    property_record: Mapping[str, Any] | None = None,
    broker_record: Mapping[str, Any] | None = None,
) -> ViewingResponse:
    viewing = PropertyViewing.from_record(record)
    property_summary = None
    if property_record:
        property_summary = ViewingPropertySummary(
            title=str(property_record.get("title", "")),
            address=str(property_record.get("address", "")),
            city=property_record.get("city"),
        )
    broker_summary = None
    if broker_record:
        broker_summary = ViewingBrokerSummary(
            name=str(broker_record.get("full_name", "")),
            email=broker_record.get("email"),
            phone=broker_record.get("phone"),
        )
    return ViewingResponse(
        id=viewing.id,
        confirmation_code=viewing.confirmation_code,
        property_id=viewing.property_id,
        broker_id=viewing.broker_id,
        viewing_date=viewing.viewing_date,
        viewing_time=viewing.viewing_time,
        end_time=viewing.end_time,
        duration_minutes=viewing.duration_minutes,
        status=viewing.status,
        visitor_name=viewing.visitor_name,
        visitor_email=viewing.visitor_email,
        visitor_phone=viewing.visitor_phone,
        party_size=viewing.party_size,
        viewing_type=viewing.viewing_type,
        special_requests=viewing.special_requests,
        booking_source=viewing.booking_source,
        metadata=viewing.metadata,
        property=property_summary,
        broker=broker_summary,
        created_at=viewing.created_at,
        updated_at=viewing.updated_at,
    )
