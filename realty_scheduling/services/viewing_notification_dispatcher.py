from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from realty_scheduling.core.config import Settings
from realty_scheduling.services.mailgun_email_client import MailgunEmailClient, MailgunEmailError
from realty_scheduling.services.viewing_webhook_client import ViewingWebhookClient, ViewingWebhookError

logger = logging.getLogger(__name__)


class ViewingNotificationDispatcher:
    """Best-effort notifications after a viewing is booked.

    Each channel is attempted independently; a failing channel is logged and
    never propagates to the caller.
    """

    def __init__(
        self,
        settings: Settings,
        email_client: MailgunEmailClient | None = None,
        webhook_client: ViewingWebhookClient | None = None,
    ) -> None:
        self.settings = settings
        self.email_client = email_client or self._create_email_client()
        self.webhook_client = webhook_client or self._create_webhook_client()

    def notify_viewing_booked(
        self,
        *,
        viewing: Mapping[str, Any],
        property_record: Mapping[str, Any],
        broker_record: Mapping[str, Any],
    ) -> dict[str, str]:
        return {
            "visitor_email": self._send_visitor_confirmation(viewing, property_record, broker_record),
            "broker_email": self._send_broker_notification(viewing, property_record, broker_record),
            "webhook": self._post_webhook(viewing, property_record, broker_record),
        }

    def _send_visitor_confirmation(
        self,
        viewing: Mapping[str, Any],
        property_record: Mapping[str, Any],
        broker_record: Mapping[str, Any],
    ) -> str:
        if not self.email_client:
            return "skipped_missing_configuration"
        try:
            self.email_client.send_viewing_confirmation(
                visitor_email=str(viewing.get("visitor_email", "")),
                visitor_name=str(viewing.get("visitor_name", "")),
                property_title=str(property_record.get("title", "")),
                viewing_date=str(viewing.get("viewing_date", "")),
                viewing_time=str(viewing.get("viewing_time", "")),
                confirmation_code=str(viewing.get("confirmation_code", "")),
                broker_name=str(broker_record.get("full_name", "")),
                broker_phone=broker_record.get("phone"),
            )
        except MailgunEmailError as exc:
            logger.warning(
                "Viewing confirmation email failed viewing_id=%s error=%s",
                viewing.get("id"),
                exc,
            )
            return "failed"
        return "sent"

    def _send_broker_notification(
        self,
        viewing: Mapping[str, Any],
        property_record: Mapping[str, Any],
        broker_record: Mapping[str, Any],
    ) -> str:
        if not self.email_client:
            return "skipped_missing_configuration"
        broker_email = str(broker_record.get("email") or "")
        if not broker_email:
            return "skipped_missing_recipient"

        details = (
            f"New viewing booking for {viewing.get('viewing_date')} at {viewing.get('viewing_time')}. "
            f"Duration: {viewing.get('duration_minutes')} minutes. "
            f"Party size: {viewing.get('party_size')}."
        )
        special_requests = viewing.get("special_requests")
        if special_requests:
            details = f"{details} Special requests: {special_requests}"
        try:
            self.email_client.send_broker_viewing_notification(
                broker_email=broker_email,
                broker_name=str(broker_record.get("full_name", "")),
                property_title=str(property_record.get("title", "")),
                visitor_name=str(viewing.get("visitor_name", "")),
                visitor_email=str(viewing.get("visitor_email", "")),
                visitor_phone=viewing.get("visitor_phone"),
                details=details,
            )
        except MailgunEmailError as exc:
            logger.warning(
                "Broker notification email failed viewing_id=%s broker_id=%s error=%s",
                viewing.get("id"),
                viewing.get("broker_id"),
                exc,
            )
            return "failed"
        return "sent"

    def _post_webhook(
        self,
        viewing: Mapping[str, Any],
        property_record: Mapping[str, Any],
        broker_record: Mapping[str, Any],
    ) -> str:
        if not self.webhook_client:
            return "skipped_missing_configuration"
        payload = {
            "viewing_id": viewing.get("id"),
            "confirmation_code": viewing.get("confirmation_code"),
            "property": {
                "id": viewing.get("property_id"),
                "title": property_record.get("title"),
                "address": property_record.get("address"),
                "price": property_record.get("price"),
            },
            "broker": {
                "name": broker_record.get("full_name"),
                "email": broker_record.get("email"),
                "phone": broker_record.get("phone"),
            },
            "visitor": {
                "name": viewing.get("visitor_name"),
                "email": viewing.get("visitor_email"),
                "phone": viewing.get("visitor_phone"),
                "party_size": viewing.get("party_size"),
            },
            "viewing_details": {
                "date": viewing.get("viewing_date"),
                "time": viewing.get("viewing_time"),
                "duration_minutes": viewing.get("duration_minutes"),
                "type": viewing.get("viewing_type"),
                "special_requests": viewing.get("special_requests"),
            },
            "timestamp": datetime.now(UTC).isoformat(),
        }
        try:
            self.webhook_client.post_viewing_booked(payload)
        except ViewingWebhookError as exc:
            logger.warning(
                "Viewing webhook failed viewing_id=%s error=%s",
                viewing.get("id"),
                exc,
            )
            return "failed"
        return "sent"

    def _create_email_client(self) -> MailgunEmailClient | None:
        client = MailgunEmailClient(
            api_key=self.settings.mailgun_api_key,
            domain=self.settings.mailgun_domain,
            from_email=self.settings.mailgun_from_email,
            api_base_url=self.settings.mailgun_api_base_url,
            timeout_seconds=self.settings.notification_timeout_seconds,
        )
        if not client.is_configured:
            return None
        return client

    def _create_webhook_client(self) -> ViewingWebhookClient | None:
        client = ViewingWebhookClient(
            base_url=self.settings.notification_webhook_url,
            timeout_seconds=self.settings.notification_timeout_seconds,
        )
        if not client.is_configured:
            return None
        return client
