import base64
import json
from typing import Any
from urllib import error, parse, request


class MailgunEmailError(Exception):
    pass


class MailgunEmailClient:
    def __init__(
        self,
        *,
        api_key: str,
        domain: str,
        from_email: str = "",
        api_base_url: str = "https://api.mailgun.net/v3",
        timeout_seconds: float = 10.0,
    ) -> None:
        self.api_key = api_key.strip()
        self.domain = domain.strip()
        self.from_email = from_email.strip() or f"VirtualEstate <noreply@{self.domain}>"
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.domain)

    def send_email(
        self,
        *,
        to_email: str,
        to_name: str | None,
        subject: str,
        text: str,
        html: str | None = None,
        tags: list[str] | None = None,
    ) -> str:
        if not self.is_configured:
            raise MailgunEmailError("Mailgun is not configured. Set MAILGUN_API_KEY and MAILGUN_DOMAIN.")

        recipient = f"{to_name} <{to_email}>" if to_name else to_email
        form_fields: list[tuple[str, str]] = [
            ("from", self.from_email),
            ("to", recipient),
            ("subject", subject),
            ("text", text),
        ]
        if html:
            form_fields.append(("html", html))
        for tag in tags or []:
            form_fields.append(("o:tag", tag))

        response_payload = self._request_form(f"/{self.domain}/messages", form_fields)
        message_id = response_payload.get("id")
        if not isinstance(message_id, str) or not message_id.strip():
            raise MailgunEmailError("Mailgun response did not include a message id.")
        return message_id.strip()

    def send_viewing_confirmation(
        self,
        *,
        visitor_email: str,
        visitor_name: str,
        property_title: str,
        viewing_date: str,
        viewing_time: str,
        confirmation_code: str,
        broker_name: str,
        broker_phone: str | None,
    ) -> str:
        lines = [
            f"Hi {visitor_name},",
            "",
            f"Your viewing of {property_title} is booked for {viewing_date} at {viewing_time}.",
            f"Confirmation code: {confirmation_code}",
            f"Your broker: {broker_name}" + (f" ({broker_phone})" if broker_phone else ""),
        ]
        return self.send_email(
            to_email=visitor_email,
            to_name=visitor_name,
            subject=f"Viewing confirmed: {property_title}",
            text="\n".join(lines),
            tags=["viewing-confirmation"],
        )

    def send_broker_viewing_notification(
        self,
        *,
        broker_email: str,
        broker_name: str,
        property_title: str,
        visitor_name: str,
        visitor_email: str,
        visitor_phone: str | None,
        details: str,
    ) -> str:
        lines = [
            f"Hi {broker_name},",
            "",
            f"{visitor_name} booked a viewing of {property_title}.",
            f"Email: {visitor_email}",
            f"Phone: {visitor_phone or 'Not provided'}",
            "",
            details,
        ]
        return self.send_email(
            to_email=broker_email,
            to_name=broker_name,
            subject=f"New viewing booking: {property_title}",
            text="\n".join(lines),
            tags=["broker-viewing-notification"],
        )

    def _request_form(self, path: str, form_fields: list[tuple[str, str]]) -> dict[str, Any]:
        credentials = base64.b64encode(f"api:{self.api_key}".encode("utf-8")).decode("ascii")
        req = request.Request(
            f"{self.api_base_url}{path}",
            data=parse.urlencode(form_fields).encode("utf-8"),
            headers={
                "Authorization": f"Basic {credentials}",
                "Content-Type": "application/x-www-form-urlencoded",
                "Accept": "application/json",
            },
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise MailgunEmailError("Mailgun API request timed out.") from exc
        except error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore")
            raise MailgunEmailError(
                f"Mailgun API HTTP {exc.code}: {body or 'empty response body'}",
            ) from exc
        except error.URLError as exc:
            raise MailgunEmailError(f"Mailgun API connection error: {exc.reason}") from exc

        try:
            parsed_body = json.loads(response_body.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise MailgunEmailError("Mailgun API returned invalid JSON.") from exc
        if not isinstance(parsed_body, dict):
            raise MailgunEmailError("Mailgun API response is not a JSON object.")
        return parsed_body
