import base64
import io
import json
from urllib import error, parse

import pytest

from realty_scheduling.core.config import Settings
from realty_scheduling.services.mailgun_email_client import MailgunEmailClient, MailgunEmailError
from realty_scheduling.services.viewing_notification_dispatcher import ViewingNotificationDispatcher
from realty_scheduling.services.viewing_webhook_client import ViewingWebhookClient, ViewingWebhookError

VIEWING = {
    "id": "v-1",
    "property_id": "p-1",
    "broker_id": "b-1",
    "viewing_date": "2026-03-02",
    "viewing_time": "10:00",
    "duration_minutes": 60,
    "confirmation_code": "VW-1A2B3C4D",
    "visitor_name": "Omar Visitor",
    "visitor_email": "omar@example.com",
    "visitor_phone": None,
    "party_size": 2,
    "viewing_type": "in_person",
    "special_requests": "Wheelchair access",
}
PROPERTY = {"_id": "p-1", "title": "Sunset Villa", "address": "12 Palm Road", "price": 250000}
BROKER = {"_id": "b-1", "full_name": "Mona Adel", "email": "mona@example.com", "phone": "+20100000000"}


class _MockResponse:
    def __init__(self, payload: dict[str, object]) -> None:
        self._payload = json.dumps(payload).encode("utf-8")

    def __enter__(self) -> "_MockResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        return False

    def read(self) -> bytes:
        return self._payload


def _http_error(url: str, status_code: int, payload: dict[str, object]) -> error.HTTPError:
    return error.HTTPError(
        url=url,
        code=status_code,
        msg="error",
        hdrs=None,
        fp=io.BytesIO(json.dumps(payload).encode("utf-8")),
    )


def test_mailgun_client_posts_form_with_basic_auth(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        captured["url"] = req.full_url
        captured["authorization"] = req.get_header("Authorization")
        captured["form"] = parse.parse_qs(req.data.decode("utf-8"))
        captured["timeout"] = timeout
        return _MockResponse({"id": "<message-1@mg.example.com>", "message": "Queued. Thank you."})

    monkeypatch.setattr("realty_scheduling.services.mailgun_email_client.request.urlopen", fake_urlopen)

    client = MailgunEmailClient(api_key="key-123", domain="mg.example.com", timeout_seconds=5)
    message_id = client.send_viewing_confirmation(
        visitor_email="omar@example.com",
        visitor_name="Omar Visitor",
        property_title="Sunset Villa",
        viewing_date="2026-03-02",
        viewing_time="10:00",
        confirmation_code="VW-1A2B3C4D",
        broker_name="Mona Adel",
        broker_phone="+20100000000",
    )

    assert message_id == "<message-1@mg.example.com>"
    assert captured["url"] == "https://api.mailgun.net/v3/mg.example.com/messages"
    expected_credentials = base64.b64encode(b"api:key-123").decode("ascii")
    assert captured["authorization"] == f"Basic {expected_credentials}"
    assert captured["timeout"] == 5
    form = captured["form"]
    assert form["to"] == ["Omar Visitor <omar@example.com>"]
    assert form["from"] == ["VirtualEstate <noreply@mg.example.com>"]
    assert form["subject"] == ["Viewing confirmed: Sunset Villa"]
    assert form["o:tag"] == ["viewing-confirmation"]
    assert "VW-1A2B3C4D" in form["text"][0]


def test_mailgun_client_wraps_http_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        raise _http_error(req.full_url, 401, {"message": "Forbidden"})

    monkeypatch.setattr("realty_scheduling.services.mailgun_email_client.request.urlopen", fake_urlopen)

    client = MailgunEmailClient(api_key="bad-key", domain="mg.example.com")
    with pytest.raises(MailgunEmailError, match="HTTP 401"):
        client.send_email(to_email="omar@example.com", to_name=None, subject="Hi", text="Hello")


def test_mailgun_client_requires_configuration() -> None:
    client = MailgunEmailClient(api_key="", domain="mg.example.com")

    assert client.is_configured is False
    with pytest.raises(MailgunEmailError):
        client.send_email(to_email="omar@example.com", to_name=None, subject="Hi", text="Hello")


def test_webhook_client_posts_json(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        captured["url"] = req.full_url
        captured["method"] = req.get_method()
        captured["body"] = json.loads(req.data.decode("utf-8"))
        return _MockResponse({"ok": True})

    monkeypatch.setattr("realty_scheduling.services.viewing_webhook_client.request.urlopen", fake_urlopen)

    client = ViewingWebhookClient(base_url="https://hooks.example.com/realty/")
    client.post_viewing_booked({"viewing_id": "v-1"})

    assert captured == {
        "url": "https://hooks.example.com/realty/viewing-booked",
        "method": "POST",
        "body": {"viewing_id": "v-1"},
    }


def test_webhook_client_wraps_connection_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        raise error.URLError("connection refused")

    monkeypatch.setattr("realty_scheduling.services.viewing_webhook_client.request.urlopen", fake_urlopen)

    client = ViewingWebhookClient(base_url="https://hooks.example.com")
    with pytest.raises(ViewingWebhookError, match="connection refused"):
        client.post_viewing_booked({"viewing_id": "v-1"})


class _FakeEmailClient:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, dict]] = []

    def send_viewing_confirmation(self, **kwargs):  # type: ignore[no-untyped-def]
        if self.fail:
            raise MailgunEmailError("Mailgun API HTTP 500: boom")
        self.sent.append(("visitor", kwargs))
        return "msg-1"

    def send_broker_viewing_notification(self, **kwargs):  # type: ignore[no-untyped-def]
        self.sent.append(("broker", kwargs))
        return "msg-2"


class _FakeWebhookClient:
    def __init__(self) -> None:
        self.payloads: list[dict] = []

    def post_viewing_booked(self, payload):  # type: ignore[no-untyped-def]
        self.payloads.append(payload)


def test_dispatcher_sends_every_configured_channel() -> None:
    email_client = _FakeEmailClient()
    webhook_client = _FakeWebhookClient()
    dispatcher = ViewingNotificationDispatcher(
        Settings(mailgun_api_key="", notification_webhook_url=""),
        email_client=email_client,
        webhook_client=webhook_client,
    )

    result = dispatcher.notify_viewing_booked(viewing=VIEWING, property_record=PROPERTY, broker_record=BROKER)

    assert result == {"visitor_email": "sent", "broker_email": "sent", "webhook": "sent"}
    broker_message = dict(email_client.sent)["broker"]
    assert broker_message["broker_email"] == "mona@example.com"
    assert "Special requests: Wheelchair access" in broker_message["details"]
    payload = webhook_client.payloads[0]
    assert payload["viewing_id"] == "v-1"
    assert payload["property"]["title"] == "Sunset Villa"
    assert payload["visitor"]["party_size"] == 2


def test_dispatcher_reports_failures_without_raising() -> None:
    dispatcher = ViewingNotificationDispatcher(
        Settings(mailgun_api_key="", notification_webhook_url=""),
        email_client=_FakeEmailClient(fail=True),
    )

    result = dispatcher.notify_viewing_booked(
        viewing=VIEWING,
        property_record=PROPERTY,
        broker_record={**BROKER, "email": ""},
    )

    assert result == {
        "visitor_email": "failed",
        "broker_email": "skipped_missing_recipient",
        "webhook": "skipped_missing_configuration",
    }


def test_dispatcher_skips_unconfigured_channels() -> None:
    dispatcher = ViewingNotificationDispatcher(Settings(mailgun_api_key="", notification_webhook_url=""))

    result = dispatcher.notify_viewing_booked(viewing=VIEWING, property_record=PROPERTY, broker_record=BROKER)

    assert set(result.values()) == {"skipped_missing_configuration"}
