import json
from typing import Any
from urllib import error, request


class ViewingWebhookError(Exception):
    pass


class ViewingWebhookClient:
    def __init__(self, *, base_url: str, timeout_seconds: float = 10.0) -> None:
        self.base_url = base_url.strip().rstrip("/")
        self.timeout_seconds = timeout_seconds

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    def post_viewing_booked(self, payload: dict[str, Any]) -> None:
        if not self.is_configured:
            raise ViewingWebhookError("NOTIFICATION_WEBHOOK_URL is not configured.")

        req = request.Request(
            f"{self.base_url}/viewing-booked",
            data=json.dumps(payload, default=str).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response.read()
        except TimeoutError as exc:
            raise ViewingWebhookError("Viewing webhook request timed out.") from exc
        except error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore")
            raise ViewingWebhookError(
                f"Viewing webhook HTTP {exc.code}: {body or 'empty response body'}",
            ) from exc
        except error.URLError as exc:
            raise ViewingWebhookError(f"Viewing webhook connection error: {exc.reason}") from exc
