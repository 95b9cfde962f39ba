"""JSON webhook sink for deployment events.

Posts each DeploymentEvent as a flat JSON object so consumers can parse it
without kroflow-specific knowledge.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from kroflow.events.dispatcher import EventSink
from kroflow.models.events import DeploymentEvent

_log = structlog.get_logger(component="events.webhook")


class WebhookEventSink(EventSink):
    """Delivers events by POSTing a JSON payload to a configurable URL.

    Args:
        url:       Full endpoint URL.
        headers:   Optional extra headers (e.g. Authorization).
        timeout:   HTTP request timeout in seconds.
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url:
            raise ValueError("Webhook url must not be empty")
        self._url = url
        self._headers = headers or {}
        self._timeout = timeout
        self._transport = transport

    @property
    def sink_name(self) -> str:
        return "webhook"

    async def send(self, event: DeploymentEvent) -> bool:
        payload = build_payload(event)
        request_headers = {"Content-Type": "application/json", **self._headers}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json=payload, headers=request_headers)
                if response.is_success:
                    return True
                _log.warning(
                    "webhook_non_2xx_response",
                    status_code=response.status_code,
                    body=response.text[:200],
                    event_type=payload["type"],
                )
                return False
        except httpx.TimeoutException:
            _log.warning("webhook_request_timeout", url=self._url, event_type=payload["type"])
            return False
        except httpx.HTTPError as exc:
            _log.warning("webhook_http_error", error=str(exc), event_type=payload["type"])
            return False


def build_payload(event: DeploymentEvent) -> dict[str, Any]:
    """Serialise *event* to a plain dict for JSON encoding."""
    return {
        "type": str(event.type),
        "message": event.message,
        "deployment_id": event.deployment_id,
        "resource_id": event.resource_id,
        "details": event.details or {},
        "timestamp": event.timestamp.isoformat(),
    }
