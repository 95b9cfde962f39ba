"""Deployment event delivery."""

from __future__ import annotations

import os

import structlog

from kroflow.events.dispatcher import CallbackSink, EventDispatcher, EventSink
from kroflow.events.webhook import WebhookEventSink
from kroflow.models.config import EventsConfig

_log = structlog.get_logger(component="events")

__all__ = [
    "CallbackSink",
    "EventDispatcher",
    "EventSink",
    "WebhookEventSink",
    "build_event_dispatcher",
]


def build_event_dispatcher(config: EventsConfig) -> EventDispatcher:
    """Build an EventDispatcher from environment-resolved secrets.

    ``config.webhook_url_ref`` names the environment variable that holds
    the webhook URL.  The webhook sink is enabled only when that variable
    is set to a non-empty value.
    """
    sinks: list[EventSink] = []
    webhook_ref = config.webhook_url_ref
    if webhook_ref:
        url = os.environ.get(webhook_ref, "")
        if url:
            sinks.append(WebhookEventSink(url=url, timeout=config.webhook_timeout_seconds))
            _log.info("webhook_sink_enabled")
        else:
            _log.debug("webhook_sink_skipped", reason="secret ref env var is empty")
    return EventDispatcher(sinks)
