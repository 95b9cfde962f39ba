"""Deployment event fan-out.

EventSink       -- ABC every sink implements.
CallbackSink    -- wraps a plain (sync or async) callable.
EventDispatcher -- delivers an event to every sink concurrently; a failing
                   sink never affects other sinks or the deployment.
"""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

import structlog

from kroflow.models.events import DeploymentEvent
from kroflow.observability.metrics import events_delivered_total

_log = structlog.get_logger(component="events.dispatcher")

EventCallback = Callable[[DeploymentEvent], Awaitable[None] | None]


class EventSink(ABC):
    """Destination for deployment events.

    ``send`` should not raise; return ``False`` on delivery failure.
    """

    @property
    @abstractmethod
    def sink_name(self) -> str:
        """Identifier used in metrics and logs."""

    @abstractmethod
    async def send(self, event: DeploymentEvent) -> bool:
        """Deliver *event*; True when accepted."""


class CallbackSink(EventSink):
    """Adapts a callable such as ``events.append`` into a sink."""

    def __init__(self, callback: EventCallback, name: str = "callback") -> None:
        self._callback = callback
        self._name = name

    @property
    def sink_name(self) -> str:
        return self._name

    async def send(self, event: DeploymentEvent) -> bool:
        result = self._callback(event)
        if inspect.isawaitable(result):
            await result
        return True


class EventDispatcher:
    """Fan-out of deployment events to every registered sink."""

    def __init__(self, sinks: list[EventSink] | None = None) -> None:
        self._sinks: list[EventSink] = list(sinks or [])

    @property
    def sinks(self) -> list[EventSink]:
        return list(self._sinks)

    def add_sink(self, sink: EventSink | EventCallback) -> None:
        if not isinstance(sink, EventSink):
            sink = CallbackSink(sink)
        self._sinks.append(sink)

    async def emit(self, event: DeploymentEvent) -> None:
        """Deliver *event* to all sinks.  Never raises."""
        if not self._sinks:
            return
        await asyncio.gather(*(self._send_one(sink, event) for sink in self._sinks), return_exceptions=True)

    async def _send_one(self, sink: EventSink, event: DeploymentEvent) -> None:
        try:
            success = await sink.send(event)
        except Exception as exc:  # noqa: BLE001
            _log.error(
                "event_sink_unexpected_error",
                sink=sink.sink_name,
                event_type=str(event.type),
                error=str(exc),
            )
            success = False

        events_delivered_total.labels(sink=sink.sink_name, success="true" if success else "false").inc()
        if not success:
            _log.warning("event_delivery_failed", sink=sink.sink_name, event_type=str(event.type))
