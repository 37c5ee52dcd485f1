"""
EventBus for the Video Job Orchestrator

Direct callback subscriptions between components. Event names are part of
the public contract and listed below.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..utils.logger import get_logger, set_log_context

JOB_RECEIVED = "job_received"
JOB_QUEUED = "job_queued"
JOB_COMPLETED = "job_completed"
ORCHESTRATION_FAILED = "orchestration_failed"
ORCHESTRATOR_INITIALIZED = "orchestrator_initialized"
WORKFLOW_COMPLETED = "workflow_completed"
WORKFLOW_FAILED = "workflow_failed"
SERVICE_REGISTERED = "service_registered"
SERVICE_DEREGISTERED = "service_deregistered"
SERVICE_UNAVAILABLE = "service_unavailable"
SERVICE_HEALTH_CHANGED = "service_health_changed"
CIRCUIT_STATE_CHANGED = "circuit_state_changed"

EVENT_NAMES = frozenset({
    JOB_RECEIVED,
    JOB_QUEUED,
    JOB_COMPLETED,
    ORCHESTRATION_FAILED,
    ORCHESTRATOR_INITIALIZED,
    WORKFLOW_COMPLETED,
    WORKFLOW_FAILED,
    SERVICE_REGISTERED,
    SERVICE_DEREGISTERED,
    SERVICE_UNAVAILABLE,
    SERVICE_HEALTH_CHANGED,
    CIRCUIT_STATE_CHANGED,
})

EventHandler = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class EventBus:
    """
    Publishes named events to subscribed handlers.

    Handlers may be plain functions or coroutine functions; they run in
    subscription order. A failing handler is logged and does not stop the
    remaining handlers or the publisher.
    """

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = {}
        self.logger = get_logger(__name__)
        set_log_context(self.logger, component="event_bus")

    def subscribe(self, event_name: str, handler: EventHandler):
        """
        Register ``handler`` for ``event_name``.

        Raises:
            ValueError: If the event name is not a documented event
        """
        if event_name not in EVENT_NAMES:
            raise ValueError(f"Unknown event '{event_name}'")
        self._handlers.setdefault(event_name, []).append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler):
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    async def publish(self, event_name: str, payload: Optional[Dict[str, Any]] = None):
        """Deliver ``payload`` to every handler of ``event_name``."""
        payload = payload or {}
        for handler in list(self._handlers.get(event_name, [])):
            try:
                outcome = handler(payload)
                if inspect.isawaitable(outcome):
                    await outcome
            except asyncio.CancelledError:
                raise
            except Exception:
                self.logger.error("Event handler failed", exc_info=True, extra={
                    "event": event_name
                })
