"""Run-scoped infrastructure: event bus and cooperative cancellation."""

from flowengine.runtime.cancellation import CancellationToken, FlowCancelledError, is_cancellation
from flowengine.runtime.event_bus import EventBus, FlowEvent, FlowEventType

__all__ = [
    "CancellationToken",
    "EventBus",
    "FlowCancelledError",
    "FlowEvent",
    "FlowEventType",
    "is_cancellation",
]
