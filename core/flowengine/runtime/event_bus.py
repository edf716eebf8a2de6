"""
Event Bus - Pub/sub channel between a running flow and its observers.

The scheduler and nodes publish flow events (node lifecycle, streamed chunks,
tool calls, status transitions); the UI layer, session timeline writers and
tests subscribe to them. Handler failures are logged and never reach the run.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class FlowEventType(StrEnum):
    """Types of events a flow run can publish."""

    # Node lifecycle
    NODE_START = "node_start"
    NODE_END = "node_end"
    NODE_RETRY = "node_retry"
    ERROR = "error"

    # Flow lifecycle
    STATUS_CHANGED = "status_changed"
    WAITING_FOR_INPUT = "waiting_for_input"
    DONE = "done"

    # Streaming output
    CHUNK = "chunk"
    REASONING = "reasoning"

    # Tool lifecycle
    TOOL_START = "tool_start"
    TOOL_END = "tool_end"
    TOOL_ERROR = "tool_error"

    # Routing / accounting
    INTENT_DETECTED = "intent_detected"
    TOKEN_USAGE = "token_usage"

    # Conversation badges
    BADGE_ADD = "badge_add"
    BADGE_UPDATE = "badge_update"

    # Context snapshots
    CONTEXT_STATE = "context_state"

    CUSTOM = "custom"


@dataclass
class FlowEvent:
    """An event emitted during a flow run."""

    type: FlowEventType
    request_id: str
    node_id: str | None = None
    execution_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "request_id": self.request_id,
            "node_id": self.node_id,
            "execution_id": self.execution_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[FlowEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[FlowEventType]
    handler: EventHandler
    filter_request: str | None = None
    filter_node: str | None = None


class EventBus:
    """
    Pub/sub event bus for flow observers.

    Example:
        bus = EventBus()

        async def on_chunk(event: FlowEvent):
            print(event.data["text"], end="")

        bus.subscribe(event_types=[FlowEventType.CHUNK], handler=on_chunk)
    """

    def __init__(
        self,
        max_history: int = 1000,
        max_concurrent_handlers: int = 10,
    ):
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[FlowEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0

    def subscribe(
        self,
        event_types: list[FlowEventType],
        handler: EventHandler,
        filter_request: str | None = None,
        filter_node: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Args:
            event_types: Types of events to receive
            handler: Async function to call when event occurs
            filter_request: Only receive events from this flow run
            filter_node: Only receive events from this node

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"

        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_request=filter_request,
            filter_node=filter_node,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: FlowEvent) -> None:
        """Publish an event to all matching subscribers."""
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history :]

        matching_handlers = [
            subscription.handler
            for subscription in self._subscriptions.values()
            if self._matches(subscription, event)
        ]
        if matching_handlers:
            await self._execute_handlers(event, matching_handlers)

    def _matches(self, subscription: Subscription, event: FlowEvent) -> bool:
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_request and subscription.filter_request != event.request_id:
            return False
        if subscription.filter_node and subscription.filter_node != event.node_id:
            return False
        return True

    async def _execute_handlers(
        self,
        event: FlowEvent,
        handlers: list[EventHandler],
    ) -> None:
        """Execute handlers concurrently with rate limiting."""

        async def run_handler(handler: EventHandler) -> None:
            async with self._semaphore:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Handler error for {event.type}: {e}")

        await asyncio.gather(*[run_handler(h) for h in handlers], return_exceptions=True)

    # === CONVENIENCE PUBLISHERS ===

    async def emit_node_start(self, request_id: str, node_id: str, execution_id: str) -> None:
        await self.publish(
            FlowEvent(
                type=FlowEventType.NODE_START,
                request_id=request_id,
                node_id=node_id,
                execution_id=execution_id,
            )
        )

    async def emit_node_end(
        self,
        request_id: str,
        node_id: str,
        execution_id: str,
        duration_ms: int,
        status: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=FlowEventType.NODE_END,
                request_id=request_id,
                node_id=node_id,
                execution_id=execution_id,
                data={"duration_ms": duration_ms, "status": status, "metadata": metadata or {}},
            )
        )

    async def emit_error(
        self,
        request_id: str,
        error: str,
        node_id: str | None = None,
        execution_id: str | None = None,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=FlowEventType.ERROR,
                request_id=request_id,
                node_id=node_id,
                execution_id=execution_id,
                data={"error": error},
            )
        )

    async def emit_status_changed(self, request_id: str, status: str, previous: str) -> None:
        await self.publish(
            FlowEvent(
                type=FlowEventType.STATUS_CHANGED,
                request_id=request_id,
                data={"status": status, "previous": previous},
            )
        )

    async def emit_waiting_for_input(
        self, request_id: str, node_id: str, reason: str = "", details: dict | None = None
    ) -> None:
        await self.publish(
            FlowEvent(
                type=FlowEventType.WAITING_FOR_INPUT,
                request_id=request_id,
                node_id=node_id,
                data={"reason": reason, **(details or {})},
            )
        )

    async def emit_done(self, request_id: str, ok: bool, error: str | None = None) -> None:
        await self.publish(
            FlowEvent(
                type=FlowEventType.DONE,
                request_id=request_id,
                data={"ok": ok, "error": error},
            )
        )

    async def emit_chunk(
        self, request_id: str, node_id: str, execution_id: str, text: str
    ) -> None:
        await self.publish(
            FlowEvent(
                type=FlowEventType.CHUNK,
                request_id=request_id,
                node_id=node_id,
                execution_id=execution_id,
                data={"text": text},
            )
        )

    async def emit_node_retry(
        self, request_id: str, node_id: str, attempt: int, max_attempts: int, delay: float
    ) -> None:
        await self.publish(
            FlowEvent(
                type=FlowEventType.NODE_RETRY,
                request_id=request_id,
                node_id=node_id,
                data={"attempt": attempt, "max_attempts": max_attempts, "delay": delay},
            )
        )

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: FlowEventType | None = None,
        request_id: str | None = None,
        node_id: str | None = None,
        limit: int = 100,
    ) -> list[FlowEvent]:
        """
        Get event history with optional filtering.

        Returns:
            List of matching events (most recent first)
        """
        events = self._event_history[::-1]

        if event_type:
            events = [e for e in events if e.type == event_type]
        if request_id:
            events = [e for e in events if e.request_id == request_id]
        if node_id:
            events = [e for e in events if e.node_id == node_id]

        return events[:limit]

    def get_stats(self) -> dict:
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.type.value] = type_counts.get(event.type.value, 0) + 1

        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
        }

    # === WAITING OPERATIONS ===

    async def wait_for(
        self,
        event_type: FlowEventType,
        request_id: str | None = None,
        node_id: str | None = None,
        timeout: float | None = None,
    ) -> FlowEvent | None:
        """
        Wait for a specific event to occur.

        Returns:
            The event if received, None if timeout
        """
        result: FlowEvent | None = None
        event_received = asyncio.Event()

        async def handler(event: FlowEvent) -> None:
            nonlocal result
            result = event
            event_received.set()

        sub_id = self.subscribe(
            event_types=[event_type],
            handler=handler,
            filter_request=request_id,
            filter_node=node_id,
        )

        try:
            if timeout:
                try:
                    await asyncio.wait_for(event_received.wait(), timeout=timeout)
                except TimeoutError:
                    return None
            else:
                await event_received.wait()

            return result
        finally:
            self.unsubscribe(sub_id)
