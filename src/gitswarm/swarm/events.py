"""Fire-and-forget lifecycle events for swarm runs.

The orchestrator publishes SwarmEvent objects onto an EventBus. Publishing
only enqueues; a dispatcher task delivers events to listeners in order, so
a slow or failing listener never stalls the swarm.

Usage:
    bus = EventBus()
    bus.subscribe(lambda event: print(event.type, event.data))
    orchestrator = SwarmOrchestrator(executor, events=bus)
    ...
    await bus.drain()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    EXECUTION_START = "execution:start"
    STEP_START = "step:start"
    STEP_PROGRESS = "step:progress"
    STEP_COMPLETE = "step:complete"
    STEP_ERROR = "step:error"
    EXECUTION_COMPLETE = "execution:complete"
    EXECUTION_CANCELLED = "execution:cancelled"
    EXECUTION_ERROR = "execution:error"


class SwarmEvent(BaseModel):
    """One lifecycle notification.

    Attributes:
        type: Event kind
        swarm_id: Swarm that produced the event
        agent_id: Agent the event concerns, for step events
        data: Event-specific payload
        timestamp: UTC creation time
    """

    model_config = ConfigDict(frozen=True)

    type: EventType
    swarm_id: str
    agent_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


Listener = Callable[[SwarmEvent], Awaitable[None] | None]


class EventBus:
    """Observer list fed through an unbounded queue."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._queue: asyncio.Queue[SwarmEvent] | None = None
        self._dispatcher: asyncio.Task[None] | None = None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a sync or async listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: SwarmEvent) -> None:
        """Enqueue an event for delivery. Never blocks.

        Must be called from a running event loop; the dispatcher is started
        lazily on first use.
        """
        if not self._listeners:
            return
        self._ensure_dispatcher()
        assert self._queue is not None
        self._queue.put_nowait(event)

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is not None and not self._dispatcher.done():
            return
        # A finished dispatcher belonged to a previous loop; its queue goes with it.
        self._queue = asyncio.Queue()
        self._dispatcher = asyncio.get_running_loop().create_task(
            self._dispatch(self._queue), name="gitswarm-event-dispatch"
        )

    async def _dispatch(self, queue: asyncio.Queue[SwarmEvent]) -> None:
        while True:
            event = await queue.get()
            try:
                for listener in list(self._listeners):
                    await self._deliver(listener, event)
            finally:
                queue.task_done()

    async def _deliver(self, listener: Listener, event: SwarmEvent) -> None:
        try:
            outcome = listener(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            # Listener faults are reported, never propagated into the swarm.
            logger.exception("Event listener failed on %s", event.type.value)

    async def drain(self) -> None:
        """Wait until every queued event has been delivered."""
        if self._queue is not None and self._dispatcher is not None and not self._dispatcher.done():
            await self._queue.join()

    async def close(self) -> None:
        """Deliver pending events, then stop the dispatcher."""
        await self.drain()
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None
        self._queue = None


__all__ = [
    "EventBus",
    "EventType",
    "Listener",
    "SwarmEvent",
]
