"""Scheduler events and the listener registry that delivers them."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from cadence.scheduler.models import Task

logger = logging.getLogger(__name__)

TASK_DUE = "task:due"
TASK_OVERDUE = "task:overdue"
EVENT_TYPES = (TASK_DUE, TASK_OVERDUE)


@dataclass(frozen=True)
class TaskEvent:
    """Payload delivered to listeners.

    Attributes:
        task_id: ID of the task the event is about.
        due_at: The occurrence that became due or was missed.
        context: ``"today"`` for due events, ``"overdue"`` for missed ones.
        task: The task as seen by the scheduler when the event fired.
    """

    task_id: str
    due_at: datetime
    context: Literal["today", "overdue"]
    task: Task


class EventBus:
    """Maps event types to listeners.

    Delivery is synchronous and in registration order. A listener that returns
    an awaitable is scheduled on the running loop and not awaited. Listener
    failures are logged and never reach the emitter.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Callable[[TaskEvent], Any]]] = {
            event_type: [] for event_type in EVENT_TYPES
        }
        self._pending: set[asyncio.Future] = set()

    def on(self, event_type: str, listener: Callable[[TaskEvent], Any]) -> Callable[[], None]:
        """Register *listener* for *event_type*. Returns an unsubscribe callable."""
        if event_type not in self._listeners:
            msg = f"Unknown event type: {event_type!r} (expected one of {EVENT_TYPES})"
            raise ValueError(msg)
        if not callable(listener):
            msg = "listener must be callable"
            raise TypeError(msg)
        self._listeners[event_type].append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners[event_type]
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def listener_count(self, event_type: str) -> int:
        return len(self._listeners.get(event_type, ()))

    def emit(self, event_type: str, event: TaskEvent) -> None:
        """Deliver *event* to every listener registered for *event_type*."""
        for listener in tuple(self._listeners[event_type]):
            try:
                result = listener(event)
            except Exception:
                logger.exception("Listener for %s failed (task %s)", event_type, event.task_id)
                continue
            if inspect.isawaitable(result):
                self._schedule(event_type, event, result)

    def _schedule(self, event_type: str, event: TaskEvent, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "No running event loop; dropped async %s listener (task %s)",
                event_type,
                event.task_id,
            )
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        future = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(future)

        def _done(fut: asyncio.Future) -> None:
            self._pending.discard(fut)
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                logger.error(
                    "Async listener for %s failed (task %s)",
                    event_type,
                    event.task_id,
                    exc_info=exc,
                )

        future.add_done_callback(_done)
