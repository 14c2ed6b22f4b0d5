from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from ..core.logging import get_logger
from ..orchestration.enums import EventType
from ..orchestration.state import ToolCall, ToolCallEvent
from ..orchestration.store import ResourceStore

logger = get_logger(name=__name__)

Subscriber = Callable[[ToolCallEvent], Awaitable[None]]


class EventRecorder:
    """Records user-visible tool call events and fans them out to subscribers.

    Emission is best effort: a failing store write or subscriber is logged and
    never propagates into the state transition that produced the event.
    """

    def __init__(self, store: ResourceStore) -> None:
        self._store = store
        self._subscribers: set[Subscriber] = set()

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.add(subscriber)

    async def emit(self, toolcall: ToolCall, event_type: EventType, reason: str, message: str) -> None:
        event = ToolCallEvent(
            type=event_type,
            reason=reason,
            message=message,
            namespace=toolcall.metadata.namespace,
            name=toolcall.metadata.name,
        )
        log = logger.warning if event_type is EventType.WARNING else logger.info
        log("toolcall_event", reason=reason, message=message, event_type=event_type.value)
        try:
            await self._store.record_event(event)
        except Exception as exc:  # pragma: no cover - defensive logging
            logger.warning("toolcall_event_store_failed", reason=reason, error=str(exc))

        if not self._subscribers:
            return
        results = await asyncio.gather(
            *(self._safe_invoke(subscriber, event) for subscriber in list(self._subscribers)),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.warning("toolcall_event_subscriber_error", error=str(result))

    async def _safe_invoke(self, subscriber: Subscriber, event: ToolCallEvent) -> None:
        try:
            await subscriber(event)
        except Exception as exc:  # pragma: no cover - defensive guard
            logger.warning("toolcall_event_subscriber_failed", subscriber=subscriber.__qualname__, error=str(exc))


async def log_event(event: ToolCallEvent) -> None:
    logger.info("toolcall_notification", reason=event.reason, toolcall=event.name, namespace=event.namespace)


__all__ = ["EventRecorder", "Subscriber", "log_event"]
