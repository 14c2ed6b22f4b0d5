from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from typing import Awaitable, Callable, Mapping, TypeVar

from ..core.logging import get_logger
from ..tools.exceptions import AlreadyExistsError, ConflictError, ToolCallNotFoundError
from .state import Resource, ToolCall, ToolCallEvent, utcnow

logger = get_logger(name=__name__)

R = TypeVar("R", bound=Resource)
Watcher = Callable[[Resource], Awaitable[None] | None]


class ResourceStore:
    """Persistence contract the controller relies on.

    Reads return detached copies. ``update_status`` is a compare-and-commit on
    ``metadata.resource_version`` and only ever writes the status block.
    """

    def __init__(self) -> None:
        self._watchers: dict[str, list[Watcher]] = defaultdict(list)

    async def get(self, kind: type[R], namespace: str, name: str) -> R | None:
        resource = await self._fetch(kind.kind, namespace, name)
        return None if resource is None else self._clone(resource)  # type: ignore[return-value]

    async def list(
        self,
        kind: type[R],
        *,
        namespace: str | None = None,
        labels: Mapping[str, str] | None = None,
    ) -> list[R]:
        selector = dict(labels or {})
        matched: list[R] = []
        for resource in await self._fetch_all(kind.kind):
            if namespace is not None and resource.metadata.namespace != namespace:
                continue
            if any(resource.metadata.labels.get(key) != value for key, value in selector.items()):
                continue
            matched.append(self._clone(resource))  # type: ignore[arg-type]
        return sorted(matched, key=lambda item: item.key)

    async def create(self, resource: R) -> R:
        stored = self._clone(resource)
        stored.metadata.resource_version = 1
        if stored.metadata.creation_timestamp is None:
            stored.metadata.creation_timestamp = utcnow()
        await self._insert(stored)
        await self._notify(stored)
        return self._clone(stored)  # type: ignore[return-value]

    async def update_status(self, toolcall: ToolCall) -> ToolCall:
        committed = await self._compare_and_swap(toolcall)
        await self._notify(committed)
        return self._clone(committed)  # type: ignore[return-value]

    async def record_event(self, event: ToolCallEvent) -> None:
        await self._append_event(event)

    async def list_events(self, namespace: str, name: str) -> list[ToolCallEvent]:
        return await self._events_for(namespace, name)

    def watch(self, kind: type[Resource], callback: Watcher) -> Callable[[], None]:
        """Register ``callback`` for every create/commit of ``kind``; returns an unsubscribe function."""
        watchers = self._watchers[kind.kind]
        watchers.append(callback)

        def _unsubscribe() -> None:
            if callback in watchers:
                watchers.remove(callback)

        return _unsubscribe

    async def _notify(self, resource: Resource) -> None:
        for callback in list(self._watchers.get(resource.kind, ())):
            try:
                outcome = callback(self._clone(resource))
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:  # pragma: no cover - watchers must not break commits
                logger.warning("store_watcher_failed", kind=resource.kind, error=str(exc))

    @staticmethod
    def _clone(resource: Resource) -> Resource:
        return resource.model_copy(deep=True)

    # Abstract hooks -----------------------------------------------------------------

    async def _fetch(self, kind: str, namespace: str, name: str) -> Resource | None:
        raise NotImplementedError

    async def _fetch_all(self, kind: str) -> list[Resource]:
        raise NotImplementedError

    async def _insert(self, resource: Resource) -> None:
        raise NotImplementedError

    async def _compare_and_swap(self, toolcall: ToolCall) -> ToolCall:
        raise NotImplementedError

    async def _append_event(self, event: ToolCallEvent) -> None:
        raise NotImplementedError

    async def _events_for(self, namespace: str, name: str) -> list[ToolCallEvent]:
        raise NotImplementedError


class InMemoryResourceStore(ResourceStore):
    def __init__(self) -> None:
        super().__init__()
        self._resources: dict[str, dict[tuple[str, str], Resource]] = defaultdict(dict)
        self._events: dict[tuple[str, str], list[ToolCallEvent]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def _fetch(self, kind: str, namespace: str, name: str) -> Resource | None:
        async with self._lock:
            return self._resources[kind].get((namespace, name))

    async def _fetch_all(self, kind: str) -> list[Resource]:
        async with self._lock:
            return list(self._resources[kind].values())

    async def _insert(self, resource: Resource) -> None:
        async with self._lock:
            bucket = self._resources[resource.kind]
            if resource.key in bucket:
                raise AlreadyExistsError(f"{resource.kind} '{resource.metadata.namespace}/{resource.metadata.name}' exists")
            bucket[resource.key] = resource

    async def _compare_and_swap(self, toolcall: ToolCall) -> ToolCall:
        async with self._lock:
            current = self._resources[ToolCall.kind].get(toolcall.key)
            if current is None:
                raise ToolCallNotFoundError(f"ToolCall '{toolcall.metadata.namespace}/{toolcall.metadata.name}' not found")
            if current.metadata.resource_version != toolcall.metadata.resource_version:
                raise ConflictError(
                    f"ToolCall '{toolcall.metadata.name}' was modified"
                    f" (have version {toolcall.metadata.resource_version},"
                    f" stored version {current.metadata.resource_version})"
                )
            committed = current.model_copy(deep=True)
            committed.status = toolcall.status.model_copy(deep=True)
            committed.metadata.resource_version = current.metadata.resource_version + 1
            self._resources[ToolCall.kind][toolcall.key] = committed
            return committed  # type: ignore[return-value]

    async def _append_event(self, event: ToolCallEvent) -> None:
        async with self._lock:
            self._events[(event.namespace, event.name)].append(event.model_copy())

    async def _events_for(self, namespace: str, name: str) -> list[ToolCallEvent]:
        async with self._lock:
            return [event.model_copy() for event in self._events.get((namespace, name), [])]


__all__ = ["InMemoryResourceStore", "ResourceStore", "Watcher"]
