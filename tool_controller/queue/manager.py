from __future__ import annotations

import asyncio
import contextlib
from asyncio import Queue
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from ..core import metrics
from ..core.config import ControllerSettings
from ..core.logging import get_logger
from ..orchestration.reconciler import ReconcileResult
from ..orchestration.state import Resource, ToolCall
from ..orchestration.store import ResourceStore

logger = get_logger(name=__name__)

Key = tuple[str, str]
ReconcileFunc = Callable[[str, str], Awaitable[ReconcileResult]]


class ReconcileQueue:
    """Work queue that feeds tool call keys to a pool of reconcile workers.

    A key is queued at most once and never processed by two workers at the
    same time; a key added while it is being processed is re-queued when the
    current pass finishes. Failed passes are retried with capped exponential
    backoff until the retry budget is spent.
    """

    def __init__(
        self,
        reconcile: ReconcileFunc,
        store: ResourceStore | None = None,
        *,
        workers: int = 4,
        max_retries: int = 8,
        base_backoff_seconds: float = 0.5,
        max_backoff_seconds: float = 60.0,
        resync_on_start: bool = True,
    ) -> None:
        self._reconcile = reconcile
        self._store = store
        self._worker_count = max(1, workers)
        self._max_retries = max(0, max_retries)
        self._base_backoff = max(0.0, base_backoff_seconds)
        self._max_backoff = max(0.0, max_backoff_seconds)
        self._resync_on_start = resync_on_start

        self._queue: Queue[Key] = Queue()
        self._queued: set[Key] = set()
        self._processing: set[Key] = set()
        self._dirty: set[Key] = set()
        self._failures: dict[Key, int] = {}
        self._delayed: dict[Key, asyncio.TimerHandle] = {}
        self._workers: list[asyncio.Task[None]] = []
        self._unsubscribe: Callable[[], None] | None = None

    @classmethod
    def from_settings(
        cls,
        reconcile: ReconcileFunc,
        store: ResourceStore,
        settings: ControllerSettings,
    ) -> "ReconcileQueue":
        return cls(
            reconcile,
            store,
            workers=settings.workers,
            max_retries=settings.max_retries,
            base_backoff_seconds=settings.base_backoff_seconds,
            max_backoff_seconds=settings.max_backoff_seconds,
            resync_on_start=settings.resync_on_start,
        )

    @property
    def running(self) -> bool:
        return any(not worker.done() for worker in self._workers)

    def depth(self) -> int:
        return self._queue.qsize()

    def failures(self, namespace: str, name: str) -> int:
        return self._failures.get((namespace, name), 0)

    def add(self, namespace: str, name: str) -> None:
        key = (namespace, name)
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)
        metrics.set_queue_depth(self._queue.qsize())

    def add_after(self, namespace: str, name: str, delay: float) -> None:
        key = (namespace, name)
        if delay <= 0:
            self.add(namespace, name)
            return
        existing = self._delayed.pop(key, None)
        if existing is not None:
            existing.cancel()
        loop = asyncio.get_running_loop()
        self._delayed[key] = loop.call_later(delay, self._fire_delayed, key)

    def backoff_for(self, failures: int) -> float:
        if failures <= 0:
            return 0.0
        return min(self._base_backoff * (2 ** (failures - 1)), self._max_backoff)

    async def wait_idle(self) -> None:
        """Block until every queued key, including ones re-queued meanwhile, is processed."""
        await self._queue.join()

    @asynccontextmanager
    async def lifecycle(self) -> AsyncIterator["ReconcileQueue"]:
        await self.start()
        try:
            yield self
        finally:
            await self.stop()

    async def start(self) -> None:
        if self.running:
            return
        if self._store is not None and self._unsubscribe is None:
            self._unsubscribe = self._store.watch(ToolCall, self._on_change)
        if self._store is not None and self._resync_on_start:
            await self.resync()
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"reconcile-worker-{index}")
            for index in range(self._worker_count)
        ]
        logger.info("reconcile_queue_started", workers=self._worker_count, depth=self.depth())

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for handle in self._delayed.values():
            handle.cancel()
        self._delayed.clear()
        for worker in self._workers:
            worker.cancel()
        for worker in self._workers:
            with contextlib.suppress(asyncio.CancelledError):
                await worker
        self._workers = []
        logger.info("reconcile_queue_stopped", depth=self.depth())

    async def resync(self) -> int:
        if self._store is None:
            return 0
        toolcalls = await self._store.list(ToolCall)
        for toolcall in toolcalls:
            self.add(*toolcall.key)
        logger.info("reconcile_queue_resynced", count=len(toolcalls))
        return len(toolcalls)

    def _on_change(self, resource: Resource) -> None:
        self.add(*resource.key)

    def _fire_delayed(self, key: Key) -> None:
        self._delayed.pop(key, None)
        self.add(*key)

    async def _worker(self, index: int) -> None:
        while True:
            key = await self._queue.get()
            self._queued.discard(key)
            self._processing.add(key)
            try:
                await self._process(key)
            finally:
                self._processing.discard(key)
                if key in self._dirty:
                    self._dirty.discard(key)
                    self.add(*key)
                self._queue.task_done()
                metrics.set_queue_depth(self._queue.qsize())

    async def _process(self, key: Key) -> None:
        namespace, name = key
        try:
            result = await self._reconcile(namespace, name)
        except Exception as exc:
            self._handle_failure(key, exc)
            return
        self._failures.pop(key, None)
        if result.requeue_after:
            self.add_after(namespace, name, result.requeue_after)
        elif result.requeue:
            self.add(namespace, name)

    def _handle_failure(self, key: Key, exc: Exception) -> None:
        namespace, name = key
        failures = self._failures.get(key, 0) + 1
        if failures > self._max_retries:
            self._failures.pop(key, None)
            metrics.increment_queue_drop()
            logger.warning(
                "reconcile_retries_exhausted",
                namespace=namespace,
                toolcall=name,
                failures=failures,
                error=str(exc),
            )
            return
        self._failures[key] = failures
        delay = self.backoff_for(failures)
        metrics.increment_queue_retry(reason=type(exc).__name__)
        logger.warning(
            "reconcile_failed",
            namespace=namespace,
            toolcall=name,
            failures=failures,
            retry_in=delay,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        self.add_after(namespace, name, delay)


__all__ = ["ReconcileQueue", "ReconcileFunc"]
