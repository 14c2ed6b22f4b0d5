from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from .core.config import Settings
from .core.logging import get_logger
from .orchestration.approval import ApprovalCallbackHandler, ApprovalGate
from .orchestration.dispatch import DispatchRouter
from .orchestration.projection import StatusCommitter
from .orchestration.reconciler import ToolCallReconciler
from .orchestration.store import InMemoryResourceStore, ResourceStore
from .orchestration.tracing import TraceContinuityManager
from .queue.manager import ReconcileQueue
from .services.capabilities import RemoteCapabilityManager
from .services.events import EventRecorder, log_event
from .services.external_api import ExternalAPIClientFactory

logger = get_logger(name=__name__)


class ToolController:
    """Wires the reconcile loop and its collaborators for one process."""

    def __init__(
        self,
        settings: Settings,
        *,
        store: ResourceStore | None = None,
        tracing: TraceContinuityManager | None = None,
        capabilities: RemoteCapabilityManager | None = None,
        external_api: ExternalAPIClientFactory | None = None,
    ) -> None:
        self.settings = settings
        self.store = store or InMemoryResourceStore()
        self.events = EventRecorder(self.store)
        self.events.subscribe(log_event)
        self.tracing = tracing or TraceContinuityManager.from_settings(settings.tracing)
        if capabilities is None and settings.capabilities.enabled:
            capabilities = RemoteCapabilityManager.from_settings(self.store, settings.capabilities)
        self.capabilities = capabilities
        self.external_api = external_api or ExternalAPIClientFactory(settings.external_api)

        self.committer = StatusCommitter(self.store, self.events, self.tracing)
        self.gate = ApprovalGate(self.store, self.committer)
        self.router = DispatchRouter(
            self.store,
            self.committer,
            external_api=self.external_api,
            capabilities=self.capabilities,
        )
        self.reconciler = ToolCallReconciler(self.store, self.committer, self.tracing, self.router, self.gate)
        self.approvals = ApprovalCallbackHandler(self.store, self.committer, settings.approvals)
        self.queue = ReconcileQueue.from_settings(self.reconciler.reconcile, self.store, settings.controller)

    def diagnostics(self) -> dict[str, Any]:
        return {
            "queue": {"running": self.queue.running, "depth": self.queue.depth()},
            "builtins": self.router.builtin_names(),
            "capabilities": self.capabilities.diagnostics() if self.capabilities is not None else None,
        }

    @asynccontextmanager
    async def lifecycle(self) -> AsyncIterator["ToolController"]:
        await self.start()
        try:
            yield self
        finally:
            await self.stop()

    async def start(self) -> None:
        await self.queue.start()
        logger.info("tool_controller_started", environment=self.settings.environment)

    async def stop(self) -> None:
        await self.queue.stop()
        if self.capabilities is not None:
            await self.capabilities.aclose()
        self.tracing.shutdown()
        logger.info("tool_controller_stopped")


__all__ = ["ToolController"]
