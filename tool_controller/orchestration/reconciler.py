from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any

from ..core import metrics
from ..core.logging import bind_toolcall, clear_toolcall, get_logger
from ..tools.exceptions import InvalidArgumentsError, TransientToolError
from ..tools.registry import parse_qualified_tool_name
from . import projection
from .approval import ApprovalGate
from .dispatch import DispatchRouter
from .projection import ROOT_SPAN_NAME, StatusCommitter
from .state import TOOLCALL_LABEL, TaskRun, ToolCall
from .store import ResourceStore
from .tracing import TraceContinuityManager
from .transitions import needs_initialization, permits_dispatch

logger = get_logger(name=__name__)


@dataclass(slots=True, frozen=True)
class ReconcileResult:
    requeue: bool = False
    requeue_after: float | None = None


def parse_arguments(raw: str) -> dict[str, Any]:
    """Decode the argument bundle; anything but a JSON object is rejected."""
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidArgumentsError(str(exc)) from exc
    if not isinstance(value, dict):
        raise InvalidArgumentsError(f"arguments must be a JSON object, got {type(value).__name__}")
    return value


class ToolCallReconciler:
    """Drives one tool call toward a terminal phase per invocation.

    Each step is a guard that may end the invocation: fetch, initialize,
    terminal or duplicate check, approval gate, argument parsing, dispatch.
    Safe to call any number of times for the same key.
    """

    def __init__(
        self,
        store: ResourceStore,
        committer: StatusCommitter,
        tracing: TraceContinuityManager,
        router: DispatchRouter,
        gate: ApprovalGate,
    ) -> None:
        self._store = store
        self._committer = committer
        self._tracing = tracing
        self._router = router
        self._gate = gate

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        bind_toolcall(namespace, name)
        start = time.perf_counter()
        outcome = "error"
        try:
            result, outcome = await self._reconcile(namespace, name)
            return result
        except TransientToolError:
            outcome = "retry"
            raise
        except InvalidArgumentsError:
            outcome = "invalid_arguments"
            raise
        finally:
            metrics.observe_reconcile(outcome=outcome, latency=time.perf_counter() - start)
            clear_toolcall()

    async def _reconcile(self, namespace: str, name: str) -> tuple[ReconcileResult, str]:
        toolcall = await self._store.get(ToolCall, namespace, name)
        if toolcall is None:
            logger.debug("toolcall_not_found")
            return ReconcileResult(), "not_found"

        if needs_initialization(toolcall.status.phase):
            await self._initialize(toolcall)
            return ReconcileResult(requeue=True), "initialized"

        if not permits_dispatch(toolcall.status.phase):
            logger.debug("toolcall_skipped", phase=toolcall.status.phase.value)
            return ReconcileResult(), "skipped"

        if await self._already_dispatched(toolcall):
            logger.info("toolcall_already_dispatched")
            return ReconcileResult(), "duplicate"

        qualified = parse_qualified_tool_name(toolcall.spec.tool_ref)
        suspended = await self._gate.evaluate(toolcall, qualified)
        if suspended is not None:
            return ReconcileResult(), "awaiting_approval"

        try:
            arguments = parse_arguments(toolcall.spec.arguments)
        except InvalidArgumentsError as exc:
            await self._committer.commit(
                projection.fail(toolcall, detail=projection.DETAIL_INVALID_ARGUMENTS, error=str(exc))
            )
            raise

        with self._tracing.child_span(
            toolcall.status.trace_context,
            "dispatch",
            attributes={"toolcall.tool": toolcall.spec.tool_ref, "toolcall.remote": qualified.is_remote},
        ):
            committed = await self._router.dispatch(toolcall, qualified, arguments)
        return ReconcileResult(), committed.status.phase.value.lower()

    async def _initialize(self, toolcall: ToolCall) -> ToolCall:
        trace_context = toolcall.status.trace_context or self._tracing.open_span(
            ROOT_SPAN_NAME,
            attributes={
                "toolcall.name": toolcall.metadata.name,
                "toolcall.namespace": toolcall.metadata.namespace,
                "toolcall.tool": toolcall.spec.tool_ref,
            },
        )
        return await self._committer.commit(projection.initialize(toolcall, trace_context))

    async def _already_dispatched(self, toolcall: ToolCall) -> bool:
        runs = await self._store.list(
            TaskRun,
            namespace=toolcall.metadata.namespace,
            labels={TOOLCALL_LABEL: toolcall.metadata.name},
        )
        return bool(runs)


__all__ = ["ReconcileResult", "ToolCallReconciler", "parse_arguments"]
