from __future__ import annotations

import time
import uuid
from typing import Any

from ..core import metrics
from ..core.logging import get_logger
from ..services.capabilities import RemoteCapabilityManager
from ..services.external_api import ExternalAPIClientFactory, FunctionCallSpec
from ..tools.exceptions import (
    DivisionByZeroError,
    RemoteCallError,
    TransientToolError,
    UnknownBuiltinError,
)
from ..tools.registry import BuiltinRegistry, QualifiedToolName, builtin_registry
from . import projection
from .enums import ExecutionKind
from .projection import StatusCommitter
from .state import Secret, Tool, ToolCall
from .store import ResourceStore

logger = get_logger(name=__name__)

DETAIL_EXECUTED = "Tool executed successfully"


class DispatchRouter:
    """Resolves how a Pending tool call executes and commits its terminal outcome.

    Terminal outcomes are committed before returning. Transient failures are
    raised without touching the stored object so the queue retries them.
    """

    def __init__(
        self,
        store: ResourceStore,
        committer: StatusCommitter,
        *,
        external_api: ExternalAPIClientFactory,
        capabilities: RemoteCapabilityManager | None = None,
        builtins: BuiltinRegistry | None = None,
    ) -> None:
        self._store = store
        self._committer = committer
        self._external_api = external_api
        self._capabilities = capabilities
        self._builtins = builtins or builtin_registry

    async def dispatch(
        self,
        toolcall: ToolCall,
        qualified: QualifiedToolName,
        arguments: dict[str, Any],
    ) -> ToolCall:
        if qualified.is_remote and self._capabilities is not None:
            return await self._timed(ExecutionKind.REMOTE.value, self._dispatch_remote(toolcall, qualified, arguments))

        namespace = toolcall.metadata.namespace
        tool_ref = toolcall.spec.tool_ref
        tool = await self._store.get(Tool, namespace, tool_ref)
        if tool is None:
            return await self._fail(
                toolcall,
                projection.DETAIL_TOOL_NOT_FOUND,
                f"tool '{tool_ref}' not found in namespace '{namespace}'",
            )

        kind = tool.execution_kind()
        if kind is ExecutionKind.BUILTIN:
            return await self._timed(kind.value, self._dispatch_builtin(toolcall, tool, arguments))
        if kind is ExecutionKind.EXTERNAL_API:
            return await self._timed(kind.value, self._dispatch_external(toolcall, tool, arguments))
        if kind is ExecutionKind.DELEGATE:
            agent = tool.spec.execute.delegate_to_agent
            return await self._fail(
                toolcall,
                projection.DETAIL_DELEGATION_UNSUPPORTED,
                f"delegation to agent '{agent.name if agent else ''}' is not supported",
            )
        return await self._fail(
            toolcall,
            projection.DETAIL_UNKNOWN_TOOL_TYPE,
            f"tool '{tool_ref}' must declare exactly one execution kind matching its type",
        )

    def builtin_names(self) -> list[str]:
        return self._builtins.list()

    async def _dispatch_remote(
        self,
        toolcall: ToolCall,
        qualified: QualifiedToolName,
        arguments: dict[str, Any],
    ) -> ToolCall:
        assert self._capabilities is not None
        trace_context = toolcall.status.trace_context
        try:
            result = await self._capabilities.call(
                qualified.server,
                qualified.tool,
                arguments,
                namespace=toolcall.metadata.namespace,
                trace_id=trace_context.trace_id if trace_context else None,
            )
        except RemoteCallError as exc:
            return await self._fail(toolcall, projection.DETAIL_REMOTE_FAILED, str(exc))
        return await self._committer.commit(projection.succeed(toolcall, result=result, detail=DETAIL_EXECUTED))

    async def _dispatch_builtin(self, toolcall: ToolCall, tool: Tool, arguments: dict[str, Any]) -> ToolCall:
        builtin = tool.spec.execute.builtin
        assert builtin is not None
        try:
            result = self._builtins.invoke(builtin.name, arguments)
        except UnknownBuiltinError as exc:
            return await self._fail(toolcall, projection.DETAIL_UNKNOWN_BUILTIN, str(exc))
        except DivisionByZeroError as exc:
            return await self._fail(toolcall, projection.DETAIL_DIVISION_BY_ZERO, str(exc))
        return await self._committer.commit(projection.succeed(toolcall, result=result, detail=DETAIL_EXECUTED))

    async def _dispatch_external(self, toolcall: ToolCall, tool: Tool, arguments: dict[str, Any]) -> ToolCall:
        external = tool.spec.execute.external_api
        assert external is not None
        ref = external.credentials
        secret = await self._store.get(Secret, toolcall.metadata.namespace, ref.name)
        if secret is None or ref.key not in secret.data:
            return await self._fail(
                toolcall,
                projection.DETAIL_SECRET_NOT_FOUND,
                f"secret '{ref.name}' with key '{ref.key}' not found",
            )
        api_key = secret.data[ref.key].strip()
        if not api_key:
            return await self._fail(
                toolcall,
                projection.DETAIL_EMPTY_CREDENTIALS,
                f"secret '{ref.name}' key '{ref.key}' is empty",
            )

        tool_name = toolcall.spec.tool_ref
        kwargs = dict(arguments)
        if not kwargs and tool_name == self._external_api.approval_tool_name:
            kwargs = {"message": f"Approval requested for tool call {toolcall.metadata.name}"}

        call_id = str(uuid.uuid4())
        client = self._external_api.resolve_client(tool_name, api_key)
        await client.call(toolcall.metadata.name, call_id, FunctionCallSpec(fn=tool_name, kwargs=kwargs))
        return await self._committer.commit(
            projection.succeed(toolcall, result=None, detail=f"External API call {call_id} submitted")
        )

    async def _fail(self, toolcall: ToolCall, detail: str, error: str) -> ToolCall:
        logger.warning("toolcall_dispatch_failed", detail=detail, error=error)
        return await self._committer.commit(projection.fail(toolcall, detail=detail, error=error))

    async def _timed(self, kind: str, operation) -> ToolCall:
        start = time.perf_counter()
        outcome = "failed"
        try:
            committed = await operation
            outcome = committed.status.phase.value.lower()
            return committed
        except TransientToolError:
            outcome = "retry"
            raise
        finally:
            metrics.observe_dispatch(kind=kind, outcome=outcome, latency=time.perf_counter() - start)


__all__ = ["DispatchRouter"]
