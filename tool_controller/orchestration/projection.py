from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..core import metrics
from ..core.logging import get_logger
from ..services.events import EventRecorder
from .enums import EventType, ToolCallPhase, TransitionEvent
from .state import ToolCall, TraceContext, utcnow
from .store import ResourceStore
from .tracing import TraceContinuityManager
from .transitions import is_terminal, transition

logger = get_logger(name=__name__)

STATUS_PENDING = "Pending"
STATUS_AWAITING_APPROVAL = "AwaitingHumanApproval"
STATUS_READY = "Ready"
STATUS_ERROR = "Error"

DETAIL_READY = "ready for execution"
DETAIL_INVALID_ARGUMENTS = "invalid arguments"
DETAIL_TOOL_NOT_FOUND = "tool definition not found"
DETAIL_UNKNOWN_TOOL_TYPE = "unknown tool type"
DETAIL_DELEGATION_UNSUPPORTED = "delegation not supported"
DETAIL_UNKNOWN_BUILTIN = "unknown builtin function"
DETAIL_DIVISION_BY_ZERO = "division by zero"
DETAIL_SECRET_NOT_FOUND = "credentials secret not found"
DETAIL_EMPTY_CREDENTIALS = "empty credentials"
DETAIL_REMOTE_FAILED = "remote tool call failed"
DETAIL_EXECUTION_REJECTED = "execution rejected"

REASON_AWAITING_APPROVAL = "AwaitingHumanApproval"
REASON_SUCCEEDED = "ExecutionSucceeded"
REASON_FAILED = "ExecutionFailed"
REASON_APPROVED = "HumanApproved"
REASON_REJECTED = "HumanRejected"

RESULT_APPROVED = "Approved"
RESULT_REJECTED = "Rejected"

ROOT_SPAN_NAME = "ToolCall"


@dataclass(slots=True)
class Notification:
    type: EventType
    reason: str
    message: str


@dataclass(slots=True)
class Projection:
    """A status change computed from an outcome, not yet committed."""

    toolcall: ToolCall
    source: ToolCallPhase
    notification: Notification | None = None

    @property
    def target(self) -> ToolCallPhase:
        return self.toolcall.status.phase


def _advance(toolcall: ToolCall, event: TransitionEvent) -> tuple[ToolCall, ToolCallPhase]:
    source = toolcall.status.phase
    target = transition(source, event)
    updated = toolcall.model_copy(deep=True)
    updated.status.phase = target
    return updated, source


def initialize(toolcall: ToolCall, trace_context: TraceContext | None, *, now: datetime | None = None) -> Projection:
    updated, source = _advance(toolcall, TransitionEvent.INITIALIZE)
    status = updated.status
    status.status_text = STATUS_PENDING
    status.status_detail = DETAIL_READY
    status.start_time = now or utcnow()
    if status.trace_context is None:
        status.trace_context = trace_context
    return Projection(updated, source)


def await_approval(toolcall: ToolCall, channel: str) -> Projection:
    updated, source = _advance(toolcall, TransitionEvent.REQUIRE_APPROVAL)
    detail = f"Waiting for human approval via contact channel {channel}"
    updated.status.status_text = STATUS_AWAITING_APPROVAL
    updated.status.status_detail = detail
    return Projection(updated, source, Notification(EventType.NORMAL, REASON_AWAITING_APPROVAL, detail))


def succeed(
    toolcall: ToolCall,
    *,
    result: str | None,
    detail: str,
    now: datetime | None = None,
) -> Projection:
    updated, source = _advance(toolcall, TransitionEvent.SUCCEED)
    status = updated.status
    status.status_text = STATUS_READY
    status.status_detail = detail
    status.result = result
    status.error = None
    status.completion_time = now or utcnow()
    return Projection(updated, source, Notification(EventType.NORMAL, REASON_SUCCEEDED, detail))


def fail(toolcall: ToolCall, *, detail: str, error: str, now: datetime | None = None) -> Projection:
    updated, source = _advance(toolcall, TransitionEvent.FAIL)
    status = updated.status
    status.status_text = STATUS_ERROR
    status.status_detail = detail
    status.error = error
    status.completion_time = now or utcnow()
    return Projection(updated, source, Notification(EventType.WARNING, REASON_FAILED, f"{detail}: {error}"))


def approve(toolcall: ToolCall, *, comment: str = "", now: datetime | None = None) -> Projection:
    updated, source = _advance(toolcall, TransitionEvent.APPROVE)
    detail = "Approved by human" + (f": {comment}" if comment else "")
    status = updated.status
    status.status_text = STATUS_READY
    status.status_detail = detail
    status.result = RESULT_APPROVED
    status.error = None
    status.completion_time = now or utcnow()
    return Projection(updated, source, Notification(EventType.NORMAL, REASON_APPROVED, detail))


def reject(toolcall: ToolCall, *, comment: str = "", now: datetime | None = None) -> Projection:
    updated, source = _advance(toolcall, TransitionEvent.REJECT)
    status = updated.status
    status.status_text = STATUS_ERROR
    status.status_detail = DETAIL_EXECUTION_REJECTED
    status.result = RESULT_REJECTED
    status.error = comment or "Rejected by human"
    status.completion_time = now or utcnow()
    message = f"{DETAIL_EXECUTION_REJECTED}: {status.error}"
    return Projection(updated, source, Notification(EventType.WARNING, REASON_REJECTED, message))


class StatusCommitter:
    """Persists a projection, then emits its event and closes the trace if terminal."""

    def __init__(
        self,
        store: ResourceStore,
        events: EventRecorder,
        tracing: TraceContinuityManager | None = None,
    ) -> None:
        self._store = store
        self._events = events
        self._tracing = tracing

    async def commit(self, projection: Projection) -> ToolCall:
        committed = await self._store.update_status(projection.toolcall)
        target = committed.status.phase
        metrics.record_phase_transition(source=projection.source.value, target=target.value)
        logger.info(
            "toolcall_phase_committed",
            source=projection.source.value or "Unset",
            phase=target.value,
            detail=committed.status.status_detail,
            resource_version=committed.metadata.resource_version,
        )
        notification = projection.notification
        if notification is not None:
            await self._events.emit(committed, notification.type, notification.reason, notification.message)
        if is_terminal(target) and self._tracing is not None:
            self._tracing.close_span(
                committed.status.trace_context,
                ROOT_SPAN_NAME,
                attributes={
                    "toolcall.name": committed.metadata.name,
                    "toolcall.namespace": committed.metadata.namespace,
                    "toolcall.phase": target.value,
                },
            )
        return committed


__all__ = [
    "Notification",
    "Projection",
    "StatusCommitter",
    "approve",
    "await_approval",
    "fail",
    "initialize",
    "succeed",
    "reject",
]
