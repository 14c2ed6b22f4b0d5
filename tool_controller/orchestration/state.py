from __future__ import annotations

from datetime import datetime, timezone
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .enums import EventType, ExecutionKind, ToolCallPhase

TOOLCALL_LABEL = "tool-controller/toolcall"

_TOOL_TYPE_KINDS: dict[str, ExecutionKind] = {
    "function": ExecutionKind.BUILTIN,
    "delegateToAgent": ExecutionKind.DELEGATE,
    "externalAPI": ExecutionKind.EXTERNAL_API,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base for persisted models: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class ObjectMeta(WireModel):
    name: str = Field(min_length=1)
    namespace: str = Field("default", min_length=1)
    labels: dict[str, str] = Field(default_factory=dict)
    resource_version: int = Field(0, ge=0)
    creation_timestamp: datetime | None = None


class Resource(WireModel):
    kind: ClassVar[str] = "Resource"

    metadata: ObjectMeta

    @property
    def key(self) -> tuple[str, str]:
        return self.metadata.namespace, self.metadata.name


class TraceContext(WireModel):
    trace_id: str = Field(alias="traceID", min_length=1)
    span_id: str = Field(alias="spanID", min_length=1)


class ToolCallSpec(WireModel):
    tool_ref: str = Field(min_length=1)
    task_run_ref: str = ""
    arguments: str = ""


class ToolCallStatus(WireModel):
    phase: ToolCallPhase = ToolCallPhase.UNSET
    status_text: str = ""
    status_detail: str = ""
    error: str | None = None
    result: str | None = None
    start_time: datetime | None = None
    completion_time: datetime | None = None
    trace_context: TraceContext | None = None


class ToolCall(Resource):
    kind: ClassVar[str] = "ToolCall"

    spec: ToolCallSpec
    status: ToolCallStatus = Field(default_factory=ToolCallStatus)


class SecretKeyRef(WireModel):
    name: str = Field(min_length=1)
    key: str = Field(min_length=1)


class BuiltinFunction(WireModel):
    name: str = Field(min_length=1)


class AgentReference(WireModel):
    name: str = Field(min_length=1)


class ExternalAPIExecution(WireModel):
    credentials: SecretKeyRef


class ToolExecute(WireModel):
    builtin: BuiltinFunction | None = None
    delegate_to_agent: AgentReference | None = None
    external_api: ExternalAPIExecution | None = Field(default=None, alias="externalAPI")


class ToolSpec(WireModel):
    tool_type: str | None = None
    description: str = ""
    execute: ToolExecute = Field(default_factory=ToolExecute)


class Tool(Resource):
    kind: ClassVar[str] = "Tool"

    spec: ToolSpec

    def execution_kind(self) -> ExecutionKind:
        """Return the single configured execution kind, or INVALID."""
        execute = self.spec.execute
        configured = [
            kind
            for kind, value in (
                (ExecutionKind.BUILTIN, execute.builtin),
                (ExecutionKind.DELEGATE, execute.delegate_to_agent),
                (ExecutionKind.EXTERNAL_API, execute.external_api),
            )
            if value is not None
        ]
        if len(configured) != 1:
            return ExecutionKind.INVALID
        tool_type = self.spec.tool_type
        if tool_type:
            declared = _TOOL_TYPE_KINDS.get(tool_type)
            if declared is None or declared is not configured[0]:
                return ExecutionKind.INVALID
        return configured[0]


class MCPServerSpec(WireModel):
    url: str = ""
    approval_contact_channel: str | None = None


class MCPServer(Resource):
    kind: ClassVar[str] = "MCPServer"

    spec: MCPServerSpec = Field(default_factory=MCPServerSpec)


class Secret(Resource):
    kind: ClassVar[str] = "Secret"

    data: dict[str, str] = Field(default_factory=dict)


class TaskRunSpec(WireModel):
    agent_ref: str = ""
    user_message: str = ""


class TaskRun(Resource):
    """Downstream execution record; only its labels matter to the controller."""

    kind: ClassVar[str] = "TaskRun"

    spec: TaskRunSpec = Field(default_factory=TaskRunSpec)


class ToolCallEvent(WireModel):
    type: EventType
    reason: str = Field(min_length=1)
    message: str
    namespace: str
    name: str
    timestamp: datetime = Field(default_factory=utcnow)


__all__ = [
    "AgentReference",
    "BuiltinFunction",
    "ExternalAPIExecution",
    "MCPServer",
    "MCPServerSpec",
    "ObjectMeta",
    "Resource",
    "Secret",
    "SecretKeyRef",
    "TOOLCALL_LABEL",
    "TaskRun",
    "TaskRunSpec",
    "Tool",
    "ToolCall",
    "ToolCallEvent",
    "ToolCallSpec",
    "ToolCallStatus",
    "ToolExecute",
    "ToolSpec",
    "TraceContext",
    "WireModel",
    "utcnow",
]
