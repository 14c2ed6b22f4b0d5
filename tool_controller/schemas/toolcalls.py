from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pydantic import Field

from ..orchestration.state import ObjectMeta, ToolCall, ToolCallEvent, ToolCallSpec, WireModel


class ToolCallCreateRequest(WireModel):
    name: str = Field(min_length=1)
    namespace: str | None = Field(default=None, min_length=1)
    labels: dict[str, str] = Field(default_factory=dict)
    tool_ref: str = Field(min_length=1)
    task_run_ref: str = ""
    arguments: str | dict[str, Any] = ""

    def to_domain(self, default_namespace: str) -> ToolCall:
        arguments = self.arguments if isinstance(self.arguments, str) else json.dumps(self.arguments)
        return ToolCall(
            metadata=ObjectMeta(
                name=self.name,
                namespace=self.namespace or default_namespace,
                labels=dict(self.labels),
            ),
            spec=ToolCallSpec(tool_ref=self.tool_ref, task_run_ref=self.task_run_ref, arguments=arguments),
        )


class ToolCallEventModel(WireModel):
    type: str
    reason: str
    message: str
    timestamp: datetime

    @classmethod
    def from_domain(cls, event: ToolCallEvent) -> "ToolCallEventModel":
        return cls(type=event.type.value, reason=event.reason, message=event.message, timestamp=event.timestamp)


def dump_toolcall(toolcall: ToolCall) -> dict[str, Any]:
    return toolcall.model_dump(mode="json", by_alias=True)
