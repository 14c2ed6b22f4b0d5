from __future__ import annotations

from enum import Enum


class ToolCallPhase(str, Enum):
    UNSET = ""
    PENDING = "Pending"
    AWAITING_APPROVAL = "AwaitingApproval"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class TransitionEvent(str, Enum):
    INITIALIZE = "initialize"
    REQUIRE_APPROVAL = "require_approval"
    SUCCEED = "succeed"
    FAIL = "fail"
    APPROVE = "approve"
    REJECT = "reject"


class EventType(str, Enum):
    NORMAL = "Normal"
    WARNING = "Warning"


class ExecutionKind(str, Enum):
    REMOTE = "remote"
    BUILTIN = "builtin"
    DELEGATE = "delegate"
    EXTERNAL_API = "externalAPI"
    INVALID = "invalid"


__all__ = ["EventType", "ExecutionKind", "ToolCallPhase", "TransitionEvent"]
