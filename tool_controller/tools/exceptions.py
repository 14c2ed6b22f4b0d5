from __future__ import annotations


class ToolCallError(RuntimeError):
    """Base class for tool call lifecycle failures."""


class InvalidTransitionError(ToolCallError):
    """Raised when a phase change is not declared in the transition table."""


class ConflictError(ToolCallError):
    """Raised when a status commit is attempted against a stale resource version."""


class AlreadyExistsError(ToolCallError):
    """Raised when creating a resource whose identity is already taken."""


class ToolCallNotFoundError(ToolCallError):
    """Raised when a tool call addressed by identity or run id does not exist."""


class ApprovalStateError(ToolCallError):
    """Raised when an approval decision arrives for a tool call that is not awaiting one."""


class AmbiguousRunIDError(ApprovalStateError):
    """Raised when an approval run id names tool calls in more than one namespace."""


class MalformedDecisionError(ToolCallError):
    """Raised when an approval decision does not say whether the call was approved."""


class InvalidArgumentsError(ToolCallError):
    """Raised after a tool call was failed because its arguments are not a JSON object."""


class TransientToolError(ToolCallError):
    """Raised for failures that leave the tool call untouched so the runtime retries it."""


class ArgumentCoercionError(TransientToolError):
    """Raised when a builtin argument cannot be read as a number."""


class BindingNotFoundError(TransientToolError):
    """Raised when a remote-qualified tool names a capability server that is not registered."""


class ExternalAPIError(TransientToolError):
    """Raised when the external function-call API rejects or fails a call."""


class RemoteCallTimeoutError(TransientToolError):
    """Raised when a capability server stalls, times out, or has its circuit open."""


class RemoteCallError(ToolCallError):
    """Raised when a capability server reports a failure for a tool invocation."""


class DivisionByZeroError(ToolCallError):
    """Raised by the divide builtin for a zero divisor."""


class UnknownBuiltinError(ToolCallError):
    """Raised when a builtin tool names a function the registry does not provide."""
