"""Phase transition table for tool calls.

Every status write goes through :func:`transition`, so the set of legal moves
and the phases that short-circuit a reconcile are declared here once.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from ..tools.exceptions import InvalidTransitionError
from .enums import ToolCallPhase, TransitionEvent

Phase = ToolCallPhase
Event = TransitionEvent

TRANSITIONS: Mapping[tuple[ToolCallPhase, TransitionEvent], ToolCallPhase] = MappingProxyType(
    {
        (Phase.UNSET, Event.INITIALIZE): Phase.PENDING,
        (Phase.PENDING, Event.REQUIRE_APPROVAL): Phase.AWAITING_APPROVAL,
        (Phase.PENDING, Event.SUCCEED): Phase.SUCCEEDED,
        (Phase.PENDING, Event.FAIL): Phase.FAILED,
        (Phase.AWAITING_APPROVAL, Event.APPROVE): Phase.SUCCEEDED,
        (Phase.AWAITING_APPROVAL, Event.REJECT): Phase.FAILED,
    }
)

TERMINAL_PHASES = frozenset({Phase.SUCCEEDED, Phase.FAILED})

# Only Pending tool calls may reach the approval gate or an executor.
DISPATCHABLE_PHASES = frozenset({Phase.PENDING})


def transition(phase: ToolCallPhase, event: TransitionEvent) -> ToolCallPhase:
    try:
        return TRANSITIONS[(phase, event)]
    except KeyError:
        raise InvalidTransitionError(
            f"event '{event.value}' is not allowed in phase '{phase.value or 'Unset'}'"
        ) from None


def is_terminal(phase: ToolCallPhase) -> bool:
    return phase in TERMINAL_PHASES


def needs_initialization(phase: ToolCallPhase) -> bool:
    return phase is Phase.UNSET


def permits_dispatch(phase: ToolCallPhase) -> bool:
    return phase in DISPATCHABLE_PHASES


def accepts(phase: ToolCallPhase, event: TransitionEvent) -> bool:
    return (phase, event) in TRANSITIONS


__all__ = [
    "DISPATCHABLE_PHASES",
    "TERMINAL_PHASES",
    "TRANSITIONS",
    "accepts",
    "is_terminal",
    "needs_initialization",
    "permits_dispatch",
    "transition",
]
