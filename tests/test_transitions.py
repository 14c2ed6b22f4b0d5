from __future__ import annotations

import pytest

from tool_controller.orchestration import projection
from tool_controller.orchestration.enums import EventType, ToolCallPhase, TransitionEvent
from tool_controller.orchestration.state import TraceContext
from tool_controller.orchestration.transitions import (
    TRANSITIONS,
    accepts,
    is_terminal,
    needs_initialization,
    permits_dispatch,
    transition,
)
from tool_controller.tools.exceptions import InvalidTransitionError
from tests.helpers.stubs import make_toolcall


def test_forward_transitions_follow_table() -> None:
    assert transition(ToolCallPhase.UNSET, TransitionEvent.INITIALIZE) is ToolCallPhase.PENDING
    assert transition(ToolCallPhase.PENDING, TransitionEvent.REQUIRE_APPROVAL) is ToolCallPhase.AWAITING_APPROVAL
    assert transition(ToolCallPhase.PENDING, TransitionEvent.SUCCEED) is ToolCallPhase.SUCCEEDED
    assert transition(ToolCallPhase.PENDING, TransitionEvent.FAIL) is ToolCallPhase.FAILED
    assert transition(ToolCallPhase.AWAITING_APPROVAL, TransitionEvent.APPROVE) is ToolCallPhase.SUCCEEDED
    assert transition(ToolCallPhase.AWAITING_APPROVAL, TransitionEvent.REJECT) is ToolCallPhase.FAILED


@pytest.mark.parametrize("phase", [ToolCallPhase.SUCCEEDED, ToolCallPhase.FAILED])
def test_terminal_phases_accept_no_event(phase: ToolCallPhase) -> None:
    assert is_terminal(phase)
    for event in TransitionEvent:
        assert not accepts(phase, event)
        with pytest.raises(InvalidTransitionError):
            transition(phase, event)


def test_illegal_moves_are_rejected() -> None:
    with pytest.raises(InvalidTransitionError):
        transition(ToolCallPhase.UNSET, TransitionEvent.SUCCEED)
    with pytest.raises(InvalidTransitionError):
        transition(ToolCallPhase.PENDING, TransitionEvent.INITIALIZE)
    with pytest.raises(InvalidTransitionError):
        transition(ToolCallPhase.AWAITING_APPROVAL, TransitionEvent.SUCCEED)


def test_table_is_read_only() -> None:
    with pytest.raises(TypeError):
        TRANSITIONS[(ToolCallPhase.FAILED, TransitionEvent.APPROVE)] = ToolCallPhase.SUCCEEDED  # type: ignore[index]


def test_guard_predicates() -> None:
    assert needs_initialization(ToolCallPhase.UNSET)
    assert not needs_initialization(ToolCallPhase.PENDING)
    assert permits_dispatch(ToolCallPhase.PENDING)
    assert not permits_dispatch(ToolCallPhase.AWAITING_APPROVAL)
    assert not permits_dispatch(ToolCallPhase.SUCCEEDED)


def test_initialize_projection_keeps_existing_trace_context() -> None:
    toolcall = make_toolcall()
    original = TraceContext(trace_id="a" * 32, span_id="b" * 16)
    toolcall.status.trace_context = original

    change = projection.initialize(toolcall, TraceContext(trace_id="c" * 32, span_id="d" * 16))

    status = change.toolcall.status
    assert status.phase is ToolCallPhase.PENDING
    assert status.status_text == "Pending"
    assert status.status_detail == "ready for execution"
    assert status.start_time is not None
    assert status.completion_time is None
    assert status.trace_context == original
    assert change.notification is None
    # The input object is never mutated.
    assert toolcall.status.phase is ToolCallPhase.UNSET


def test_fail_projection_sets_error_and_warning() -> None:
    pending = projection.initialize(make_toolcall(), None).toolcall

    change = projection.fail(pending, detail="division by zero", error="division by zero")

    status = change.toolcall.status
    assert status.phase is ToolCallPhase.FAILED
    assert status.status_text == "Error"
    assert status.error == "division by zero"
    assert status.completion_time is not None
    assert change.source is ToolCallPhase.PENDING
    assert change.notification is not None
    assert change.notification.type is EventType.WARNING
    assert change.notification.reason == "ExecutionFailed"


def test_reject_projection_records_rejected_result() -> None:
    pending = projection.initialize(make_toolcall(), None).toolcall
    waiting = projection.await_approval(pending, "slack-ops").toolcall

    change = projection.reject(waiting)

    status = change.toolcall.status
    assert status.phase is ToolCallPhase.FAILED
    assert status.result == "Rejected"
    assert status.error == "Rejected by human"
    assert status.status_detail == "execution rejected"
    assert change.notification is not None
    assert change.notification.reason == "HumanRejected"
