from __future__ import annotations

from opentelemetry.trace import format_span_id, format_trace_id

from tool_controller.core.config import TracingSettings
from tool_controller.orchestration.state import TraceContext
from tool_controller.orchestration.tracing import CLOSING_ATTRIBUTE, TraceContinuityManager, remote_parent_context
from tests.helpers.stubs import build_tracing


def test_open_span_returns_hex_ids() -> None:
    tracing, exporter = build_tracing()

    context = tracing.open_span("ToolCall", attributes={"toolcall.name": "call-1"})

    assert context is not None
    assert len(context.trace_id) == 32
    assert len(context.span_id) == 16
    int(context.trace_id, 16)
    finished = exporter.get_finished_spans()
    assert len(finished) == 1
    assert format_trace_id(finished[0].context.trace_id) == context.trace_id


def test_child_and_closing_spans_share_persisted_trace() -> None:
    tracing, exporter = build_tracing()
    root = tracing.open_span("ToolCall")
    assert root is not None

    with tracing.child_span(root, "dispatch") as span:
        assert span is not None
    tracing.close_span(root, "ToolCall", attributes={"toolcall.phase": "Succeeded"})

    spans = {span.name: span for span in exporter.get_finished_spans() if span.parent is not None}
    dispatch = spans["dispatch"]
    closing = [span for span in exporter.get_finished_spans() if span.attributes.get(CLOSING_ATTRIBUTE)]
    assert format_trace_id(dispatch.context.trace_id) == root.trace_id
    assert format_span_id(dispatch.parent.span_id) == root.span_id
    assert len(closing) == 1
    assert format_trace_id(closing[0].context.trace_id) == root.trace_id
    assert closing[0].attributes["toolcall.phase"] == "Succeeded"


def test_continuity_survives_a_new_manager() -> None:
    first, _ = build_tracing()
    root = first.open_span("ToolCall")
    assert root is not None
    restored = TraceContext.model_validate(root.model_dump(by_alias=True))

    second, exporter = build_tracing()
    second.close_span(restored, "ToolCall")

    [closing] = exporter.get_finished_spans()
    assert format_trace_id(closing.context.trace_id) == root.trace_id
    assert format_span_id(closing.parent.span_id) == root.span_id


def test_invalid_or_missing_context_is_a_no_op() -> None:
    tracing, exporter = build_tracing()
    bogus = TraceContext(trace_id="not-hex", span_id="zz")
    zero = TraceContext(trace_id="0" * 32, span_id="0" * 16)

    assert remote_parent_context(None) is None
    assert remote_parent_context(bogus) is None
    assert remote_parent_context(zero) is None
    with tracing.child_span(bogus, "dispatch") as span:
        assert span is None
    tracing.close_span(None, "ToolCall")
    assert exporter.get_finished_spans() == ()


def test_disabled_tracing_still_issues_ids() -> None:
    tracing = TraceContinuityManager.from_settings(TracingSettings(enabled=False))
    try:
        context = tracing.open_span("ToolCall")
        assert context is not None
        assert int(context.trace_id, 16) != 0
    finally:
        tracing.shutdown()
