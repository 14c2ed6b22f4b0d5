"""Logical trace spans that outlive a single reconcile invocation.

A tool call's root span is opened during initialization and only its ids are
persisted in ``status.trace_context``. Later invocations, possibly in another
process, rebuild a remote parent context from those ids to parent child spans
and to emit the closing span at the terminal transition. No span object is
held between invocations.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Mapping

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.sdk.resources import Resource as OTelResource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.sampling import ALWAYS_OFF, ALWAYS_ON, ParentBased
from opentelemetry.trace import NonRecordingSpan, Span, SpanContext, TraceFlags, format_span_id, format_trace_id

from ..core.config import TracingSettings
from ..core.logging import get_logger
from .state import TraceContext

logger = get_logger(name=__name__)

TRACER_NAME = "tool_controller"
CLOSING_ATTRIBUTE = "tool_controller.span.closing"


class TraceContinuityManager:
    def __init__(self, tracer_provider: TracerProvider | None = None) -> None:
        self._provider = tracer_provider or TracerProvider()
        self._tracer = self._provider.get_tracer(TRACER_NAME)

    @classmethod
    def from_settings(cls, settings: TracingSettings) -> "TraceContinuityManager":
        # Unsampled spans still receive real ids, so continuity tokens exist even with tracing off.
        sampler = ParentBased(ALWAYS_ON) if settings.enabled else ALWAYS_OFF
        provider = TracerProvider(
            resource=OTelResource.create({"service.name": settings.service_name}),
            sampler=sampler,
        )
        if settings.enabled and settings.console_export:
            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        return cls(provider)

    def open_span(self, name: str, *, attributes: Mapping[str, Any] | None = None) -> TraceContext | None:
        """Start the logical root span and return its continuity token."""
        try:
            span = self._tracer.start_span(name, attributes=dict(attributes or {}))
            span_context = span.get_span_context()
            span.end()
        except Exception as exc:  # pragma: no cover - tracing must not block initialization
            logger.warning("trace_open_failed", span=name, error=str(exc))
            return None
        if not span_context.is_valid:
            return None
        return TraceContext(
            trace_id=format_trace_id(span_context.trace_id),
            span_id=format_span_id(span_context.span_id),
        )

    @contextmanager
    def child_span(
        self,
        trace_context: TraceContext | None,
        name: str,
        *,
        attributes: Mapping[str, Any] | None = None,
    ) -> Iterator[Span | None]:
        """Scope a unit of work under the persisted logical span."""
        span = self._start_under(trace_context, name, attributes)
        if span is None:
            yield None
            return
        with trace.use_span(span, end_on_exit=True):
            yield span

    def close_span(
        self,
        trace_context: TraceContext | None,
        name: str,
        *,
        attributes: Mapping[str, Any] | None = None,
    ) -> None:
        """Emit the closing span for a logical root started in another invocation."""
        merged = {CLOSING_ATTRIBUTE: True, **dict(attributes or {})}
        span = self._start_under(trace_context, name, merged)
        if span is None:
            return
        span.end()

    def shutdown(self) -> None:
        self._provider.shutdown()

    def _start_under(
        self,
        trace_context: TraceContext | None,
        name: str,
        attributes: Mapping[str, Any] | None,
    ) -> Span | None:
        parent = remote_parent_context(trace_context)
        if parent is None:
            return None
        try:
            return self._tracer.start_span(name, context=parent, attributes=dict(attributes or {}))
        except Exception as exc:  # pragma: no cover - tracing is best effort
            logger.warning("trace_span_start_failed", span=name, error=str(exc))
            return None


def remote_parent_context(trace_context: TraceContext | None) -> Context | None:
    """Rebuild a sampled remote parent from persisted ids, or None when they are unusable."""
    if trace_context is None:
        return None
    try:
        trace_id = int(trace_context.trace_id, 16)
        span_id = int(trace_context.span_id, 16)
    except ValueError:
        logger.warning(
            "trace_context_invalid",
            trace_id=trace_context.trace_id,
            span_id=trace_context.span_id,
        )
        return None
    span_context = SpanContext(
        trace_id=trace_id,
        span_id=span_id,
        is_remote=True,
        trace_flags=TraceFlags(TraceFlags.SAMPLED),
    )
    if not span_context.is_valid:
        return None
    return trace.set_span_in_context(NonRecordingSpan(span_context))


__all__ = ["CLOSING_ATTRIBUTE", "TraceContinuityManager", "remote_parent_context"]
