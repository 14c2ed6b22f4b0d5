from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

RECONCILE_TOTAL = Counter(
    "tool_controller_reconcile_total",
    "Reconcile invocations grouped by outcome",
    labelnames=("outcome",),
)

RECONCILE_LATENCY_SECONDS = Histogram(
    "tool_controller_reconcile_latency_seconds",
    "Wall-clock duration of one reconcile invocation",
    buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1, 2, 5, 10, 30, float("inf")),
)

PHASE_TRANSITIONS_TOTAL = Counter(
    "tool_controller_phase_transitions_total",
    "Committed tool call phase transitions",
    labelnames=("source", "target"),
)

DISPATCH_TOTAL = Counter(
    "tool_controller_dispatch_total",
    "Executor dispatches grouped by execution kind and outcome",
    labelnames=("kind", "outcome"),
)

DISPATCH_LATENCY_SECONDS = Histogram(
    "tool_controller_dispatch_latency_seconds",
    "Executor latency grouped by execution kind",
    labelnames=("kind",),
)

APPROVAL_DECISIONS_TOTAL = Counter(
    "tool_controller_approval_decisions_total",
    "Inbound approval callbacks grouped by decision and handling outcome",
    labelnames=("decision", "outcome"),
)

QUEUE_DEPTH = Gauge(
    "tool_controller_queue_depth",
    "Keys waiting in the reconcile queue",
)

QUEUE_RETRIES_TOTAL = Counter(
    "tool_controller_queue_retries_total",
    "Keys re-queued after a failed reconcile",
    labelnames=("reason",),
)

QUEUE_DROPS_TOTAL = Counter(
    "tool_controller_queue_drops_total",
    "Keys dropped after exhausting their retry budget",
)

CAPABILITY_REQUEST_TOTAL = Counter(
    "tool_controller_capability_request_total",
    "Capability server HTTP requests by endpoint and outcome",
    labelnames=("method", "endpoint", "outcome"),
)

CAPABILITY_REQUEST_LATENCY_SECONDS = Histogram(
    "tool_controller_capability_request_latency_seconds",
    "Latency for capability server HTTP requests",
    labelnames=("method", "endpoint", "status"),
)

CAPABILITY_RETRIES_TOTAL = Counter(
    "tool_controller_capability_retries_total",
    "Capability server request retries grouped by reason",
    labelnames=("method", "endpoint", "reason"),
)

CAPABILITY_CIRCUIT_OPEN_TOTAL = Counter(
    "tool_controller_capability_circuit_open_total",
    "Requests blocked by an open capability server circuit",
    labelnames=("endpoint",),
)

CAPABILITY_CIRCUIT_TRIP_TOTAL = Counter(
    "tool_controller_capability_circuit_trip_total",
    "Capability server circuit breaker trips",
    labelnames=("endpoint",),
)


def observe_reconcile(*, outcome: str, latency: float) -> None:
    RECONCILE_TOTAL.labels(outcome=outcome).inc()
    RECONCILE_LATENCY_SECONDS.observe(latency)


def record_phase_transition(*, source: str, target: str) -> None:
    PHASE_TRANSITIONS_TOTAL.labels(source=source or "Unset", target=target).inc()


def observe_dispatch(*, kind: str, outcome: str, latency: float) -> None:
    DISPATCH_TOTAL.labels(kind=kind, outcome=outcome).inc()
    DISPATCH_LATENCY_SECONDS.labels(kind=kind).observe(latency)


def record_approval_decision(*, approved: bool | None, outcome: str) -> None:
    if approved is None:
        decision = "missing"
    else:
        decision = "approved" if approved else "rejected"
    APPROVAL_DECISIONS_TOTAL.labels(decision=decision, outcome=outcome).inc()


def set_queue_depth(depth: int) -> None:
    QUEUE_DEPTH.set(max(0, depth))


def increment_queue_retry(*, reason: str) -> None:
    QUEUE_RETRIES_TOTAL.labels(reason=reason).inc()


def increment_queue_drop() -> None:
    QUEUE_DROPS_TOTAL.inc()


def observe_capability_request(
    *, method: str, endpoint: str, status: int | None, success: bool, latency: float
) -> None:
    status_label = str(status) if status is not None else "error"
    outcome = "success" if success else "failure"
    CAPABILITY_REQUEST_TOTAL.labels(method=method.upper(), endpoint=endpoint, outcome=outcome).inc()
    CAPABILITY_REQUEST_LATENCY_SECONDS.labels(
        method=method.upper(), endpoint=endpoint, status=status_label
    ).observe(latency)


def increment_capability_retry(*, method: str, endpoint: str, reason: str) -> None:
    CAPABILITY_RETRIES_TOTAL.labels(method=method.upper(), endpoint=endpoint, reason=reason).inc()


def increment_capability_circuit_open(*, endpoint: str) -> None:
    CAPABILITY_CIRCUIT_OPEN_TOTAL.labels(endpoint=endpoint).inc()


def increment_capability_circuit_trip(*, endpoint: str) -> None:
    CAPABILITY_CIRCUIT_TRIP_TOTAL.labels(endpoint=endpoint).inc()
