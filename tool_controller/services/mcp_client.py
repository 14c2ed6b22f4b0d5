"""HTTP client for remote capability servers.

A capability server exposes tools at ``POST {url}/tools/{tool}/invoke`` and
answers ``{"result": ...}`` or ``{"error": ...}``. The client retries
transport failures and gateway-style status codes, and trips a circuit after
a streak of failures so a dead server is not hammered by every reconcile.
"""

from __future__ import annotations

import asyncio
import json
import random
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..core import metrics
from ..core.logging import get_logger

logger = get_logger(name=__name__)

RETRYABLE_STATUS = frozenset({408, 425, 429})
TRACE_HEADER = "X-Trace-Id"


class CircuitOpenError(RuntimeError):
    """Raised when the capability server circuit breaker is open."""


class CapabilityResponseError(RuntimeError):
    """Raised when a capability server answers but reports or implies a failure."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class CapabilityClientConfig:
    base_url: str
    timeout_seconds: float = 30.0
    max_retries: int = 2
    retry_backoff_seconds: float = 0.5
    retry_jitter_seconds: float = 0.25
    verify_ssl: bool = True
    default_headers: dict[str, str] = field(default_factory=dict)
    circuit_breaker_threshold: int = 5
    circuit_breaker_reset_seconds: float = 30.0
    invoke_path_template: str = "/tools/{tool}/invoke"


@dataclass(slots=True)
class _Circuit:
    threshold: int
    reset_seconds: float
    streak: int = 0
    open_until: float = 0.0

    def admit(self, endpoint: str) -> None:
        now = time.monotonic()
        if self.open_until > now:
            metrics.increment_capability_circuit_open(endpoint=endpoint)
            raise CircuitOpenError(f"circuit open for '{endpoint}', retry in {self.open_until - now:.1f}s")
        if self.open_until:
            # Half-open: the next request decides.
            self.open_until = 0.0
            self.streak = 0

    def succeeded(self) -> None:
        self.streak = 0
        self.open_until = 0.0

    def failed(self, endpoint: str) -> None:
        self.streak += 1
        if self.streak < max(1, self.threshold):
            return
        self.streak = 0
        self.open_until = time.monotonic() + max(0.0, self.reset_seconds)
        metrics.increment_capability_circuit_trip(endpoint=endpoint)
        logger.warning("capability_circuit_tripped", endpoint=endpoint, reset_seconds=self.reset_seconds)

    def snapshot(self) -> dict[str, float | int | bool]:
        remaining = max(0.0, self.open_until - time.monotonic())
        return {"is_open": remaining > 0, "seconds_until_close": remaining, "failure_streak": self.streak}


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS or status_code >= 500


def decode_invoke_response(response: httpx.Response) -> str:
    """Turn an invoke response into the tool result text.

    String results pass through unchanged; any other JSON value is re-encoded.
    """
    if not response.is_success:
        raise CapabilityResponseError(
            f"capability server returned {response.status_code}: {response.text[:200]}",
            status_code=response.status_code,
        )
    try:
        payload = response.json()
    except ValueError as exc:
        raise CapabilityResponseError(
            "capability server returned a non-JSON body", status_code=response.status_code
        ) from exc
    if not isinstance(payload, dict):
        raise CapabilityResponseError("capability server response must be a JSON object")
    if payload.get("error"):
        raise CapabilityResponseError(str(payload["error"]), status_code=response.status_code)
    result = payload.get("result")
    return result if isinstance(result, str) else json.dumps(result)


class CapabilityServerClient:
    """HTTP client for one remote capability server."""

    def __init__(self, config: CapabilityClientConfig, *, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._owns_client = client is None
        self._http = client or httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            timeout=httpx.Timeout(config.timeout_seconds),
            verify=config.verify_ssl,
        )
        self._circuit = _Circuit(config.circuit_breaker_threshold, config.circuit_breaker_reset_seconds)

    @property
    def base_url(self) -> str:
        return self._config.base_url

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def invoke_tool(self, tool: str, arguments: dict[str, Any], *, trace_id: str | None = None) -> str:
        path = self._config.invoke_path_template.format(tool=tool)
        response = await self.request("POST", path, json={"arguments": arguments}, trace_id=trace_id)
        return decode_invoke_response(response)

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        trace_id: str | None = None,
    ) -> httpx.Response:
        """Send one logical request, retrying transport errors and retryable statuses.

        The final response is returned whatever its status; the last transport
        error is re-raised once retries are spent.
        """
        method = method.upper()
        endpoint = path if path.startswith("/") else f"/{path}"
        self._circuit.admit(endpoint)
        headers = dict(self._config.default_headers)
        if trace_id:
            headers.setdefault(TRACE_HEADER, trace_id)

        attempts = max(0, self._config.max_retries) + 1
        for attempt in range(1, attempts + 1):
            last = attempt == attempts
            start = time.perf_counter()
            try:
                response = await self._http.request(method, endpoint, json=json, headers=headers)
            except httpx.RequestError as exc:
                self._record(method, endpoint, None, start)
                self._circuit.failed(endpoint)
                if last:
                    logger.warning("capability_request_failed", endpoint=endpoint, attempt=attempt, error=str(exc))
                    raise
                await self._pause(method, endpoint, attempt, reason="exception")
                continue

            self._record(method, endpoint, response, start)
            if not is_retryable_status(response.status_code):
                self._circuit.succeeded()
                return response
            self._circuit.failed(endpoint)
            if last:
                return response
            await self._pause(method, endpoint, attempt, reason=f"status_{response.status_code}")

        raise AssertionError("unreachable")  # pragma: no cover

    def diagnostics(self) -> dict[str, Any]:
        return {
            "base_url": self._config.base_url,
            "circuit": self._circuit.snapshot(),
            "timeouts": {
                "request_seconds": self._config.timeout_seconds,
                "retry_backoff_seconds": self._config.retry_backoff_seconds,
                "max_retries": self._config.max_retries,
            },
        }

    def _record(self, method: str, endpoint: str, response: httpx.Response | None, start: float) -> None:
        metrics.observe_capability_request(
            method=method,
            endpoint=endpoint,
            status=response.status_code if response is not None else None,
            success=response is not None and response.is_success,
            latency=time.perf_counter() - start,
        )

    async def _pause(self, method: str, endpoint: str, attempt: int, *, reason: str) -> None:
        delay = self._config.retry_backoff_seconds * (2 ** (attempt - 1))
        delay += random.uniform(0.0, max(0.0, self._config.retry_jitter_seconds))
        metrics.increment_capability_retry(method=method, endpoint=endpoint, reason=reason)
        logger.debug("capability_request_retry", endpoint=endpoint, attempt=attempt, reason=reason, retry_in=delay)
        await asyncio.sleep(delay)


__all__ = [
    "CapabilityClientConfig",
    "CapabilityResponseError",
    "CapabilityServerClient",
    "CircuitOpenError",
    "decode_invoke_response",
    "is_retryable_status",
]
