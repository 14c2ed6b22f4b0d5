from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from ..core.config import ExternalAPISettings
from ..core.logging import get_logger
from ..tools.exceptions import ExternalAPIError

logger = get_logger(name=__name__)


@dataclass(slots=True)
class FunctionCallSpec:
    fn: str
    kwargs: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {"fn": self.fn, "kwargs": dict(self.kwargs)}


class ExternalAPIClient:
    """Submits function calls to the external function-call API on behalf of one tool."""

    def __init__(
        self,
        tool_name: str,
        api_key: str,
        settings: ExternalAPISettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._tool_name = tool_name
        self._api_key = api_key
        self._settings = settings
        self._transport = transport

    async def call(self, run_id: str, call_id: str, spec: FunctionCallSpec) -> dict[str, Any]:
        payload = {"run_id": run_id, "call_id": call_id, "spec": spec.to_payload()}
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                base_url=self._settings.base_url.rstrip("/"),
                timeout=self._settings.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post("/function_calls", json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "external_api_call_rejected",
                tool=self._tool_name,
                call_id=call_id,
                status=exc.response.status_code,
            )
            raise ExternalAPIError(
                f"external API rejected call {call_id} with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("external_api_call_failed", tool=self._tool_name, call_id=call_id, error=str(exc))
            raise ExternalAPIError(f"external API call {call_id} failed: {exc}") from exc

        logger.info("external_api_call_submitted", tool=self._tool_name, call_id=call_id, run_id=run_id)
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {"response": body}


class ExternalAPIClientFactory:
    def __init__(
        self,
        settings: ExternalAPISettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    @property
    def approval_tool_name(self) -> str:
        return self._settings.approval_tool_name

    def resolve_client(self, tool_name: str, api_key: str) -> ExternalAPIClient:
        return ExternalAPIClient(tool_name, api_key, self._settings, transport=self._transport)


__all__ = ["ExternalAPIClient", "ExternalAPIClientFactory", "FunctionCallSpec"]
