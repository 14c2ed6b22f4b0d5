from __future__ import annotations

import asyncio
from typing import Any, Callable

import httpx

from ..core.config import CapabilityServerSettings
from ..core.logging import get_logger
from ..orchestration.state import MCPServer
from ..orchestration.store import ResourceStore
from ..tools.exceptions import BindingNotFoundError, RemoteCallError, RemoteCallTimeoutError
from .mcp_client import (
    CapabilityClientConfig,
    CapabilityResponseError,
    CapabilityServerClient,
    CircuitOpenError,
    is_retryable_status,
)

logger = get_logger(name=__name__)

ClientFactory = Callable[[CapabilityClientConfig], CapabilityServerClient]


class RemoteCapabilityManager:
    """Routes qualified tool invocations to the capability server bound by name.

    One client is kept per (namespace, server, url); a binding whose url
    changes gets a fresh client and the stale one is closed.
    """

    def __init__(
        self,
        store: ResourceStore,
        settings: CapabilityServerSettings,
        *,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._client_factory = client_factory or CapabilityServerClient
        self._clients: dict[tuple[str, str], tuple[str, CapabilityServerClient]] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, store: ResourceStore, settings: CapabilityServerSettings) -> "RemoteCapabilityManager":
        return cls(store, settings)

    async def call(
        self,
        server: str,
        tool: str,
        arguments: dict[str, Any],
        *,
        namespace: str,
        trace_id: str | None = None,
    ) -> str:
        binding = await self._store.get(MCPServer, namespace, server)
        if binding is None:
            raise BindingNotFoundError(f"capability server '{server}' is not registered in '{namespace}'")
        if not binding.spec.url:
            raise RemoteCallError(f"capability server '{server}' has no url")
        client = await self._client_for(namespace, server, binding.spec.url)
        try:
            return await client.invoke_tool(tool, arguments, trace_id=trace_id)
        except (CircuitOpenError, httpx.TimeoutException, httpx.TransportError) as exc:
            logger.warning("capability_call_unavailable", server=server, tool=tool, error=str(exc))
            raise RemoteCallTimeoutError(f"capability server '{server}' unavailable: {exc}") from exc
        except CapabilityResponseError as exc:
            if exc.status_code is not None and is_retryable_status(exc.status_code):
                logger.warning(
                    "capability_call_unavailable", server=server, tool=tool, status=exc.status_code, error=str(exc)
                )
                raise RemoteCallTimeoutError(f"capability server '{server}' unavailable: {exc}") from exc
            raise RemoteCallError(str(exc)) from exc
        except httpx.HTTPError as exc:
            raise RemoteCallError(f"capability server '{server}' request failed: {exc}") from exc

    async def aclose(self) -> None:
        async with self._lock:
            clients = [client for _, client in self._clients.values()]
            self._clients.clear()
        for client in clients:
            await client.aclose()

    def diagnostics(self) -> dict[str, Any]:
        return {
            f"{namespace}/{server}": client.diagnostics()
            for (namespace, server), (_, client) in sorted(self._clients.items())
        }

    async def _client_for(self, namespace: str, server: str, url: str) -> CapabilityServerClient:
        stale: CapabilityServerClient | None = None
        async with self._lock:
            cached = self._clients.get((namespace, server))
            if cached is not None and cached[0] == url:
                return cached[1]
            if cached is not None:
                stale = cached[1]
            client = self._client_factory(self._build_config(url))
            self._clients[(namespace, server)] = (url, client)
        if stale is not None:
            await stale.aclose()
        logger.info("capability_client_created", server=server, namespace=namespace, url=url)
        return client

    def _build_config(self, url: str) -> CapabilityClientConfig:
        settings = self._settings
        return CapabilityClientConfig(
            base_url=url,
            timeout_seconds=settings.timeout_seconds,
            max_retries=settings.max_retries,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            retry_jitter_seconds=settings.retry_jitter_seconds,
            verify_ssl=settings.verify_ssl,
            default_headers=dict(settings.extra_headers),
            circuit_breaker_threshold=settings.circuit_breaker_threshold,
            circuit_breaker_reset_seconds=settings.circuit_breaker_reset_seconds,
            invoke_path_template=settings.invoke_path_template,
        )


__all__ = ["ClientFactory", "RemoteCapabilityManager"]
