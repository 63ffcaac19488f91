"""Named registry of sync clients built once at startup."""

from __future__ import annotations

import httpx
import structlog

from deltasync.config import AppConfig, SyncOptions
from deltasync.sync.client import SyncClient
from deltasync.sync.retry import RetryPolicy

log = structlog.get_logger(__name__)


class ClientRegistry:
    """Holds one :class:`SyncClient` per configured name.

    Entering the registry opens every client; leaving it closes them.
    """

    def __init__(self, *, _transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = _transport
        self._clients: dict[str, SyncClient] = {}

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> ClientRegistry:
        registry = cls(_transport=_transport)
        for name, options in config.clients.items():
            registry.register(name, options)
        return registry

    def register(
        self,
        name: str,
        options: SyncOptions,
        *,
        retry_policy: RetryPolicy | None = None,
    ) -> SyncClient:
        if not name or not name.strip():
            msg = "Client name must be a non-empty string"
            raise ValueError(msg)
        if name in self._clients:
            msg = f"A sync client named '{name}' is already registered"
            raise ValueError(msg)
        client = SyncClient(options, retry_policy=retry_policy, name=name, _transport=self._transport)
        self._clients[name] = client
        log.debug("sync_client_registered", client=name, api_mode=options.api_mode.value)
        return client

    def get(self, name: str) -> SyncClient:
        if not name or not name.strip():
            msg = "Client name must be a non-empty string"
            raise ValueError(msg)
        try:
            return self._clients[name]
        except KeyError:
            msg = (
                f"No sync client registered with name '{name}'. "
                f"Add a [clients.{name}] table to the configuration."
            )
            raise KeyError(msg) from None

    def names(self) -> list[str]:
        return sorted(self._clients)

    def __contains__(self, name: object) -> bool:
        return name in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    async def __aenter__(self) -> ClientRegistry:
        for client in self._clients.values():
            await client.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
