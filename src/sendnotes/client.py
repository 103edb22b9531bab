from __future__ import annotations

import logging
from typing import Optional

from .connectivity import ConnectivityMonitor, http_probe
from .gateway import HttpItemGateway, RemoteGateway
from .settings import Settings, get_settings
from .store import LocalStore, get_local_store
from .sync import SyncEngine

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class SyncClient:
    """
    Wires the local store, remote gateway, connectivity monitor and sync
    engine together. Construct one at startup and hand `engine` to the UI.

    Usage:
        async with SyncClient.from_settings() as client:
            item = await client.engine.create_item({"url": "https://example.com"})
    """

    def __init__(
        self,
        store: LocalStore,
        gateway: RemoteGateway,
        monitor: Optional[ConnectivityMonitor] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.gateway = gateway
        self.monitor = monitor or ConnectivityMonitor()
        self.engine = SyncEngine(store, gateway, self.monitor)
        self.monitor.add_listener(self.engine.request_drain)

    # PUBLIC_INTERFACE
    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SyncClient":
        """Build the SQLite (or in-memory) store and HTTP gateway named by settings."""
        settings = settings or get_settings()
        return cls(
            store=get_local_store(settings),
            gateway=HttpItemGateway(settings.remote_url, timeout=settings.remote_timeout),
            settings=settings,
        )

    async def start(self, probe_connectivity: bool = True) -> None:
        """
        Begin reachability polling and resume any queue left by a previous run.
        Must be called from a running event loop.
        """
        if probe_connectivity:
            probe = http_probe(self.settings.remote_url, timeout=self.settings.remote_timeout)
            self.monitor.start(probe, self.settings.probe_interval)
        if self.monitor.is_online():
            self.engine.request_drain()
        logger.info("sync_client_started", extra={"remote_url": self.settings.remote_url})

    async def close(self) -> None:
        await self.monitor.stop()
        await self.gateway.close()
        await self.store.close()

    async def __aenter__(self) -> "SyncClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
