from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

import httpx

logger = logging.getLogger(__name__)

Listener = Callable[[], object]
Probe = Callable[[], Awaitable[bool]]


# PUBLIC_INTERFACE
class ConnectivityMonitor:
    """
    Tracks whether the transport is up and announces offline -> online transitions.

    The platform reachability signal is pushed in through `set_online`, or
    pulled by `start(probe, interval)`. `is_online()` is a best-effort,
    non-blocking answer: True does not guarantee the remote store will answer.
    Listeners fire exactly once per offline -> online transition; repeated
    "online" signals while already online are ignored. A probe that raises
    counts as offline, and a failing listener does not stop the others.
    """

    def __init__(self, initially_online: bool = True) -> None:
        self._online = initially_online
        self._listeners: List[Listener] = []
        self._poll_task: Optional[asyncio.Task] = None

    def is_online(self) -> bool:
        return self._online

    def add_listener(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # PUBLIC_INTERFACE
    def set_online(self, online: bool) -> None:
        """Record the latest reachability signal and notify listeners on a transition to online."""
        was_online = self._online
        self._online = online
        if online == was_online:
            return
        logger.info("connectivity_changed", extra={"online": online})
        if online:
            for listener in list(self._listeners):
                try:
                    listener()
                except Exception as e:
                    logger.warning("connectivity_listener_failed", extra={"listener": repr(listener), "error": str(e)})

    # PUBLIC_INTERFACE
    def start(self, probe: Probe, interval: float) -> asyncio.Task:
        """
        Poll `probe` every `interval` seconds and feed the result to `set_online`.
        Must be called from a running event loop. Returns the polling task.
        """
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll(probe, interval))
        return self._poll_task

    async def stop(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _poll(self, probe: Probe, interval: float) -> None:
        while True:
            try:
                online = bool(await probe())
            except Exception as e:
                logger.warning("connectivity_probe_failed", extra={"error": str(e)})
                online = False
            self.set_online(online)
            await asyncio.sleep(interval)


# PUBLIC_INTERFACE
def http_probe(base_url: str, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None) -> Probe:
    """
    Build a probe that GETs the service health endpoint.
    Any transport error or non-2xx answer counts as offline.
    """

    async def _probe() -> bool:
        try:
            if client is not None:
                response = await client.get("/", timeout=timeout)
            else:
                async with httpx.AsyncClient(base_url=base_url, timeout=timeout) as c:
                    response = await c.get("/")
        except (httpx.HTTPError, httpx.InvalidURL):
            return False
        return response.is_success

    return _probe
