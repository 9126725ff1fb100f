"""
Reachability monitor.

Exposes the current network path status as a boolean plus a bounded
wait-for-connectivity primitive. The path status itself comes from outside:
either pushed in by the platform (`update`) or sampled by `HttpProbeMonitor`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

import httpx

from app.core.log import log_event

logger = logging.getLogger("launchgate.reachability")

WAIT_POLL_INTERVAL_SECONDS = 0.5


class Reachability(Protocol):
    @property
    def is_connected(self) -> bool: ...

    async def wait_for_connection(self, timeout: float = 10.0) -> bool: ...


class ReachabilityMonitor:
    """Holds the last reported path status."""

    def __init__(self, connected: bool = True, poll_interval: float = WAIT_POLL_INTERVAL_SECONDS):
        self._connected = connected
        self._poll_interval = poll_interval

    @property
    def is_connected(self) -> bool:
        return self._connected

    def update(self, connected: bool) -> None:
        """Path update handler."""
        if connected != self._connected:
            log_event(logger, "path_changed", connected=connected)
        self._connected = connected

    async def wait_for_connection(self, timeout: float = 10.0) -> bool:
        """
        Wait up to `timeout` seconds for connectivity.

        Polls at a fixed interval; returns the final observed status once the
        deadline passes.
        """
        if self.is_connected:
            return True

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if self.is_connected:
                return True
            await asyncio.sleep(min(self._poll_interval, max(0.0, deadline - loop.time())))
        return self.is_connected


class HttpProbeMonitor(ReachabilityMonitor):
    """
    Samples connectivity by probing a URL.

    Any HTTP response counts as connected; transport errors and timeouts count
    as disconnected.
    """

    def __init__(
        self,
        probe_url: str,
        *,
        interval: float = 5.0,
        probe_timeout: float = 3.0,
        client: Optional[httpx.AsyncClient] = None,
        connected: bool = True,
    ):
        super().__init__(connected=connected)
        self._probe_url = probe_url
        self._interval = interval
        self._client = client or httpx.AsyncClient(timeout=probe_timeout)
        self._owns_client = client is None
        self._task: Optional[asyncio.Task] = None

    async def probe(self) -> bool:
        try:
            await self._client.head(self._probe_url)
            connected = True
        except httpx.HTTPError as e:
            logger.debug(f"Reachability probe failed: {e!r}")
            connected = False
        self.update(connected)
        return connected

    async def _run(self) -> None:
        while True:
            await self.probe()
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._owns_client:
            await self._client.aclose()
