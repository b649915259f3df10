"""
Connectivity Monitor.

Single source of truth for "is the remote service reachable". The device is
online only when it has a network interface AND the internet is reachable;
a captive portal counts as offline. Notifications that do not change the
state are ignored, so the sync trigger fires once per offline -> online
transition no matter how often the platform repeats itself.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from ..core.config import settings
from ..core.state import DeviceState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkSignal:
    """Raw network state as reported by the platform."""
    is_connected: bool
    is_internet_reachable: Optional[bool] = None  # None: not determined yet

    @property
    def online(self) -> bool:
        return bool(self.is_connected and self.is_internet_reachable)


class HttpReachabilityProbe:
    """Explicit reachability check against an endpoint that answers 204.

    No response at all means no usable network. Any other answer (typically
    a captive portal login page) means connected but not reachable.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or settings.CONNECTIVITY_PROBE_URL
        self.timeout = timeout or settings.CONNECTIVITY_PROBE_TIMEOUT
        self.transport = transport

    async def fetch(self) -> NetworkSignal:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport, follow_redirects=False
            ) as client:
                resp = await client.get(self.url)
        except httpx.TransportError as exc:
            logger.debug("Reachability probe failed: %s", exc)
            return NetworkSignal(is_connected=False, is_internet_reachable=False)
        return NetworkSignal(is_connected=True, is_internet_reachable=resp.status_code == 204)


class ConnectivityMonitor:
    def __init__(
        self,
        state: DeviceState,
        on_online: Callable[[], object],
        probe: Optional[HttpReachabilityProbe] = None,
        poll_interval: Optional[float] = None,
    ):
        self.state = state
        self.on_online = on_online
        self.probe = probe
        self.poll_interval = settings.CONNECTIVITY_POLL_INTERVAL if poll_interval is None else poll_interval
        self._online: Optional[bool] = None  # Unknown until the first signal
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def is_online(self) -> bool:
        return bool(self._online)

    def handle_signal(self, signal: NetworkSignal) -> bool:
        """Apply a platform notification. Returns True when it changed the state."""
        online = signal.online
        if online == self._online:
            logger.debug("Ignoring repeated %s notification", "online" if online else "offline")
            return False

        self._online = online
        self.state.set_online(online)
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        if online:
            self.on_online()
        return True

    async def poll(self) -> Optional[NetworkSignal]:
        """Query the probe once and feed the result through ``handle_signal``."""
        if self.probe is None:
            return None
        signal = await self.probe.fetch()
        self.handle_signal(signal)
        return signal

    async def start(self) -> None:
        """Initial explicit poll, then optional periodic polling."""
        await self.poll()
        if self.probe is not None and self.poll_interval > 0:
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.poll()
            except Exception:
                logger.exception("Connectivity poll failed")
