"""Wake-and-wait orchestration for the backend device."""

import asyncio
import logging
import time
from enum import Enum
from typing import Optional

from .config_manager import ProxyConfig
from .server_monitor import DeviceMonitor
from .wol_sender import WoLSender


logger = logging.getLogger(__name__)


class WakeState(Enum):
    """Wake coordinator states."""
    CHECKING = "checking"
    WAKING = "waking"
    POLLING = "polling"
    READY = "ready"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class WakeCoordinator:
    """Makes sure the device is up before a request is relayed.

    Each call is independent: nothing is cached between requests and
    concurrent callers simply poll side by side.
    """

    def __init__(self, config: ProxyConfig, wol_sender: WoLSender, monitor: DeviceMonitor):
        self.poll_interval = config.poll_interval
        self.wake_timeout = config.wake_timeout
        # Probes while polling are capped at one poll interval
        self.poll_probe_timeout = min(config.probe_timeout, config.poll_interval)
        self.wol_sender = wol_sender
        self.monitor = monitor

    async def ensure_awake(self, cancelled: Optional[asyncio.Event] = None) -> WakeState:
        """
        Probe the device, waking it and waiting for it if necessary.

        Args:
            cancelled: Set by the caller to abandon the wait. Cancelling the
                calling task has the same effect, except that the
                CancelledError propagates.

        Returns:
            WakeState.READY, WakeState.TIMED_OUT or WakeState.CANCELLED
        """
        if cancelled is None:
            cancelled = asyncio.Event()

        # CHECKING
        if await self.monitor.is_reachable():
            return WakeState.READY

        # WAKING: the outcome of the send never gates polling
        logger.info(f"Device {self.monitor.host} appears down; sending WoL")
        await self.wol_sender.send_wol_packet()

        # POLLING
        start = time.monotonic()
        deadline = start + self.wake_timeout
        probes = 0

        try:
            while True:
                if cancelled.is_set():
                    logger.info("Request cancelled while waiting for device")
                    return WakeState.CANCELLED

                probes += 1
                if await self.monitor.is_reachable(timeout=self.poll_probe_timeout):
                    logger.info(f"Device came online after {time.monotonic() - start:.1f}s ({probes} probes)")
                    return WakeState.READY

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning(f"Timeout waiting for device to come up after {self.wake_timeout:g}s")
                    return WakeState.TIMED_OUT

                try:
                    await asyncio.wait_for(cancelled.wait(), timeout=min(self.poll_interval, remaining))
                except asyncio.TimeoutError:
                    continue
        except asyncio.CancelledError:
            logger.info("Request cancelled while waiting for device")
            raise
