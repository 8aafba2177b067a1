"""Device liveness probing."""

import logging
from typing import Optional

from .config_manager import ProxyConfig
from .utils import check_port_open


logger = logging.getLogger(__name__)


class DeviceMonitor:
    """Answers whether the backend device accepts TCP connections."""

    def __init__(self, config: ProxyConfig):
        self.host = config.device_ip
        self.port = config.device_port
        self.probe_timeout = config.probe_timeout

    async def is_reachable(self, timeout: Optional[float] = None) -> bool:
        """Check the device port once; never raises on connection failure.

        ``timeout`` overrides the configured probe timeout for this call.
        """
        if timeout is None:
            timeout = self.probe_timeout
        reachable = await check_port_open(self.host, self.port, timeout=timeout)
        if reachable:
            logger.debug(f"Device {self.host}:{self.port} is reachable")
        else:
            logger.debug(f"Device {self.host}:{self.port} not reachable")
        return reachable
