"""Wake-on-LAN magic packet construction and delivery."""

import asyncio
import logging
import socket
import time
from typing import Iterable, Optional, Sequence, Tuple

from .config_manager import ProxyConfig
from .utils import format_mac_address


logger = logging.getLogger(__name__)

Destination = Tuple[str, int]


def create_magic_packet(mac_bytes: bytes) -> bytes:
    """Create the Wake-on-LAN magic packet for a 6-byte hardware address."""
    if len(mac_bytes) != 6:
        raise ValueError(f"MAC address must be 6 bytes, got {len(mac_bytes)}")

    # Magic packet format:
    # - 6 bytes of 0xFF
    # - MAC address repeated 16 times
    return b'\xff' * 6 + mac_bytes * 16


def send_magic_packet(mac_bytes: bytes, destinations: Iterable[Destination],
                      timeout: float = 2.0) -> Destination:
    """
    Send one magic packet datagram to each destination in order.

    Delivery continues past failed destinations. Returns the first
    destination that accepted the write.

    Raises:
        ValueError: If the MAC address is malformed (before anything is sent)
        OSError: The last transport error, if every destination failed
    """
    magic_packet = create_magic_packet(mac_bytes)
    delivered: Optional[Destination] = None
    last_error: Optional[OSError] = None

    for ip_addr, port in destinations:
        try:
            family = socket.AF_INET6 if ":" in ip_addr else socket.AF_INET
            with socket.socket(family, socket.SOCK_DGRAM) as sock:
                if family == socket.AF_INET:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
                sock.settimeout(timeout)
                sock.sendto(magic_packet, (ip_addr, port))
            logger.debug(f"Sent WoL packet to {ip_addr}:{port}")
            if delivered is None:
                delivered = (ip_addr, port)
        except OSError as e:
            logger.warning(f"Could not send WoL packet to {ip_addr}:{port}. Error: {e}")
            last_error = e

    if delivered is not None:
        return delivered
    if last_error is None:
        raise ValueError("No Wake-on-LAN destinations given")
    raise last_error


class WoLSender:
    """Sends magic packets for the configured device."""

    def __init__(self, config: ProxyConfig,
                 destinations: Optional[Sequence[Destination]] = None):
        self.mac_bytes = config.mac_address
        self.destinations = list(destinations or config.wake_destinations)
        self.send_timeout = config.wol_send_timeout

        self.stats = {
            "wake_attempts": 0,
            "failed_sends": 0,
            "last_wake_time": None
        }

    async def send_wol_packet(self) -> bool:
        """Send a magic packet to every destination; best effort.

        Returns True if at least one destination accepted the datagram.
        Failures are logged, never raised.
        """
        loop = asyncio.get_running_loop()
        mac_str = format_mac_address(self.mac_bytes)

        self.stats["wake_attempts"] += 1
        self.stats["last_wake_time"] = time.time()

        try:
            await loop.run_in_executor(
                None, send_magic_packet, self.mac_bytes, self.destinations, self.send_timeout
            )
        except (OSError, ValueError) as e:
            self.stats["failed_sends"] += 1
            logger.error(f"Failed to send Wake-on-LAN packet for MAC {mac_str}: {e}")
            return False

        targets = ", ".join(f"{ip}:{port}" for ip, port in self.destinations)
        logger.info(f"Magic packet sent for MAC {mac_str} ({targets})")
        return True

    def get_packet_info(self) -> dict:
        """Get information about the WoL packet configuration."""
        return {
            "mac_address": format_mac_address(self.mac_bytes),
            "destinations": [f"{ip}:{port}" for ip, port in self.destinations],
            "packet_size": len(create_magic_packet(self.mac_bytes)),
            "send_timeout": self.send_timeout
        }
