"""Shared utilities for the Wake-on-LAN HTTP proxy."""

import asyncio
import ipaddress
import logging
import re
from typing import Any, Tuple


logger = logging.getLogger(__name__)

MAC_DELIMITERS = re.compile(r'[:\-.]')


async def check_port_open(host: str, port: int, timeout: float = 1.0) -> bool:
    """
    Check if a TCP port accepts connections on a remote host.

    The connection is closed again as soon as the handshake completes;
    no data is sent.

    Args:
        host: Target hostname or IP address
        port: Target port number
        timeout: Connection timeout in seconds

    Returns:
        True if the handshake completed within the timeout, False otherwise
    """
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout
        )
    except (asyncio.TimeoutError, OSError):
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


def parse_mac_address(mac: str) -> bytes:
    """
    Normalize a MAC address string into its 6 raw bytes.

    Accepts colon, hyphen or dot delimiters, or none at all
    (``AA:BB:CC:DD:EE:FF``, ``AA-BB-CC-DD-EE-FF``, ``AABB.CCDD.EEFF``,
    ``AABBCCDDEEFF``).

    Raises:
        ValueError: If the address is not 12 hex digits once delimiters are removed
    """
    mac_clean = MAC_DELIMITERS.sub('', mac.strip())

    if len(mac_clean) != 12:
        raise ValueError(f"Invalid MAC address length: {mac!r}")

    try:
        return bytes.fromhex(mac_clean)
    except ValueError as e:
        raise ValueError(f"Invalid MAC address format: {mac!r}") from e


def format_mac_address(mac_bytes: bytes) -> str:
    """Format raw MAC bytes as ``AA:BB:CC:DD:EE:FF``."""
    return mac_bytes.hex(':').upper()


def validate_ip_address(ip_str: str) -> bool:
    """
    Validate IP address format.

    Args:
        ip_str: IP address string to validate

    Returns:
        True if valid IP address, False otherwise
    """
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def validate_port(port: Any) -> bool:
    """
    Validate port number.

    Args:
        port: Port number to validate

    Returns:
        True if valid port number, False otherwise
    """
    try:
        port_int = int(port)
        return 1 <= port_int <= 65535
    except (ValueError, TypeError):
        return False


def parse_listen_address(listen_addr: str) -> Tuple[str, int]:
    """
    Split a ``[host]:port`` listen address.

    An empty host means all interfaces. IPv6 hosts may be bracketed
    (``[::1]:8080``).

    Raises:
        ValueError: If there is no port or the port is out of range
    """
    host, sep, port_str = listen_addr.strip().rpartition(':')
    if not sep:
        raise ValueError(f"Listen address must be [host]:port, got {listen_addr!r}")

    if host.startswith('[') and host.endswith(']'):
        host = host[1:-1]

    if not validate_port(port_str):
        raise ValueError(f"Invalid listen port in {listen_addr!r}")

    return host or '0.0.0.0', int(port_str)


def format_host_port(host: str, port: int) -> str:
    """Join host and port into an authority, bracketing IPv6 literals."""
    if ':' in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def format_duration(seconds: float) -> str:
    """
    Format duration in human readable format.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration string (e.g., "1m 30s")
    """
    if seconds < 0:
        return "0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")

    return " ".join(parts)
