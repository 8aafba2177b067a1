"""Streaming HTTP relay to the backend device."""

import asyncio
import logging
from typing import Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout, hdrs, web
from multidict import CIMultiDict
from yarl import URL

from .config_manager import ProxyConfig
from .utils import format_host_port


logger = logging.getLogger(__name__)

# Framing headers each leg of the connection generates for itself
HOP_BY_HOP_HEADERS = frozenset(h.lower() for h in (
    "Connection", "Keep-Alive", "Proxy-Connection", "Transfer-Encoding",
    "TE", "Trailer", "Upgrade",
))

# No overall deadline once relaying starts; responses may stream indefinitely
RELAY_TIMEOUT = ClientTimeout(total=None, sock_connect=10)

CHUNK_SIZE = 64 * 1024


class BackendUnavailableError(Exception):
    """Raised when the backend cannot be reached before a response starts."""


def copy_headers(source, skip=()) -> CIMultiDict:
    """Copy headers in order, keeping repeated names, minus hop-by-hop ones."""
    skipped = HOP_BY_HOP_HEADERS | {name.lower() for name in skip}
    headers = CIMultiDict()
    for name, value in source.items():
        if name.lower() not in skipped:
            headers.add(name, value)
    return headers


class Relay:
    """Forwards inbound requests to the device and streams responses back."""

    def __init__(self, config: ProxyConfig, session: Optional[ClientSession] = None):
        self.authority = format_host_port(config.device_ip, config.device_port)
        self.base_url = config.backend_url
        self._session = session
        self._owns_session = session is None

    async def start(self) -> None:
        """Open the shared client session."""
        if self._session is None:
            self._session = ClientSession(
                timeout=RELAY_TIMEOUT,
                auto_decompress=False,
                skip_auto_headers=(hdrs.USER_AGENT, hdrs.ACCEPT_ENCODING),
            )

    async def close(self) -> None:
        """Close the client session if this relay opened it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    def build_target_url(self, request: web.Request) -> URL:
        """Backend URL with the inbound path and query left untouched."""
        return URL(self.base_url + request.raw_path, encoded=True)

    async def forward(self, request: web.Request) -> web.StreamResponse:
        """
        Relay one request to the backend and stream the reply to the caller.

        Cancelling the calling task (client disconnect) closes the backend
        connection.

        Raises:
            BackendUnavailableError: If the backend fails before responding
        """
        if self._session is None:
            await self.start()

        target_url = self.build_target_url(request)
        headers = copy_headers(request.headers, skip=(hdrs.HOST,))
        headers[hdrs.HOST] = self.authority
        data = request.content if request.body_exists else None

        logger.debug(f"Forwarding {request.method} {request.raw_path} -> {target_url}")

        try:
            backend_response = await self._session.request(
                request.method,
                target_url,
                headers=headers,
                data=data,
                allow_redirects=False,
            )
        except aiohttp.ClientError as e:
            logger.error(f"Error forwarding request to {self.base_url}: {e}")
            raise BackendUnavailableError(str(e)) from e

        async with backend_response:
            response = web.StreamResponse(
                status=backend_response.status,
                reason=backend_response.reason,
                headers=copy_headers(backend_response.headers),
            )
            await response.prepare(request)

            try:
                async for chunk in backend_response.content.iter_chunked(CHUNK_SIZE):
                    await response.write(chunk)
            except (asyncio.CancelledError, ConnectionError):
                # Writes to a vanished client raise ConnectionError subclasses
                logger.info(f"Client went away during {request.method} {request.raw_path}; closing backend connection")
                backend_response.close()
                raise
            except aiohttp.ClientError as e:
                # Status is already on the wire; dropping the connection is all that is left
                logger.error(f"Backend stream for {request.raw_path} failed mid-response: {e}")
                backend_response.close()
                raise

            await response.write_eof()

        logger.debug(f"Relayed {request.method} {request.raw_path} -> {backend_response.status}")
        return response
