"""Main proxy manager: request handling, component wiring and lifecycle."""

import asyncio
import logging
import signal
import time
from typing import Optional, Dict, Any

from aiohttp import web

from .config_manager import ProxyConfig
from .relay import Relay, BackendUnavailableError
from .server_monitor import DeviceMonitor
from .utils import format_duration
from .wake_coordinator import WakeCoordinator, WakeState
from .wol_sender import WoLSender


logger = logging.getLogger(__name__)

# Terminal wake states that end a request without relaying
FAILURE_RESPONSES = {
    WakeState.TIMED_OUT: (504, "timeout waiting for device to wake"),
    WakeState.CANCELLED: (408, "client cancelled"),
}


class ProxyManager:
    """Central coordinator for the Wake-on-LAN HTTP proxy."""

    def __init__(self, config: ProxyConfig):
        self.config = config

        # Core components
        self.wol_sender: Optional[WoLSender] = None
        self.monitor: Optional[DeviceMonitor] = None
        self.coordinator: Optional[WakeCoordinator] = None
        self.relay: Optional[Relay] = None

        # HTTP listener
        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None

        # Control
        self.is_running = False
        self.shutdown_event = asyncio.Event()

        # Statistics (informational only)
        self.stats = {
            "start_time": time.time(),
            "requests": 0,
            "active_requests": 0,
            "ready": 0,
            "timeouts": 0,
            "cancellations": 0,
            "backend_errors": 0
        }

    async def initialize(self) -> bool:
        """Initialize all components."""
        try:
            logger.info("Initializing Wake-on-LAN HTTP proxy...")

            self.wol_sender = WoLSender(self.config)
            self.monitor = DeviceMonitor(self.config)
            self.coordinator = WakeCoordinator(self.config, self.wol_sender, self.monitor)
            self.relay = Relay(self.config)

            self.app = self.create_app()

            logger.info("All components initialized successfully")
            return True

        except Exception as e:
            logger.error(f"Initialization failed: {e}")
            return False

    def create_app(self) -> web.Application:
        """Build the catch-all proxy application."""
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self.handle_request)
        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _on_startup(self, app: web.Application) -> None:
        await self.relay.start()

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.relay.close()

    async def handle_request(self, request: web.Request,
                             cancelled: Optional[asyncio.Event] = None) -> web.StreamResponse:
        """Wake the device if needed, then relay the request to it."""
        self.stats["requests"] += 1
        self.stats["active_requests"] += 1

        try:
            state = await self.coordinator.ensure_awake(cancelled)

            if state in FAILURE_RESPONSES:
                status, message = FAILURE_RESPONSES[state]
                if state == WakeState.TIMED_OUT:
                    self.stats["timeouts"] += 1
                else:
                    self.stats["cancellations"] += 1
                return web.Response(status=status, text=message)

            self.stats["ready"] += 1
            try:
                return await self.relay.forward(request)
            except BackendUnavailableError:
                self.stats["backend_errors"] += 1
                return web.Response(status=502, text="error contacting backend")

        except asyncio.CancelledError:
            self.stats["cancellations"] += 1
            logger.info(f"Client disconnected: {request.method} {request.raw_path}")
            raise
        finally:
            self.stats["active_requests"] -= 1

    async def start(self) -> bool:
        """Start the proxy listener."""
        if self.is_running:
            logger.warning("Proxy is already running")
            return False

        try:
            self._setup_signal_handlers()

            # Client disconnects cancel the handler task
            self.runner = web.AppRunner(self.app, handler_cancellation=True)
            await self.runner.setup()

            site = web.TCPSite(self.runner, self.config.listen_host, self.config.listen_port)
            await site.start()

            self.is_running = True
            logger.info(
                f"Starting Wake-on-LAN proxy on {self.config.listen_host}:{self.config.listen_port} "
                f"-> {self.config.backend_url}"
            )
            return True

        except Exception as e:
            logger.error(f"Failed to start proxy: {e}")
            await self.shutdown()
            return False

    async def run_forever(self) -> None:
        """Run the proxy service until shutdown."""
        try:
            logger.info("Wake-on-LAN HTTP proxy running...")
            await self.shutdown_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Shutdown the proxy service gracefully."""
        if self.runner is None:
            return

        logger.info("Shutting down Wake-on-LAN HTTP proxy...")
        self.is_running = False

        try:
            await self.runner.cleanup()
            self.runner = None
            logger.info(f"Proxy shutdown complete (uptime {format_duration(time.time() - self.stats['start_time'])})")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for signame in ('SIGTERM', 'SIGINT'):
            if hasattr(signal, signame):
                try:
                    loop.add_signal_handler(getattr(signal, signame), self._request_shutdown, signame)
                except NotImplementedError:
                    logger.debug(f"Signal handlers not supported for {signame}")

    def _request_shutdown(self, signame: str) -> None:
        logger.info(f"Received {signame}, initiating shutdown...")
        self.shutdown_event.set()

    def get_status(self) -> Dict[str, Any]:
        """Get current proxy status."""
        return {
            "is_running": self.is_running,
            "uptime_seconds": time.time() - self.stats["start_time"],
            "statistics": dict(self.stats),
            "wol": self.wol_sender.get_packet_info() if self.wol_sender else {},
            "wol_stats": dict(self.wol_sender.stats) if self.wol_sender else {}
        }

    def get_config_info(self) -> Dict[str, Any]:
        """Get configuration information."""
        return {
            "device_ip": self.config.device_ip,
            "device_port": self.config.device_port,
            "mac_address": self.config.mac_address_str,
            "listen_addr": f"{self.config.listen_host}:{self.config.listen_port}",
            "poll_interval": self.config.poll_interval,
            "wake_timeout": self.config.wake_timeout
        }
