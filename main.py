#!/usr/bin/env python3
"""Wake-on-LAN HTTP Proxy - Main Entry Point

A Python service that acts as a transparent HTTP proxy for a device that
may be asleep, waking it via Wake-on-LAN before forwarding each request.
"""

import asyncio
import argparse
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

import sdnotify

from wol_proxy import __version__
from wol_proxy.config_manager import ConfigManager, ConfigError, ProxyConfig
from wol_proxy.proxy_manager import ProxyManager


def setup_logging(config: ProxyConfig) -> None:
    """Set up logging configuration."""
    log_level = getattr(logging, config.log_level.upper())

    # Create formatter
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Set up root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Console handler
    if config.log_console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if not config.log_file:
        return

    # File handler with rotation
    try:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            config.log_file,
            maxBytes=config.log_max_size_mb * 1024 * 1024,
            backupCount=config.log_backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        logging.info(f"Logging configured - Level: {config.log_level}, File: {config.log_file}")

    except OSError as e:
        print(f"Warning: Could not set up file logging: {e}", file=sys.stderr)
        print("Continuing with console logging only", file=sys.stderr)


async def status_server(port: int, proxy_manager_ref: Optional[ProxyManager] = None):
    """Start a simple HTTP status server for monitoring."""
    from aiohttp import web

    async def get_status(request):
        """Get proxy status as JSON."""
        if proxy_manager_ref and proxy_manager_ref.is_running:
            return web.json_response({
                "status": "running",
                "proxy": proxy_manager_ref.get_status(),
                "config": proxy_manager_ref.get_config_info()
            })
        else:
            return web.json_response({
                "status": "stopped",
                "message": "Proxy is not running"
            }, status=503)

    async def health_check(request):
        """Simple health check endpoint."""
        return web.json_response({"status": "healthy"})

    app = web.Application()
    app.router.add_get('/status', get_status)
    app.router.add_get('/health', health_check)
    app.router.add_get('/', get_status)

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, '0.0.0.0', port)
    await site.start()

    logging.info(f"Status server started on port {port}")
    return runner


def notify_systemd(state: str) -> None:
    """Report service state to systemd; a no-op outside systemd."""
    sdnotify.SystemdNotifier().notify(state)


async def main_service(args) -> int:
    """Main service function."""
    try:
        config = ConfigManager(args.config).load_config()
    except ConfigError as e:
        logging.basicConfig(level=logging.ERROR)
        logging.error(f"config error: {e}")
        return 1

    setup_logging(config)
    logging.info("Starting Wake-on-LAN HTTP proxy")

    proxy_manager = ProxyManager(config)

    if not await proxy_manager.initialize():
        logging.error("Failed to initialize proxy")
        return 1

    # Start status server if enabled
    status_runner = None
    if config.health_check_enabled:
        try:
            status_runner = await status_server(config.status_endpoint_port, proxy_manager)
        except OSError as e:
            logging.warning(f"Failed to start status server: {e}")

    if not await proxy_manager.start():
        logging.error("Failed to start proxy service")
        if status_runner:
            await status_runner.cleanup()
        return 1

    notify_systemd("READY=1")

    try:
        await proxy_manager.run_forever()
    finally:
        notify_systemd("STOPPING=1")
        if status_runner:
            await status_runner.cleanup()

    logging.info("Wake-on-LAN HTTP proxy stopped")
    return 0


def create_example_config(path: str) -> None:
    """Create an example configuration file."""
    config_manager = ConfigManager()
    config_manager.save_example_config(path)
    print(f"Example configuration saved to: {path}")


def validate_config(path: Optional[str]) -> None:
    """Validate configuration file and environment."""
    try:
        config = ConfigManager(path).load_config()
    except ConfigError as e:
        print(f"Configuration validation failed: {e}", file=sys.stderr)
        sys.exit(1)

    print("Configuration is valid")

    print("\nConfiguration Summary:")
    print(f"  Device: {config.device_ip}:{config.device_port} ({config.mac_address_str})")
    print(f"  Listen: {config.listen_host}:{config.listen_port}")
    print(f"  Wake destinations: {', '.join(f'{ip}:{port}' for ip, port in config.wake_destinations)}")
    print(f"  Poll Interval: {config.poll_interval:g} seconds")
    print(f"  Wake Timeout: {config.wake_timeout:g} seconds")


def show_status(config_path: Optional[str]) -> None:
    """Show current proxy status."""
    import requests

    try:
        config = ConfigManager(config_path).load_config()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return

    if not config.health_check_enabled:
        print("Status endpoint is disabled in configuration")
        return

    url = f"http://localhost:{config.status_endpoint_port}/status"

    try:
        response = requests.get(url, timeout=5)
        status_data = response.json()
    except (requests.RequestException, ValueError) as e:
        print(f"Failed to get status: {e}")
        return

    print("Wake-on-LAN HTTP Proxy Status:")
    print(f"  Status: {status_data['status']}")

    if 'proxy' in status_data:
        proxy = status_data['proxy']
        print(f"  Running: {proxy['is_running']}")

        stats = proxy['statistics']
        print(f"  Requests: {stats['requests']} ({stats['active_requests']} active)")
        print(f"  Wake Attempts: {proxy['wol_stats'].get('wake_attempts', 0)}")
        print(f"  Timeouts: {stats['timeouts']}")
        print(f"  Cancellations: {stats['cancellations']}")
        print(f"  Backend Errors: {stats['backend_errors']}")


def main():
    """Main entry point with command line argument handling."""
    parser = argparse.ArgumentParser(
        description="Wake-on-LAN HTTP Proxy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  DEVICE_MAC, DEVICE_IP, DEVICE_PORT   device to wake and proxy to (required)
  LISTEN_ADDR                          [host]:port to listen on (default :11434)
  POLL_INTERVAL_SEC, WAKE_TIMEOUT_SEC  wait tuning (defaults 2 and 120)
  LOG_LEVEL                            logging level (default INFO)

Examples:
  %(prog)s                                 # Run with environment settings
  %(prog)s --config /etc/wol-proxy.json    # Run with a config file
  %(prog)s --create-config                 # Create example config
  %(prog)s --validate-config               # Validate current config
  %(prog)s --status                        # Show current status
        """
    )

    parser.add_argument(
        '--config', '-c',
        default=None,
        help='Optional configuration file path (environment variables take precedence)'
    )

    parser.add_argument(
        '--create-config',
        action='store_true',
        help='Create an example configuration file'
    )

    parser.add_argument(
        '--validate-config',
        action='store_true',
        help='Validate the configuration'
    )

    parser.add_argument(
        '--status',
        action='store_true',
        help='Show current proxy status'
    )

    parser.add_argument(
        '--version', '-v',
        action='version',
        version=f'Wake-on-LAN HTTP Proxy {__version__}'
    )

    args = parser.parse_args()

    # Handle special commands
    if args.create_config:
        create_example_config((args.config or 'config.json') + '.example')
        return 0

    if args.validate_config:
        validate_config(args.config)
        return 0

    if args.status:
        show_status(args.config)
        return 0

    try:
        return asyncio.run(main_service(args))
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 0


if __name__ == '__main__':
    sys.exit(main())
