"""Configuration management for the Wake-on-LAN HTTP proxy."""

import copy
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Mapping, Optional, Tuple

from .utils import (
    format_mac_address,
    parse_listen_address,
    parse_mac_address,
    validate_ip_address,
    validate_port,
)


logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "DEVICE_MAC": ("device", "mac_address"),
    "DEVICE_IP": ("device", "ip"),
    "DEVICE_PORT": ("device", "port"),
    "LISTEN_ADDR": ("proxy", "listen_addr"),
    "POLL_INTERVAL_SEC": ("timing", "poll_interval"),
    "WAKE_TIMEOUT_SEC": ("timing", "wake_timeout"),
    "LOG_LEVEL": ("logging", "level"),
}

# Timings that silently fall back to their default when unparsable
LENIENT_TIMINGS = ("poll_interval", "wake_timeout")


class ConfigError(ValueError):
    """Raised when required settings are missing or malformed."""


@dataclass(frozen=True)
class ProxyConfig:
    """Validated, read-only settings shared by every proxy component."""

    mac_address: bytes
    device_ip: str
    device_port: int
    listen_host: str = "0.0.0.0"
    listen_port: int = 11434
    poll_interval: float = 2.0
    wake_timeout: float = 120.0
    probe_timeout: float = 1.0
    wol_send_timeout: float = 2.0
    wol_port: int = 9
    broadcast_address: str = "255.255.255.255"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_max_size_mb: int = 10
    log_backup_count: int = 3
    log_console_output: bool = True
    health_check_enabled: bool = False
    status_endpoint_port: int = 8080

    @property
    def backend_url(self) -> str:
        host = f"[{self.device_ip}]" if ":" in self.device_ip else self.device_ip
        return f"http://{host}:{self.device_port}"

    @property
    def wake_destinations(self) -> Tuple[Tuple[str, int], ...]:
        """Device address first, then the limited broadcast address."""
        return (
            (self.device_ip, self.wol_port),
            (self.broadcast_address, self.wol_port),
        )

    @property
    def mac_address_str(self) -> str:
        return format_mac_address(self.mac_address)


class ConfigManager:
    """Loads configuration from defaults, an optional JSON file and the environment."""

    def __init__(self, config_path: Optional[str] = None,
                 environ: Optional[Mapping[str, str]] = None):
        self.config_path = Path(config_path) if config_path else None
        self.environ = os.environ if environ is None else environ
        self._default_config = self._get_default_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values."""
        return {
            "device": {
                "mac_address": "",
                "ip": "",
                "port": None
            },
            "proxy": {
                "listen_addr": ":11434"
            },
            "timing": {
                "poll_interval": 2,
                "wake_timeout": 120,
                "probe_timeout": 1,
                "wol_send_timeout": 2
            },
            "wol": {
                "port": 9,
                "broadcast_address": "255.255.255.255"
            },
            "logging": {
                "level": "INFO",
                "file": None,
                "max_size_mb": 10,
                "backup_count": 3,
                "console_output": True
            },
            "monitoring": {
                "health_check_enabled": False,
                "status_endpoint_port": 8080
            }
        }

    def load_config(self) -> ProxyConfig:
        """Load, merge and validate configuration.

        Raises:
            ConfigError: If a required setting is missing or any value is invalid
        """
        config = copy.deepcopy(self._default_config)

        if self.config_path is not None:
            if self.config_path.exists():
                try:
                    with open(self.config_path, 'r', encoding='utf-8') as f:
                        loaded_config = json.load(f)
                except json.JSONDecodeError as e:
                    raise ConfigError(f"Configuration file contains invalid JSON: {e}") from e
                config = self._merge_config(config, loaded_config)
                logger.info(f"Configuration file loaded from {self.config_path}")
            else:
                logger.warning(f"Config file {self.config_path} not found, using environment and defaults")

        self._apply_environment(config)

        proxy_config = self._validate_config(config)
        logger.info(
            f"Configured: DEVICE_MAC={proxy_config.mac_address_str} DEVICE_IP={proxy_config.device_ip} "
            f"DEVICE_PORT={proxy_config.device_port} "
            f"LISTEN_ADDR={proxy_config.listen_host}:{proxy_config.listen_port}"
        )
        return proxy_config

    def _merge_config(self, default: Dict[str, Any], loaded: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge loaded config with defaults."""
        result = default.copy()

        for key, value in loaded.items():
            if key.startswith('_comment'):
                continue
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_environment(self, config: Dict[str, Any]) -> None:
        """Overlay environment variables onto the merged configuration."""
        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = self.environ.get(env_name)
            if value is None or value == "":
                continue

            if key in LENIENT_TIMINGS:
                default = self._default_config[section][key]
                try:
                    parsed = float(value)
                    if parsed <= 0:
                        raise ValueError("must be positive")
                except ValueError:
                    logger.warning(f"Ignoring invalid {env_name}={value!r}, using {default}s")
                    parsed = default
                config[section][key] = parsed
            else:
                config[section][key] = value

    def _validate_config(self, config: Dict[str, Any]) -> ProxyConfig:
        """Validate configuration values and build the immutable config."""
        errors = []
        device = config["device"]

        mac_bytes = b""
        if not device.get("mac_address"):
            errors.append("DEVICE_MAC must be set")
        else:
            try:
                mac_bytes = parse_mac_address(str(device["mac_address"]))
            except ValueError as e:
                errors.append(str(e))

        if not device.get("ip"):
            errors.append("DEVICE_IP must be set")
        elif not validate_ip_address(str(device["ip"])):
            errors.append(f"Invalid device IP address: {device['ip']}")

        if device.get("port") in (None, ""):
            errors.append("DEVICE_PORT must be set")
        elif not validate_port(device["port"]):
            errors.append(f"Invalid device port: {device['port']}")

        listen_host, listen_port = "0.0.0.0", 11434
        try:
            listen_host, listen_port = parse_listen_address(str(config["proxy"]["listen_addr"]))
        except ValueError as e:
            errors.append(str(e))

        timing = config["timing"]
        for key, value in timing.items():
            if key.startswith('_comment'):
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                errors.append(f"Invalid timing value for {key}: {value}")

        wol = config["wol"]
        if not validate_port(wol["port"]):
            errors.append(f"Invalid Wake-on-LAN port: {wol['port']}")
        if not validate_ip_address(str(wol["broadcast_address"])):
            errors.append(f"Invalid broadcast address: {wol['broadcast_address']}")

        log_config = config["logging"]
        log_level = str(log_config["level"]).upper()
        if log_level not in VALID_LOG_LEVELS:
            errors.append(f"Invalid log level: {log_level}. Must be one of {VALID_LOG_LEVELS}")

        monitoring = config["monitoring"]
        if monitoring["health_check_enabled"] and not validate_port(monitoring["status_endpoint_port"]):
            errors.append(f"Invalid status endpoint port: {monitoring['status_endpoint_port']}")

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(errors)
            logger.error(error_msg)
            raise ConfigError(error_msg)

        return ProxyConfig(
            mac_address=mac_bytes,
            device_ip=str(device["ip"]),
            device_port=int(device["port"]),
            listen_host=listen_host,
            listen_port=listen_port,
            poll_interval=float(timing["poll_interval"]),
            wake_timeout=float(timing["wake_timeout"]),
            probe_timeout=float(timing["probe_timeout"]),
            wol_send_timeout=float(timing["wol_send_timeout"]),
            wol_port=int(wol["port"]),
            broadcast_address=str(wol["broadcast_address"]),
            log_level=log_level,
            log_file=log_config["file"],
            log_max_size_mb=int(log_config["max_size_mb"]),
            log_backup_count=int(log_config["backup_count"]),
            log_console_output=bool(log_config["console_output"]),
            health_check_enabled=bool(monitoring["health_check_enabled"]),
            status_endpoint_port=int(monitoring["status_endpoint_port"]),
        )

    def save_example_config(self, path: Optional[str] = None) -> None:
        """Save an example configuration file with comments."""
        if path is None:
            path = "config.json.example"

        example_config = {
            "_comment_device": "Device to wake and proxy to (overridden by DEVICE_MAC, DEVICE_IP, DEVICE_PORT)",
            "device": {
                "mac_address": "AA:BB:CC:DD:EE:FF",
                "ip": "192.168.1.100",
                "port": 11434
            },
            "_comment_proxy": "Listen address as [host]:port (overridden by LISTEN_ADDR)",
            "proxy": {
                "listen_addr": ":11434"
            },
            "_comment_timing": "All values in seconds (POLL_INTERVAL_SEC, WAKE_TIMEOUT_SEC)",
            "timing": {
                "poll_interval": 2,
                "wake_timeout": 120,
                "probe_timeout": 1,
                "wol_send_timeout": 2
            },
            "_comment_wol": "Magic packet destination port and broadcast address",
            "wol": {
                "port": 9,
                "broadcast_address": "255.255.255.255"
            },
            "_comment_logging": "Logging configuration (LOG_LEVEL)",
            "logging": {
                "level": "INFO",
                "file": "/var/log/wol-http-proxy.log",
                "max_size_mb": 10,
                "backup_count": 3,
                "console_output": True
            },
            "_comment_monitoring": "Status endpoint on a separate port",
            "monitoring": {
                "health_check_enabled": False,
                "status_endpoint_port": 8080
            }
        }

        with open(path, 'w', encoding='utf-8') as f:
            json.dump(example_config, f, indent=2, ensure_ascii=False)

        logger.info(f"Example configuration saved to {path}")
