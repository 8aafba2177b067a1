#!/usr/bin/env python3
"""Basic tests for the Wake-on-LAN HTTP proxy."""

import json
import os
import shutil
import socket
import tempfile
import unittest
from unittest import mock

from wol_proxy.config_manager import ConfigManager, ConfigError
from wol_proxy.utils import parse_listen_address, parse_mac_address
from wol_proxy.wol_sender import create_magic_packet, send_magic_packet


MAC_BYTES = b'\x00\x1b\x44\x11\x3a\xb7'

REQUIRED_ENV = {
    'DEVICE_MAC': '00:1B:44:11:3A:B7',
    'DEVICE_IP': '192.168.1.100',
    'DEVICE_PORT': '11434'
}


class TestConfigManager(unittest.TestCase):
    """Test configuration management."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.temp_dir, 'test_config.json')

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_environment_config_load(self):
        """Required values from the environment, everything else defaulted."""
        config = ConfigManager(environ=REQUIRED_ENV).load_config()

        self.assertEqual(config.mac_address, MAC_BYTES)
        self.assertEqual(config.device_ip, '192.168.1.100')
        self.assertEqual(config.device_port, 11434)
        self.assertEqual((config.listen_host, config.listen_port), ('0.0.0.0', 11434))
        self.assertEqual(config.poll_interval, 2.0)
        self.assertEqual(config.wake_timeout, 120.0)
        self.assertEqual(config.backend_url, 'http://192.168.1.100:11434')
        self.assertEqual(
            config.wake_destinations,
            (('192.168.1.100', 9), ('255.255.255.255', 9))
        )

    def test_missing_required_values(self):
        """Missing device settings are a configuration error."""
        with self.assertRaises(ConfigError) as ctx:
            ConfigManager(environ={}).load_config()

        message = str(ctx.exception)
        for name in ('DEVICE_MAC', 'DEVICE_IP', 'DEVICE_PORT'):
            self.assertIn(name, message)

    def test_invalid_timings_fall_back_to_defaults(self):
        """Unparsable wait settings keep their defaults."""
        env = dict(REQUIRED_ENV, POLL_INTERVAL_SEC='abc', WAKE_TIMEOUT_SEC='-5')
        config = ConfigManager(environ=env).load_config()

        self.assertEqual(config.poll_interval, 2.0)
        self.assertEqual(config.wake_timeout, 120.0)

    def test_timing_overrides(self):
        env = dict(REQUIRED_ENV, POLL_INTERVAL_SEC='0.5', WAKE_TIMEOUT_SEC='30',
                   LISTEN_ADDR='127.0.0.1:8000', LOG_LEVEL='debug')
        config = ConfigManager(environ=env).load_config()

        self.assertEqual(config.poll_interval, 0.5)
        self.assertEqual(config.wake_timeout, 30.0)
        self.assertEqual((config.listen_host, config.listen_port), ('127.0.0.1', 8000))
        self.assertEqual(config.log_level, 'DEBUG')

    def test_config_file_merged_under_environment(self):
        """File values fill in defaults; the environment wins."""
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump({
                "_comment": "ignored",
                "device": {"mac_address": "AA-BB-CC-DD-EE-FF", "ip": "10.0.0.5", "port": 8080},
                "timing": {"wake_timeout": 60}
            }, f)

        config = ConfigManager(self.config_path, environ={'DEVICE_PORT': '9090'}).load_config()

        self.assertEqual(config.mac_address, bytes.fromhex('AABBCCDDEEFF'))
        self.assertEqual(config.device_ip, '10.0.0.5')
        self.assertEqual(config.device_port, 9090)
        self.assertEqual(config.wake_timeout, 60.0)
        self.assertEqual(config.poll_interval, 2.0)

    def test_invalid_values_rejected(self):
        env = dict(REQUIRED_ENV, DEVICE_MAC='00:1B:44:11:3A', DEVICE_IP='invalid.ip',
                   DEVICE_PORT='70000')
        with self.assertRaises(ConfigError) as ctx:
            ConfigManager(environ=env).load_config()

        message = str(ctx.exception)
        self.assertIn('MAC', message)
        self.assertIn('invalid.ip', message)
        self.assertIn('70000', message)

    def test_invalid_json(self):
        with open(self.config_path, 'w', encoding='utf-8') as f:
            f.write('{not json')

        with self.assertRaises(ConfigError):
            ConfigManager(self.config_path, environ=REQUIRED_ENV).load_config()

    def test_example_config_is_loadable(self):
        ConfigManager().save_example_config(self.config_path)
        config = ConfigManager(self.config_path, environ={}).load_config()

        self.assertEqual(config.device_ip, '192.168.1.100')
        self.assertEqual(config.mac_address, bytes.fromhex('AABBCCDDEEFF'))

    def test_config_is_immutable(self):
        config = ConfigManager(environ=REQUIRED_ENV).load_config()
        with self.assertRaises(AttributeError):
            config.device_port = 1


class TestAddressParsing(unittest.TestCase):
    """Test MAC and listen address parsing."""

    def test_mac_parsing(self):
        """All delimiter styles normalize to the same bytes."""
        test_cases = [
            '00:1B:44:11:3A:B7',
            '00-1B-44-11-3A-B7',
            '001B.4411.3AB7',
            '001B44113AB7',
            '00:1b:44:11:3a:b7'
        ]

        for mac_str in test_cases:
            with self.subTest(mac=mac_str):
                self.assertEqual(parse_mac_address(mac_str), MAC_BYTES)

    def test_invalid_mac_rejected(self):
        for mac_str in ('invalid', '00:1B:44:11:3A', '00:1B:44:11:3A:B7:00', 'GG:HH:II:JJ:KK:LL'):
            with self.subTest(mac=mac_str):
                with self.assertRaises(ValueError):
                    parse_mac_address(mac_str)

    def test_listen_address(self):
        self.assertEqual(parse_listen_address(':11434'), ('0.0.0.0', 11434))
        self.assertEqual(parse_listen_address('127.0.0.1:8080'), ('127.0.0.1', 8080))
        self.assertEqual(parse_listen_address('[::1]:8080'), ('::1', 8080))

        for bad in ('11434', 'localhost:', 'host:99999'):
            with self.subTest(addr=bad):
                with self.assertRaises(ValueError):
                    parse_listen_address(bad)


class TestWoLSender(unittest.TestCase):
    """Test Wake-on-LAN functionality."""

    destinations = [('192.168.1.100', 9), ('255.255.255.255', 9)]

    def test_magic_packet_creation(self):
        """Test magic packet creation."""
        packet = create_magic_packet(MAC_BYTES)

        # Magic packet should be 102 bytes (6 + 16*6)
        self.assertEqual(len(packet), 102)
        self.assertEqual(packet[:6], b'\xff' * 6)
        self.assertEqual(packet[6:], MAC_BYTES * 16)

    @mock.patch('wol_proxy.wol_sender.socket.socket')
    def test_send_to_every_destination(self, mock_socket_cls):
        sock = mock_socket_cls.return_value.__enter__.return_value

        delivered = send_magic_packet(MAC_BYTES, self.destinations)

        self.assertEqual(delivered, self.destinations[0])
        packet = create_magic_packet(MAC_BYTES)
        self.assertEqual(
            sock.sendto.call_args_list,
            [mock.call(packet, dest) for dest in self.destinations]
        )
        sock.settimeout.assert_called_with(2.0)

    @mock.patch('wol_proxy.wol_sender.socket.socket')
    def test_continues_past_failed_destination(self, mock_socket_cls):
        sock = mock_socket_cls.return_value.__enter__.return_value
        sock.sendto.side_effect = [OSError("Network is unreachable"), None]

        delivered = send_magic_packet(MAC_BYTES, self.destinations)

        self.assertEqual(delivered, self.destinations[1])
        self.assertEqual(sock.sendto.call_count, 2)

    @mock.patch('wol_proxy.wol_sender.socket.socket')
    def test_reports_last_error_when_all_fail(self, mock_socket_cls):
        sock = mock_socket_cls.return_value.__enter__.return_value
        sock.sendto.side_effect = [OSError("first"), OSError("last")]

        with self.assertRaises(OSError) as ctx:
            send_magic_packet(MAC_BYTES, self.destinations)

        self.assertEqual(str(ctx.exception), "last")

    @mock.patch('wol_proxy.wol_sender.socket.socket')
    def test_ipv6_destination_uses_ipv6_socket(self, mock_socket_cls):
        sock = mock_socket_cls.return_value.__enter__.return_value
        destinations = [('2001:db8::1', 9), ('255.255.255.255', 9)]

        delivered = send_magic_packet(MAC_BYTES, destinations)

        self.assertEqual(delivered, destinations[0])
        self.assertEqual(
            mock_socket_cls.call_args_list,
            [mock.call(socket.AF_INET6, socket.SOCK_DGRAM),
             mock.call(socket.AF_INET, socket.SOCK_DGRAM)]
        )
        # Broadcast is only enabled on the IPv4 socket
        sock.setsockopt.assert_called_once_with(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)

    @mock.patch('wol_proxy.wol_sender.socket.socket')
    def test_malformed_mac_fails_before_sending(self, mock_socket_cls):
        with self.assertRaises(ValueError):
            send_magic_packet(MAC_BYTES[:5], self.destinations)

        mock_socket_cls.assert_not_called()


if __name__ == '__main__':
    unittest.main()
