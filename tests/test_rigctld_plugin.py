#!/usr/bin/env python3
"""
Unit tests for the rigctld plugin: FIFO request/answer pairing over
chunked and split reads, stall detection, and an end-to-end run against
a local rigctld stand-in.
"""

import os
import socket
import tempfile
import threading
import time
import unittest
import unittest.mock as mock

from rig_bridge.config import ConfigStore
from rig_bridge.plugins.base import PluginServices
from rig_bridge.plugins.rigctld import Request, RigctldPlugin
from rig_bridge.registry import PluginRegistry
from rig_bridge.server import create_app
from rig_bridge.state import RigState


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class RigctldStub:
    """Minimal rigctld: answers f/m/t queries and acknowledges set commands."""

    def __init__(self, freq=7074000):
        self.freq = freq
        self.commands = []
        self.server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.server.bind(('127.0.0.1', 0))
        self.server.listen(1)
        self.port = self.server.getsockname()[1]
        self.thread = threading.Thread(target=self._serve, daemon=True)
        self.thread.start()

    def _serve(self):
        try:
            conn, _ = self.server.accept()
        except OSError:
            return
        buf = b''
        with conn:
            while True:
                try:
                    data = conn.recv(1024)
                except OSError:
                    return
                if not data:
                    return
                buf += data
                while b'\n' in buf:
                    line, buf = buf.split(b'\n', 1)
                    try:
                        conn.sendall(self._answer(line.decode().strip()).encode())
                    except OSError:
                        return

    def _answer(self, command):
        self.commands.append(command)
        if command == 'f':
            return f"{self.freq}\n"
        if command == 'm':
            return "USB\n2400\n"
        if command == 't':
            return "0\n"
        if command.startswith('F '):
            self.freq = int(command[2:])
        return "RPRT 0\n"

    def close(self):
        self.server.close()


class TestRequestPairing(unittest.TestCase):
    """Answers are matched to requests strictly in send order."""

    def setUp(self):
        self.state = RigState()
        config = {'radio': {'type': 'rigctld', 'pollInterval': 500}}
        self.plugin = RigctldPlugin(config, PluginServices(self.state), reconnect_delay=60.0)
        self.sock = mock.Mock()
        self.plugin._sock = self.sock

    def sent(self):
        return [c.args[0] for c in self.sock.sendall.call_args_list]

    def test_single_request_in_flight(self):
        self.plugin._poll()
        self.assertEqual(self.sent(), [b'f\n'])

    def test_split_and_chunked_answers(self):
        self.plugin._poll()
        self.plugin._on_data('1407')
        self.assertEqual(self.state.freq, 0)
        self.plugin._on_data('4000\nUS')
        self.assertEqual(self.state.freq, 14074000)
        self.plugin._on_data('B\n2400\n1\n')

        self.assertEqual(self.sent(), [b'f\n', b'm\n', b't\n'])
        self.assertEqual(self.state.mode, 'USB')
        self.assertEqual(self.state.width, 2400)
        self.assertTrue(self.state.ptt)
        self.assertIsNone(self.plugin._pending)

    def test_mode_and_width_on_one_line(self):
        self.plugin._enqueue('m', 'm')
        self.plugin._on_data('PKTUSB 3000\n')
        self.assertEqual(self.state.mode, 'DATA-USB')
        self.assertEqual(self.state.width, 3000)

    def test_zero_width_not_applied(self):
        self.plugin._enqueue('m', 'm')
        self.plugin._on_data('CW\n0\n')
        self.assertEqual(self.state.mode, 'CW')
        self.assertEqual(self.state.width, 0)

    def test_set_commands_complete_on_rprt(self):
        self.assertTrue(self.plugin.set_freq(14074000))
        self.assertTrue(self.plugin.set_mode('DATA-USB'))
        self.assertTrue(self.plugin.set_ptt(False))
        self.assertEqual(self.sent(), [b'F 14074000\n'])

        self.plugin._on_data('RPRT 0\n')
        self.plugin._on_data('RPRT -11\n')
        self.plugin._on_data('RPRT 0\n')
        self.assertEqual(self.sent(), [b'F 14074000\n', b'M PKTUSB 0\n', b'T 0\n'])
        self.assertIsNone(self.plugin._pending)

    def test_poll_skipped_while_busy(self):
        self.plugin._poll()
        self.plugin._poll()
        self.assertEqual(self.sent(), [b'f\n'])
        self.assertEqual(len(self.plugin._queue), 2)

    def test_unsolicited_line_ignored(self):
        self.plugin._on_data('14074000\n')
        self.assertEqual(self.state.freq, 0)

    def test_blank_lines_keep_pending_request(self):
        self.plugin._poll()
        self.plugin._on_data("\n\r\n  \n")
        self.assertEqual(self.plugin._pending.kind, 'f')
        self.plugin._on_data('14074000\n\nUSB\n\n2400\n')
        self.assertEqual(self.state.freq, 14074000)
        self.assertEqual(self.state.mode, 'USB')
        self.assertEqual(self.state.width, 2400)
        self.assertEqual(self.sent(), [b'f\n', b'm\n', b't\n'])

    def test_unparseable_answer_completes_request(self):
        self.plugin._enqueue('f', 'f')
        self.plugin._on_data('garbage\n')
        self.assertIsNone(self.plugin._pending)
        self.assertEqual(self.state.freq, 0)

    def test_stalled_request_is_connection_loss(self):
        req = Request('f', 'f')
        req.sent_at = time.monotonic() - 60
        self.plugin._pending = req
        with mock.patch.object(self.plugin, '_connection_lost') as lost:
            self.assertTrue(self.plugin._check_stalled())
        lost.assert_called_once()

    def test_response_timeout_floor(self):
        self.assertEqual(self.plugin.response_timeout, 5.0)
        self.plugin.radio['pollInterval'] = 4000
        self.assertEqual(self.plugin.response_timeout, 12.0)

    def test_commands_fail_when_closed(self):
        self.plugin._sock = None
        self.assertFalse(self.plugin.set_freq(7074000))


class HangUpServer:
    """Accepts every connection and closes it straight away."""

    def __init__(self):
        self.server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.server.bind(('127.0.0.1', 0))
        self.server.listen(8)
        self.port = self.server.getsockname()[1]
        threading.Thread(target=self._serve, daemon=True).start()

    def _serve(self):
        while True:
            try:
                conn, _ = self.server.accept()
            except OSError:
                return
            conn.close()

    def close(self):
        self.server.close()


class TestHangUpDuringConnect(unittest.TestCase):
    """A peer that drops the socket right after accept must end in a reconnect."""

    def setUp(self):
        self.server = HangUpServer()
        self.plugins = []

    def tearDown(self):
        for plugin in self.plugins:
            plugin.disconnect()
        self.server.close()

    def test_every_attempt_schedules_reconnect(self):
        for _ in range(20):
            state = RigState()
            config = {'radio': {'type': 'rigctld', 'rigctldHost': '127.0.0.1',
                                'rigctldPort': self.server.port, 'pollInterval': 100}}
            plugin = RigctldPlugin(config, PluginServices(state), reconnect_delay=60.0)
            self.plugins.append(plugin)
            plugin.connect()
            self.assertTrue(wait_for(plugin.manager.reconnect_pending))
            self.assertFalse(plugin.connected)
            self.assertFalse(state.connected)


class TestRigctldEndToEnd(unittest.TestCase):
    """Set a frequency over HTTP and read it back through /status."""

    def setUp(self):
        self.stub = RigctldStub()
        self.tmpdir = tempfile.TemporaryDirectory()
        self.store = ConfigStore(os.path.join(self.tmpdir.name, 'config.json'))
        self.store.update({'radio': {
            'type': 'rigctld',
            'rigctldHost': '127.0.0.1',
            'rigctldPort': self.stub.port,
            'pollInterval': 100,
        }})
        self.state = RigState()
        self.registry = PluginRegistry(self.store, PluginServices(self.state))
        self.registry.register_builtins()
        self.client = create_app(self.store, self.registry, self.state).test_client()

    def tearDown(self):
        self.registry.shutdown()
        self.stub.close()
        self.tmpdir.cleanup()

    def test_set_frequency_scenario(self):
        self.registry.connect_active()
        self.assertTrue(wait_for(lambda: self.state.freq == 7074000))
        self.assertTrue(self.state.connected)

        resp = self.client.post('/freq', json={'freq': 14074000})
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.get_json()['success'])

        self.assertTrue(wait_for(lambda: 'F 14074000' in self.stub.commands))
        self.assertTrue(wait_for(lambda: self.state.freq == 14074000))
        status = self.client.get('/status').get_json()
        self.assertEqual(status['freq'], 14074000)
        self.assertEqual(status['mode'], 'USB')
        self.assertTrue(status['connected'])

    def test_socket_loss_schedules_reconnect(self):
        self.registry.connect_active()
        self.assertTrue(wait_for(lambda: self.state.connected))
        plugin = self.registry.active
        plugin.manager.reconnect_delay = 60.0
        # Shut the socket down underneath the reader
        plugin._sock.shutdown(socket.SHUT_RDWR)
        self.assertTrue(wait_for(plugin.manager.reconnect_pending))
        self.assertFalse(self.state.connected)


if __name__ == '__main__':
    unittest.main()
