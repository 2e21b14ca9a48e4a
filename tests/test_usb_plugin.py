#!/usr/bin/env python3
"""
Unit tests for the USB serial plugin using an in-memory serial port.
"""

import queue
import time
import unittest
import unittest.mock as mock

import serial

from rig_bridge import serial_utils
from rig_bridge.plugins.base import PluginServices
from rig_bridge.plugins.usb import UsbSerialPlugin, make_codec, usb_factory
from rig_bridge.protocols.icom import CivCodec
from rig_bridge.protocols.kenwood import KenwoodCodec
from rig_bridge.protocols.yaesu import YaesuCodec
from rig_bridge.state import RigState


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class FakeSerial:
    """Stands in for serial.Serial: records writes, replays injected reads."""

    def __init__(self):
        self.is_open = True
        self.in_waiting = 0
        self.written = bytearray()
        self.fail_writes = False
        self._rx = queue.Queue()

    def read(self, size=1):
        try:
            return self._rx.get(timeout=0.02)
        except queue.Empty:
            if not self.is_open:
                raise serial.SerialException("port closed")
            return b''

    def write(self, data):
        if self.fail_writes:
            raise serial.SerialException("device disconnected")
        self.written.extend(data)
        return len(data)

    def flush(self):
        pass

    def close(self):
        self.is_open = False

    def inject(self, data):
        self._rx.put(data)


def radio_config(**overrides):
    radio = {
        'type': 'yaesu',
        'serialPort': '/dev/ttyUSB0',
        'baudRate': 38400,
        'autoInfo': True,
        'pollInterval': 500,
        'icomAddress': '0x94',
    }
    radio.update(overrides)
    return {'port': 5555, 'logging': True, 'radio': radio}


class UsbPluginTestCase(unittest.TestCase):

    def setUp(self):
        self.state = RigState()
        self.services = PluginServices(state=self.state)
        self.port = FakeSerial()
        patcher = mock.patch('rig_bridge.serial_utils.open_port', return_value=self.port)
        self.open_port = patcher.start()
        self.addCleanup(patcher.stop)
        self.plugins = []

    def tearDown(self):
        for plugin in self.plugins:
            plugin.disconnect()

    def make(self, codec, **radio):
        plugin = UsbSerialPlugin(radio_config(**radio), self.services, codec, reconnect_delay=60.0)
        self.plugins.append(plugin)
        return plugin


class TestPushMode(UsbPluginTestCase):
    """ASCII families with autoInfo: preamble, one poll, then keepalive."""

    def test_connect_sends_preamble_and_poll(self):
        plugin = self.make(YaesuCodec())
        plugin.connect()
        self.assertTrue(plugin.connected)
        self.assertTrue(self.state.connected)
        self.assertEqual(bytes(self.port.written), b'AI1;FA;MD0;TX;')
        self.assertEqual(plugin.manager.periodic_names(), ['keepalive'])
        self.open_port.assert_called_once_with(plugin.radio, 2)

    def test_pushed_updates_reach_state(self):
        plugin = self.make(YaesuCodec())
        plugin.connect()
        self.port.inject(b'FA014074')
        self.port.inject(b'000;MD0C;TX1;')
        self.assertTrue(wait_for(lambda: self.state.ptt))
        self.assertEqual(self.state.freq, 14074000)
        self.assertEqual(self.state.mode, 'DATA-USB')

    def test_commands_are_written(self):
        plugin = self.make(KenwoodCodec(), type='kenwood')
        plugin.connect()
        self.port.written.clear()
        self.assertTrue(plugin.set_freq(7074000))
        self.assertTrue(plugin.set_mode('CW'))
        self.assertTrue(plugin.set_ptt(True))
        self.assertEqual(bytes(self.port.written), b'FA00007074000;MD3;DA0;TX;')

    def test_invalid_commands_rejected(self):
        plugin = self.make(YaesuCodec())
        plugin.connect()
        self.assertFalse(plugin.set_freq(-1))
        self.assertFalse(plugin.set_mode('WFM'))


class TestPollMode(UsbPluginTestCase):

    def test_auto_info_disabled_polls(self):
        plugin = self.make(YaesuCodec(), autoInfo=False, pollInterval=50)
        plugin.connect()
        self.assertEqual(plugin.manager.periodic_names(), ['poll'])
        self.assertTrue(wait_for(lambda: self.port.written.count(b'FA;MD0;TX;') >= 2))
        self.assertNotIn(b'AI1;', bytes(self.port.written))

    def test_icom_always_polls(self):
        plugin = self.make(CivCodec(0x94), type='icom', pollInterval=50)
        plugin.connect()
        self.assertEqual(plugin.manager.periodic_names(), ['poll'])
        self.assertTrue(wait_for(lambda: len(self.port.written) > 0))
        self.assertTrue(bytes(self.port.written).startswith(b'\xfe\xfe\x94\xe0\x03\xfd'))
        self.open_port.assert_called_once_with(plugin.radio, 1)


class TestSilentRadio(UsbPluginTestCase):
    """An open port with a radio that never answers reports the rig offline."""

    def test_unanswered_polls_clear_connected(self):
        plugin = self.make(CivCodec(0x94), type='icom', pollInterval=100)
        plugin.connect()
        self.assertTrue(self.state.connected)
        self.assertTrue(wait_for(lambda: not self.state.connected))
        # The port itself is fine, so no reconnect is attempted
        self.assertTrue(plugin.connected)
        self.assertFalse(plugin.manager.reconnect_pending())

    def test_next_answer_restores_connected(self):
        plugin = self.make(CivCodec(0x94), type='icom', pollInterval=100)
        plugin.connect()
        self.assertTrue(wait_for(lambda: not self.state.connected))
        self.port.inject(b'\xfe\xfe\xe0\x94\x03\x00\x40\x07\x14\x00\xfd')
        self.assertTrue(wait_for(lambda: self.state.connected))
        self.assertEqual(self.state.freq, 14074000)

    def test_answering_radio_stays_connected(self):
        plugin = self.make(YaesuCodec(), autoInfo=False, pollInterval=50)
        plugin.connect()
        deadline = time.monotonic() + 1.5
        while time.monotonic() < deadline:
            self.port.inject(b'FA014074000;')
            time.sleep(0.05)
        self.assertTrue(self.state.connected)

    def test_keepalive_checks_for_silence(self):
        plugin = self.make(YaesuCodec())
        plugin.connect()
        # Push mode: the open-time poll is the outstanding request
        plugin._awaiting_since -= 60
        plugin._keepalive()
        self.assertFalse(self.state.connected)
        self.assertTrue(plugin.connected)


class TestLifecycle(UsbPluginTestCase):

    def test_missing_serial_port(self):
        plugin = self.make(YaesuCodec(), serialPort='')
        plugin.connect()
        self.assertFalse(plugin.connected)
        self.open_port.assert_not_called()
        self.assertFalse(plugin.manager.reconnect_pending())

    def test_open_failure_schedules_reconnect(self):
        self.open_port.side_effect = serial_utils.SerialPortError("Cannot open /dev/ttyUSB0")
        plugin = self.make(YaesuCodec())
        plugin.connect()
        self.assertFalse(plugin.connected)
        self.assertTrue(plugin.manager.reconnect_pending())

    def test_deliberate_disconnect(self):
        plugin = self.make(YaesuCodec())
        plugin.connect()
        plugin.disconnect()
        self.assertFalse(self.port.is_open)
        self.assertFalse(self.state.connected)
        self.assertFalse(plugin.manager.reconnect_pending())
        self.assertEqual(plugin.manager.periodic_names(), [])
        self.assertFalse(plugin.set_ptt(True))

    def test_write_failure_is_connection_loss(self):
        plugin = self.make(YaesuCodec())
        plugin.connect()
        self.port.fail_writes = True
        self.assertFalse(plugin.set_ptt(True))
        self.assertFalse(self.state.connected)
        self.assertTrue(plugin.manager.reconnect_pending())

    def test_read_failure_is_connection_loss(self):
        plugin = self.make(YaesuCodec())
        plugin.connect()
        # Port vanishes underneath the reader
        self.port.is_open = False
        self.assertTrue(wait_for(plugin.manager.reconnect_pending))
        self.assertFalse(self.state.connected)


class TestFactory(unittest.TestCase):

    def test_make_codec(self):
        self.assertIsInstance(make_codec('yaesu', {}), YaesuCodec)
        self.assertIsInstance(make_codec('kenwood', {}), KenwoodCodec)
        codec = make_codec('icom', {'icomAddress': '0x98'})
        self.assertEqual(codec.rig_address, 0x98)
        with self.assertRaises(ValueError):
            make_codec('elecraft-k4', {})

    def test_factory_binds_family(self):
        plugin = usb_factory('kenwood')(radio_config(type='kenwood'), PluginServices(RigState()))
        self.assertEqual(plugin.plugin_id, 'kenwood')
        self.assertIsInstance(plugin.codec, KenwoodCodec)


if __name__ == '__main__':
    unittest.main()
