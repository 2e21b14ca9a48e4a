#!/usr/bin/env python3
"""
Unit tests for the HTTP/SSE gateway using the Flask test client and the
in-memory mock rig.
"""

import json
import logging
import os
import tempfile
import unittest
import unittest.mock as mock

from rig_bridge import serial_utils
from rig_bridge.config import ConfigStore
from rig_bridge.logging_cfg import LogStreamHandler
from rig_bridge.plugins.base import PluginServices
from rig_bridge.registry import PluginRegistry
from rig_bridge.server import KEEPALIVE_COMMENT, create_app, log_events, sse_format, state_events
from rig_bridge.state import RigState
from rig_bridge.version import __version__


class GatewayTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.config_path = os.path.join(self.tmpdir.name, 'config.json')
        self.store = ConfigStore(self.config_path)
        self.state = RigState()
        self.registry = PluginRegistry(self.store, PluginServices(self.state))
        self.registry.register_builtins()
        self.log_stream = LogStreamHandler()
        self.app = create_app(self.store, self.registry, self.state, self.log_stream)
        self.client = self.app.test_client()

    def tearDown(self):
        self.registry.shutdown()
        self.tmpdir.cleanup()

    def use_mock(self):
        return self.registry.switch_plugin('mock')


class TestStatusEndpoints(GatewayTestCase):

    def test_health(self):
        resp = self.client.get('/')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json(), {
            'status': 'ok',
            'connected': False,
            'version': __version__,
            'radio': 'none',
        })

    def test_status_snapshot(self):
        self.use_mock()
        status = self.client.get('/status').get_json()
        self.assertTrue(status['connected'])
        self.assertEqual(status['freq'], 14074000)
        self.assertEqual(status['mode'], 'USB')
        self.assertEqual(status['width'], 2400)
        self.assertFalse(status['ptt'])
        self.assertGreater(status['timestamp'], 0)

    def test_cors_headers(self):
        resp = self.client.get('/status')
        self.assertEqual(resp.headers['Access-Control-Allow-Origin'], '*')

        resp = self.client.options('/freq')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.headers['Access-Control-Allow-Origin'], '*')
        self.assertIn('POST', resp.headers['Access-Control-Allow-Methods'])

    def test_stream_response(self):
        resp = self.client.get('/stream')
        try:
            self.assertEqual(resp.status_code, 200)
            self.assertEqual(resp.mimetype, 'text/event-stream')
            self.assertEqual(resp.headers['Cache-Control'], 'no-cache')
        finally:
            resp.close()


class TestCommandEndpoints(GatewayTestCase):

    def test_freq(self):
        self.assertEqual(self.client.post('/freq', json={}).status_code, 400)
        self.assertEqual(self.client.post('/freq', json={'freq': -5}).status_code, 400)
        self.assertEqual(self.client.post('/freq', json={'freq': True}).status_code, 400)
        for raw in ('{"freq": NaN}', '{"freq": Infinity}', '{"freq": -Infinity}', '{"freq": 1e400}'):
            resp = self.client.post('/freq', data=raw, content_type='application/json')
            self.assertEqual(resp.status_code, 400, raw)
        for text in ('nan', 'inf', '1e400', 'abc', ''):
            self.assertEqual(self.client.post('/freq', json={'freq': text}).status_code, 400, text)

        # Accepted but nothing is active to carry it out
        resp = self.client.post('/freq', json={'freq': 7074000})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json(), {'success': False})

        self.use_mock()
        resp = self.client.post('/freq', json={'freq': '7074000'})
        self.assertEqual(resp.get_json(), {'success': True})
        self.assertEqual(self.state.freq, 7074000)

    def test_mode(self):
        self.assertEqual(self.client.post('/mode', json={'mode': ''}).status_code, 400)
        self.use_mock()
        resp = self.client.post('/mode', json={'mode': 'cw'})
        self.assertEqual(resp.get_json(), {'success': True})
        self.assertEqual(self.state.mode, 'CW')

    def test_ptt_disabled(self):
        self.use_mock()
        self.assertEqual(self.client.post('/ptt', json={}).status_code, 400)
        resp = self.client.post('/ptt', json={'ptt': True})
        self.assertEqual(resp.status_code, 403)
        self.assertFalse(self.state.ptt)
        # Unkeying is always allowed
        resp = self.client.post('/ptt', json={'ptt': False})
        self.assertEqual(resp.get_json(), {'success': True})

    def test_ptt_requires_boolean(self):
        self.store.update({'radio': {'pttEnabled': True}})
        self.use_mock()
        for value in ('false', 'true', 0, 1, None, []):
            resp = self.client.post('/ptt', json={'ptt': value})
            self.assertEqual(resp.status_code, 400, value)
        self.assertFalse(self.state.ptt)

    def test_ptt_enabled(self):
        self.store.update({'radio': {'pttEnabled': True}})
        self.use_mock()
        resp = self.client.post('/ptt', json={'ptt': True})
        self.assertEqual(resp.get_json(), {'success': True})
        self.assertTrue(self.state.ptt)


class TestConfigApi(GatewayTestCase):

    def test_get_config(self):
        config = self.client.get('/api/config').get_json()
        self.assertEqual(config['radio']['type'], 'none')
        self.assertIn('port', config)

    def test_switch_radio(self):
        resp = self.client.post('/api/config', json={'radio': {'type': 'mock'}})
        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()
        self.assertTrue(body['success'])
        self.assertEqual(body['config']['radio']['type'], 'mock')
        self.assertEqual(self.registry.active_id, 'mock')
        self.assertTrue(self.state.connected)

        with open(self.config_path) as f:
            self.assertEqual(json.load(f)['radio']['type'], 'mock')

    def test_unchanged_radio_keeps_instance(self):
        self.client.post('/api/config', json={'radio': {'type': 'mock'}})
        plugin = self.registry.active
        self.client.post('/api/config', json={'logging': True})
        self.assertIs(self.registry.active, plugin)

    def test_rejects_unknown_type(self):
        self.use_mock()
        plugin = self.registry.active
        resp = self.client.post('/api/config', json={'radio': {'type': 'morse-lamp'}})
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(resp.get_json()['success'])
        self.assertIs(self.registry.active, plugin)
        self.assertEqual(self.store.radio_type, 'none')

    def test_rejects_non_object(self):
        resp = self.client.post('/api/config', data='radio=mock', content_type='text/plain')
        self.assertEqual(resp.status_code, 400)

    def test_plugins(self):
        self.use_mock()
        body = self.client.get('/api/plugins').get_json()
        self.assertEqual(body['active'], 'mock')
        self.assertIn({'id': 'rigctld', 'name': 'Hamlib rigctld', 'category': 'rig'}, body['plugins'])
        self.assertEqual(len(body['plugins']), 8)


class TestSerialApi(GatewayTestCase):

    def test_ports(self):
        ports = [{'path': '/dev/ttyUSB0', 'manufacturer': 'Silicon Labs',
                  'serialNumber': None, 'vendorId': '10c4', 'productId': 'ea60'}]
        with mock.patch('rig_bridge.serial_utils.list_ports', return_value=ports):
            self.assertEqual(self.client.get('/api/ports').get_json(), ports)

    def test_port_test_success(self):
        with mock.patch('rig_bridge.serial_utils.test_port', return_value='ok') as test_port:
            resp = self.client.post('/api/test', json={'serialPort': '/dev/ttyUSB0', 'baudRate': 9600})
        self.assertEqual(resp.get_json(), {'success': True, 'message': 'ok'})
        test_port.assert_called_once_with('/dev/ttyUSB0', 9600)

    def test_port_test_failure(self):
        error = serial_utils.SerialPortError('could not open port /dev/ttyUSB9')
        with mock.patch('rig_bridge.serial_utils.test_port', side_effect=error):
            resp = self.client.post('/api/test', json={'serialPort': '/dev/ttyUSB9'})
        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()
        self.assertFalse(body['success'])
        self.assertIn('/dev/ttyUSB9', body['error'])

    def test_port_test_without_port(self):
        resp = self.client.post('/api/test', json={})
        self.assertFalse(resp.get_json()['success'])


class TestMockStateRoute(GatewayTestCase):

    def test_requires_mock(self):
        resp = self.client.post('/api/mock/state', json={'freq': 7074000})
        self.assertEqual(resp.status_code, 409)

    def test_simulated_change(self):
        self.use_mock()
        resp = self.client.post('/api/mock/state', json={'freq': 7074000, 'mode': 'lsb'})
        self.assertEqual(resp.get_json(), {'success': True, 'changed': 2})
        self.assertEqual(self.state.freq, 7074000)
        self.assertEqual(self.state.mode, 'LSB')

    def test_bad_values(self):
        self.use_mock()
        self.assertEqual(self.client.post('/api/mock/state', json={'freq': 'abc'}).status_code, 400)
        self.assertEqual(self.client.post('/api/mock/state', json=[1, 2]).status_code, 400)


class TestLogStream(GatewayTestCase):

    def test_disabled(self):
        self.store.update({'logging': False})
        self.assertEqual(self.client.get('/api/log/stream').status_code, 404)

    def test_enabled(self):
        resp = self.client.get('/api/log/stream')
        try:
            self.assertEqual(resp.status_code, 200)
            self.assertEqual(resp.mimetype, 'text/event-stream')
        finally:
            resp.close()


def make_record(msg, level=logging.INFO):
    return logging.LogRecord('rig_bridge', level, __file__, 1, msg, None, None)


class TestEventGenerators(unittest.TestCase):

    def test_sse_format(self):
        self.assertEqual(sse_format({'a': 1}), 'data: {"a": 1}\n\n')
        self.assertEqual(sse_format([], event='history'), 'event: history\ndata: []\n\n')

    def test_state_events(self):
        state = RigState()
        state.update('freq', 7074000)
        events = state_events(state, keepalive=0.05)

        first = next(events)
        self.assertTrue(first.startswith('data: '))
        initial = json.loads(first[len('data: '):])
        self.assertEqual(initial['type'], 'init')
        self.assertEqual(initial['freq'], 7074000)
        self.assertEqual(state.hub.count(), 1)

        state.update('mode', 'CW')
        self.assertEqual(next(events), sse_format({'type': 'update', 'prop': 'mode', 'value': 'CW'}))
        self.assertEqual(next(events), KEEPALIVE_COMMENT)

        events.close()
        self.assertEqual(state.hub.count(), 0)

    def test_state_events_end_when_dropped(self):
        state = RigState()
        events = state_events(state, keepalive=0.05)
        next(events)
        sub = list(state.hub._subscribers.values())[0]
        state.hub.unsubscribe(sub)
        self.assertEqual(list(events), [])

    def test_log_events(self):
        stream = LogStreamHandler()
        stream.handle(make_record('Rig bridge starting'))
        events = log_events(stream, keepalive=0.05)

        history = next(events)
        self.assertTrue(history.startswith('event: history\n'))
        self.assertIn('Rig bridge starting', history)
        self.assertEqual(stream.listener_count(), 1)

        stream.handle(make_record('Connected to rigctld', logging.WARNING))
        line = next(events)
        self.assertTrue(line.startswith('event: line\n'))
        entry = json.loads(line.split('data: ', 1)[1])
        self.assertEqual(entry['level'], 'warning')
        self.assertEqual(entry['text'], 'Connected to rigctld')
        self.assertEqual(next(events), KEEPALIVE_COMMENT)

        events.close()
        self.assertEqual(stream.listener_count(), 0)


if __name__ == '__main__':
    unittest.main()
