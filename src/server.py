#!/usr/bin/env python3
"""
HTTP and Server-Sent Events gateway for rig-bridge.

Serves the rig status snapshot, a live change stream, the three rig
commands, and the configuration sub-API used by the setup page.
"""

import json
import math
import queue
from typing import Any, Dict, Iterator, Optional

from flask import Flask, Response, jsonify, request

from . import serial_utils
from .config import ConfigError, ConfigStore
from .logging_cfg import LogStreamHandler, log, LogLevel, log_stream as default_log_stream
from .registry import PluginRegistry, UnknownPlugin
from .state import RigState, SUBSCRIBER_QUEUE_SIZE
from .version import __version__

# Comment line sent on idle streams so proxies keep the connection open
KEEPALIVE_INTERVAL = 15.0
KEEPALIVE_COMMENT = ': keep-alive\n\n'

SSE_HEADERS = {
    'Cache-Control': 'no-cache',
    'X-Accel-Buffering': 'no',
}


def sse_format(payload: Any, event: Optional[str] = None) -> str:
    """Encode one SSE message, optionally as a named event."""
    data = json.dumps(payload)
    if event:
        return f"event: {event}\ndata: {data}\n\n"
    return f"data: {data}\n\n"


def state_events(state: RigState, keepalive: float = KEEPALIVE_INTERVAL) -> Iterator[str]:
    """Yield the initial snapshot, then every change until the client goes away.

    The subscription is released when the generator is closed, which Flask
    does when the client disconnects.
    """
    sub, snapshot = state.open_stream()
    try:
        initial = {'type': 'init'}
        initial.update(snapshot)
        yield sse_format(initial)
        while not sub.closed:
            event = sub.get(timeout=keepalive)
            if event is None:
                yield KEEPALIVE_COMMENT
                continue
            yield sse_format(event)
    finally:
        state.close_stream(sub)


def log_events(stream: LogStreamHandler, keepalive: float = KEEPALIVE_INTERVAL) -> Iterator[str]:
    """Yield buffered log history as one ``history`` event, then each new ``line``."""
    lines = queue.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
    # put_nowait raises queue.Full on a stalled client, which drops the listener
    listener = lines.put_nowait
    stream.add_listener(listener)
    try:
        yield sse_format(stream.history(), event='history')
        while True:
            try:
                entry = lines.get(timeout=keepalive)
            except queue.Empty:
                yield KEEPALIVE_COMMENT
                continue
            yield sse_format(entry, event='line')
    finally:
        stream.remove_listener(listener)


def _error(message: str, status: int):
    return jsonify({'success': False, 'error': message}), status


def _json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _parse_freq(value: Any) -> Optional[int]:
    """Accept a finite, non-negative Hz value, also as a numeric string."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    # NaN, Infinity and out-of-range literals such as 1e400 are not frequencies
    if isinstance(value, float) and not math.isfinite(value):
        return None
    try:
        hz = int(value)
    except (OverflowError, ValueError):
        return None
    return hz if hz >= 0 else None


def create_app(config_store: ConfigStore, registry: PluginRegistry,
               state: Optional[RigState] = None,
               log_stream: Optional[LogStreamHandler] = None) -> Flask:
    """Build the Flask application around the shared services.

    Args:
        config_store: Live configuration
        registry: Plugin registry owning the active rig plugin
        state: Shared rig state (defaults to the registry's)
        log_stream: Log sink for /api/log/stream (defaults to the process sink)

    Returns:
        Configured Flask app with plugin routes registered
    """
    state = state or registry.services.state
    log_stream = log_stream or default_log_stream

    app = Flask(__name__)

    @app.after_request
    def add_cors_headers(response):
        response.headers['Access-Control-Allow-Origin'] = '*'
        response.headers['Access-Control-Allow-Methods'] = 'GET, POST, OPTIONS'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type'
        return response

    @app.route('/')
    def health():
        return jsonify({
            'status': 'ok',
            'connected': state.connected,
            'version': __version__,
            'radio': config_store.radio_type,
        })

    @app.route('/status')
    def status():
        return jsonify(state.snapshot())

    @app.route('/stream')
    def stream():
        return Response(state_events(state), mimetype='text/event-stream',
                        headers=SSE_HEADERS)

    @app.route('/freq', methods=['POST'])
    def set_freq():
        body = _json_body()
        hz = _parse_freq(body.get('freq'))
        if hz is None:
            return _error('Missing or invalid freq', 400)
        return jsonify({'success': registry.dispatch('set_freq', hz)})

    @app.route('/mode', methods=['POST'])
    def set_mode():
        mode = _json_body().get('mode')
        if not mode or not isinstance(mode, str):
            return _error('Missing mode', 400)
        return jsonify({'success': registry.dispatch('set_mode', mode)})

    @app.route('/ptt', methods=['POST'])
    def set_ptt():
        body = _json_body()
        if 'ptt' not in body:
            return _error('Missing ptt', 400)
        ptt = body['ptt']
        if not isinstance(ptt, bool):
            return _error('ptt must be true or false', 400)
        if ptt and not config_store.ptt_enabled:
            log("Rejected PTT request: PTT disabled in configuration", LogLevel.WARNING)
            return _error('PTT disabled in configuration', 403)
        return jsonify({'success': registry.dispatch('set_ptt', ptt)})

    @app.route('/api/plugins')
    def plugins():
        return jsonify({'plugins': registry.list(), 'active': registry.active_id})

    @app.route('/api/ports')
    def ports():
        return jsonify(serial_utils.list_ports())

    @app.route('/api/config', methods=['GET'])
    def get_config():
        return jsonify(config_store.snapshot())

    @app.route('/api/config', methods=['POST'])
    def post_config():
        body = request.get_json(silent=True)
        try:
            radio_changed = config_store.update(body)
        except ConfigError as e:
            return _error(str(e), 400)
        config_store.save()
        if radio_changed:
            log(f"Radio configuration changed, switching to '{config_store.radio_type}'")
            try:
                registry.switch_plugin(config_store.radio_type)
            except UnknownPlugin as e:
                log(str(e), LogLevel.ERROR)
        return jsonify({'success': True, 'config': config_store.snapshot()})

    @app.route('/api/test', methods=['POST'])
    def test_serial():
        body = _json_body()
        radio = config_store.radio()
        path = body.get('serialPort') or radio.get('serialPort')
        baud_rate = body.get('baudRate') or radio.get('baudRate')
        if not path:
            return jsonify({'success': False, 'error': 'No serial port specified'})
        try:
            message = serial_utils.test_port(path, int(baud_rate))
        except (serial_utils.SerialPortError, TypeError, ValueError) as e:
            return jsonify({'success': False, 'error': str(e)})
        return jsonify({'success': True, 'message': message})

    @app.route('/api/log/stream')
    def log_stream_route():
        if not config_store.logging_enabled:
            return _error('Log streaming is disabled', 404)
        return Response(log_events(log_stream), mimetype='text/event-stream',
                        headers=SSE_HEADERS)

    registry.register_routes(app)
    return app
