#!/usr/bin/env python3
"""
flrig plugin: polls flrig's XML-RPC interface for VFO, mode, PTT and bandwidth.
"""

import http.client
import threading
import xmlrpc.client
from typing import Any, Dict, List, Optional

from ..logging_cfg import log, LogLevel
from ..protocols import RigEvent
from .base import PluginServices, RigPlugin

RPC_TIMEOUT = 3.0

# Transport-level failures; an xmlrpc Fault is an application error and is not fatal
TRANSPORT_ERRORS = (OSError, http.client.HTTPException, xmlrpc.client.ProtocolError)

FLRIG_MODE_NAMES = {
    'USB': 'USB',
    'LSB': 'LSB',
    'CW': 'CW',
    'CW-R': 'CW-R',
    'AM': 'AM',
    'FM': 'FM',
    'RTTY': 'RTTY',
    'RTTY-R': 'RTTY-R',
    'DATA-USB': 'USB-D',
    'DATA-LSB': 'LSB-D',
    'DATA-FM': 'FM-D',
}


def normalize_flrig_mode(name: str) -> str:
    """Map the rig-specific mode names flrig reports onto the canonical vocabulary."""
    mode = (name or '').strip().upper()
    is_data = any(tag in mode for tag in ('-D', 'DATA', 'PKT', 'DIG'))
    if 'USB' in mode or mode in ('DIGU', 'DATA-U', 'PKT-U'):
        return 'DATA-USB' if is_data else 'USB'
    if 'LSB' in mode or mode in ('DIGL', 'DATA-L', 'PKT-L'):
        return 'DATA-LSB' if is_data else 'LSB'
    if mode in ('CWR', 'CW-R', 'CW-L'):
        return 'CW-R'
    if mode.startswith('CW'):
        return 'CW'
    if mode in ('RTTYR', 'RTTY-R', 'FSK-R', 'RTTY-U'):
        return 'RTTY-R'
    if mode.startswith('RTTY') or mode.startswith('FSK'):
        return 'RTTY'
    if 'FM' in mode:
        if mode.startswith('W'):
            return 'WFM'
        return 'DATA-FM' if is_data else 'FM'
    if 'AM' in mode:
        return 'AM'
    return mode


def parse_bandwidth(value: Any) -> int:
    """flrig returns bandwidth as a string or a [bw, shift] pair."""
    if isinstance(value, (list, tuple)):
        value = value[0] if value else ''
    try:
        return int(float(str(value).strip()))
    except ValueError:
        return 0


class TimeoutTransport(xmlrpc.client.Transport):
    """XML-RPC transport whose HTTP connection gives up after a timeout."""

    def __init__(self, timeout: float = RPC_TIMEOUT):
        super().__init__()
        self.timeout = timeout

    def make_connection(self, host):
        conn = super().make_connection(host)
        conn.timeout = self.timeout
        return conn


class FlrigPlugin(RigPlugin):
    plugin_id = 'flrig'

    def __init__(self, config: Dict[str, Any], services: PluginServices, **kwargs):
        super().__init__(config, services, **kwargs)
        self.host = self.radio.get('flrigHost') or '127.0.0.1'
        self.port = int(self.radio.get('flrigPort') or 12345)
        self._proxy: Optional[xmlrpc.client.ServerProxy] = None
        # ServerProxy is not safe for concurrent calls
        self._rpc_lock = threading.Lock()

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/RPC2"

    def make_proxy(self) -> xmlrpc.client.ServerProxy:
        return xmlrpc.client.ServerProxy(self.url, transport=TimeoutTransport(RPC_TIMEOUT),
                                         allow_none=True)

    def _open(self):
        log(f"flrig: connecting to {self.url}")
        proxy = self.make_proxy()
        with self._rpc_lock:
            # Probe: fails fast if flrig is not running
            proxy.rig.get_vfo()
            self._proxy = proxy
        self.state.update('connected', True)
        self.manager.start_periodic('poll', self.poll_interval, self._poll, run_immediately=True)

    def _close(self):
        with self._rpc_lock:
            self._proxy = None

    def _call(self, method: str, *args):
        """Invoke rig.<method>; transport failures are reported as a lost connection."""
        with self._rpc_lock:
            proxy = self._proxy
            if proxy is None:
                return None
            try:
                return getattr(proxy.rig, method)(*args)
            except xmlrpc.client.Fault as e:
                log(f"flrig: rig.{method} fault {e.faultCode}: {e.faultString}", LogLevel.WARNING)
                return None
            except TRANSPORT_ERRORS as e:
                error = e
        self._connection_lost(f"rig.{method} failed: {error}")
        raise ConnectionError(str(error))

    def _poll(self):
        try:
            events = self._read_state()
        except ConnectionError:
            return
        self._apply(events)

    def _read_state(self) -> List[RigEvent]:
        events = []
        vfo = self._call('get_vfo')
        if vfo not in (None, ''):
            try:
                events.append(RigEvent('freq', int(float(vfo))))
            except ValueError:
                pass
        mode = self._call('get_mode')
        if mode:
            events.append(RigEvent('mode', normalize_flrig_mode(mode)))
        ptt = self._call('get_ptt')
        if ptt not in (None, ''):
            try:
                events.append(RigEvent('ptt', int(ptt) != 0))
            except ValueError:
                pass
        bandwidth = parse_bandwidth(self._call('get_bw'))
        if bandwidth > 0:
            events.append(RigEvent('width', bandwidth))
        return events

    def _command(self, method: str, *args) -> bool:
        try:
            self._call(method, *args)
        except ConnectionError:
            return False
        return self._proxy is not None

    def set_freq(self, hz: int) -> bool:
        if hz < 0:
            return False
        return self._command('set_vfo', float(hz))

    def set_mode(self, mode: str) -> bool:
        name = (mode or '').upper()
        return self._command('set_mode', FLRIG_MODE_NAMES.get(name, name))

    def set_ptt(self, on: bool) -> bool:
        return self._command('set_ptt', 1 if on else 0)


def create(config: Dict[str, Any], services: PluginServices) -> FlrigPlugin:
    return FlrigPlugin(config, services)
