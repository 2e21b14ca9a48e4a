#!/usr/bin/env python3
"""
FlexRadio SmartSDR plugin.

Line classes received from the radio:
  V<version>                 capability banner
  H<handle>                  client handle assignment
  R<seq>|<code>|<message>    reply to our C<seq> command
  S<handle>|<status>         asynchronous status (key=value pairs)
  M<handle>|<message>        informational message
Outgoing commands are always ``C<seq>|<command>\\n``.
"""

import re
import socket
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..logging_cfg import log, LogLevel
from ..protocols import RigEvent
from .base import PluginServices, RigPlugin

CONNECT_TIMEOUT = 3.0
RECV_TIMEOUT = 1.0
CLIENT_PROGRAM = 'rig-bridge'

# key=value where value may be a quoted string containing spaces
KV_PATTERN = re.compile(r'(\w+)=("(?:[^"\\]|\\.)*"|[^\s]+)')

FLEX_MODES = {
    'USB': 'USB',
    'LSB': 'LSB',
    'CW': 'CW',
    'AM': 'AM',
    'SAM': 'AM',
    'FM': 'FM',
    'NFM': 'FM',
    'DFM': 'FM',
    'DIGU': 'DATA-USB',
    'DIGL': 'DATA-LSB',
    'RTTY': 'RTTY',
}

FLEX_MODE_NAMES = {
    'USB': 'USB',
    'LSB': 'LSB',
    'CW': 'CW',
    'CW-R': 'CW',
    'AM': 'AM',
    'FM': 'FM',
    'DATA-USB': 'DIGU',
    'DATA-LSB': 'DIGL',
    'DATA-FM': 'DFM',
    'RTTY': 'RTTY',
}

ReplyCallback = Callable[[int, str], None]


def parse_status(text: str) -> Dict[str, str]:
    """Parse ``key=value`` pairs, unquoting quoted values."""
    values = {}
    for key, value in KV_PATTERN.findall(text):
        if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
            value = re.sub(r'\\(.)', r'\1', value[1:-1])
        values[key] = value
    return values


class FlexRadioPlugin(RigPlugin):
    plugin_id = 'flexradio'

    def __init__(self, config: Dict[str, Any], services: PluginServices, **kwargs):
        super().__init__(config, services, **kwargs)
        self.host = self.radio.get('flexHost') or '127.0.0.1'
        self.port = int(self.radio.get('flexPort') or 4992)
        self.slice = int(self.radio.get('flexSlice') or 0)
        self._sock: Optional[socket.socket] = None
        self._lock = threading.RLock()
        self._seq = 0
        self._handle: Optional[str] = None
        self._outbox: List[Tuple[str, Optional[ReplyCallback]]] = []
        self._callbacks: Dict[int, Optional[ReplyCallback]] = {}
        self._rx = ''
        self._filter: Dict[str, int] = {}
        self.version: Optional[str] = None

    def _open(self):
        log(f"FlexRadio: connecting to {self.host}:{self.port}")
        sock = socket.create_connection((self.host, self.port), timeout=CONNECT_TIMEOUT)
        sock.settimeout(RECV_TIMEOUT)
        with self._lock:
            self._sock = sock
            self._handle = None
            self._rx = ''
            self._callbacks.clear()
            self._filter.clear()
        threading.Thread(target=self._read_loop, args=(sock,),
                         name='flexradio-reader', daemon=True).start()

    def _close(self):
        with self._lock:
            sock, self._sock = self._sock, None
            self._handle = None
            # Commands never sent and replies never received are dropped
            self._outbox.clear()
            self._callbacks.clear()
            self._rx = ''
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        sock.close()

    def _read_loop(self, sock: socket.socket):
        while sock is self._sock:
            try:
                data = sock.recv(4096)
            except socket.timeout:
                continue
            except OSError as e:
                if sock is self._sock:
                    self._connection_lost(f"socket error: {e}")
                return
            if not data:
                if sock is self._sock:
                    self._connection_lost("connection closed by radio")
                return
            self._on_data(data.decode('utf-8', errors='replace'))

    def _on_data(self, text: str):
        with self._lock:
            self._rx += text
            lines = self._rx.split('\n')
            self._rx = lines.pop()
        for line in lines:
            line = line.strip('\r')
            if line:
                self._on_line(line)

    def _on_line(self, line: str):
        kind, body = line[0], line[1:]
        if kind == 'V':
            self.version = body
            log(f"FlexRadio: SmartSDR API version {body}")
        elif kind == 'H':
            self._on_handle(body)
        elif kind == 'R':
            self._on_reply(body)
        elif kind == 'S':
            _, _, status = body.partition('|')
            self._on_status(status)
        elif kind == 'M':
            _, _, message = body.partition('|')
            log(f"FlexRadio: {message}", LogLevel.DEBUG)
        else:
            log(f"FlexRadio: unrecognized line {line!r}", LogLevel.DEBUG)

    def _on_handle(self, handle: str):
        with self._lock:
            self._handle = handle
            queued, self._outbox = self._outbox, []
        log(f"FlexRadio: connected with handle {handle}")
        self.state.update('connected', True)
        self.send(f"client program {CLIENT_PROGRAM}")
        self.send(f"sub slice {self.slice}")
        for command, callback in queued:
            self.send(command, callback)

    def _on_reply(self, body: str):
        parts = body.split('|', 2)
        try:
            seq = int(parts[0])
            code = int(parts[1], 16) if len(parts) > 1 and parts[1] else 0
        except ValueError:
            log(f"FlexRadio: malformed reply R{body}", LogLevel.DEBUG)
            return
        message = parts[2] if len(parts) > 2 else ''
        with self._lock:
            callback = self._callbacks.pop(seq, None)
        if code != 0:
            log(f"FlexRadio: command {seq} failed with 0x{code:08X} {message}", LogLevel.WARNING)
        if callback is not None:
            try:
                callback(code, message)
            except Exception as e:
                log(f"FlexRadio: reply handler for {seq} failed: {e}", LogLevel.ERROR)

    def _on_status(self, status: str):
        words = status.split(None, 2)
        if len(words) < 2 or words[0] != 'slice':
            return
        try:
            index = int(words[1])
        except ValueError:
            return
        if index != self.slice:
            return
        self._apply(self._slice_events(parse_status(words[2] if len(words) > 2 else '')))

    def _slice_events(self, values: Dict[str, str]) -> List[RigEvent]:
        events = []
        if 'RF_frequency' in values:
            try:
                events.append(RigEvent('freq', int(round(float(values['RF_frequency']) * 1e6))))
            except ValueError:
                pass
        if 'mode' in values:
            mode = values['mode'].upper()
            events.append(RigEvent('mode', FLEX_MODES.get(mode, mode)))
        if 'tx' in values:
            events.append(RigEvent('ptt', values['tx'] == '1'))
        for edge in ('filter_lo', 'filter_hi'):
            if edge in values:
                try:
                    self._filter[edge] = int(values[edge])
                except ValueError:
                    pass
        if 'filter_lo' in self._filter and 'filter_hi' in self._filter:
            events.append(RigEvent('width', abs(self._filter['filter_hi'] - self._filter['filter_lo'])))
        return events

    def send(self, command: str, callback: Optional[ReplyCallback] = None) -> bool:
        """Send C<seq>|command, queueing it until the radio has assigned a handle."""
        with self._lock:
            sock = self._sock
            if sock is None:
                return False
            if self._handle is None:
                self._outbox.append((command, callback))
                return True
            self._seq += 1
            seq = self._seq
            self._callbacks[seq] = callback
            try:
                sock.sendall(f"C{seq}|{command}\n".encode('utf-8'))
                return True
            except OSError as e:
                error = e
        self._connection_lost(f"send failed: {error}")
        return False

    def set_freq(self, hz: int) -> bool:
        if hz < 0:
            return False
        return self.send(f"slice tune {self.slice} {hz / 1e6:.6f}")

    def set_mode(self, mode: str) -> bool:
        name = (mode or '').upper()
        flex_mode = FLEX_MODE_NAMES.get(name)
        if flex_mode is None:
            log(f"FlexRadio: unsupported mode {mode!r}", LogLevel.WARNING)
            return False
        return self.send(f"slice set {self.slice} mode={flex_mode}")

    def set_ptt(self, on: bool) -> bool:
        return self.send(f"xmit {1 if on else 0}")


def create(config: Dict[str, Any], services: PluginServices) -> FlexRadioPlugin:
    return FlexRadioPlugin(config, services)
