#!/usr/bin/env python3
"""
Hamlib rigctld plugin.

rigctld answers strictly in request order with no correlation id, so
requests go through a FIFO queue with a single request in flight: the
next line received always belongs to the oldest outstanding request.
"""

import socket
import threading
import time
from collections import deque
from typing import Any, Dict, List, Optional

from ..logging_cfg import log, LogLevel
from ..protocols import RigEvent
from .base import PluginServices, RigPlugin

CONNECT_TIMEOUT = 3.0
RECV_TIMEOUT = 1.0
# A request unanswered for this long (or 3 poll intervals) means a dead link
MIN_RESPONSE_TIMEOUT = 5.0

RIGCTLD_MODES = {
    'USB': 'USB',
    'LSB': 'LSB',
    'CW': 'CW',
    'CWR': 'CW-R',
    'AM': 'AM',
    'FM': 'FM',
    'WFM': 'WFM',
    'RTTY': 'RTTY',
    'RTTYR': 'RTTY-R',
    'PKTUSB': 'DATA-USB',
    'PKTLSB': 'DATA-LSB',
    'PKTFM': 'DATA-FM',
}

RIGCTLD_MODE_NAMES = {name: code for code, name in RIGCTLD_MODES.items()}


class Request:
    """One queued rigctld command awaiting its answer."""

    def __init__(self, command: str, kind: str):
        self.command = command
        self.kind = kind
        self.lines: List[str] = []
        self.sent_at: Optional[float] = None

    def __repr__(self):
        return f"<Request {self.command!r}>"


class RigctldPlugin(RigPlugin):
    plugin_id = 'rigctld'

    def __init__(self, config: Dict[str, Any], services: PluginServices, **kwargs):
        super().__init__(config, services, **kwargs)
        self.host = self.radio.get('rigctldHost') or '127.0.0.1'
        self.port = int(self.radio.get('rigctldPort') or 4532)
        self._sock: Optional[socket.socket] = None
        self._lock = threading.RLock()
        self._queue = deque()
        self._pending: Optional[Request] = None
        self._rx = ''

    @property
    def response_timeout(self) -> float:
        return max(MIN_RESPONSE_TIMEOUT, 3 * self.poll_interval)

    def _open(self):
        log(f"rigctld: connecting to {self.host}:{self.port}")
        sock = socket.create_connection((self.host, self.port), timeout=CONNECT_TIMEOUT)
        sock.settimeout(RECV_TIMEOUT)
        with self._lock:
            self._sock = sock
            self._queue.clear()
            self._pending = None
            self._rx = ''
        threading.Thread(target=self._read_loop, args=(sock,),
                         name='rigctld-reader', daemon=True).start()
        self.state.update('connected', True)
        self.manager.start_periodic('poll', self.poll_interval, self._poll, run_immediately=True)

    def _close(self):
        with self._lock:
            sock, self._sock = self._sock, None
            # Queued and in-flight requests are discarded, not retried
            self._queue.clear()
            self._pending = None
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
                self._check_stalled()
                continue
            except OSError as e:
                if sock is self._sock:
                    self._connection_lost(f"socket error: {e}")
                return
            if not data:
                if sock is self._sock:
                    self._connection_lost("connection closed by rigctld")
                return
            self._on_data(data.decode('utf-8', errors='replace'))

    def _on_data(self, text: str):
        """Split received text into lines and answer pending requests in order."""
        with self._lock:
            self._rx += text
            lines = self._rx.split('\n')
            self._rx = lines.pop()
        for line in lines:
            self._on_line(line.strip('\r'))

    def _on_line(self, line: str):
        # Blank lines answer nothing and must not consume the pending request
        if not line.strip():
            return
        with self._lock:
            req = self._pending
            if req is None:
                log(f"rigctld: unsolicited line {line!r}", LogLevel.DEBUG)
                return
            done, events = self._interpret(req, line)
            if done:
                self._pending = None
        self._apply(events)
        if done:
            self._send_next()

    def _interpret(self, req: Request, line: str):
        """Return (request complete, events) for one answer line."""
        line = line.strip()
        if line.startswith('RPRT'):
            code = line[4:].strip()
            if code not in ('0', ''):
                log(f"rigctld: '{req.command}' failed with RPRT {code}", LogLevel.WARNING)
            return True, []

        try:
            if req.kind == 'f':
                return True, [RigEvent('freq', int(float(line)))]
            if req.kind == 'm':
                if not req.lines:
                    if ' ' in line:
                        # Some builds answer mode and passband on one line
                        mode, width = line.split(None, 1)
                        return True, self._mode_events(mode, width)
                    req.lines.append(line)
                    return False, []
                return True, self._mode_events(req.lines[0], line)
            if req.kind == 't':
                return True, [RigEvent('ptt', line == '1')]
        except ValueError:
            log(f"rigctld: unexpected answer {line!r} to '{req.command}'", LogLevel.DEBUG)
            return True, []

        log(f"rigctld: unexpected answer {line!r} to '{req.command}'", LogLevel.DEBUG)
        return True, []

    @staticmethod
    def _mode_events(mode: str, width: str) -> List[RigEvent]:
        events = []
        name = RIGCTLD_MODES.get(mode.strip().upper(), mode.strip().upper())
        if name:
            events.append(RigEvent('mode', name))
        try:
            hz = int(width.strip())
        except ValueError:
            hz = 0
        if hz > 0:
            events.append(RigEvent('width', hz))
        return events

    def _enqueue(self, command: str, kind: str) -> bool:
        with self._lock:
            if self._sock is None:
                return False
            self._queue.append(Request(command, kind))
        self._send_next()
        return True

    def _send_next(self):
        with self._lock:
            if self._pending is not None or not self._queue or self._sock is None:
                return
            req = self._queue.popleft()
            req.sent_at = time.monotonic()
            self._pending = req
            sock = self._sock
        try:
            sock.sendall((req.command + '\n').encode('ascii'))
        except OSError as e:
            self._connection_lost(f"send failed: {e}")

    def _check_stalled(self) -> bool:
        with self._lock:
            req = self._pending
            stalled = (req is not None and req.sent_at is not None
                       and time.monotonic() - req.sent_at > self.response_timeout)
        if stalled:
            self._connection_lost(f"no answer to '{req.command}'")
        return stalled

    def _poll(self):
        if self._check_stalled():
            return
        with self._lock:
            if self._queue or self._pending is not None:
                return
        for command in ('f', 'm', 't'):
            self._enqueue(command, command)

    def set_freq(self, hz: int) -> bool:
        if hz < 0:
            return False
        return self._enqueue(f"F {int(hz)}", 'set')

    def set_mode(self, mode: str) -> bool:
        name = (mode or '').upper()
        code = RIGCTLD_MODE_NAMES.get(name, name)
        if not code:
            return False
        return self._enqueue(f"M {code} 0", 'set')

    def set_ptt(self, on: bool) -> bool:
        return self._enqueue(f"T {1 if on else 0}", 'set')


def create(config: Dict[str, Any], services: PluginServices) -> RigctldPlugin:
    return RigctldPlugin(config, services)
