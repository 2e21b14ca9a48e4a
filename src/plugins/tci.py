#!/usr/bin/env python3
"""
TCI (Transceiver Control Interface) plugin over WebSocket.

Push-driven: after ``START;`` the SDR application streams
``COMMAND:arg1,arg2;`` text commands, several per frame.
"""

import re
import threading
from typing import Any, Dict, List, Optional

import websocket

from ..logging_cfg import log, LogLevel
from ..protocols import RigEvent
from .base import PluginServices, RigPlugin

CONNECT_TIMEOUT = 5.0

TCI_MODES = {
    'USB': 'USB',
    'LSB': 'LSB',
    'CW': 'CW',
    'AM': 'AM',
    'SAM': 'AM',
    'DSB': 'AM',
    'NFM': 'FM',
    'FM': 'FM',
    'WFM': 'WFM',
    'DIGU': 'DATA-USB',
    'DIGL': 'DATA-LSB',
}

TCI_MODE_NAMES = {
    'USB': 'usb',
    'LSB': 'lsb',
    'CW': 'cw',
    'CW-R': 'cw',
    'AM': 'am',
    'FM': 'nfm',
    'WFM': 'wfm',
    'DATA-USB': 'digu',
    'DATA-LSB': 'digl',
}

INFO_COMMANDS = ('TRX_COUNT', 'VFO_LIMITS', 'IF_LIMITS', 'MODULATIONS_LIST', 'CHANNELS_COUNT')

SPLIT_PATTERN = re.compile(r'[;\r\n]+')


def split_commands(payload: str) -> List[str]:
    """Split one frame into individual commands without their terminators."""
    return [part.strip() for part in SPLIT_PATTERN.split(payload) if part.strip()]


class TciPlugin(RigPlugin):
    plugin_id = 'tci'

    def __init__(self, config: Dict[str, Any], services: PluginServices, **kwargs):
        super().__init__(config, services, **kwargs)
        self.host = self.radio.get('tciHost') or '127.0.0.1'
        self.port = int(self.radio.get('tciPort') or 40001)
        self.trx = int(self.radio.get('tciTrx') or 0)
        self.vfo = int(self.radio.get('tciVfo') or 0)
        self._ws: Optional[websocket.WebSocket] = None
        self._lock = threading.Lock()
        self.device: Optional[str] = None
        self.protocol: Optional[str] = None

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"

    def _open(self):
        log(f"TCI: connecting to {self.url}")
        ws = websocket.create_connection(self.url, timeout=CONNECT_TIMEOUT)
        # Block in recv() until data arrives or the socket closes
        ws.settimeout(None)
        with self._lock:
            self._ws = ws
        threading.Thread(target=self._read_loop, args=(ws,),
                         name='tci-reader', daemon=True).start()
        self.state.update('connected', True)
        if not self._send('START;'):
            raise ConnectionError("TCI server closed before START")

    def _close(self):
        with self._lock:
            ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            ws.close()
        except (websocket.WebSocketException, OSError) as e:
            log(f"TCI: error closing websocket: {e}", LogLevel.DEBUG)

    def _read_loop(self, ws):
        while ws is self._ws:
            try:
                message = ws.recv()
            except (websocket.WebSocketException, OSError) as e:
                if ws is self._ws:
                    self._connection_lost(f"websocket error: {e}")
                return
            if isinstance(message, bytes):
                # Binary frames carry audio/IQ streams
                continue
            if not message:
                if not ws.connected:
                    if ws is self._ws:
                        self._connection_lost("websocket closed by server")
                    return
                continue
            self._on_message(message)

    def _on_message(self, payload: str):
        events: List[RigEvent] = []
        for command in split_commands(payload):
            events.extend(self._decode(command))
        self._apply(events)

    def _decode(self, command: str) -> List[RigEvent]:
        name, _, arg_text = command.partition(':')
        name = name.strip().upper()
        args = [a.strip() for a in arg_text.split(',')] if arg_text else []

        try:
            if name == 'VFO' and len(args) >= 3:
                if int(args[0]) == self.trx and int(args[1]) == self.vfo:
                    return [RigEvent('freq', int(float(args[2])))]
            elif name == 'MODULATION' and len(args) >= 2:
                if int(args[0]) == self.trx:
                    mode = args[1].upper()
                    return [RigEvent('mode', TCI_MODES.get(mode, mode))]
            elif name == 'TRX' and len(args) >= 2:
                if int(args[0]) == self.trx:
                    return [RigEvent('ptt', args[1].lower() == 'true')]
            elif name == 'RX_FILTER_BAND' and len(args) >= 3:
                if int(args[0]) == self.trx:
                    return [RigEvent('width', abs(int(args[2]) - int(args[1])))]
            elif name == 'PROTOCOL':
                self.protocol = ','.join(args)
                log(f"TCI: protocol {self.protocol}")
            elif name == 'DEVICE':
                self.device = ','.join(args)
                log(f"TCI: device {self.device}")
            elif name == 'READY':
                log("TCI: server ready")
            elif name in INFO_COMMANDS:
                log(f"TCI: {name} {','.join(args)}", LogLevel.DEBUG)
        except ValueError:
            log(f"TCI: malformed command {command!r}", LogLevel.DEBUG)
        return []

    def _send(self, command: str) -> bool:
        with self._lock:
            ws = self._ws
        if ws is None:
            return False
        try:
            ws.send(command)
            return True
        except (websocket.WebSocketException, OSError) as e:
            self._connection_lost(f"send failed: {e}")
            return False

    def set_freq(self, hz: int) -> bool:
        if hz < 0:
            return False
        return self._send(f"VFO:{self.trx},{self.vfo},{int(hz)};")

    def set_mode(self, mode: str) -> bool:
        name = (mode or '').upper()
        tci_mode = TCI_MODE_NAMES.get(name)
        if tci_mode is None:
            log(f"TCI: unsupported mode {mode!r}", LogLevel.WARNING)
            return False
        return self._send(f"MODULATION:{self.trx},{tci_mode};")

    def set_ptt(self, on: bool) -> bool:
        return self._send(f"TRX:{self.trx},{'true' if on else 'false'};")


def create(config: Dict[str, Any], services: PluginServices) -> TciPlugin:
    return TciPlugin(config, services)
