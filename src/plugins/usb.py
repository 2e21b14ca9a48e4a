#!/usr/bin/env python3
"""
USB serial plugin: one serial-lifecycle shell shared by the Yaesu,
Kenwood and Icom families, each plugging in its own wire codec.
"""

import threading
import time
from typing import Any, Dict, Optional

import serial

from .. import serial_utils
from ..connection_manager import ConnectionState, RECONNECT_DELAY
from ..logging_cfg import log, LogLevel
from ..protocols import RigEvent
from ..protocols.icom import CivCodec
from ..protocols.kenwood import KenwoodCodec
from ..protocols.yaesu import YaesuCodec
from .base import PluginServices, RigPlugin

# Re-enable auto-info and re-poll this often in push mode
KEEPALIVE_INTERVAL = 30.0

# A radio silent for a full poll (or keepalive) interval, and at least this
# long, is reported offline while the port stays open
MIN_ANSWER_TIMEOUT = 1.0


def make_codec(family: str, radio: Dict[str, Any]):
    """Build the wire codec for a radio family."""
    if family == 'yaesu':
        return YaesuCodec()
    if family == 'kenwood':
        return KenwoodCodec()
    if family == 'icom':
        return CivCodec(radio.get('icomAddress', 0x94))
    raise ValueError(f"Unknown serial radio family: {family}")


class UsbSerialPlugin(RigPlugin):
    """Serial port lifecycle around a family codec.

    Closed -> Opening -> (Preamble) -> Listening, polling or push-driven.
    ASCII families with autoInfo enabled send the push-enable command, poll
    once, then re-assert push mode every 30 s; otherwise the radio is polled
    every pollInterval.
    """

    def __init__(self, config: Dict[str, Any], services: PluginServices, codec,
                 reconnect_delay: float = RECONNECT_DELAY):
        self.plugin_id = codec.family
        super().__init__(config, services, reconnect_delay)
        self.codec = codec
        self._serial: Optional[serial.Serial] = None
        self._write_lock = threading.Lock()
        self._reader: Optional[threading.Thread] = None
        # Monotonic time of the oldest request still waiting for an answer
        self._awaiting_since: Optional[float] = None

    @property
    def push_mode(self) -> bool:
        return self.codec.supports_auto_info and bool(self.radio.get('autoInfo', True))

    def connect(self):
        if not self.radio.get('serialPort'):
            log(f"{self.plugin_id}: no serial port configured", LogLevel.ERROR)
            return
        super().connect()

    def _open(self):
        ser = serial_utils.open_port(self.radio, self.codec.default_stop_bits)
        self.codec.reset()
        self._awaiting_since = None
        with self._write_lock:
            self._serial = ser
        self._reader = threading.Thread(target=self._read_loop, args=(ser,),
                                        name=f"{self.plugin_id}-reader", daemon=True)
        self._reader.start()
        self.state.update('connected', True)

        if self.push_mode:
            self.manager.set_state(ConnectionState.PREAMBLE, "Enabling auto-information")
            if not self._write(self.codec.preamble()):
                raise serial_utils.SerialPortError("Radio did not accept auto-information command")
            self._request(self.codec.poll(), KEEPALIVE_INTERVAL)
            self.manager.start_periodic('keepalive', KEEPALIVE_INTERVAL, self._keepalive)
        else:
            self.manager.start_periodic('poll', self.poll_interval, self._poll,
                                        run_immediately=True)

    def _close(self):
        with self._write_lock:
            ser, self._serial = self._serial, None
        if ser is None:
            return
        try:
            ser.close()
        except (serial.SerialException, OSError) as e:
            log(f"{self.plugin_id}: error closing serial port: {e}", LogLevel.DEBUG)

    def _read_loop(self, ser):
        """Reader thread: feed received bytes through the codec until the port goes away."""
        while ser is self._serial:
            try:
                data = ser.read(ser.in_waiting or 1)
            except (serial.SerialException, OSError, TypeError) as e:
                # A stale reader (port replaced or closed deliberately) exits quietly
                if ser is self._serial:
                    self._connection_lost(f"serial read failed: {e}")
                return
            if data:
                self._on_events(self.codec.feed(data))

    def _on_events(self, events):
        if not events:
            return
        self._awaiting_since = None
        if self.manager.is_open and not self.state.connected:
            log(f"{self.plugin_id}: radio is answering again")
            events = events + [RigEvent('connected', True)]
        self._apply(events)

    def _write(self, data: Optional[bytes]) -> bool:
        """Write and flush; False if the port is closed or the write failed."""
        if not data:
            return False
        failure = None
        with self._write_lock:
            ser = self._serial
            if ser is None or not ser.is_open:
                return False
            try:
                ser.write(data)
                ser.flush()
                return True
            except (serial.SerialException, OSError) as e:
                failure = e
        self._connection_lost(f"serial write failed: {failure}")
        return False

    def _request(self, data: bytes, interval: float) -> bool:
        """Send a poll or keepalive, marking the rig offline if earlier ones went unanswered."""
        now = time.monotonic()
        since = self._awaiting_since
        if since is None:
            self._awaiting_since = now
        elif now - since >= max(interval, MIN_ANSWER_TIMEOUT) and self.state.connected:
            log(f"{self.plugin_id}: no answer from radio for {now - since:.1f}s", LogLevel.WARNING)
            self.state.update('connected', False)
        return self._write(data)

    def _poll(self):
        self._request(self.codec.poll(), self.poll_interval)

    def _keepalive(self):
        self._request(self.codec.keepalive(), KEEPALIVE_INTERVAL)

    def set_freq(self, hz: int) -> bool:
        if hz < 0:
            return False
        return self._write(self.codec.encode_freq(hz))

    def set_mode(self, mode: str) -> bool:
        data = self.codec.encode_mode(mode)
        if data is None:
            log(f"{self.plugin_id}: unsupported mode {mode!r}", LogLevel.WARNING)
            return False
        return self._write(data)

    def set_ptt(self, on: bool) -> bool:
        return self._write(self.codec.encode_ptt(bool(on)))


def usb_factory(family: str):
    """Return a plugin factory bound to one radio family."""
    def create(config: Dict[str, Any], services: PluginServices) -> UsbSerialPlugin:
        return UsbSerialPlugin(config, services, make_codec(family, config.get('radio', {})))
    return create
