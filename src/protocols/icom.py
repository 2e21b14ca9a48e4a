#!/usr/bin/env python3
"""
Icom CI-V binary codec.

Frames are ``FE FE <to> <from> <cmd> [sub/data...] FD``. Only frames
addressed to the controller (or broadcast) and sent by the configured
rig address are decoded; everything else is discarded without effect.
"""

from typing import List, Optional, Union

from . import RigEvent, split_data_mode, with_data_flag
from ..logging_cfg import log, LogLevel

PREAMBLE = b'\xfe\xfe'
TERMINATOR = 0xFD
CONTROLLER_ADDRESS = 0xE0
BROADCAST_ADDRESS = 0x00

# Receive buffer cap; when exceeded only the newest tail is kept
MAX_BUFFER = 1000
TRIM_TO = 200

# Command bytes
CMD_TRANSCEIVE_FREQ = 0x00
CMD_TRANSCEIVE_MODE = 0x01
CMD_READ_FREQ = 0x03
CMD_READ_MODE = 0x04
CMD_SET_FREQ = 0x05
CMD_SET_MODE = 0x06
CMD_DATA_MODE = 0x1A
SUB_DATA_MODE = 0x06
CMD_PTT = 0x1C
SUB_PTT = 0x00
ACK_OK = 0xFB
ACK_NG = 0xFA

FREQ_BYTES = 5

ICOM_MODES = {
    0x00: 'LSB',
    0x01: 'USB',
    0x02: 'AM',
    0x03: 'CW',
    0x04: 'RTTY',
    0x05: 'FM',
    0x06: 'WFM',
    0x07: 'CW-R',
    0x08: 'RTTY-R',
}

ICOM_MODE_NAMES = {name: code for code, name in ICOM_MODES.items()}


def parse_address(value: Union[str, int, None], default: int = 0x94) -> int:
    """Parse a CI-V address given as int, '0x94', '94h' or '148'."""
    if value is None or value == '':
        return default
    if isinstance(value, int):
        return value & 0xFF
    text = str(value).strip().lower()
    try:
        if text.startswith('0x'):
            return int(text, 16) & 0xFF
        if text.endswith('h'):
            return int(text[:-1], 16) & 0xFF
        return int(text, 10) & 0xFF
    except ValueError:
        log(f"Invalid CI-V address {value!r}, using 0x{default:02X}", LogLevel.WARNING)
        return default


def encode_bcd_freq(hz: int) -> bytes:
    """Encode a frequency as 5 bytes of little-endian packed BCD."""
    hz = max(0, min(int(hz), 10 ** (FREQ_BYTES * 2) - 1))
    digits = f"{hz:0{FREQ_BYTES * 2}d}"
    out = bytearray()
    # Least significant digit pair first
    for i in range(FREQ_BYTES * 2, 0, -2):
        out.append((int(digits[i - 2]) << 4) | int(digits[i - 1]))
    return bytes(out)


def decode_bcd_freq(data: bytes) -> Optional[int]:
    """Decode little-endian packed BCD, or None if any nibble is not a digit."""
    hz = 0
    for byte in reversed(data):
        high, low = byte >> 4, byte & 0x0F
        if high > 9 or low > 9:
            return None
        hz = hz * 100 + high * 10 + low
    return hz


class CivCodec:
    """CI-V framing and command translation for one rig address."""

    family = 'icom'
    default_stop_bits = 1
    supports_auto_info = False

    def __init__(self, rig_address: Union[str, int] = 0x94,
                 controller_address: int = CONTROLLER_ADDRESS):
        self.rig_address = parse_address(rig_address)
        self.controller_address = controller_address
        self.buffer = bytearray()
        # Data modes are the base mode plus the data-mode flag (1A 06)
        self.base_mode: Optional[str] = None
        self.data_mode = False

    def reset(self):
        self.buffer = bytearray()
        self.base_mode = None
        self.data_mode = False

    def frame(self, cmd: int, payload: bytes = b'') -> bytes:
        """Build a controller-to-rig frame."""
        return (PREAMBLE + bytes([self.rig_address, self.controller_address, cmd])
                + payload + bytes([TERMINATOR]))

    # Outgoing commands

    def preamble(self) -> Optional[bytes]:
        # CI-V has no push-enable step; transceive is a radio menu setting
        return None

    def poll(self) -> bytes:
        return (self.frame(CMD_READ_FREQ)
                + self.frame(CMD_READ_MODE)
                + self.frame(CMD_DATA_MODE, bytes([SUB_DATA_MODE]))
                + self.frame(CMD_PTT, bytes([SUB_PTT])))

    def keepalive(self) -> bytes:
        return self.poll()

    def encode_freq(self, hz: int) -> bytes:
        return self.frame(CMD_SET_FREQ, encode_bcd_freq(hz))

    def encode_mode(self, mode: str) -> Optional[bytes]:
        base, data = split_data_mode(mode)
        code = ICOM_MODE_NAMES.get(base)
        if code is None:
            return None
        # Plain modes clear the flag so a previous data mode does not linger
        flag = 0x01 if data else 0x00
        return (self.frame(CMD_SET_MODE, bytes([code]))
                + self.frame(CMD_DATA_MODE, bytes([SUB_DATA_MODE, flag, flag])))

    def encode_ptt(self, on: bool) -> bytes:
        return self.frame(CMD_PTT, bytes([SUB_PTT, 0x01 if on else 0x00]))

    # Incoming data

    def feed(self, data: bytes) -> List[RigEvent]:
        """Consume received bytes and return the decoded state changes."""
        self.buffer.extend(data)
        events: List[RigEvent] = []

        while True:
            start = self.buffer.find(PREAMBLE)
            if start < 0:
                # Keep a trailing FE, it may be the first half of a preamble
                if self.buffer[-1:] == b'\xfe':
                    self.buffer = self.buffer[-1:]
                else:
                    self.buffer.clear()
                break
            # Collapse repeated preamble bytes (FE FE FE ...)
            while start + 2 < len(self.buffer) and self.buffer[start + 2] == 0xFE:
                start += 1
            if start:
                del self.buffer[:start]

            end = self.buffer.find(bytes([TERMINATOR]), 2)
            if end < 0:
                break

            restart = self.buffer.find(PREAMBLE, 2, end)
            if restart >= 0:
                # Truncated frame: a new preamble arrived before the terminator
                log("CI-V: truncated frame discarded", LogLevel.DEBUG)
                del self.buffer[:restart]
                continue

            body = bytes(self.buffer[2:end])
            del self.buffer[:end + 1]
            events.extend(self.decode(body))

        if len(self.buffer) > MAX_BUFFER:
            log("CI-V: receive buffer overflow, trimming", LogLevel.DEBUG)
            self.buffer = self.buffer[-TRIM_TO:]
        return events

    def decode(self, body: bytes) -> List[RigEvent]:
        """Decode one frame body (between preamble and terminator)."""
        if len(body) < 3 or 0xFE in body:
            return []
        to_addr, from_addr, cmd = body[0], body[1], body[2]
        if to_addr not in (self.controller_address, BROADCAST_ADDRESS):
            return []
        if from_addr != self.rig_address:
            log(f"CI-V: ignoring frame from 0x{from_addr:02X}", LogLevel.DEBUG)
            return []
        data = body[3:]

        if cmd in (CMD_TRANSCEIVE_FREQ, CMD_READ_FREQ):
            if len(data) != FREQ_BYTES:
                return []
            hz = decode_bcd_freq(data)
            return [RigEvent('freq', hz)] if hz is not None else []

        if cmd in (CMD_TRANSCEIVE_MODE, CMD_READ_MODE):
            if not 1 <= len(data) <= 2:
                return []
            mode = ICOM_MODES.get(data[0])
            if mode is None:
                return []
            self.base_mode = mode
            return self._mode_event()

        if cmd == CMD_DATA_MODE:
            # 1A 06 <data 00-03> <filter>; any non-zero data setting is a data mode
            if len(data) < 2 or data[0] != SUB_DATA_MODE:
                return []
            self.data_mode = data[1] != 0x00
            return self._mode_event()

        if cmd == CMD_PTT:
            if len(data) == 2 and data[0] == SUB_PTT and data[1] in (0x00, 0x01):
                return [RigEvent('ptt', data[1] == 0x01)]
            return []

        if cmd == ACK_OK:
            log("CI-V: command acknowledged", LogLevel.DEBUG)
        elif cmd == ACK_NG:
            log("CI-V: radio rejected command (NG)", LogLevel.WARNING)
        return []

    def _mode_event(self) -> List[RigEvent]:
        mode = with_data_flag(self.base_mode, self.data_mode)
        return [RigEvent('mode', mode)] if mode else []
