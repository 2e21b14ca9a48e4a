#!/usr/bin/env python3
"""
ASCII CAT framing shared by the Yaesu and Kenwood families.
Handles ';'-terminated units, known-prefix resynchronization after
garbled bytes, and the bounded receive buffer.
"""

import re
from typing import Dict, List, Optional, Union

from . import RigEvent
from ..logging_cfg import log, LogLevel

# Receive buffer cap; when exceeded only the newest tail is kept
MAX_BUFFER = 1000
TRIM_TO = 200

# Two-letter CAT command prefixes a radio may send back, common to the
# Kenwood TS-480/590, Elecraft K3 and Yaesu FT-991A/FTDX command sets.
KNOWN_PREFIXES = frozenset([
    # Frequency and VFO
    'FA', 'FB', 'FC', 'FD', 'FR', 'FT', 'FW', 'FS', 'VS',
    # Identification and status
    'ID', 'IF', 'OI', 'AI', 'PS', 'TY',
    # Operating mode
    'MD', 'DA', 'FK', 'DT',
    # Transmit control and meters
    'TX', 'RX', 'PC', 'RM', 'SM', 'PO',
    # Audio
    'AG', 'RG', 'RF', 'SQ', 'MG', 'VX', 'VG', 'VD',
    # DSP and filtering
    'FL', 'IS', 'NB', 'NR', 'NT', 'BC', 'BP', 'SH', 'SL', 'BW', 'NA',
    # RIT/XIT and clarifier
    'RT', 'XT', 'RC', 'RU', 'RD', 'RA', 'CF',
    # Preamp and attenuator
    'PA',
    # Memory, scan and split
    'MC', 'MW', 'MR', 'PM', 'SC', 'SD', 'SP', 'SF', 'ST',
    # Misc
    'AN', 'EX', 'MF', 'KS', 'KY', 'KP', 'TN', 'TO', 'CT',
    'BU', 'BD', 'CH', 'DC', 'DM', 'TI', 'UP', 'DN', 'LK', 'AC',
    # Error replies
    'E?', 'O?',
])

Frequency = Union[str, int, float]


def normalize_frequency(freq: Frequency, digits: int = 11) -> str:
    """Normalize frequency to a fixed-width digit string with leading zeros.

    Args:
        freq: Frequency in Hz as string, int, or float
        digits: Field width on the wire (9 for Yaesu, 11 for Kenwood)

    Returns:
        Zero-padded frequency string, clamped to the field's range
    """
    zero = '0' * digits
    try:
        if isinstance(freq, str):
            freq_str = re.sub(r'[^0-9]', '', freq)
            if not freq_str:
                return zero
            freq_int = int(freq_str)
        elif isinstance(freq, (int, float)):
            freq_int = int(freq)
        else:
            return zero

        if freq_int < 0:
            freq_int = 0
        elif freq_int > 10 ** digits - 1:
            freq_int = 10 ** digits - 1

        return f"{freq_int:0{digits}d}"
    except (ValueError, TypeError, OverflowError):
        log(f"Error normalizing frequency: {freq}", LogLevel.WARNING)
        return zero


def resync(unit: str, prefixes=KNOWN_PREFIXES) -> Optional[str]:
    """Drop garbage ahead of the first known command prefix.

    Best effort: returns the unit starting at the first position whose next
    two characters form a known prefix, or None if there is none.
    """
    for i in range(len(unit) - 1):
        if unit[i:i + 2] in prefixes:
            return unit[i:]
    return None


class CatCodec:
    """Base codec for ';'-terminated ASCII CAT families.

    Subclasses provide the family tables and ``_decode_<prefix>`` handlers.
    """

    family = 'cat'
    default_stop_bits = 2
    freq_digits = 11
    supports_auto_info = True

    # Subclass tables: wire mode code <-> canonical mode name
    MODE_CODES: Dict[str, str] = {}
    MODE_NAMES: Dict[str, str] = {}

    def __init__(self):
        self.buffer = ''

    def reset(self):
        self.buffer = ''

    # Outgoing commands

    def preamble(self) -> bytes:
        """Command enabling auto-information push mode."""
        raise NotImplementedError

    def poll(self) -> bytes:
        """Commands requesting frequency, mode and PTT state."""
        raise NotImplementedError

    def keepalive(self) -> bytes:
        """Re-enable push mode and re-poll, guarding against silent reverts."""
        return self.preamble() + self.poll()

    def encode_freq(self, hz: int) -> bytes:
        return f"FA{normalize_frequency(hz, self.freq_digits)};".encode('ascii')

    def encode_mode(self, mode: str) -> Optional[bytes]:
        raise NotImplementedError

    def encode_ptt(self, on: bool) -> bytes:
        raise NotImplementedError

    def mode_code(self, mode: str) -> Optional[str]:
        """Map a canonical mode name to the family's wire code."""
        return self.MODE_NAMES.get((mode or '').upper())

    # Incoming data

    def feed(self, data: Union[bytes, str]) -> List[RigEvent]:
        """Consume received data and return the decoded state changes."""
        if isinstance(data, bytes):
            data = data.decode('ascii', errors='replace')
        self.buffer += data

        events: List[RigEvent] = []
        while True:
            idx = self.buffer.find(';')
            if idx < 0:
                break
            unit = self.buffer[:idx]
            self.buffer = self.buffer[idx + 1:]
            events.extend(self.decode(unit))

        if len(self.buffer) > MAX_BUFFER:
            log(f"{self.family}: receive buffer overflow, trimming", LogLevel.DEBUG)
            self.buffer = self.buffer[-TRIM_TO:]
        return events

    def decode(self, unit: str) -> List[RigEvent]:
        """Decode one unit (without its ';'). Unknown or malformed units yield nothing."""
        unit = unit.strip('\r\n\x00 ')
        if not unit:
            return []
        synced = resync(unit)
        if synced is None:
            log(f"{self.family}: discarding unframed data {unit!r}", LogLevel.DEBUG)
            return []
        if len(synced) != len(unit):
            log(f"{self.family}: resynchronized past {len(unit) - len(synced)} garbage byte(s)",
                LogLevel.DEBUG)

        handler = getattr(self, f"_decode_{synced[:2].lower()}", None)
        if handler is None:
            return []
        try:
            return handler(synced)
        except (ValueError, IndexError) as e:
            log(f"{self.family}: malformed response {synced!r}: {e}", LogLevel.DEBUG)
            return []

    def _decode_fa(self, unit: str) -> List[RigEvent]:
        digits = unit[2:]
        if not digits.isdigit():
            return []
        return [RigEvent('freq', int(digits))]

    def _decode_md(self, unit: str) -> List[RigEvent]:
        # Yaesu answers MD0<c>, Kenwood MD<c>; the code is always the last character
        if len(unit) < 3:
            return []
        mode = self.MODE_CODES.get(unit[-1].upper())
        return [RigEvent('mode', mode)] if mode else []
