#!/usr/bin/env python3
"""
Yaesu CAT codec (FT-991A / FTDX10 / FT-710 command set).
"""

from typing import List, Optional

from . import RigEvent
from .cat import CatCodec

# MD0<c> operating mode codes
YAESU_MODES = {
    '1': 'LSB',
    '2': 'USB',
    '3': 'CW',        # CW-U
    '4': 'FM',
    '5': 'AM',
    '6': 'RTTY',      # RTTY-LSB
    '7': 'CW-R',      # CW-L
    '8': 'DATA-LSB',
    '9': 'RTTY-R',    # RTTY-USB
    'A': 'DATA-FM',
    'B': 'FM',        # FM-N
    'C': 'DATA-USB',
    'D': 'AM',        # AM-N
    'E': 'FM',        # C4FM
}

YAESU_MODE_NAMES = {
    'LSB': '1',
    'USB': '2',
    'CW': '3',
    'FM': '4',
    'AM': '5',
    'RTTY': '6',
    'CW-R': '7',
    'DATA-LSB': '8',
    'RTTY-R': '9',
    'DATA-FM': 'A',
    'DATA-USB': 'C',
}


class YaesuCodec(CatCodec):
    """FA is 9 digits, mode is MD0<c>, PTT is TX0/TX1, AI1 enables push."""

    family = 'yaesu'
    freq_digits = 9
    MODE_CODES = YAESU_MODES
    MODE_NAMES = YAESU_MODE_NAMES

    def preamble(self) -> bytes:
        return b'AI1;'

    def poll(self) -> bytes:
        return b'FA;MD0;TX;'

    def encode_mode(self, mode: str) -> Optional[bytes]:
        code = self.mode_code(mode)
        if code is None:
            return None
        return f"MD0{code};".encode('ascii')

    def encode_ptt(self, on: bool) -> bytes:
        return b'TX1;' if on else b'TX0;'

    def _decode_tx(self, unit: str) -> List[RigEvent]:
        # TX0 receive, TX1 CAT transmit, TX2 MIC/front-panel transmit
        if len(unit) < 3 or not unit[2].isdigit():
            return []
        return [RigEvent('ptt', unit[2] != '0')]

    def _decode_if(self, unit: str) -> List[RigEvent]:
        # IF<mem 3><freq 9><clar 5><rx clar 1><tx clar 1><mode 1><vfo 1>...
        if len(unit) < 22:
            return []
        events = []
        freq = unit[5:14]
        if freq.isdigit():
            events.append(RigEvent('freq', int(freq)))
        mode = YAESU_MODES.get(unit[21].upper())
        if mode:
            events.append(RigEvent('mode', mode))
        return events
