#!/usr/bin/env python3
"""
Kenwood / Elecraft CAT codec (TS-480, TS-590, TS-2000, K3 command set).
"""

from typing import List, Optional

from . import RigEvent, split_data_mode, with_data_flag
from .cat import CatCodec

# MD<d> operating mode codes
KENWOOD_MODES = {
    '1': 'LSB',
    '2': 'USB',
    '3': 'CW',
    '4': 'FM',
    '5': 'AM',
    '6': 'RTTY',      # FSK
    '7': 'CW-R',
    '9': 'RTTY-R',    # FSK-R
}

KENWOOD_MODE_NAMES = {
    'LSB': '1',
    'USB': '2',
    'CW': '3',
    'FM': '4',
    'AM': '5',
    'RTTY': '6',
    'CW-R': '7',
    'RTTY-R': '9',
}


class KenwoodCodec(CatCodec):
    """FA is 11 digits, mode is MD<d>, PTT is TX;/RX;, AI2 enables push.

    A bare ``TX;`` keys the transmitter on these radios, so PTT is read
    back from the IF status instead of being polled directly. Data modes
    are the sideband or FM mode plus ``DA1;``; the reported mode combines
    the last MD (or IF) mode with the last DA answer.
    """

    family = 'kenwood'
    freq_digits = 11
    MODE_CODES = KENWOOD_MODES
    MODE_NAMES = KENWOOD_MODE_NAMES

    def __init__(self):
        super().__init__()
        self.base_mode: Optional[str] = None
        self.data_mode = False

    def reset(self):
        super().reset()
        self.base_mode = None
        self.data_mode = False

    def preamble(self) -> bytes:
        return b'AI2;'

    def poll(self) -> bytes:
        return b'FA;MD;DA;IF;'

    def encode_mode(self, mode: str) -> Optional[bytes]:
        base, data = split_data_mode(mode)
        code = self.MODE_NAMES.get(base)
        if code is None:
            return None
        return f"MD{code};DA{1 if data else 0};".encode('ascii')

    def encode_ptt(self, on: bool) -> bytes:
        return b'TX;' if on else b'RX;'

    def _mode_event(self) -> List[RigEvent]:
        mode = with_data_flag(self.base_mode, self.data_mode)
        return [RigEvent('mode', mode)] if mode else []

    def _decode_md(self, unit: str) -> List[RigEvent]:
        if len(unit) < 3:
            return []
        mode = KENWOOD_MODES.get(unit[-1])
        if mode is None:
            return []
        self.base_mode = mode
        return self._mode_event()

    def _decode_da(self, unit: str) -> List[RigEvent]:
        if len(unit) != 3 or unit[2] not in '01':
            return []
        self.data_mode = unit[2] == '1'
        return self._mode_event()

    def _decode_tx(self, unit: str) -> List[RigEvent]:
        return [RigEvent('ptt', True)]

    def _decode_rx(self, unit: str) -> List[RigEvent]:
        return [RigEvent('ptt', False)]

    def _decode_if(self, unit: str) -> List[RigEvent]:
        # IF<freq 11><step 5><rit 5><rit 1><xit 1><bank 1><ch 2><tx 1><mode 1>...
        if len(unit) < 30:
            return []
        events = []
        freq = unit[2:13]
        if freq.isdigit():
            events.append(RigEvent('freq', int(freq)))
        if unit[28] in '01':
            events.append(RigEvent('ptt', unit[28] == '1'))
        mode = KENWOOD_MODES.get(unit[29])
        if mode:
            self.base_mode = mode
            events.extend(self._mode_event())
        return events
