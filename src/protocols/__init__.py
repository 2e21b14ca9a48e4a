#!/usr/bin/env python3
"""
Wire protocol codecs used by the USB serial plugin.

A codec turns generic commands (frequency in Hz, canonical mode name,
PTT flag) into family-specific bytes, and turns received bytes into
``RigEvent`` tuples that the plugin applies to the shared rig state.
Codecs never raise on malformed input.
"""

from typing import NamedTuple, Any, Optional


class RigEvent(NamedTuple):
    """A decoded state change: ``field`` is one of freq, mode, width, ptt."""
    field: str
    value: Any


# Base modes that have a data variant selected by a separate data flag
DATA_VARIANTS = {
    'LSB': 'DATA-LSB',
    'USB': 'DATA-USB',
    'FM': 'DATA-FM',
}

# Data mode -> (base mode, data flag)
DATA_BASES = {data: base for base, data in DATA_VARIANTS.items()}


def with_data_flag(base: Optional[str], data: bool) -> Optional[str]:
    """Combine a base mode and the radio's data flag into a canonical mode."""
    if base and data:
        return DATA_VARIANTS.get(base, base)
    return base


def split_data_mode(mode: str):
    """Split a canonical mode into (base mode, data flag)."""
    name = (mode or '').upper()
    if name in DATA_BASES:
        return DATA_BASES[name], True
    return name, False


__all__ = ['RigEvent', 'DATA_VARIANTS', 'with_data_flag', 'split_data_mode']
