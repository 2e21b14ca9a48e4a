#!/usr/bin/env python3
"""
rig-bridge package

Normalizes serial CAT, CI-V, rigctld, flrig, FlexRadio and TCI rig control
into one rig state served over HTTP and Server-Sent Events.
"""

from .version import (
    __version__, __build_date__, __author__, __description__, SUPPORTED_RADIOS
)

__all__ = [
    '__version__', '__build_date__', '__author__', '__description__', 'SUPPORTED_RADIOS'
]
