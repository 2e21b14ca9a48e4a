#!/usr/bin/env python3
"""
rig-bridge version information

Centralized version, date, and author strings for reuse by the server, setup, and docs.
"""

__version__ = "1.0.0"
__build_date__ = "2026-10-19"
__author__ = "OpenHamClock contributors"
__description__ = "Radio-control protocol bridge exposing rig state over HTTP and SSE"

# Supported radio backends, in the order shown by the banner
SUPPORTED_RADIOS = [
    "Yaesu (CAT)", "Kenwood/Elecraft (CAT)", "Icom (CI-V)",
    "Hamlib rigctld", "flrig", "FlexRadio SmartSDR", "TCI", "Mock",
]


if __name__ == '__main__':
    print(f"Version: {__version__}")
    print(f"Build Date: {__build_date__}")
    print(f"Author: {__author__}")
