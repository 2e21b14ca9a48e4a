#!/usr/bin/env python3
"""
User Interface module for rig-bridge.
Prints the startup banner and version information to the terminal.
"""

import os
from typing import Any, Dict, List


def describe_connection(radio: Dict[str, Any]) -> str:
    """One-line summary of where the configured backend lives."""
    radio_type = radio.get('type') or 'none'
    if radio_type in ('yaesu', 'kenwood', 'icom'):
        port = radio.get('serialPort') or '(no serial port)'
        summary = f"{port} @ {radio.get('baudRate', 38400)} baud"
        if radio_type == 'icom':
            summary += f" | CI-V {radio.get('icomAddress', '0x94')}"
        return summary
    if radio_type == 'rigctld':
        return f"{radio.get('rigctldHost')}:{radio.get('rigctldPort')}"
    if radio_type == 'flrig':
        return f"http://{radio.get('flrigHost')}:{radio.get('flrigPort')}/RPC2"
    if radio_type == 'flexradio':
        return f"{radio.get('flexHost')}:{radio.get('flexPort')} slice {radio.get('flexSlice', 0)}"
    if radio_type == 'tci':
        return f"ws://{radio.get('tciHost')}:{radio.get('tciPort')}"
    if radio_type == 'mock':
        return 'simulated rig'
    return 'not configured'


class UserInterface:
    """Manages the terminal output for rig-bridge."""

    def __init__(self):
        self.has_color = self._check_term_color()

    def _check_term_color(self) -> bool:
        """Check if terminal supports color based on TERM environment variable."""
        term = os.getenv("TERM", "")
        # Check for common color-capable terminals
        color_terms = ['xterm', 'screen', 'tmux', 'rxvt', 'konsole', 'gnome']
        return any(color_term in term for color_term in color_terms) or 'color' in term

    def _get_color_code(self, color_code: str) -> str:
        """Return color code if terminal supports color, otherwise empty string."""
        return color_code if self.has_color else ""

    def banner_lines(self, version: str, build_date: str, radio: Dict[str, Any],
                     http_url: str, ptt_enabled: bool = False) -> List[str]:
        """Build the startup banner.

        Args:
            version: Software version
            build_date: Build date
            radio: The 'radio' section of the configuration
            http_url: Address of the HTTP gateway
            ptt_enabled: Whether remote PTT is allowed

        Returns:
            Banner lines, already colored when the terminal supports it
        """
        clr_green = self._get_color_code("\033[1;32m")
        clr_cyan = self._get_color_code("\033[1;36m")
        clr_yellow = self._get_color_code("\033[1;33m")
        clr_magenta = self._get_color_code("\033[1;35m")
        reset = self._get_color_code("\033[0m")

        radio_type = radio.get('type') or 'none'
        ptt = f"{clr_yellow}enabled{reset}" if ptt_enabled else "disabled"

        return [
            clr_green + "=" * 64 + reset,
            f"{clr_cyan}rig-bridge v{version}{reset} - {clr_yellow}{build_date}{reset}",
            f"{clr_magenta}  Radio:{reset} {radio_type} | {clr_magenta}Link:{reset} {describe_connection(radio)}",
            f"{clr_magenta}  HTTP:{reset} {http_url} | {clr_magenta}PTT:{reset} {ptt}",
            clr_green + "=" * 64 + reset,
        ]

    def show_banner(self, version: str, build_date: str, radio: Dict[str, Any],
                    http_url: str, ptt_enabled: bool = False):
        print()
        for line in self.banner_lines(version, build_date, radio, http_url, ptt_enabled):
            print(line)
        print()

    def show_version_info(self, version: str, build_date: str, author: str,
                          supported_radios: List[str]):
        """Display version information and the supported backends."""
        print(f"\n=== rig-bridge v{version} ===")
        print(f"Build Date: {build_date}")
        print(f"Author: {author}")
        print("\nSupported Radios:")
        for radio in supported_radios:
            print(f"  - {radio}")
        print("\nHTTP API:")
        print("  GET  /status    rig snapshot")
        print("  GET  /stream    Server-Sent Events")
        print("  POST /freq /mode /ptt")
        print("\n" + "=" * 50)
