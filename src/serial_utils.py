#!/usr/bin/env python3
"""
Serial port helpers for rig-bridge.
Port enumeration, opening a port from the radio configuration,
and test-opening a port without committing to it.
"""

from typing import Any, Dict, List, Optional

import serial
import serial.tools.list_ports

from .logging_cfg import log, LogLevel

READ_TIMEOUT = 0.1
WRITE_TIMEOUT = 1.0

PARITY_MAP = {
    'none': serial.PARITY_NONE,
    'even': serial.PARITY_EVEN,
    'odd': serial.PARITY_ODD,
    'mark': serial.PARITY_MARK,
    'space': serial.PARITY_SPACE,
}

BYTESIZE_MAP = {
    5: serial.FIVEBITS,
    6: serial.SIXBITS,
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}

STOPBITS_MAP = {
    1: serial.STOPBITS_ONE,
    1.5: serial.STOPBITS_ONE_POINT_FIVE,
    2: serial.STOPBITS_TWO,
}


class SerialPortError(Exception):
    """Raised when a serial port cannot be opened."""


def _hex_id(value: Optional[int]) -> Optional[str]:
    return f"{value:04x}" if value is not None else None


def list_ports() -> List[Dict[str, Any]]:
    """Enumerate serial ports in the shape the dashboard expects."""
    ports = []
    for port in serial.tools.list_ports.comports():
        ports.append({
            'path': port.device,
            'manufacturer': port.manufacturer,
            'serialNumber': port.serial_number,
            'vendorId': _hex_id(port.vid),
            'productId': _hex_id(port.pid),
            'friendlyName': port.description,
        })
    return sorted(ports, key=lambda p: p['path'])


def serial_settings(radio: Dict[str, Any], default_stop_bits: int = 1) -> Dict[str, Any]:
    """Translate the radio config section into pyserial settings.

    Args:
        radio: The 'radio' section of the configuration
        default_stop_bits: Family default used when stopBits is unset

    Returns:
        Keyword arguments for serial.Serial
    """
    stop_bits = radio.get('stopBits') or default_stop_bits
    parity = str(radio.get('parity') or 'none').lower()
    return {
        'baudrate': int(radio.get('baudRate') or 38400),
        'bytesize': BYTESIZE_MAP.get(int(radio.get('dataBits') or 8), serial.EIGHTBITS),
        'parity': PARITY_MAP.get(parity, serial.PARITY_NONE),
        'stopbits': STOPBITS_MAP.get(stop_bits, serial.STOPBITS_ONE),
        'rtscts': bool(radio.get('rtscts', False)),
        'xonxoff': False,
        'timeout': READ_TIMEOUT,
        'write_timeout': WRITE_TIMEOUT,
    }


def open_port(radio: Dict[str, Any], default_stop_bits: int = 1) -> serial.Serial:
    """Open the configured serial port with DTR/RTS asserted per config.

    Raises:
        SerialPortError: If no port is configured or it cannot be opened
    """
    path = radio.get('serialPort')
    if not path:
        raise SerialPortError('No serial port configured')

    settings = serial_settings(radio, default_stop_bits)
    ser = serial.Serial()
    ser.port = path
    for key, value in settings.items():
        setattr(ser, key, value)
    # Line states set before open() are applied as the port opens
    ser.dtr = bool(radio.get('dtr', True))
    if not settings['rtscts']:
        ser.rts = bool(radio.get('rts', True))

    try:
        ser.open()
    except (serial.SerialException, OSError, ValueError) as e:
        raise SerialPortError(f"Cannot open {path}: {e}") from e

    log(f"Serial connection established on {path} "
        f"({settings['baudrate']} baud, {settings['bytesize']}{settings['parity']}{settings['stopbits']})")
    return ser


def test_port(path: str, baud_rate: int = 38400) -> str:
    """Open a port, confirm it works, and close it immediately.

    Returns:
        Human-readable success message

    Raises:
        SerialPortError: If the port cannot be opened
    """
    if not path:
        raise SerialPortError('No serial port specified')
    try:
        ser = serial.Serial(path, int(baud_rate), timeout=READ_TIMEOUT)
    except (serial.SerialException, OSError, ValueError) as e:
        log(f"Port test failed for {path}: {e}", LogLevel.WARNING)
        raise SerialPortError(str(e)) from e
    try:
        ser.close()
    except (serial.SerialException, OSError) as e:
        log(f"Error closing {path} after test: {e}", LogLevel.DEBUG)
    log(f"Port test succeeded for {path} at {baud_rate} baud")
    return f"Successfully opened {path} at {baud_rate} baud"
