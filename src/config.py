#!/usr/bin/env python3
"""
Configuration store for rig-bridge.
Loads, merges, persists and snapshots the JSON configuration document.
"""

import copy
import json
import os
import threading
from typing import Any, Dict, Optional

from .logging_cfg import log, LogLevel

CONFIG_FILENAME = 'rig-bridge-config.json'
CONFIG_DIR = os.path.expanduser('~/.config/rig-bridge')
CONFIG_ENV_VAR = 'RIG_BRIDGE_CONFIG'

RADIO_TYPES = (
    'none', 'yaesu', 'kenwood', 'icom', 'rigctld',
    'flrig', 'flexradio', 'tci', 'mock',
)

DEFAULT_CONFIG = {
    'port': 5555,
    'logging': True,
    'radio': {
        'type': 'none',
        'serialPort': '',
        'baudRate': 38400,
        'dataBits': 8,
        'stopBits': None,       # None selects the protocol family default
        'parity': 'none',
        'dtr': True,
        'rts': True,
        'rtscts': False,
        'icomAddress': '0x94',
        'autoInfo': True,
        'pollInterval': 500,
        'pttEnabled': False,
        'rigctldHost': '127.0.0.1',
        'rigctldPort': 4532,
        'flrigHost': '127.0.0.1',
        'flrigPort': 12345,
        'flexHost': '127.0.0.1',
        'flexPort': 4992,
        'flexSlice': 0,
        'tciHost': '127.0.0.1',
        'tciPort': 40001,
        'tciTrx': 0,
        'tciVfo': 0,
    },
}


class ConfigError(ValueError):
    """Raised when a configuration update is rejected."""


def default_config_path() -> str:
    """Return the config file path, honouring the RIG_BRIDGE_CONFIG override."""
    return os.environ.get(CONFIG_ENV_VAR) or os.path.join(CONFIG_DIR, CONFIG_FILENAME)


def merge_config(base: Dict[str, Any], partial: Dict[str, Any]) -> Dict[str, Any]:
    """Merge a partial document over base, key by key for the radio section.

    Args:
        base: Complete configuration document (not modified)
        partial: Document carrying any of 'port', 'logging', 'radio'

    Returns:
        New merged configuration document
    """
    merged = copy.deepcopy(base)
    if 'port' in partial and partial['port'] is not None:
        merged['port'] = int(partial['port'])
    if 'logging' in partial:
        merged['logging'] = bool(partial['logging'])
    radio = partial.get('radio')
    if isinstance(radio, dict):
        merged['radio'].update(copy.deepcopy(radio))
    return merged


class ConfigStore:
    """Thread-safe holder of the process configuration."""

    def __init__(self, path: Optional[str] = None):
        self.path = path or default_config_path()
        self._lock = threading.RLock()
        self._config = copy.deepcopy(DEFAULT_CONFIG)

    def load(self) -> Dict[str, Any]:
        """Load configuration from file, falling back to defaults."""
        with self._lock:
            self._config = copy.deepcopy(DEFAULT_CONFIG)
            if not os.path.exists(self.path):
                log(f"No config file at {self.path}, using defaults")
                return self.snapshot()
            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                log(f"Error loading config {self.path}: {e}", LogLevel.WARNING)
                return self.snapshot()
            if not isinstance(data, dict):
                log(f"Ignoring config {self.path}: top level is not an object", LogLevel.WARNING)
                return self.snapshot()
            try:
                self._config = merge_config(DEFAULT_CONFIG, data)
            except (TypeError, ValueError) as e:
                log(f"Ignoring malformed config {self.path}: {e}", LogLevel.WARNING)
            log(f"Loaded config from {self.path}")
            return self.snapshot()

    def save(self) -> bool:
        """Save configuration to file."""
        with self._lock:
            try:
                directory = os.path.dirname(self.path)
                if directory:
                    os.makedirs(directory, exist_ok=True)
                with open(self.path, 'w', encoding='utf-8') as f:
                    json.dump(self._config, f, indent=2)
                return True
            except OSError as e:
                log(f"Error saving config: {e}", LogLevel.ERROR)
                return False

    def update(self, partial: Dict[str, Any]) -> bool:
        """Merge a partial document into the live configuration.

        Args:
            partial: Document carrying any of 'port', 'logging', 'radio'

        Returns:
            True if the radio section changed

        Raises:
            ConfigError: If the document is malformed or names an unknown radio type
        """
        if not isinstance(partial, dict):
            raise ConfigError('Configuration must be a JSON object')
        radio = partial.get('radio')
        if radio is not None and not isinstance(radio, dict):
            raise ConfigError("'radio' must be an object")
        if radio and 'type' in radio:
            radio_type = radio['type'] or 'none'
            if radio_type not in RADIO_TYPES:
                raise ConfigError(f"Unknown radio type: {radio_type}")
            partial = dict(partial, radio=dict(radio, type=radio_type))

        with self._lock:
            try:
                merged = merge_config(self._config, partial)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid configuration: {e}") from e
            radio_changed = merged['radio'] != self._config['radio']
            self._config = merged
            return radio_changed

    def snapshot(self) -> Dict[str, Any]:
        """Return an independent deep copy of the configuration."""
        with self._lock:
            return copy.deepcopy(self._config)

    def radio(self) -> Dict[str, Any]:
        """Return an independent copy of the radio section."""
        return self.snapshot()['radio']

    @property
    def radio_type(self) -> str:
        with self._lock:
            return self._config['radio'].get('type') or 'none'

    @property
    def ptt_enabled(self) -> bool:
        with self._lock:
            return bool(self._config['radio'].get('pttEnabled'))

    @property
    def logging_enabled(self) -> bool:
        with self._lock:
            return bool(self._config.get('logging', True))

    @property
    def port(self) -> int:
        with self._lock:
            return int(self._config['port'])

    def set_port(self, port: int):
        """Override the HTTP port for this process (not persisted until save)."""
        with self._lock:
            self._config['port'] = int(port)
