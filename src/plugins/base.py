#!/usr/bin/env python3
"""
Common lifecycle contract for rig plugins.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from ..connection_manager import ConnectionManager, RECONNECT_DELAY
from ..logging_cfg import log, LogLevel
from ..state import RigState


@dataclass
class PluginServices:
    """Shared services handed to every plugin factory."""
    state: RigState


class RigPlugin(ABC):
    """One live connection to a radio backend.

    Instances are created on activation and discarded on deactivation;
    they own every protocol resource (sockets, ports, queues, timers).
    Subclasses implement ``_open``/``_close`` and the three commands.
    """

    plugin_id = 'base'

    def __init__(self, config: Dict[str, Any], services: PluginServices,
                 reconnect_delay: float = RECONNECT_DELAY):
        self.config = config
        self.radio = config.get('radio', {})
        self.state = services.state
        self.manager = ConnectionManager(self.plugin_id, self._open, self._release,
                                         reconnect_delay=reconnect_delay)

    @property
    def poll_interval(self) -> float:
        """Poll interval in seconds from the configured milliseconds."""
        try:
            ms = float(self.radio.get('pollInterval') or 500)
        except (TypeError, ValueError):
            ms = 500.0
        return max(ms, 50.0) / 1000.0

    def connect(self):
        log(f"{self.plugin_id}: connecting")
        self.manager.start()

    def disconnect(self):
        """Deliberately tear down. Never raises."""
        try:
            self.manager.stop()
        finally:
            self.state.update('connected', False)

    @property
    def connected(self) -> bool:
        return self.manager.is_open

    def _connection_lost(self, reason: str):
        """Report an unexpected loss: mark state stale and schedule a reconnect."""
        log(f"{self.plugin_id}: connection lost ({reason})", LogLevel.WARNING)
        self.state.update('connected', False)
        self.manager.connection_lost(reason)

    def _release(self):
        """Close the resource; the rig is offline from here until the next open."""
        try:
            self._close()
        finally:
            self.state.update('connected', False)

    def _apply(self, events: List[Tuple[str, Any]]):
        """Single dispatch path from decoded protocol events to shared state."""
        if events:
            self.state.apply(events)

    @abstractmethod
    def _open(self):
        """Open the backend resource; raise on failure."""

    @abstractmethod
    def _close(self):
        """Release the backend resource. Must be idempotent."""

    @abstractmethod
    def set_freq(self, hz: int) -> bool:
        """Tune to hz."""

    @abstractmethod
    def set_mode(self, mode: str) -> bool:
        """Select a canonical mode."""

    @abstractmethod
    def set_ptt(self, on: bool) -> bool:
        """Key or unkey the transmitter."""
