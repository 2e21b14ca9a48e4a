#!/usr/bin/env python3
"""
Connection management module for rig-bridge.
Drives the open/listen/reconnect lifecycle shared by every plugin instance,
owns its reconnect timer and periodic poll tasks, and guarantees that a
deliberate disconnect never leads to a reconnect attempt.
"""

import threading
import time
from enum import Enum
from typing import Callable, Dict, Optional

from .logging_cfg import log, LogLevel

# Fixed delay before reconnecting after an unexpected loss
RECONNECT_DELAY = 5.0


class ConnectionState(Enum):
    """Connection state machine states."""
    CLOSED = "closed"
    OPENING = "opening"
    PREAMBLE = "preamble"
    LISTENING = "listening"
    RECONNECTING = "reconnecting"


class LogEvent:
    """Structured log event constants."""
    CONNECT_START = "EVENT_CONNECT_START"
    CONNECT_OK = "EVENT_CONNECT_OK"
    CONNECT_FAILED = "EVENT_CONNECT_FAILED"
    CONNECTION_LOST = "EVENT_CONNECTION_LOST"
    RECONNECT_SCHEDULED = "EVENT_RECONNECT_SCHEDULED"
    RECONNECT_START = "EVENT_RECONNECT_START"
    RECONNECT_SUPPRESSED = "EVENT_RECONNECT_SUPPRESSED"
    STATE_CHANGE = "EVENT_STATE_CHANGE"
    DISCONNECT = "EVENT_DISCONNECT"


class PeriodicTask:
    """Runs a callable every ``interval`` seconds on a daemon thread until stopped."""

    def __init__(self, name: str, interval: float, fn: Callable[[], None],
                 run_immediately: bool = False):
        self.name = name
        self.interval = interval
        self.fn = fn
        self.run_immediately = run_immediately
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self):
        self._stop_event.set()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _tick(self):
        try:
            self.fn()
        except Exception as e:
            log(f"Periodic task {self.name} failed: {e}", LogLevel.ERROR)

    def _run(self):
        if self.run_immediately and not self._stop_event.is_set():
            self._tick()
        while not self._stop_event.wait(self.interval):
            self._tick()


class ConnectionManager:
    """Lifecycle shell around one plugin's connection resource.

    ``open_fn`` opens the resource and raises on failure; ``close_fn``
    releases it. Both are supplied by the owning plugin.
    """

    def __init__(self, name: str, open_fn: Callable[[], None],
                 close_fn: Optional[Callable[[], None]] = None,
                 reconnect_delay: float = RECONNECT_DELAY):
        self.name = name
        self.open_fn = open_fn
        self.close_fn = close_fn
        self.reconnect_delay = reconnect_delay

        # Thread-safe state machine
        self.state = ConnectionState.CLOSED
        self.state_lock = threading.RLock()

        self.deliberate = False
        self.reconnect_count = 0
        self.last_error: Optional[str] = None

        self._timer: Optional[threading.Timer] = None
        self._tasks: Dict[str, PeriodicTask] = {}
        # Set while open_fn runs; a loss reported meanwhile is recorded, not acted on
        self._opening = False
        self._lost_while_opening: Optional[str] = None

    def _emit_structured_event(self, event_type: str, **kwargs):
        """Emit structured log events.

        Args:
            event_type: Event type from LogEvent constants
            **kwargs: Additional event data
        """
        event_data = {
            'event': event_type,
            'connection': self.name,
            'timestamp': time.time(),
            'state': self.state.value,
            'reconnect_count': self.reconnect_count,
            **kwargs
        }

        event_str = f"{event_type}: {event_data}"

        if event_type in (LogEvent.RECONNECT_SCHEDULED, LogEvent.RECONNECT_START):
            log(event_str, LogLevel.RECONNECT)
        elif event_type in (LogEvent.CONNECT_FAILED, LogEvent.CONNECTION_LOST):
            log(event_str, LogLevel.WARNING)
        elif event_type in (LogEvent.STATE_CHANGE, LogEvent.RECONNECT_SUPPRESSED):
            log(event_str, LogLevel.DEBUG)
        else:
            log(event_str, LogLevel.INFO)

    def _change_state(self, new_state: ConnectionState, reason: str = ""):
        """Thread-safe state change with event emission.

        Args:
            new_state: New connection state
            reason: Reason for state change
        """
        with self.state_lock:
            old_state = self.state
            if old_state == new_state:
                return
            self.state = new_state

            self._emit_structured_event(
                LogEvent.STATE_CHANGE,
                old_state=old_state.value,
                new_state=new_state.value,
                reason=reason
            )

    def set_state(self, new_state: ConnectionState, reason: str = ""):
        """Let the owning plugin record a protocol-level transition (e.g. PREAMBLE)."""
        self._change_state(new_state, reason)

    @property
    def is_open(self) -> bool:
        with self.state_lock:
            return self.state in (ConnectionState.PREAMBLE, ConnectionState.LISTENING)

    def start(self) -> bool:
        """Begin connecting. Clears the deliberate flag set by a previous stop().

        Returns:
            True if the resource opened on this attempt
        """
        with self.state_lock:
            self.deliberate = False
        return self._attempt_open()

    def _attempt_open(self) -> bool:
        with self.state_lock:
            if self.deliberate:
                return False
            self._opening = True
            self._lost_while_opening = None
            self._change_state(ConnectionState.OPENING, "Opening connection")
            self._emit_structured_event(LogEvent.CONNECT_START)

        try:
            self.open_fn()
        except Exception as e:
            self.last_error = str(e)
            self._emit_structured_event(LogEvent.CONNECT_FAILED, error=str(e))
            with self.state_lock:
                self._opening = False
                self._lost_while_opening = None
                self.stop_all_periodic()
                self._change_state(ConnectionState.CLOSED, f"Open failed: {e}")
            self._safe_close()
            self.schedule_reconnect(f"open failed: {e}")
            return False

        with self.state_lock:
            self._opening = False
            lost, self._lost_while_opening = self._lost_while_opening, None
            if self.deliberate:
                # stop() raced with a successful open; release what was just opened
                abandoned = True
            else:
                abandoned = False
                if lost is not None:
                    # The reader saw the resource die before open_fn returned
                    self.stop_all_periodic()
                    self._change_state(ConnectionState.CLOSED, lost)
                    self._emit_structured_event(LogEvent.CONNECTION_LOST, reason=lost)
                else:
                    self._change_state(ConnectionState.LISTENING, "Connection open")
                    self._emit_structured_event(LogEvent.CONNECT_OK)
                    self.reconnect_count = 0
                    self.last_error = None
        if abandoned:
            self._safe_close()
            return False
        if lost is not None:
            self.last_error = lost
            self._safe_close()
            self.schedule_reconnect(lost)
            return False
        return True

    def schedule_reconnect(self, reason: str = "") -> bool:
        """Arm the fixed-delay reconnect timer unless disconnected deliberately.

        Returns:
            True if a reconnect was scheduled by this call
        """
        with self.state_lock:
            if self.deliberate:
                self._emit_structured_event(LogEvent.RECONNECT_SUPPRESSED, reason=reason)
                return False
            if self._timer is not None:
                return False

            self.reconnect_count += 1
            self._change_state(ConnectionState.RECONNECTING, reason)
            self._emit_structured_event(
                LogEvent.RECONNECT_SCHEDULED,
                delay=self.reconnect_delay,
                reason=reason
            )
            self._timer = threading.Timer(self.reconnect_delay, self._reconnect)
            self._timer.daemon = True
            self._timer.start()
            return True

    def _reconnect(self):
        with self.state_lock:
            self._timer = None
            if self.deliberate:
                return
            self._emit_structured_event(LogEvent.RECONNECT_START, attempt=self.reconnect_count)
        self._attempt_open()

    def connection_lost(self, reason: str = "") -> bool:
        """Report an unexpected loss of the resource.

        Stops polling, marks the connection closed and schedules a reconnect.

        Returns:
            True if a reconnect was scheduled
        """
        with self.state_lock:
            if self.deliberate:
                return False
            if self._opening:
                if self._lost_while_opening is None:
                    self._lost_while_opening = reason or "lost while opening"
                return False
            if self.state in (ConnectionState.RECONNECTING, ConnectionState.CLOSED):
                return False
            self.stop_all_periodic()
            self._change_state(ConnectionState.CLOSED, reason)
            self._emit_structured_event(LogEvent.CONNECTION_LOST, reason=reason)
        self._safe_close()
        return self.schedule_reconnect(reason)

    def stop(self):
        """Deliberately close the connection. Never raises."""
        with self.state_lock:
            self.deliberate = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self.stop_all_periodic()
            self._change_state(ConnectionState.CLOSED, "Deliberate disconnect")
            self._emit_structured_event(LogEvent.DISCONNECT)
        self._safe_close()

    def _safe_close(self):
        if self.close_fn is None:
            return
        try:
            self.close_fn()
        except Exception as e:
            log(f"{self.name}: error while closing connection: {e}", LogLevel.ERROR)

    def reconnect_pending(self) -> bool:
        with self.state_lock:
            return self._timer is not None

    def start_periodic(self, name: str, interval: float, fn: Callable[[], None],
                       run_immediately: bool = False) -> PeriodicTask:
        """Start (or restart) a named periodic task owned by this connection."""
        with self.state_lock:
            self.stop_periodic(name)
            task = PeriodicTask(f"{self.name}-{name}", interval, fn, run_immediately)
            self._tasks[name] = task
            task.start()
            return task

    def stop_periodic(self, name: str):
        with self.state_lock:
            task = self._tasks.pop(name, None)
            if task is not None:
                task.stop()

    def stop_all_periodic(self):
        with self.state_lock:
            for task in self._tasks.values():
                task.stop()
            self._tasks.clear()

    def periodic_names(self):
        with self.state_lock:
            return sorted(self._tasks)

    def get_connection_status(self) -> dict:
        """Get current connection status for diagnostics.

        Returns:
            Dictionary with connection status information
        """
        with self.state_lock:
            return {
                'name': self.name,
                'state': self.state.value,
                'reconnecting': self._timer is not None,
                'deliberate': self.deliberate,
                'reconnect_count': self.reconnect_count,
                'last_error': self.last_error,
                'tasks': sorted(self._tasks),
            }
