#!/usr/bin/env python3
"""
Shared rig state and broadcast hub for rig-bridge.
Holds the single canonical rig snapshot and fans change events
out to every live stream subscriber.
"""

import itertools
import queue
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

from .logging_cfg import log, LogLevel

# Per-subscriber backlog before a slow client is dropped
SUBSCRIBER_QUEUE_SIZE = 256

RIG_FIELDS = ('freq', 'mode', 'width', 'ptt', 'connected')

# Canonical mode vocabulary shared by every protocol codec
MODES = (
    'USB', 'LSB', 'CW', 'CW-R', 'FM', 'AM',
    'DATA-USB', 'DATA-LSB', 'DATA-FM', 'RTTY', 'RTTY-R', 'WFM',
)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class Subscriber:
    """A live stream client: process-unique id plus a bounded event queue."""

    def __init__(self, sub_id: int, maxsize: int = SUBSCRIBER_QUEUE_SIZE):
        self.id = sub_id
        self.queue = queue.Queue(maxsize=maxsize)
        self.closed = False

    def get(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Wait for the next event, returning None on timeout."""
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def __repr__(self):
        return f"<Subscriber {self.id}>"


class BroadcastHub:
    """Fan-out of change events to stream subscribers.

    Delivery is best-effort: a subscriber whose queue is full or which has
    been closed is removed, without affecting the others or the publisher.
    """

    _ids = itertools.count(1)

    def __init__(self):
        self._subscribers: Dict[int, Subscriber] = {}
        self._lock = threading.Lock()

    def subscribe(self, maxsize: int = SUBSCRIBER_QUEUE_SIZE) -> Subscriber:
        sub = Subscriber(next(self._ids), maxsize)
        with self._lock:
            self._subscribers[sub.id] = sub
        log(f"Stream client {sub.id} connected ({self.count()} total)", LogLevel.DEBUG)
        return sub

    def unsubscribe(self, sub: Subscriber):
        sub.closed = True
        with self._lock:
            removed = self._subscribers.pop(sub.id, None)
        if removed is not None:
            log(f"Stream client {sub.id} disconnected", LogLevel.DEBUG)

    def publish(self, event: Dict[str, Any]) -> int:
        """Deliver event to every subscriber.

        Returns:
            Number of subscribers the event was queued for
        """
        with self._lock:
            subscribers = list(self._subscribers.values())

        delivered = 0
        for sub in subscribers:
            if sub.closed:
                self.unsubscribe(sub)
                continue
            try:
                sub.queue.put_nowait(event)
                delivered += 1
            except queue.Full:
                log(f"Stream client {sub.id} is not keeping up, dropping it", LogLevel.WARNING)
                self.unsubscribe(sub)
        return delivered

    def count(self) -> int:
        with self._lock:
            return len(self._subscribers)


class RigState:
    """The single canonical rig snapshot.

    Only the active plugin instance writes to it; the gateway and the
    broadcast hub read it. ``last_update`` never moves backwards.
    """

    def __init__(self, hub: Optional[BroadcastHub] = None):
        self.hub = hub or BroadcastHub()
        self._lock = threading.RLock()
        self.freq = 0
        self.mode = ''
        self.width = 0
        self.ptt = False
        self.connected = False
        self.last_update = 0

    def update(self, field: str, value: Any) -> bool:
        """Set a field and broadcast the change.

        Args:
            field: One of freq, mode, width, ptt, connected
            value: New value

        Returns:
            True if the value changed, False if it was already current

        Raises:
            KeyError: If field is not a rig state field
        """
        if field not in RIG_FIELDS:
            raise KeyError(field)

        with self._lock:
            if getattr(self, field) == value:
                return False
            setattr(self, field, value)
            self.last_update = max(self.last_update, now_ms())
            # Publish under the lock so subscribers see changes in write order
            self.hub.publish({'type': 'update', 'prop': field, 'value': value})
            return True

    def apply(self, events: List[Tuple[str, Any]]) -> int:
        """Apply a batch of (field, value) events, returning how many changed."""
        changed = 0
        for field, value in events:
            if self.update(field, value):
                changed += 1
        return changed

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'connected': self.connected,
                'freq': self.freq,
                'mode': self.mode,
                'width': self.width,
                'ptt': self.ptt,
                'timestamp': self.last_update,
            }

    def open_stream(self) -> Tuple[Subscriber, Dict[str, Any]]:
        """Subscribe and take the initial snapshot atomically.

        No change can slip in between the snapshot and the first queued event.
        """
        with self._lock:
            return self.hub.subscribe(), self.snapshot()

    def close_stream(self, sub: Subscriber):
        self.hub.unsubscribe(sub)
