"""Bounded memory of recently delivered message ids."""
from __future__ import annotations

import threading
from collections import OrderedDict


class DedupWindow:
    """
    Remembers the last ``capacity`` message ids in insertion order.

    Used by adapters whose source delivers at least once (polling cursors,
    gateway resumes). Eviction is strict FIFO: once an id falls out of the
    window a redelivery of it is no longer detected. That is a false negative;
    an id that was never seen is never reported as a duplicate.
    """

    def __init__(self, capacity: int = 1000):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._ids: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    def seen(self, message_id: str) -> bool:
        """Return True if ``message_id`` is already in the window, else record it."""
        with self._lock:
            if message_id in self._ids:
                return True
            self._ids[message_id] = None
            if len(self._ids) > self.capacity:
                self._ids.popitem(last=False)
            return False

    def __contains__(self, message_id: object) -> bool:
        with self._lock:
            return message_id in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)
