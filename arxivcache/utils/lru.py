"""Thread-safe LRU cache used to front the paper store."""

import threading
from collections import OrderedDict
from typing import Any, Hashable, Optional

DEFAULT_CAPACITY = 500_000


class LRUCache:
    """Bounded mapping that evicts the least recently used entry.

    One lock guards every operation; callers never do I/O while holding it.
    The cache is advisory only: dropping it loses hit rate, never data.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            capacity = DEFAULT_CAPACITY
        self.capacity = capacity
        self._entries: OrderedDict[Hashable, Any] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> tuple[Optional[Any], bool]:
        """Return ``(value, found)`` and promote the entry on a hit."""
        with self._lock:
            if key not in self._entries:
                return None, False
            self._entries.move_to_end(key)
            return self._entries[key], True

    def put(self, key: Hashable, value: Any) -> None:
        """Insert or refresh *key*, evicting the oldest entry when full."""
        with self._lock:
            if key in self._entries:
                self._entries[key] = value
                self._entries.move_to_end(key)
                return
            if len(self._entries) >= self.capacity:
                self._entries.popitem(last=False)
            self._entries[key] = value

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: Hashable) -> bool:
        # Membership test does not count as a use.
        with self._lock:
            return key in self._entries
