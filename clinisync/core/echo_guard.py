"""Echo Guard — remembers ids this device just pushed so their realtime echoes are skipped.

Invariants:
    - An id is "recent" for ttl_seconds after mark(); afterwards it is forgotten
    - Expired entries are purged on every mark() and lazily on lookup

Design Decisions:
    - Injectable clock (time.monotonic by default): tests drive expiry without sleeping
"""

import time
from typing import Callable


class EchoGuard:
    """TTL set of recently pushed record ids."""

    def __init__(
        self, ttl_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._marked: dict[str, float] = {}

    def mark(self, record_id: str) -> None:
        now = self._clock()
        self._marked[record_id] = now
        expired = [
            k for k, ts in self._marked.items() if now - ts > self.ttl_seconds
        ]
        for k in expired:
            del self._marked[k]

    def is_recent(self, record_id: str) -> bool:
        ts = self._marked.get(record_id)
        if ts is None:
            return False
        if self._clock() - ts > self.ttl_seconds:
            del self._marked[record_id]
            return False
        return True

    def clear(self) -> None:
        self._marked.clear()

    def __len__(self) -> int:
        return len(self._marked)
