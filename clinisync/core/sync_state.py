"""Sync State — observable status shared between the sync engine and its hosts.

Invariants:
    - SyncState is frozen; every update() replaces it wholesale
    - Listeners are notified synchronously, in subscription order, after each update
    - A listener that raises is removed on first failure; remaining listeners still receive the state
    - subscribe() delivers the current state immediately

Design Decisions:
    - Store instance owned by the runtime, not a module global (ADR: explicit lifecycle)
    - Listener failures logged, never re-raised: a broken UI hook must not break sync
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable

from clinisync.core.domain_types import SyncStatus

logger = logging.getLogger(__name__)

SyncListener = Callable[["SyncState"], Any]


@dataclass(frozen=True)
class SyncState:
    """Point-in-time sync status."""

    is_online: bool = True
    is_syncing: bool = False
    last_sync_at: datetime | None = None
    pending_changes: int = 0
    error: str | None = None

    @property
    def status(self) -> SyncStatus:
        if not self.is_online:
            return SyncStatus.OFFLINE
        if self.is_syncing:
            return SyncStatus.SYNCING
        if self.error:
            return SyncStatus.ERROR
        if self.last_sync_at:
            return SyncStatus.SUCCESS
        return SyncStatus.IDLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "is_online": self.is_online,
            "is_syncing": self.is_syncing,
            "last_sync_at": (
                self.last_sync_at.isoformat() if self.last_sync_at else None
            ),
            "pending_changes": self.pending_changes,
            "error": self.error,
        }


class SyncStateStore:
    """Holds the current SyncState and fans updates out to listeners."""

    def __init__(self, is_online: bool = True):
        self._state = SyncState(is_online=is_online)
        # dict keeps insertion order; values unused
        self._listeners: dict[SyncListener, None] = {}

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: SyncListener) -> Callable[[], None]:
        """Register listener, deliver current state, return an unsubscribe callable."""
        self._listeners[listener] = None
        self._deliver(listener, self._state)

        def unsubscribe() -> None:
            self._listeners.pop(listener, None)

        return unsubscribe

    def update(self, **changes: Any) -> SyncState:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            self._deliver(listener, self._state)
        return self._state

    def clear(self) -> None:
        self._listeners.clear()

    def _deliver(self, listener: SyncListener, state: SyncState) -> None:
        try:
            listener(state)
        except Exception as e:
            logger.error(
                f"Sync state listener failed, removing it: {e}", exc_info=True,
            )
            self._listeners.pop(listener, None)
