"""Sync Runtime — lifecycle and triggers around the coordinator and the change subscriber.

Invariants:
    - start() is idempotent; stop() cancels timers, closes subscriptions, clears listeners
    - Periodic full sync and critical-table poll act only while online and configured
    - Offline -> online transition triggers one full sync, then subscribes if nothing is live
      and re-registers any subscription the server or socket dropped
    - Bootstrap order: initial full sync first, realtime subscriptions after (no gap to backfill)
    - stop() never cancels a cycle mid-table: timers sleeping between cycles are cancelled,
      a task inside a cycle is awaited and exits at its next loop check

Design Decisions:
    - asyncio tasks for timers: single process, cooperative, no worker threads
    - Injectable sleep: tests run loops without wall-clock waits
    - Loop errors logged and swallowed: a bad cycle must not kill the timer
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import Awaitable, Callable, Iterable

from clinisync.core.sync_state import SyncState
from clinisync.core.table_registry import CRITICAL_TABLES, ESSENTIAL_REALTIME_TABLES
from clinisync.services.change_subscriber import ChangeSubscriber
from clinisync.services.sync_coordinator import SyncCoordinator, SyncReport

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL_SECONDS = 300.0
DEFAULT_CRITICAL_SYNC_INTERVAL_SECONDS = 120.0


class SyncRuntime:
    """Starts, drives and stops the sync engine for one process."""

    def __init__(
        self,
        coordinator: SyncCoordinator,
        subscriber: ChangeSubscriber,
        realtime_tables: Iterable[str] = ESSENTIAL_REALTIME_TABLES,
        critical_tables: Iterable[str] = CRITICAL_TABLES,
        sync_interval_seconds: float = DEFAULT_SYNC_INTERVAL_SECONDS,
        critical_sync_interval_seconds: float = DEFAULT_CRITICAL_SYNC_INTERVAL_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.coordinator = coordinator
        self.subscriber = subscriber
        self.realtime_tables = tuple(realtime_tables)
        self.critical_tables = tuple(critical_tables)
        self.sync_interval_seconds = sync_interval_seconds
        self.critical_sync_interval_seconds = critical_sync_interval_seconds
        self._sleep = sleep
        self._tasks: list[asyncio.Task] = []
        self._busy: set[asyncio.Task] = set()
        self._started = False
        self._stopping = False

    @property
    def state(self) -> SyncState:
        return self.coordinator.state.state

    @property
    def is_running(self) -> bool:
        return self._started

    async def start(self, background: bool = True) -> None:
        if self._started:
            return
        self._started = True
        logger.info(
            "Starting sync runtime",
            extra={"online": self.state.is_online},
        )
        if background:
            self._spawn(self.bootstrap(), "sync-bootstrap")
        else:
            await self.bootstrap()
        self._spawn(
            self._every(self.sync_interval_seconds, self.coordinator.full_sync),
            "sync-periodic",
        )
        self._spawn(
            self._every(self.critical_sync_interval_seconds, self._pull_critical),
            "sync-critical",
        )

    async def bootstrap(self) -> None:
        """Initial full sync, then realtime subscriptions."""
        if not self.coordinator.can_reach_remote():
            logger.info("Skipping initial sync - offline or backend not configured")
            return
        with self._cycle():
            try:
                await self.coordinator.full_sync()
            except Exception as e:
                logger.error(f"Initial sync failed: {e}", exc_info=True)
            if self._stopping:
                return
            await self._ensure_subscriptions()

    async def on_connectivity_change(self, online: bool) -> SyncReport | None:
        was_online = self.state.is_online
        self.coordinator.set_online(online)
        if not online or was_online:
            return None
        if not self.coordinator.can_reach_remote():
            return None
        report = await self.coordinator.full_sync()
        await self._ensure_subscriptions()
        return report

    async def force_sync(self) -> SyncReport:
        """Host-initiated full sync (manual trigger)."""
        return await self.coordinator.full_sync()

    async def stop(self) -> None:
        """Cancel idle timers, let an in-flight cycle finish, then release everything."""
        self._stopping = True
        for task in self._tasks:
            if task not in self._busy:
                task.cancel()
        if self._busy:
            logger.info("Waiting for the running sync cycle before stopping")
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._busy.clear()
        await self.subscriber.close_all()
        self.coordinator.state.clear()
        self.coordinator.echo_guard.clear()
        self._started = False
        self._stopping = False
        logger.info("Sync runtime stopped")

    async def _ensure_subscriptions(self) -> None:
        dropped = self.subscriber.dropped_tables
        if dropped:
            logger.info(
                f"Realtime subscriptions dropped, re-registering: {', '.join(dropped)}",
            )
        elif self.subscriber.active_tables:
            return
        bindings = self.coordinator.registry.subset(self.realtime_tables)
        await self.subscriber.subscribe_all(bindings)

    async def _pull_critical(self) -> None:
        await self.coordinator.pull_tables(self.critical_tables)

    async def _every(
        self, interval: float, action: Callable[[], Awaitable[object]],
    ) -> None:
        while not self._stopping:
            await self._sleep(interval)
            if self._stopping or not self.coordinator.can_reach_remote():
                continue
            with self._cycle():
                try:
                    await action()
                except Exception as e:
                    logger.error(f"Scheduled sync failed: {e}", exc_info=True)

    @contextmanager
    def _cycle(self):
        """Marks the current task as mid-cycle so stop() waits instead of cancelling."""
        task = asyncio.current_task()
        self._busy.add(task)
        try:
            yield
        finally:
            self._busy.discard(task)

    def _spawn(self, coro: Awaitable[None], name: str) -> None:
        self._tasks.append(asyncio.create_task(coro, name=name))
