"""Change Subscriber — applies realtime remote changes to the local store.

Invariants:
    - At most max_subscriptions tables are subscribed, in the priority order given
    - Registrations are staggered by stagger_seconds (rate-limited backend)
    - No backfill: only events arriving after registration are applied
    - INSERT/UPDATE -> mapped and put() locally (remote is authoritative for live events)
    - DELETE -> local delete() by id
    - Events for ids this device pushed within the echo TTL are skipped
    - A failed registration leaves that table without live updates until resubscribe()
    - A handle the server or socket ended is not active; subscribe_all() replaces it

Design Decisions:
    - No automatic reconnect/backoff (ADR: live-channel count is metered; the periodic
      full sync and critical-table poll already bound staleness)
    - Handler errors are logged and swallowed per event: one bad row must not kill the channel
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable

from clinisync.core.domain_types import ChangeOp
from clinisync.core.echo_guard import EchoGuard
from clinisync.core.field_mapper import FieldMapper
from clinisync.core.store_protocols import (
    ChangeEvent, LocalStore, RemoteStore, SubscriptionHandle,
)
from clinisync.core.table_registry import TableBinding

logger = logging.getLogger(__name__)

DEFAULT_MAX_SUBSCRIPTIONS = 17
DEFAULT_STAGGER_SECONDS = 0.2


class ChangeSubscriber:
    """Owns the live subscriptions for a bounded set of high-value tables."""

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        mapper: FieldMapper | None = None,
        echo_guard: EchoGuard | None = None,
        max_subscriptions: int = DEFAULT_MAX_SUBSCRIPTIONS,
        stagger_seconds: float = DEFAULT_STAGGER_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.local = local
        self.remote = remote
        self.mapper = mapper or FieldMapper()
        self.echo_guard = echo_guard or EchoGuard()
        self.max_subscriptions = max_subscriptions
        self.stagger_seconds = stagger_seconds
        self._sleep = sleep
        self._handles: dict[str, SubscriptionHandle] = {}
        self._bindings: dict[str, TableBinding] = {}

    @property
    def active_tables(self) -> list[str]:
        return [name for name, h in self._handles.items() if h.is_active]

    @property
    def dropped_tables(self) -> list[str]:
        """Tables whose subscription the server or the socket ended."""
        return [name for name, h in self._handles.items() if not h.is_active]

    async def subscribe_all(self, bindings: Iterable[TableBinding]) -> list[str]:
        """Subscribe to the first max_subscriptions bindings. Returns live local names.

        Tables already live are left alone; dropped ones are registered again.
        """
        selected = list(bindings)[:self.max_subscriptions]
        live = set(self.active_tables)
        pending = [b for b in selected if b.local_name not in live]
        logger.info(f"Subscribing to {len(pending)} essential tables")
        for i, binding in enumerate(pending):
            if i and self.stagger_seconds > 0:
                await self._sleep(self.stagger_seconds)
            await self.subscribe(binding)
        live = set(self.active_tables)
        return [b.local_name for b in selected if b.local_name in live]

    async def subscribe(self, binding: TableBinding) -> bool:
        self._bindings[binding.local_name] = binding
        existing = self._handles.get(binding.local_name)
        if existing is not None:
            if existing.is_active:
                return True
            await self._close_one(binding.local_name)

        async def handler(event: ChangeEvent) -> None:
            await self.apply_event(binding, event)

        try:
            handle = await self.remote.subscribe_changes(binding.remote_name, handler)
        except Exception as e:
            logger.warning(
                f"Subscription failed for {binding.remote_name}: {e}",
                extra={"table": binding.remote_name},
            )
            return False
        self._handles[binding.local_name] = handle
        logger.info(
            f"Subscribed to {binding.remote_name}",
            extra={"table": binding.remote_name},
        )
        return True

    async def resubscribe(self, local_name: str) -> bool:
        """Explicitly re-register a table whose subscription failed or was dropped."""
        binding = self._bindings.get(local_name)
        if binding is None:
            logger.warning(f"Cannot resubscribe unknown table {local_name}")
            return False
        await self._close_one(local_name)
        return await self.subscribe(binding)

    async def close_all(self) -> None:
        for local_name in list(self._handles):
            await self._close_one(local_name)

    async def _close_one(self, local_name: str) -> None:
        handle = self._handles.pop(local_name, None)
        if handle is None:
            return
        try:
            await handle.close()
        except Exception as e:
            logger.debug(f"Error closing subscription for {local_name}: {e}")

    async def apply_event(self, binding: TableBinding, event: ChangeEvent) -> None:
        local_name = binding.local_name
        record_id = event.record_id
        try:
            if event.op in (ChangeOp.INSERT, ChangeOp.UPDATE):
                if record_id and self.echo_guard.is_recent(record_id):
                    logger.debug(f"Skipping echo-back for {local_name}: {record_id}")
                    return
                record = self.mapper.to_local(event.record, binding.date_fields)
                await self.local.put(local_name, record)
                logger.info(
                    f"Applied realtime {event.op.value} to {local_name}",
                    extra={"table": local_name, "record_id": record_id},
                )
            elif event.op == ChangeOp.DELETE:
                if record_id is None:
                    return
                await self.local.delete(local_name, record_id)
                logger.info(
                    f"Applied realtime DELETE to {local_name}",
                    extra={"table": local_name, "record_id": record_id},
                )
        except Exception as e:
            logger.warning(
                f"Failed to apply realtime {event.op.value} to {local_name}: {e}",
                extra={"table": local_name, "record_id": record_id},
            )
