"""Sync Coordinator — full pull-then-push cycles and immediate single-record sync.

Invariants:
    - full_sync() is guarded by SyncState.is_syncing: a trigger while a cycle runs
      returns at once with zero network calls (no queue, caller retries later)
    - Within one cycle every pull finishes before the first push; tables run in registry order
    - One failing table never aborts the cycle; its failure is logged and reported
    - Pull merges last-write-wins: remote overwrites only when strictly newer
    - sync_record() / delete_record_from_cloud() are no-ops while offline or unconfigured
    - delete_record_from_cloud() never touches the local store (caller deletes locally)
    - SyncState.error holds only the last cycle's failure; a clean cycle clears it
    - Every completed cycle stamps last_sync_at and zeroes pending_changes, failed tables or not
    - is_syncing is released on every exit path, cancellation included

Design Decisions:
    - Connectivity and backend configuration injected as callables, read at call time
      (ADR: hosts own those signals; the coordinator only consumes booleans)
    - pull_table() raises on a failed remote query so full_sync() can mark the table;
      push_table() never raises, it reports through PushResult.error
    - Offline writes bump pending_changes: the next completed cycle resets it to zero
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from clinisync.core.domain_types import LOCAL_ID_FIELD, REMOTE_UPDATED_COLUMN, Record
from clinisync.core.echo_guard import EchoGuard
from clinisync.core.errors import DuplicateKeyError, SyncError
from clinisync.core.field_mapper import FieldMapper
from clinisync.core.last_write_wins import is_remote_newer
from clinisync.core.store_protocols import LocalStore, RemoteStore
from clinisync.core.sync_state import SyncStateStore
from clinisync.core.table_registry import TableBinding, TableRegistry
from clinisync.services.batch_writer import RecordFailure, RetryableBatchWriter

logger = logging.getLogger(__name__)


@dataclass
class PullResult:
    table: str
    added: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def changed(self) -> int:
        return self.added + self.updated


@dataclass
class PushResult:
    table: str
    succeeded: int = 0
    failed: int = 0
    failures: list[RecordFailure] = field(default_factory=list)
    error: str | None = None


@dataclass
class SyncReport:
    """What one full_sync() call did. skipped=True means no cycle ran."""
    skipped: bool = False
    pulls: dict[str, PullResult] = field(default_factory=dict)
    pushes: dict[str, PushResult] = field(default_factory=dict)
    failed_tables: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.skipped and not self.failed_tables

    @property
    def local_changes(self) -> int:
        return sum(p.changed for p in self.pulls.values())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncCoordinator:
    """Orchestrates local <-> remote synchronization for every registered table."""

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        registry: TableRegistry,
        state: SyncStateStore,
        mapper: FieldMapper | None = None,
        writer: RetryableBatchWriter | None = None,
        echo_guard: EchoGuard | None = None,
        is_backend_configured: Callable[[], bool] = lambda: True,
        is_online: Callable[[], bool] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.local = local
        self.remote = remote
        self.registry = registry
        self.state = state
        self.mapper = mapper or FieldMapper()
        self.writer = writer or RetryableBatchWriter(remote)
        self.echo_guard = echo_guard or EchoGuard()
        self._is_backend_configured = is_backend_configured
        self._is_online = is_online or (lambda: self.state.state.is_online)
        self._clock = clock

    # ─── Connectivity ────────────────────────────────────────────

    def can_reach_remote(self) -> bool:
        return self._is_backend_configured() and self._is_online()

    def set_online(self, online: bool) -> None:
        if self.state.state.is_online != online:
            logger.info(f"Device {'online' if online else 'offline'}")
            self.state.update(is_online=online)

    # ─── Full cycle ──────────────────────────────────────────────

    async def full_sync(self) -> SyncReport:
        if not self._is_backend_configured():
            logger.info("Remote backend not configured, skipping sync")
            return SyncReport(skipped=True)
        if self.state.state.is_syncing:
            logger.info("Sync already in progress")
            return SyncReport(skipped=True)

        self.state.update(is_syncing=True, error=None)
        logger.info("Starting full sync")
        report = SyncReport()
        try:
            await self.pull_all(report)
            await self.push_all(report)
        except Exception as e:
            # per-table failures are caught below; reaching here is a bug
            logger.error(f"Full sync aborted: {e}", exc_info=True)
            self.state.update(is_syncing=False, error=str(e) or "Sync failed")
            raise
        else:
            self._finish_cycle(report)
        finally:
            # cancellation skips both branches above
            if self.state.state.is_syncing:
                logger.warning("Full sync interrupted")
                self.state.update(is_syncing=False)
        return report

    def _finish_cycle(self, report: SyncReport) -> None:
        error = None
        if report.failed_tables:
            error = (
                f"Sync failed for {len(report.failed_tables)} table(s): "
                f"{', '.join(report.failed_tables)}"
            )
            logger.warning(error)
        else:
            logger.info("Full sync completed successfully")
        self.state.update(
            is_syncing=False,
            last_sync_at=self._clock(),
            pending_changes=0,
            error=error,
        )

    async def pull_all(self, report: SyncReport | None = None) -> SyncReport:
        report = report or SyncReport()
        for binding in self.registry:
            try:
                report.pulls[binding.local_name] = await self._pull_binding(binding)
            except Exception as e:
                logger.warning(
                    f"Failed to pull {binding.remote_name}: {e}",
                    extra={"table": binding.remote_name, **_error_extra(e)},
                )
                _mark_failed(report, binding.local_name)
        return report

    async def push_all(self, report: SyncReport | None = None) -> SyncReport:
        report = report or SyncReport()
        for binding in self.registry:
            result = await self.push_table(binding.local_name, binding.remote_name)
            report.pushes[binding.local_name] = result
            if result.error:
                _mark_failed(report, binding.local_name)
        return report

    async def pull_tables(self, local_names: Iterable[str]) -> dict[str, PullResult]:
        """Pull-only pass over a subset of tables (critical-data safety net)."""
        results: dict[str, PullResult] = {}
        if not self.can_reach_remote() or self.state.state.is_syncing:
            return results
        for binding in self.registry.subset(local_names):
            try:
                results[binding.local_name] = await self._pull_binding(binding)
            except Exception as e:
                logger.warning(
                    f"Failed to sync critical table {binding.local_name}: {e}",
                    extra={"table": binding.remote_name, **_error_extra(e)},
                )
        return results

    # ─── Per table ───────────────────────────────────────────────

    async def pull_table(
        self, remote_name: str, local_name: str,
        order_column: str = REMOTE_UPDATED_COLUMN,
    ) -> PullResult:
        """Merge one remote table into its local table. Raises if the remote query fails."""
        binding = self.registry.find_local(local_name)
        date_fields = binding.date_fields if binding else frozenset()
        rows = await self.remote.select_ordered_desc(remote_name, order_column)
        result = PullResult(table=local_name)
        for row in rows:
            record = self.mapper.to_local(row, date_fields)
            await self._merge(local_name, record, result)

        if rows:
            logger.info(
                f"Pulled {len(rows)} records from {remote_name} "
                f"(added: {result.added}, updated: {result.updated}, "
                f"skipped: {result.skipped}, failed: {result.failed})",
                extra={"table": remote_name},
            )
        return result

    async def push_table(self, local_name: str, remote_name: str) -> PushResult:
        """Upsert every local record of one table. Never raises."""
        result = PushResult(table=local_name)
        try:
            records = await self.local.query_all(local_name)
            if not records:
                return result
            prepared = [self.mapper.to_remote(r) for r in records]
            batch = await self.writer.upsert_table(remote_name, prepared)
        except Exception as e:
            logger.error(
                f"Failed to push {local_name}: {e}",
                extra={"table": local_name, **_error_extra(e)},
            )
            result.error = str(e) or type(e).__name__
            return result

        result.succeeded = batch.succeeded
        result.failed = batch.failed
        result.failures = batch.failures
        if not batch.failed:
            logger.info(
                f"Pushed {batch.succeeded} records to {remote_name}",
                extra={"table": remote_name, "succeeded": batch.succeeded},
            )
        return result

    async def _pull_binding(self, binding: TableBinding) -> PullResult:
        return await self.pull_table(
            binding.remote_name, binding.local_name, binding.order_column,
        )

    async def _merge(self, local_name: str, record: Record, result: PullResult) -> None:
        record_id = record.get(LOCAL_ID_FIELD)
        if record_id is None:
            logger.warning(
                f"Skipping remote row without id in {local_name}",
                extra={"table": local_name},
            )
            result.failed += 1
            return
        try:
            existing = await self.local.get(local_name, str(record_id))
            if existing is None:
                try:
                    await self.local.add(local_name, record)
                except DuplicateKeyError:
                    # raced with a realtime event or the UI; the row exists now
                    await self.local.put(local_name, record)
                    result.updated += 1
                else:
                    result.added += 1
            elif is_remote_newer(record, existing):
                await self.local.put(local_name, record)
                result.updated += 1
            else:
                result.skipped += 1
        except Exception as e:
            result.failed += 1
            logger.error(
                f"Failed to save {local_name} record {record_id}: {e}",
                extra={"table": local_name, "record_id": str(record_id)},
            )

    # ─── Single record ───────────────────────────────────────────

    async def sync_record(self, local_name: str, record: Record) -> bool:
        """Push one freshly written record. Returns True when the remote accepted it."""
        if not self.can_reach_remote():
            logger.debug("Offline or not configured, record will sync later")
            self.state.update(
                pending_changes=self.state.state.pending_changes + 1,
            )
            return False

        binding = self.registry.find_local(local_name)
        if binding is None:
            logger.warning(
                f"No remote table registered for {local_name}",
                extra={"table": local_name},
            )
            return False

        prepared = self.mapper.to_remote(record)
        record_id = record.get(LOCAL_ID_FIELD)
        if record_id is not None:
            self.echo_guard.mark(str(record_id))

        try:
            outcome = await self.remote.upsert_batch(
                binding.remote_name, [prepared], conflict_key="id",
            )
        except SyncError as e:
            logger.error(
                f"Failed to sync record to {binding.remote_name}: {e.message}",
                extra={
                    "table": binding.remote_name, "record_id": _str(record_id),
                    **_error_extra(e),
                },
            )
            return False

        if not outcome.ok:
            logger.error(
                f"Error syncing record to {binding.remote_name}: "
                f"{outcome.error_code} {outcome.error_detail} "
                f"(keys: {sorted(prepared)})",
                extra={
                    "table": binding.remote_name, "record_id": _str(record_id),
                    "store_code": outcome.error_code,
                },
            )
            return False
        logger.debug(f"Record synced to {binding.remote_name}: {record_id}")
        return True

    async def delete_record_from_cloud(self, local_name: str, record_id: str) -> bool:
        """Best-effort remote delete. The local copy is the caller's to delete."""
        if not self.can_reach_remote():
            return False
        binding = self.registry.find_local(local_name)
        if binding is None:
            return False
        try:
            await self.remote.delete(binding.remote_name, record_id)
        except SyncError as e:
            logger.warning(
                f"Error deleting {record_id} from {binding.remote_name}: {e.message}",
                extra={
                    "table": binding.remote_name, "record_id": record_id,
                    **_error_extra(e),
                },
            )
            return False
        return True


def _mark_failed(report: SyncReport, local_name: str) -> None:
    if local_name not in report.failed_tables:
        report.failed_tables.append(local_name)


def _error_extra(e: Exception) -> dict:
    if isinstance(e, SyncError):
        return {"error_code": e.code, "store_code": e.context.store_code}
    return {"error_code": type(e).__name__}


def _str(value: object) -> str | None:
    return str(value) if value is not None else None
