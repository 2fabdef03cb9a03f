"""Retryable Batch Writer — batched remote upserts with per-record fallback.

Invariants:
    - Records are sent in batches of batch_size (default 100), conflict key "id"
    - A rejected batch is retried one record at a time to isolate the offending rows
    - succeeded + failed == len(records) for every call
    - upsert_table() never raises: failures are tallied and logged with the store's code/detail

Design Decisions:
    - Rejected outcome and raised RemoteStoreError/ConnectivityError treated alike:
      adapters differ in how they surface a refused write
    - A batch of one is not retried (the batch attempt already was the single attempt)
"""

import logging
from dataclasses import dataclass, field
from typing import Sequence

from clinisync.core.domain_types import Record
from clinisync.core.errors import SyncError
from clinisync.core.store_protocols import RemoteStore, UpsertOutcome

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


@dataclass(frozen=True)
class RecordFailure:
    """One record the remote refused, with the store's own explanation."""
    record_id: str | None
    error_code: str | None
    error_detail: str | None


@dataclass
class BatchResult:
    succeeded: int = 0
    failed: int = 0
    failures: list[RecordFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed


class RetryableBatchWriter:
    """Pushes remote-shaped records to one remote table, isolating bad rows."""

    def __init__(self, remote: RemoteStore, batch_size: int = DEFAULT_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.remote = remote
        self.batch_size = batch_size

    async def upsert_table(
        self, remote_name: str, records: Sequence[Record],
    ) -> BatchResult:
        result = BatchResult()
        for start in range(0, len(records), self.batch_size):
            batch = records[start:start + self.batch_size]
            outcome = await self._upsert(remote_name, batch)
            if outcome.ok:
                result.succeeded += len(batch)
                continue

            logger.error(
                f"Batch upsert to {remote_name} rejected "
                f"({len(batch)} records): {outcome.error_code} {outcome.error_detail}",
                extra={"table": remote_name, "store_code": outcome.error_code},
            )
            if len(batch) == 1:
                self._record_failure(result, remote_name, batch[0], outcome)
                continue
            await self._retry_individually(remote_name, batch, result)

        if result.failed:
            logger.warning(
                f"Pushed {result.succeeded}/{result.total} records to "
                f"{remote_name} ({result.failed} failed)",
                extra={
                    "table": remote_name,
                    "succeeded": result.succeeded, "failed": result.failed,
                },
            )
        return result

    async def _retry_individually(
        self, remote_name: str, batch: Sequence[Record], result: BatchResult,
    ) -> None:
        for record in batch:
            outcome = await self._upsert(remote_name, [record])
            if outcome.ok:
                result.succeeded += 1
            else:
                self._record_failure(result, remote_name, record, outcome)

    async def _upsert(
        self, remote_name: str, batch: Sequence[Record],
    ) -> UpsertOutcome:
        try:
            return await self.remote.upsert_batch(
                remote_name, list(batch), conflict_key="id",
            )
        except SyncError as e:
            return UpsertOutcome.failure(
                e.context.store_code or e.code,
                e.context.store_detail or e.message,
            )
        except Exception as e:
            logger.error(
                f"Unexpected error upserting to {remote_name}: {e}", exc_info=True,
            )
            return UpsertOutcome.failure("UNEXPECTED", str(e))

    def _record_failure(
        self, result: BatchResult, remote_name: str,
        record: Record, outcome: UpsertOutcome,
    ) -> None:
        record_id = record.get("id")
        failure = RecordFailure(
            record_id=str(record_id) if record_id is not None else None,
            error_code=outcome.error_code,
            error_detail=outcome.error_detail,
        )
        result.failed += 1
        result.failures.append(failure)
        logger.error(
            f"Failed record in {remote_name}: {failure.record_id} "
            f"{failure.error_code} {failure.error_detail}",
            extra={
                "table": remote_name, "record_id": failure.record_id,
                "store_code": failure.error_code,
            },
        )
