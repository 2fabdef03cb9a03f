"""Sync Diagnostics — compares local and remote copies of a table for operators.

Invariants:
    - Read-only: never writes to either store
    - Remote failures are reported in the result, not raised
    - The connection probe reads at most one row

Design Decisions:
    - Id-set comparison only (no field diff): enough to tell "needs push" from "needs pull"
"""

import logging
from dataclasses import dataclass, field

from clinisync.core.errors import SyncError
from clinisync.core.store_protocols import LocalStore, RemoteStore
from clinisync.core.table_registry import TableRegistry

logger = logging.getLogger(__name__)


@dataclass
class TableDiagnosis:
    table: str
    local_count: int = 0
    remote_count: int = 0
    missing_remotely: list[str] = field(default_factory=list)
    missing_locally: list[str] = field(default_factory=list)
    remote_error: str | None = None
    findings: list[str] = field(default_factory=list)


class SyncDiagnostics:
    """Connection probe and per-table id-set comparison."""

    def __init__(self, local: LocalStore, remote: RemoteStore, registry: TableRegistry):
        self.local = local
        self.remote = remote
        self.registry = registry

    async def check_connection(self) -> tuple[bool, str]:
        first = next(iter(self.registry), None)
        if first is None:
            return False, "No tables registered"
        try:
            await self.remote.sample(first.remote_name)
        except SyncError as e:
            code = e.context.store_code or e.code
            logger.warning(
                f"Connection test failed: {e.message}",
                extra={"table": first.remote_name, "store_code": code},
            )
            return False, f"Database error: {e.message}. Code: {code}"
        return True, f"Connected ({first.remote_name} reachable)"

    async def diagnose_table(self, local_name: str) -> TableDiagnosis:
        binding = self.registry.by_local(local_name)
        diagnosis = TableDiagnosis(table=local_name)

        local_ids = {
            str(r["id"]) for r in await self.local.query_all(local_name)
            if r.get("id") is not None
        }
        diagnosis.local_count = len(local_ids)

        try:
            remote_rows = await self.remote.query_all(binding.remote_name)
        except SyncError as e:
            diagnosis.remote_error = e.message
            diagnosis.findings.append(f"Cloud query error: {e.message}")
            return diagnosis

        remote_ids = {str(r["id"]) for r in remote_rows if r.get("id") is not None}
        diagnosis.remote_count = len(remote_ids)
        diagnosis.missing_remotely = sorted(local_ids - remote_ids)
        diagnosis.missing_locally = sorted(remote_ids - local_ids)

        if diagnosis.missing_remotely:
            diagnosis.findings.append(
                f"{len(diagnosis.missing_remotely)} record(s) need to be pushed to cloud",
            )
        if diagnosis.missing_locally:
            diagnosis.findings.append(
                f"{len(diagnosis.missing_locally)} record(s) need to be pulled from cloud",
            )
        if not local_ids and not remote_ids:
            diagnosis.findings.append("No records in either local or cloud storage")
        elif not diagnosis.missing_remotely and not diagnosis.missing_locally:
            diagnosis.findings.append(
                f"Both sides have the same {len(local_ids)} record(s)",
            )
        return diagnosis
