"""Sync Schemas — Pydantic models for the sync control API.

Invariants:
    - Responses are built from service objects via from_*() constructors, never by hand in routes
    - SyncStateResponse.status is derived (offline > syncing > error > success > idle)

Design Decisions:
    - Separate from services: dataclasses stay framework-free, schemas are API contracts (ADR: DDD boundary)
"""

from datetime import datetime

from pydantic import BaseModel

from clinisync.core.sync_state import SyncState
from clinisync.services.sync_coordinator import SyncReport
from clinisync.services.sync_diagnostics import TableDiagnosis


class ConnectivityUpdate(BaseModel):
    """Host-reported connectivity transition."""
    online: bool


class SyncStateResponse(BaseModel):
    is_online: bool
    is_syncing: bool
    last_sync_at: datetime | None = None
    pending_changes: int = 0
    error: str | None = None
    status: str

    @classmethod
    def from_state(cls, state: SyncState) -> "SyncStateResponse":
        return cls(**state.to_dict())


class TableCounts(BaseModel):
    added: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0


class PushCounts(BaseModel):
    succeeded: int = 0
    failed: int = 0
    error: str | None = None


class SyncReportResponse(BaseModel):
    """Outcome of one full sync request."""
    skipped: bool
    ok: bool
    failed_tables: list[str] = []
    pulls: dict[str, TableCounts] = {}
    pushes: dict[str, PushCounts] = {}
    state: SyncStateResponse

    @classmethod
    def from_report(
        cls, report: SyncReport, state: SyncState,
    ) -> "SyncReportResponse":
        return cls(
            skipped=report.skipped,
            ok=report.ok,
            failed_tables=list(report.failed_tables),
            pulls={
                name: TableCounts(
                    added=p.added, updated=p.updated,
                    skipped=p.skipped, failed=p.failed,
                )
                for name, p in report.pulls.items()
            },
            pushes={
                name: PushCounts(
                    succeeded=p.succeeded, failed=p.failed, error=p.error,
                )
                for name, p in report.pushes.items()
            },
            state=SyncStateResponse.from_state(state),
        )


class DiagnosisResponse(BaseModel):
    table: str
    connected: bool
    connection_message: str
    local_count: int
    remote_count: int
    missing_remotely: list[str]
    missing_locally: list[str]
    remote_error: str | None = None
    findings: list[str]

    @classmethod
    def from_diagnosis(
        cls, diagnosis: TableDiagnosis, connected: bool, message: str,
    ) -> "DiagnosisResponse":
        return cls(
            table=diagnosis.table,
            connected=connected,
            connection_message=message,
            local_count=diagnosis.local_count,
            remote_count=diagnosis.remote_count,
            missing_remotely=diagnosis.missing_remotely,
            missing_locally=diagnosis.missing_locally,
            remote_error=diagnosis.remote_error,
            findings=diagnosis.findings,
        )
