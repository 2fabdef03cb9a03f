"""Sync Routes — control surface for the sync runtime (state, manual sync, connectivity, diagnostics).

Invariants:
    - Routes never contain sync logic; they delegate to SyncRuntime / SyncDiagnostics
    - POST /full while a cycle runs returns skipped=true (no queueing)
    - Unknown tables in diagnostics → 404 via TableNotRegisteredError

Design Decisions:
    - Runtime and diagnostics read from app.state via Depends: tests override the providers
"""

import logging

from fastapi import APIRouter, Depends, Request

from clinisync.schemas.sync import (
    ConnectivityUpdate, DiagnosisResponse, SyncReportResponse, SyncStateResponse,
)
from clinisync.services.sync_diagnostics import SyncDiagnostics
from clinisync.services.sync_runtime import SyncRuntime

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/sync", tags=["sync"])


def get_runtime(request: Request) -> SyncRuntime:
    return request.app.state.runtime


def get_diagnostics(request: Request) -> SyncDiagnostics:
    return request.app.state.diagnostics


@router.get("/state", response_model=SyncStateResponse)
async def read_state(runtime: SyncRuntime = Depends(get_runtime)):
    return SyncStateResponse.from_state(runtime.state)


@router.post("/full", response_model=SyncReportResponse)
async def trigger_full_sync(runtime: SyncRuntime = Depends(get_runtime)):
    """Run one full sync now (manual trigger)."""
    report = await runtime.force_sync()
    return SyncReportResponse.from_report(report, runtime.state)


@router.post("/connectivity", response_model=SyncStateResponse)
async def update_connectivity(
    body: ConnectivityUpdate, runtime: SyncRuntime = Depends(get_runtime),
):
    """Host reports a connectivity change; offline→online runs a full sync."""
    await runtime.on_connectivity_change(body.online)
    return SyncStateResponse.from_state(runtime.state)


@router.get("/diagnostics/{local_name}", response_model=DiagnosisResponse)
async def diagnose_table(
    local_name: str, diagnostics: SyncDiagnostics = Depends(get_diagnostics),
):
    diagnosis = await diagnostics.diagnose_table(local_name)
    connected, message = await diagnostics.check_connection()
    return DiagnosisResponse.from_diagnosis(diagnosis, connected, message)
