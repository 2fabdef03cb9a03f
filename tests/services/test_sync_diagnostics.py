"""Sync Diagnostics — tests for the connection probe and id-set comparison."""

import pytest

from clinisync.core.errors import TableNotRegisteredError
from clinisync.services.sync_diagnostics import SyncDiagnostics


@pytest.fixture
def diagnostics(local, remote, registry):
    return SyncDiagnostics(local, remote, registry)


async def test_connection_ok(diagnostics, remote):
    remote.seed("users", {"id": "u1"})
    ok, message = await diagnostics.check_connection()
    assert ok
    assert message == "Connected (users reachable)"
    assert remote.calls["sample"] == 1
    assert remote.calls["select"] == 0


async def test_connection_failure_reports_store_code(diagnostics, remote):
    remote.failing_tables = {"users"}
    ok, message = await diagnostics.check_connection()
    assert not ok
    assert "42P01" in message


async def test_diagnose_finds_missing_ids_on_each_side(diagnostics, local, remote):
    local.seed("patients", {"id": "a"}, {"id": "b"})
    remote.seed("patients", {"id": "b"}, {"id": "c"})

    diagnosis = await diagnostics.diagnose_table("patients")

    assert (diagnosis.local_count, diagnosis.remote_count) == (2, 2)
    assert diagnosis.missing_remotely == ["a"]
    assert diagnosis.missing_locally == ["c"]
    assert len(diagnosis.findings) == 2


async def test_diagnose_in_sync_table(diagnostics, local, remote):
    local.seed("patients", {"id": "a"})
    remote.seed("patients", {"id": "a"})
    diagnosis = await diagnostics.diagnose_table("patients")
    assert diagnosis.findings == ["Both sides have the same 1 record(s)"]


async def test_diagnose_reports_remote_error(diagnostics, remote):
    remote.failing_tables = {"patients"}
    diagnosis = await diagnostics.diagnose_table("patients")
    assert diagnosis.remote_error is not None


async def test_diagnose_unknown_table_raises(diagnostics):
    with pytest.raises(TableNotRegisteredError):
        await diagnostics.diagnose_table("ghosts")
