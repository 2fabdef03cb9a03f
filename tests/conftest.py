"""Root conftest — shared test configuration and fixtures.

Invariants:
    - Tests never reach a real backend: remote settings are blanked
    - Service tests wire the engine over in-memory fakes (tests/fakes.py)
"""

import os

import pytest

# Ensure tests don't accidentally use real credentials
os.environ["REMOTE_URL"] = ""
os.environ["REMOTE_API_KEY"] = ""
os.environ.setdefault("LOCAL_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from clinisync.core.echo_guard import EchoGuard  # noqa: E402
from clinisync.core.sync_state import SyncStateStore  # noqa: E402
from clinisync.core.table_registry import TableBinding, TableRegistry  # noqa: E402
from clinisync.services.sync_coordinator import SyncCoordinator  # noqa: E402
from tests.fakes import InMemoryLocalStore, InMemoryRemoteStore  # noqa: E402


@pytest.fixture
def registry():
    return TableRegistry([
        TableBinding("users", "users"),
        TableBinding("patients", "patients"),
        TableBinding("vitalSigns", "vital_signs"),
    ])


@pytest.fixture
def local():
    return InMemoryLocalStore()


@pytest.fixture
def remote():
    return InMemoryRemoteStore()


@pytest.fixture
def state():
    return SyncStateStore()


@pytest.fixture
def echo_guard():
    return EchoGuard(ttl_seconds=10.0)


@pytest.fixture
def coordinator(local, remote, registry, state, echo_guard):
    return SyncCoordinator(local, remote, registry, state, echo_guard=echo_guard)
