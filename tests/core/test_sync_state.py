"""Sync State — tests for the observable status store.

Tests cover:
    - Derived status precedence
    - Immediate delivery on subscribe, unsubscribe
    - Failing listeners removed without affecting others
"""

from datetime import datetime, timezone

from clinisync.core.domain_types import SyncStatus
from clinisync.core.sync_state import SyncState, SyncStateStore


def test_status_precedence():
    now = datetime.now(timezone.utc)
    assert SyncState(is_online=False, is_syncing=True, error="x").status == SyncStatus.OFFLINE
    assert SyncState(is_syncing=True, error="x").status == SyncStatus.SYNCING
    assert SyncState(error="x", last_sync_at=now).status == SyncStatus.ERROR
    assert SyncState(last_sync_at=now).status == SyncStatus.SUCCESS
    assert SyncState().status == SyncStatus.IDLE


def test_subscribe_delivers_current_state_immediately():
    store = SyncStateStore(is_online=False)
    seen = []
    store.subscribe(seen.append)
    assert len(seen) == 1
    assert seen[0].is_online is False


def test_update_notifies_in_subscription_order():
    store = SyncStateStore()
    order = []
    store.subscribe(lambda s: order.append(("a", s.pending_changes)))
    store.subscribe(lambda s: order.append(("b", s.pending_changes)))
    order.clear()
    store.update(pending_changes=3)
    assert order == [("a", 3), ("b", 3)]


def test_unsubscribe_stops_delivery():
    store = SyncStateStore()
    seen = []
    unsubscribe = store.subscribe(seen.append)
    unsubscribe()
    store.update(is_syncing=True)
    assert len(seen) == 1
    assert store.listener_count == 0


def test_failing_listener_removed_others_still_notified():
    store = SyncStateStore()
    calls = {"bad": 0}
    seen = []

    def bad(_state):
        calls["bad"] += 1
        if calls["bad"] > 1:
            raise RuntimeError("ui gone")

    store.subscribe(bad)
    store.subscribe(seen.append)
    store.update(is_syncing=True)
    store.update(is_syncing=False)
    assert calls["bad"] == 2
    assert store.listener_count == 1
    assert [s.is_syncing for s in seen] == [False, True, False]


def test_state_is_replaced_not_mutated():
    store = SyncStateStore()
    before = store.state
    store.update(error="boom")
    assert before.error is None
    assert store.state.error == "boom"


def test_to_dict_serializes_status_and_time():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    data = SyncState(last_sync_at=now).to_dict()
    assert data["status"] == "success"
    assert data["last_sync_at"] == "2024-01-01T00:00:00+00:00"


def test_clear_drops_all_listeners():
    store = SyncStateStore()
    store.subscribe(lambda s: None)
    store.clear()
    assert store.listener_count == 0
