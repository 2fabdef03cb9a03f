"""Change Subscriber — tests for realtime subscription and event application.

Tests cover:
    - Subscription cap and stagger between registrations
    - INSERT/UPDATE mapped and put locally; DELETE removes locally
    - Echo-back suppression for ids this device just pushed
    - Failed registrations logged, recoverable with resubscribe()
    - Handles ended by the server are not active and get replaced by subscribe_all()
"""

from clinisync.core.domain_types import ChangeOp
from clinisync.core.echo_guard import EchoGuard
from clinisync.core.store_protocols import ChangeEvent
from clinisync.core.table_registry import TableBinding
from clinisync.services.change_subscriber import ChangeSubscriber
from tests.fakes import InMemoryLocalStore, InMemoryRemoteStore

PATIENTS = TableBinding("patients", "patients")


def _bindings(n):
    return [TableBinding(f"t{i}", f"t_{i}") for i in range(n)]


def _subscriber(local=None, remote=None, **kwargs):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    sub = ChangeSubscriber(
        local or InMemoryLocalStore(), remote or InMemoryRemoteStore(),
        sleep=fake_sleep, **kwargs,
    )
    return sub, sleeps


async def test_subscribes_at_most_max_tables_in_order():
    remote = InMemoryRemoteStore()
    sub, _ = _subscriber(remote=remote, max_subscriptions=17)
    subscribed = await sub.subscribe_all(_bindings(20))
    assert subscribed == [f"t{i}" for i in range(17)]
    assert remote.calls["subscribe"] == 17


async def test_registrations_are_staggered():
    sub, sleeps = _subscriber(stagger_seconds=0.2)
    await sub.subscribe_all(_bindings(3))
    assert sleeps == [0.2, 0.2]


async def test_insert_event_is_mapped_and_put_locally():
    local = InMemoryLocalStore()
    sub, _ = _subscriber(local=local)
    await sub.apply_event(PATIENTS, ChangeEvent(
        ChangeOp.INSERT,
        {"id": "p1", "first_name": "Ada", "updated_at": "2024-01-01T00:00:00Z"},
    ))
    stored = local.tables["patients"]["p1"]
    assert stored["firstName"] == "Ada"
    assert stored["updatedAt"].year == 2024


async def test_update_event_overwrites_local_copy():
    local = InMemoryLocalStore()
    local.seed("patients", {"id": "p1", "firstName": "Old"})
    sub, _ = _subscriber(local=local)
    await sub.apply_event(PATIENTS, ChangeEvent(ChangeOp.UPDATE, {"id": "p1", "first_name": "New"}))
    assert local.tables["patients"]["p1"]["firstName"] == "New"


async def test_delete_event_uses_old_record_id():
    local = InMemoryLocalStore()
    local.seed("patients", {"id": "p1"})
    sub, _ = _subscriber(local=local)
    await sub.apply_event(PATIENTS, ChangeEvent(ChangeOp.DELETE, {}, {"id": "p1"}))
    assert local.tables["patients"] == {}


async def test_echo_of_own_push_is_skipped():
    local = InMemoryLocalStore()
    guard = EchoGuard()
    guard.mark("p1")
    sub, _ = _subscriber(local=local, echo_guard=guard)
    await sub.apply_event(PATIENTS, ChangeEvent(ChangeOp.UPDATE, {"id": "p1", "first_name": "Echo"}))
    assert local.puts == 0


async def test_events_flow_from_remote_subscription_to_local():
    local, remote = InMemoryLocalStore(), InMemoryRemoteStore()
    sub, _ = _subscriber(local=local, remote=remote)
    await sub.subscribe(TableBinding("vitalSigns", "vital_signs"))
    await remote.subscriptions["vital_signs"].emit(
        ChangeEvent(ChangeOp.INSERT, {"id": "v1", "heart_rate": 72}),
    )
    assert local.tables["vitalSigns"]["v1"] == {"id": "v1", "heartRate": 72}


async def test_handler_errors_are_swallowed():
    class BrokenLocal(InMemoryLocalStore):
        async def put(self, table, record):
            raise RuntimeError("disk full")

    sub, _ = _subscriber(local=BrokenLocal())
    await sub.apply_event(PATIENTS, ChangeEvent(ChangeOp.INSERT, {"id": "p1"}))


async def test_failed_registration_is_logged_and_resubscribable():
    remote = InMemoryRemoteStore()
    remote.unsubscribable_tables = {"patients"}
    sub, _ = _subscriber(remote=remote)

    assert await sub.subscribe(PATIENTS) is False
    assert sub.active_tables == []

    remote.unsubscribable_tables = set()
    assert await sub.resubscribe("patients") is True
    assert sub.active_tables == ["patients"]


async def test_resubscribe_unknown_table_returns_false():
    sub, _ = _subscriber()
    assert await sub.resubscribe("nothing") is False


async def test_close_all_closes_every_handle():
    remote = InMemoryRemoteStore()
    sub, _ = _subscriber(remote=remote)
    await sub.subscribe_all(_bindings(2))
    await sub.close_all()
    assert sub.active_tables == []
    assert all(s.closed for s in remote.subscriptions.values())


async def test_subscribing_twice_keeps_one_handle():
    remote = InMemoryRemoteStore()
    sub, _ = _subscriber(remote=remote)
    await sub.subscribe(PATIENTS)
    await sub.subscribe(PATIENTS)
    assert remote.calls["subscribe"] == 1


async def test_subscribe_all_replaces_dropped_handles_only():
    remote = InMemoryRemoteStore()
    sub, sleeps = _subscriber(remote=remote, stagger_seconds=0.2)
    bindings = _bindings(3)
    await sub.subscribe_all(bindings)
    dropped = remote.subscriptions["t_1"]
    dropped.drop()

    assert sub.active_tables == ["t0", "t2"]
    assert sub.dropped_tables == ["t1"]

    sleeps.clear()
    live = await sub.subscribe_all(bindings)

    assert live == ["t0", "t1", "t2"]
    assert remote.calls["subscribe"] == 4
    assert dropped.closed
    assert sub.dropped_tables == []
    assert sleeps == []
