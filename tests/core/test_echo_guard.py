"""Echo Guard — tests for TTL-bound recent-push tracking."""

from clinisync.core.echo_guard import EchoGuard


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_marked_id_is_recent_within_ttl():
    clock = FakeClock()
    guard = EchoGuard(ttl_seconds=10, clock=clock)
    guard.mark("p1")
    clock.now += 9
    assert guard.is_recent("p1")


def test_marked_id_expires_after_ttl():
    clock = FakeClock()
    guard = EchoGuard(ttl_seconds=10, clock=clock)
    guard.mark("p1")
    clock.now += 11
    assert not guard.is_recent("p1")
    assert len(guard) == 0


def test_mark_purges_expired_entries():
    clock = FakeClock()
    guard = EchoGuard(ttl_seconds=10, clock=clock)
    guard.mark("old")
    clock.now += 20
    guard.mark("new")
    assert len(guard) == 1


def test_unknown_id_is_not_recent():
    assert not EchoGuard().is_recent("nope")


def test_clear_forgets_everything():
    guard = EchoGuard()
    guard.mark("a")
    guard.clear()
    assert not guard.is_recent("a")
