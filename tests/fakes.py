"""In-memory store fakes — LocalStore / RemoteStore doubles for service tests.

Invariants:
    - InMemoryLocalStore.add raises DuplicateKeyError like the real adapter
    - InMemoryRemoteStore rejects any upsert batch containing an id in reject_ids
    - failing_tables make selects raise RemoteStoreError (table-level failure)
    - Every remote call is counted in `calls` (network-call assertions)
    - GatedRemoteStore parks every select until `gate` is set (mid-cycle scenarios)
    - FakeWebSocket answers phx_join itself; close() ends the reader like a dropped socket
"""

import asyncio
import copy
import json
from collections import Counter
from typing import Sequence

from clinisync.core.errors import (
    DuplicateKeyError, ErrorContext, RemoteStoreError, SubscriptionError,
)
from clinisync.core.store_protocols import ChangeEvent, ChangeHandler, UpsertOutcome


class InMemoryLocalStore:

    def __init__(self):
        self.tables: dict[str, dict[str, dict]] = {}
        self.puts = 0
        self.adds = 0

    def seed(self, table: str, *records: dict) -> None:
        for r in records:
            self.tables.setdefault(table, {})[str(r["id"])] = copy.deepcopy(r)

    async def get(self, table, record_id):
        record = self.tables.get(table, {}).get(str(record_id))
        return copy.deepcopy(record) if record is not None else None

    async def add(self, table, record):
        rows = self.tables.setdefault(table, {})
        if str(record["id"]) in rows:
            raise DuplicateKeyError(table, str(record["id"]))
        rows[str(record["id"])] = copy.deepcopy(record)
        self.adds += 1
        return str(record["id"])

    async def put(self, table, record):
        self.tables.setdefault(table, {})[str(record["id"])] = copy.deepcopy(record)
        self.puts += 1
        return str(record["id"])

    async def delete(self, table, record_id):
        self.tables.get(table, {}).pop(str(record_id), None)

    async def query_all(self, table):
        return [copy.deepcopy(r) for r in self.tables.get(table, {}).values()]


class FakeSubscription:

    def __init__(self, table: str, handler: ChangeHandler):
        self.table = table
        self.handler = handler
        self.closed = False
        self.dropped = False

    @property
    def is_active(self) -> bool:
        return not (self.closed or self.dropped)

    def drop(self) -> None:
        """Server side ended the channel (phx_error / socket loss)."""
        self.dropped = True

    async def emit(self, event: ChangeEvent) -> None:
        await self.handler(event)

    async def close(self) -> None:
        self.closed = True


class InMemoryRemoteStore:

    def __init__(self):
        self.tables: dict[str, dict[str, dict]] = {}
        self.calls: Counter = Counter()
        self.reject_ids: set[str] = set()
        self.failing_tables: set[str] = set()
        self.unsubscribable_tables: set[str] = set()
        self.subscriptions: dict[str, FakeSubscription] = {}
        self.upsert_batches: list[tuple[str, list[str]]] = []

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    def seed(self, table: str, *rows: dict) -> None:
        for r in rows:
            self.tables.setdefault(table, {})[str(r["id"])] = copy.deepcopy(r)

    def _check_table(self, table: str) -> None:
        if table in self.failing_tables:
            raise RemoteStoreError(
                f"relation {table} does not exist", "42P01",
                "relation does not exist", ErrorContext(table=table),
            )

    async def get(self, table, record_id):
        self.calls["get"] += 1
        self._check_table(table)
        row = self.tables.get(table, {}).get(str(record_id))
        return copy.deepcopy(row) if row is not None else None

    async def add(self, table, record):
        self.calls["add"] += 1
        rows = self.tables.setdefault(table, {})
        if str(record["id"]) in rows:
            raise DuplicateKeyError(table, str(record["id"]))
        rows[str(record["id"])] = copy.deepcopy(record)
        return str(record["id"])

    async def put(self, table, record):
        self.calls["put"] += 1
        self.tables.setdefault(table, {})[str(record["id"])] = copy.deepcopy(record)
        return str(record["id"])

    async def delete(self, table, record_id):
        self.calls["delete"] += 1
        self._check_table(table)
        self.tables.get(table, {}).pop(str(record_id), None)

    async def query_all(self, table):
        self.calls["query_all"] += 1
        self._check_table(table)
        return [copy.deepcopy(r) for r in self.tables.get(table, {}).values()]

    async def select_ordered_desc(self, table, order_column):
        self.calls["select"] += 1
        self._check_table(table)
        rows = [copy.deepcopy(r) for r in self.tables.get(table, {}).values()]
        return sorted(rows, key=lambda r: str(r.get(order_column) or ""), reverse=True)

    async def sample(self, table, limit=1):
        self.calls["sample"] += 1
        self._check_table(table)
        return [copy.deepcopy(r) for r in self.tables.get(table, {}).values()][:limit]

    async def upsert_batch(self, table, records: Sequence[dict], conflict_key="id"):
        self.calls["upsert"] += 1
        ids = [str(r.get(conflict_key)) for r in records]
        self.upsert_batches.append((table, ids))
        self._check_table(table)
        rejected = [i for i in ids if i in self.reject_ids]
        if rejected:
            return UpsertOutcome.failure(
                "23502", f"null value in column violates not-null constraint ({rejected[0]})",
            )
        rows = self.tables.setdefault(table, {})
        for r in records:
            rows[str(r[conflict_key])] = copy.deepcopy(dict(r))
        return UpsertOutcome.success()

    async def subscribe_changes(self, table, handler):
        self.calls["subscribe"] += 1
        if table in self.unsubscribable_tables:
            raise SubscriptionError(
                f"Subscription timed out for {table}", "TIMED_OUT",
                ErrorContext(table=table),
            )
        sub = FakeSubscription(table, handler)
        self.subscriptions[table] = sub
        return sub


class GatedRemoteStore(InMemoryRemoteStore):

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def select_ordered_desc(self, table, order_column):
        self.entered.set()
        await self.gate.wait()
        return await super().select_ordered_desc(table, order_column)


class RealtimeRemoteStore(InMemoryRemoteStore):
    """In-memory rows, live subscriptions through a real RealtimeClient."""

    def __init__(self, realtime):
        super().__init__()
        self.realtime = realtime

    async def subscribe_changes(self, table, handler):
        self.calls["subscribe"] += 1
        return await self.realtime.subscribe(table, handler)


class FakeWebSocket:
    """Answers joins with a canned phx_reply; frames pushed via deliver()."""

    def __init__(self, join_status: str | None = "ok"):
        self.join_status = join_status
        self.sent: list[dict] = []
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def send(self, raw: str) -> None:
        message = json.loads(raw)
        self.sent.append(message)
        if message["event"] == "phx_join" and self.join_status:
            await self.deliver({
                "topic": message["topic"], "event": "phx_reply",
                "payload": {"status": self.join_status, "response": {}},
                "ref": message["ref"],
            })

    async def deliver(self, message: dict) -> None:
        await self.inbox.put(json.dumps(message))

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        raw = await self.inbox.get()
        if raw is None:
            raise StopAsyncIteration
        return raw

    async def close(self) -> None:
        self.closed = True
        await self.inbox.put(None)
