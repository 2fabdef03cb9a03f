"""Boundary Protocols — contracts between the sync engine and the storage engines.

Invariants:
    - Services NEVER import concrete stores — dependency arrows point inward only
    - All IO operations accessed through Protocol types
    - Implementations provided at startup via dependency injection
    - Records crossing LocalStore are local-shaped; records crossing RemoteStore are remote-shaped

Design Decisions:
    - Protocol over ABC: structural subtyping, no inheritance hierarchy
    - Async in Protocol: boundary methods are async because implementations do IO;
      core modules that merely describe data (mapper, registry, state) stay sync
    - upsert_batch reports rejection as an UpsertOutcome instead of raising:
      a rejected batch is an expected result that drives per-record fallback
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol, Sequence

from clinisync.core.domain_types import ChangeOp, Record


@dataclass(frozen=True)
class UpsertOutcome:
    """Result of one upsert call against the remote store."""
    ok: bool
    error_code: str | None = None
    error_detail: str | None = None

    @classmethod
    def success(cls) -> "UpsertOutcome":
        return cls(ok=True)

    @classmethod
    def failure(cls, code: str | None, detail: str | None) -> "UpsertOutcome":
        return cls(ok=False, error_code=code, error_detail=detail)


@dataclass(frozen=True)
class ChangeEvent:
    """Realtime notification of a change that happened on the remote store."""
    op: ChangeOp
    record: Record
    old_record: Record | None = None

    @property
    def record_id(self) -> str | None:
        for source in (self.record, self.old_record):
            if source and source.get("id") is not None:
                return str(source["id"])
        return None


ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


class SubscriptionHandle(Protocol):
    """Live subscription returned by RemoteStore.subscribe_changes.

    is_active turns False when the server or the socket ends the subscription.
    """
    table: str

    @property
    def is_active(self) -> bool: ...

    async def close(self) -> None: ...


class LocalStore(Protocol):
    """Contract for the per-device store — implemented by infrastructure."""
    async def get(self, table: str, record_id: str) -> Record | None: ...
    async def add(self, table: str, record: Record) -> str: ...
    async def put(self, table: str, record: Record) -> str: ...
    async def delete(self, table: str, record_id: str) -> None: ...
    async def query_all(self, table: str) -> list[Record]: ...


class RemoteStore(Protocol):
    """Contract for the shared multi-device store — implemented by infrastructure."""
    async def get(self, table: str, record_id: str) -> Record | None: ...
    async def add(self, table: str, record: Record) -> str: ...
    async def put(self, table: str, record: Record) -> str: ...
    async def delete(self, table: str, record_id: str) -> None: ...
    async def query_all(self, table: str) -> list[Record]: ...
    async def select_ordered_desc(
        self, table: str, order_column: str,
    ) -> list[Record]: ...
    async def sample(self, table: str, limit: int = 1) -> list[Record]: ...
    async def upsert_batch(
        self, table: str, records: Sequence[Record], conflict_key: str = "id",
    ) -> UpsertOutcome: ...
    async def subscribe_changes(
        self, table: str, handler: ChangeHandler,
    ) -> SubscriptionHandle: ...
