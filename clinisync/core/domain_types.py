"""Domain Types — rich types that replace bare primitives across the sync engine.

Invariants:
    - RecordId is the globally unique id shared by local and remote copies of an entity
    - Record is a schema-agnostic mapping; only `id` and `updatedAt` are interpreted
    - All valid states encoded as Enums — no raw string matching

Design Decisions:
    - NewType over dataclass wrappers: zero runtime cost, full type-checker support
    - str Enums: serialize to JSON without custom encoders (ADR: control API returns JSON)
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, NewType, Union


# ─── Identity Types ──────────────────────────────────────────────

RecordId = NewType("RecordId", str)


# ─── Record Types ────────────────────────────────────────────────

# Tagged union of value kinds a record field may hold. Nested structures
# stay untyped: the engine carries them, it never reads them.
RecordValue = Union[
    str, int, float, bool, datetime, date, None, list[Any], dict[str, Any],
]
Record = dict[str, RecordValue]

LOCAL_ID_FIELD = "id"
LOCAL_UPDATED_FIELD = "updatedAt"
REMOTE_UPDATED_COLUMN = "updated_at"


# ─── Enums ───────────────────────────────────────────────────────

class ChangeOp(str, Enum):
    """Realtime change event kinds delivered by the remote store."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SyncStatus(str, Enum):
    """Display status derived from SyncState (precedence top to bottom)."""
    OFFLINE = "offline"
    SYNCING = "syncing"
    ERROR = "error"
    SUCCESS = "success"
    IDLE = "idle"


class SubscriptionStatus(str, Enum):
    """Realtime channel lifecycle states."""
    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"
