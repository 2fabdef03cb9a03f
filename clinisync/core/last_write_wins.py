"""Last-Write-Wins — timestamp comparison used to merge pulled rows into the local store.

Invariants:
    - Missing, null or unparseable timestamps compare as the Unix epoch
    - Remote wins only when strictly newer (ties keep the local copy)
    - Naive datetimes are read as UTC

Design Decisions:
    - Separate from the coordinator: pure and testable without stores
"""

from datetime import datetime, timezone
from typing import Any, Mapping

from clinisync.core.domain_types import LOCAL_UPDATED_FIELD
from clinisync.core.field_mapper import parse_timestamp

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def as_timestamp(value: Any) -> datetime:
    """Coerce a datetime / ISO string / epoch number into an aware datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        return parse_timestamp(value) or EPOCH
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # epoch milliseconds, as written by browser clients
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return EPOCH


def updated_at_of(record: Mapping[str, Any] | None) -> datetime:
    if not record:
        return EPOCH
    return as_timestamp(record.get(LOCAL_UPDATED_FIELD))


def is_remote_newer(
    remote: Mapping[str, Any], local: Mapping[str, Any] | None,
) -> bool:
    """True when the remote copy should overwrite the local one."""
    return updated_at_of(remote) > updated_at_of(local)
