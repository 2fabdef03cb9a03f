"""SQLAlchemy Local Store — LocalStore implementation over the local_records table.

Invariants:
    - add() raises DuplicateKeyError when (table, id) exists; put() upserts
    - Records round-trip exactly: datetimes/dates are tagged in the JSON payload
    - Records without an id are rejected with LocalStoreError
    - SQLAlchemy failures surface as LocalStoreError (via DatabaseSessionManager)

Design Decisions:
    - Tagged JSON ({"$datetime": iso}) over a custom column type: payload stays
      readable with plain SQL tools
    - One short session per operation: the store is shared by UI, subscriber and
      coordinator without locks
"""

from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from clinisync.core.domain_types import LOCAL_ID_FIELD, LOCAL_UPDATED_FIELD, Record
from clinisync.core.errors import DuplicateKeyError, ErrorContext, LocalStoreError
from clinisync.core.last_write_wins import as_timestamp
from clinisync.infrastructure.database import DatabaseSessionManager
from clinisync.models.local_record import LocalRecord

_DATETIME_TAG = "$datetime"
_DATE_TAG = "$date"


# ─── Payload codec ───────────────────────────────────────────────

def encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return {_DATETIME_TAG: value.isoformat()}
    if isinstance(value, date):
        return {_DATE_TAG: value.isoformat()}
    if isinstance(value, dict):
        return {str(k): encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [encode_value(v) for v in value]
    return value


def decode_value(value: Any) -> Any:
    if isinstance(value, dict):
        if len(value) == 1 and _DATETIME_TAG in value:
            return datetime.fromisoformat(value[_DATETIME_TAG])
        if len(value) == 1 and _DATE_TAG in value:
            return date.fromisoformat(value[_DATE_TAG])
        return {k: decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


def _record_id(table: str, record: Record, operation: str) -> str:
    record_id = record.get(LOCAL_ID_FIELD)
    if record_id is None or record_id == "":
        raise LocalStoreError(
            "record has no id", operation, ErrorContext(table=table),
        )
    return str(record_id)


def _row_for(table: str, record_id: str, record: Record) -> LocalRecord:
    updated = record.get(LOCAL_UPDATED_FIELD)
    return LocalRecord(
        table_name=table,
        record_id=record_id,
        payload=encode_value(dict(record)),
        updated_at=as_timestamp(updated) if updated is not None else None,
    )


class SqlAlchemyLocalStore:
    """On-device store for every synced table."""

    def __init__(self, db: DatabaseSessionManager):
        self.db = db

    async def get(self, table: str, record_id: str) -> Record | None:
        async with self.db.session() as s:
            row = await s.get(LocalRecord, (table, str(record_id)))
            return decode_value(row.payload) if row else None

    async def add(self, table: str, record: Record) -> str:
        record_id = _record_id(table, record, "add")
        async with self.db.session() as s:
            if await s.get(LocalRecord, (table, record_id)) is not None:
                raise DuplicateKeyError(table, record_id)
            s.add(_row_for(table, record_id, record))
            try:
                await s.commit()
            except IntegrityError:
                await s.rollback()
                raise DuplicateKeyError(table, record_id) from None
        return record_id

    async def put(self, table: str, record: Record) -> str:
        record_id = _record_id(table, record, "put")
        async with self.db.session() as s:
            await s.merge(_row_for(table, record_id, record))
            await s.commit()
        return record_id

    async def delete(self, table: str, record_id: str) -> None:
        async with self.db.session() as s:
            await s.execute(
                delete(LocalRecord).where(
                    LocalRecord.table_name == table,
                    LocalRecord.record_id == str(record_id),
                ),
            )
            await s.commit()

    async def query_all(self, table: str) -> list[Record]:
        async with self.db.session() as s:
            result = await s.execute(
                select(LocalRecord.payload).where(LocalRecord.table_name == table),
            )
            return [decode_value(p) for p in result.scalars()]
