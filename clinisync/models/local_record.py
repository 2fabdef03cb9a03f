"""Local Record ORM — one row per synced domain record, any table.

Invariants:
    - (table_name, record_id) is the primary key: ids are unique per table
    - payload is the full local-shaped record, datetimes tagged (see local_store codec)
    - updated_at mirrors payload.updatedAt for ordering/inspection; never used for merging

Design Decisions:
    - JSON column over per-table schemas: the sync core never interprets domain fields
    - updated_at indexed: "what changed recently" queries for operators
"""

from datetime import datetime

from sqlalchemy import String, DateTime, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from clinisync.db.base import Base


class LocalRecord(Base):
    """A domain record as stored on this device."""
    __tablename__ = "local_records"

    table_name: Mapped[str] = mapped_column(String(100), primary_key=True)
    record_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    __table_args__ = (
        Index("ix_local_records_table_updated", "table_name", "updated_at"),
    )
