"""Local records — one JSON row per synced record, keyed by (table_name, record_id).

Revision ID: 001_local_records
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_local_records"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "local_records",
        sa.Column("table_name", sa.String(100), primary_key=True),
        sa.Column("record_id", sa.String(255), primary_key=True),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_local_records_table_updated", "local_records",
        ["table_name", "updated_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_local_records_table_updated", table_name="local_records")
    op.drop_table("local_records")
