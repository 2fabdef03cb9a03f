"""ORM Models — SQLAlchemy declarative models for the on-device store.

Invariants:
    - All models inherit from Base (db/base.py)
    - Domain records are NOT modelled per table: one generic row type holds them all

Design Decisions:
    - Generic (table_name, record_id) -> JSON payload row: the engine stays schema-agnostic
    - All models imported here so Base.metadata is complete before create_all / autogenerate
"""

from clinisync.models.local_record import LocalRecord  # noqa: F401
