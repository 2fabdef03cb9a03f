"""Database Infrastructure — SQLAlchemy Base for the on-device store.

Invariants:
    - Single async engine per process (owned by DatabaseSessionManager)
    - All sessions are async (AsyncSession)

Design Decisions:
    - aiosqlite driver on device, any async driver on servers (ADR: same code path for both)
"""
