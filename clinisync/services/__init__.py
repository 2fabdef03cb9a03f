"""Services Layer — sync coordinator, batch writer, change subscriber, runtime and diagnostics.

Invariants:
    - Services depend on store Protocols, never on concrete stores
    - Per-record and per-table failures are contained here; they never escape a cycle
"""
