"""Core Layer — record translation, merge rules, registry, state and boundary contracts.

Invariants:
    - No module in core/ imports from services/, api/, infrastructure/, or db/
    - No IO: stores are reached only through the Protocols in store_protocols.py

Design Decisions:
    - Functional core separated from imperative shell (ADR: impureim sandwich)
"""
