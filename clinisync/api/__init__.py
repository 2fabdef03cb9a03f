"""API Layer — FastAPI routes and error handlers for operating the sync engine.

Invariants:
    - Routes registered explicitly in main.py (no auto-discovery)
    - All endpoints return structured JSON responses

Design Decisions:
    - Thin routes delegate to services (ADR: functional core, imperative shell)
"""
