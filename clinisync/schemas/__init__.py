"""Pydantic Schemas — request/response validation for the control API.

Design Decisions:
    - Separate from services: schemas are API contracts, dataclasses are service results (ADR: DDD boundary)
"""
