"""Infrastructure Layer — concrete stores, remote clients and cross-cutting concerns.

Invariants:
    - Implements the core Protocols; services never import this package directly
    - All remote calls wrapped with retry/timeout/error mapping

Design Decisions:
    - Resilient wrappers over raw clients (ADR: single responsibility)
"""
