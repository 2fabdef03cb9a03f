"""Error Hierarchy — typed, categorized exceptions for all ClinicSync failure modes.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Store errors carry the remote/local store's own code and detail in ErrorContext
    - to_response() produces the REST envelope used by the control API
    - Sync loops catch these per record / per table; they never abort a full cycle

Design Decisions:
    - Single hierarchy with SyncError base: one global API handler covers all (ADR: uniform error shape)
    - ErrorContext as dataclass: rich observability without coupling to logging framework
    - No TranslationError: the field mapper degrades to pass-through instead of raising
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    RESOURCE_NOT_FOUND = "resource_not_found"
    CONNECTIVITY = "connectivity"
    REMOTE_STORE = "remote_store"
    LOCAL_STORE = "local_store"
    CONFLICT = "conflict"
    REALTIME = "realtime"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    table: str | None = None
    record_id: str | None = None
    store_code: str | None = None
    store_detail: str | None = None
    debug_info: dict[str, Any] | None = None


class SyncError(Exception):
    """Base exception for all ClinicSync errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "table": self.context.table,
                    "record_id": self.context.record_id,
                    "store_code": self.context.store_code,
                    "store_detail": self.context.store_detail,
                },
            }
        }


# ─── Domain Errors (400-level) ──────────────────────────────────

class TableNotRegisteredError(SyncError):
    """Table name is not present in the table registry."""
    def __init__(self, table: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.table = table
        super().__init__(
            f"Table '{table}' is not registered for sync",
            "TABLE_NOT_REGISTERED", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.WARNING, ctx, 404,
        )


class DuplicateKeyError(SyncError):
    """add() called with an id that already exists in the store."""
    def __init__(self, table: str, record_id: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.table = table
        ctx.record_id = record_id
        super().__init__(
            f"Record '{record_id}' already exists in {table}",
            "DUPLICATE_KEY", ErrorCategory.CONFLICT,
            ErrorSeverity.WARNING, ctx, 409,
        )


# ─── Infrastructure Errors (500-level) ──────────────────────────

class ConnectivityError(SyncError):
    """No network, or the remote backend is not configured/reachable."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, "CONNECTIVITY_ERROR", ErrorCategory.CONNECTIVITY,
            ErrorSeverity.WARNING, context, 503,
        )


class RemoteStoreError(SyncError):
    """Remote store rejected a request (query, write, delete)."""
    def __init__(
        self,
        message: str,
        store_code: str | None = None,
        store_detail: str | None = None,
        context: ErrorContext | None = None,
        code: str = "REMOTE_STORE_ERROR",
    ):
        ctx = context or ErrorContext()
        ctx.store_code = store_code
        ctx.store_detail = store_detail
        super().__init__(
            message, code, ErrorCategory.REMOTE_STORE,
            ErrorSeverity.ERROR, ctx, 502,
        )

    @property
    def store_code(self) -> str | None:
        return self.context.store_code

    @property
    def store_detail(self) -> str | None:
        return self.context.store_detail


class RemoteWriteError(RemoteStoreError):
    """Upsert or delete rejected: schema mismatch, permission denial, constraint violation."""
    def __init__(
        self,
        message: str,
        store_code: str | None = None,
        store_detail: str | None = None,
        context: ErrorContext | None = None,
    ):
        super().__init__(
            message, store_code, store_detail, context,
            code="REMOTE_WRITE_REJECTED",
        )


class LocalStoreError(SyncError):
    """Local persistence operation failed."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Local store {operation} failed: {message}",
            "LOCAL_STORE_ERROR", ErrorCategory.LOCAL_STORE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation


class SubscriptionError(SyncError):
    """Realtime subscription could not be registered or timed out."""
    def __init__(self, message: str, status: str, context: ErrorContext | None = None):
        super().__init__(
            message, "SUBSCRIPTION_FAILED", ErrorCategory.REALTIME,
            ErrorSeverity.WARNING, context, 503,
        )
        self.status = status
