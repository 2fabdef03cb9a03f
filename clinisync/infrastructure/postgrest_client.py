"""PostgREST Remote Store — RemoteStore over a PostgREST/Supabase REST API, with retry and error mapping.

Invariants:
    - Rate limits (429) and gateway errors (502/503/504): exponential backoff with jitter,
      Retry-After honoured, at most max_retries retries
    - Transport failures (connect/read/timeout) retried the same way, then ConnectivityError
    - Other 4xx/5xx: no retry; the PostgREST {code, message, details, hint} body is preserved
    - upsert_batch() reports rejection as UpsertOutcome; every other method raises
    - Reads page through the server's row limit with Range headers, advancing by the
      Content-Range the server reports; page order is total (id breaks ties)

Design Decisions:
    - Wrapper over raw httpx.AsyncClient: isolates retry logic from the sync services
    - ±25% jitter on backoff: prevents thundering herd when many devices reconnect together
    - Realtime delegated to RealtimeClient: one websocket shared by all subscriptions
"""

import asyncio
import logging
import random
from typing import Any, Sequence

import httpx

from clinisync.core.domain_types import Record
from clinisync.core.errors import (
    ConnectivityError, DuplicateKeyError, ErrorContext, RemoteStoreError,
    RemoteWriteError, SubscriptionError,
)
from clinisync.core.store_protocols import ChangeHandler, SubscriptionHandle, UpsertOutcome
from clinisync.infrastructure.realtime_channel import RealtimeClient

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {429, 502, 503, 504}
_TRANSPORT_ERRORS = (
    httpx.ConnectError, httpx.ReadError, httpx.WriteError,
    httpx.RemoteProtocolError, httpx.TimeoutException,
)
# Postgres unique_violation
_UNIQUE_VIOLATION = "23505"

PAGE_SIZE = 1000


def _error_fields(response: httpx.Response) -> tuple[str, str]:
    """Extract (code, detail) from a PostgREST error body."""
    try:
        body = response.json()
    except ValueError:
        return str(response.status_code), response.text[:500]
    if not isinstance(body, dict):
        return str(response.status_code), str(body)[:500]
    code = str(body.get("code") or response.status_code)
    parts = [body.get("message"), body.get("details"), body.get("hint")]
    return code, " | ".join(str(p) for p in parts if p)


def _content_range(response: httpx.Response) -> tuple[int, int | None] | None:
    """'0-999/2500' -> (999, 2500); total is None for '*'; None when absent."""
    value = response.headers.get("content-range")
    if not value:
        return None
    span, _, total = value.partition("/")
    _, sep, last = span.partition("-")
    if not sep or not last.isdigit():
        return None
    return int(last), int(total) if total.isdigit() else None


class PostgrestRemoteStore:
    """Remote store backed by a PostgREST endpoint (e.g. Supabase /rest/v1)."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        schema: str = "public",
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        base_delay_ms: int = 500,
        max_delay_ms: int = 10_000,
        realtime: RealtimeClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Accept-Profile": schema,
                "Content-Profile": schema,
            },
            timeout=timeout_seconds,
            transport=transport,
        )
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.realtime = realtime

    async def aclose(self) -> None:
        if self.realtime:
            await self.realtime.close()
        await self.client.aclose()

    # ─── Reads ───────────────────────────────────────────────────

    async def get(self, table: str, record_id: str) -> Record | None:
        response = await self._request(
            "GET", f"/{table}",
            params={"select": "*", "id": f"eq.{record_id}", "limit": "1"},
        )
        rows = self._json_or_raise(response, table, "get")
        return rows[0] if rows else None

    async def query_all(self, table: str) -> list[Record]:
        return await self._select_all(table, {"select": "*", "order": "id.asc"})

    async def select_ordered_desc(self, table: str, order_column: str) -> list[Record]:
        # nullslast: rows without a timestamp sort as oldest; id breaks timestamp ties
        return await self._select_all(
            table,
            {"select": "*", "order": f"{order_column}.desc.nullslast,id.desc"},
        )

    async def sample(self, table: str, limit: int = 1) -> list[Record]:
        """Cheap reachability probe: at most `limit` rows, no paging."""
        response = await self._request(
            "GET", f"/{table}", params={"select": "*", "limit": str(limit)},
        )
        return self._json_or_raise(response, table, "sample")

    async def _select_all(self, table: str, params: dict[str, str]) -> list[Record]:
        rows: list[Record] = []
        start = 0
        while True:
            response = await self._request(
                "GET", f"/{table}", params=params,
                headers={
                    "Range-Unit": "items",
                    "Range": f"{start}-{start + PAGE_SIZE - 1}",
                    "Prefer": "count=exact",
                },
            )
            page = self._json_or_raise(response, table, "select")
            rows.extend(page)
            if not page:
                return rows
            span = _content_range(response)
            if span is None:
                if len(page) < PAGE_SIZE:
                    return rows
                start += PAGE_SIZE
                continue
            # the server may cap pages below PAGE_SIZE (max-rows)
            last, total = span
            start = last + 1
            if total is not None and start >= total:
                return rows

    # ─── Writes ──────────────────────────────────────────────────

    async def add(self, table: str, record: Record) -> str:
        response = await self._request(
            "POST", f"/{table}", json=[record],
            headers={"Prefer": "return=minimal"},
        )
        if response.is_success:
            return str(record.get("id"))
        code, detail = _error_fields(response)
        if response.status_code == 409 or code == _UNIQUE_VIOLATION:
            raise DuplicateKeyError(table, str(record.get("id")))
        raise RemoteWriteError(
            f"Insert into {table} rejected", code, detail,
            ErrorContext(table=table, record_id=str(record.get("id"))),
        )

    async def put(self, table: str, record: Record) -> str:
        outcome = await self.upsert_batch(table, [record])
        if not outcome.ok:
            raise RemoteWriteError(
                f"Upsert into {table} rejected",
                outcome.error_code, outcome.error_detail,
                ErrorContext(table=table, record_id=str(record.get("id"))),
            )
        return str(record.get("id"))

    async def upsert_batch(
        self, table: str, records: Sequence[Record], conflict_key: str = "id",
    ) -> UpsertOutcome:
        if not records:
            return UpsertOutcome.success()
        response = await self._request(
            "POST", f"/{table}",
            params={"on_conflict": conflict_key},
            json=list(records),
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
        if response.is_success:
            return UpsertOutcome.success()
        code, detail = _error_fields(response)
        return UpsertOutcome.failure(code, detail)

    async def delete(self, table: str, record_id: str) -> None:
        response = await self._request(
            "DELETE", f"/{table}", params={"id": f"eq.{record_id}"},
        )
        if not response.is_success:
            code, detail = _error_fields(response)
            raise RemoteWriteError(
                f"Delete from {table} rejected", code, detail,
                ErrorContext(table=table, record_id=record_id),
            )

    # ─── Realtime ────────────────────────────────────────────────

    async def subscribe_changes(
        self, table: str, handler: ChangeHandler,
    ) -> SubscriptionHandle:
        if self.realtime is None:
            raise SubscriptionError(
                "Realtime not configured", "CHANNEL_ERROR",
                ErrorContext(table=table),
            )
        return await self.realtime.subscribe(table, handler)

    # ─── Transport ───────────────────────────────────────────────

    def _json_or_raise(
        self, response: httpx.Response, table: str, operation: str,
    ) -> list[Record]:
        if not response.is_success:
            code, detail = _error_fields(response)
            raise RemoteStoreError(
                f"Remote {operation} on {table} failed", code, detail,
                ErrorContext(table=table),
            )
        if not response.content:
            return []
        body = response.json()
        return body if isinstance(body, list) else []

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send with retry on transient failures. Returns the final response."""
        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(method, path, **kwargs)
            except _TRANSPORT_ERRORS as e:
                if attempt >= self.max_retries:
                    raise ConnectivityError(
                        f"Remote unreachable after {self.max_retries} retries: {e}",
                        ErrorContext(debug_info={"path": path}),
                    ) from e
                delay = self._backoff(attempt)
                logger.warning(
                    f"Transient error, retry after {delay}ms: {e}",
                    extra={"attempt": attempt + 1},
                )
                await asyncio.sleep(delay / 1000)
                continue

            if response.status_code in _RETRYABLE_STATUS and attempt < self.max_retries:
                delay = self._extract_retry_after(response) or self._backoff(attempt)
                logger.warning(
                    f"Remote returned {response.status_code}, retry after {delay}ms "
                    f"(attempt {attempt + 1})",
                    extra={"attempt": attempt + 1},
                )
                await asyncio.sleep(delay / 1000)
                continue
            return response
        raise AssertionError("unreachable")  # pragma: no cover

    def _backoff(self, attempt: int) -> int:
        """Exponential backoff with ±25% jitter."""
        delay = min(self.max_delay_ms, (2 ** attempt) * self.base_delay_ms)
        return int(delay * random.uniform(0.75, 1.25))  # nosec B311

    def _extract_retry_after(self, response: httpx.Response) -> int | None:
        """Extract Retry-After header (returns milliseconds)."""
        val = response.headers.get("retry-after")
        if val and val.isdigit():
            return int(val) * 1000
        return None
