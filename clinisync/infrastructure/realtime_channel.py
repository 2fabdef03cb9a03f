"""Realtime Channel — Supabase Realtime (Phoenix channel) client for postgres change events.

Invariants:
    - One websocket per client; each table is one channel topic on it
    - subscribe() returns only after the server acknowledges the join (phx_reply ok);
      error reply -> SubscriptionError(CHANNEL_ERROR), no reply in time -> SubscriptionError(TIMED_OUT)
    - Change events are handled sequentially in arrival order by the reader task
    - A dropped socket or channel error is logged and the channel stops being active
      (is_active False); nothing reconnects automatically, the next subscribe() opens a new socket
    - Heartbeats keep the socket alive while any channel is joined

Design Decisions:
    - websockets over a vendor SDK: the protocol is small and JSON-only
    - parse_change_payload() is pure: unit-testable without a socket
    - Handler exceptions logged per event: a bad row must not stop the reader
"""

import asyncio
import itertools
import json
import logging
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode, urlsplit, urlunsplit

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from clinisync.core.domain_types import ChangeOp, SubscriptionStatus
from clinisync.core.errors import ErrorContext, SubscriptionError
from clinisync.core.store_protocols import ChangeEvent, ChangeHandler

logger = logging.getLogger(__name__)

_PHOENIX_TOPIC = "phoenix"


def realtime_url(base_url: str, api_key: str) -> str:
    """https://x.supabase.co -> wss://x.supabase.co/realtime/v1/websocket?apikey=...&vsn=1.0.0"""
    parts = urlsplit(base_url.rstrip("/"))
    scheme = "wss" if parts.scheme == "https" else "ws"
    query = urlencode({"apikey": api_key, "vsn": "1.0.0"})
    return urlunsplit(
        (scheme, parts.netloc, f"{parts.path}/realtime/v1/websocket", query, ""),
    )


def parse_change_payload(payload: dict[str, Any]) -> ChangeEvent | None:
    """Turn a postgres_changes payload into a ChangeEvent; None for unknown shapes."""
    data = payload.get("data")
    if not isinstance(data, dict):
        return None
    try:
        op = ChangeOp(str(data.get("type", "")).upper())
    except ValueError:
        return None
    record = data.get("record") or {}
    old_record = data.get("old_record") or None
    return ChangeEvent(op=op, record=dict(record), old_record=old_record)


class RealtimeChannel:
    """Subscription handle for one table's change stream."""

    def __init__(self, client: "RealtimeClient", table: str, topic: str, handler: ChangeHandler):
        self.client = client
        self.table = table
        self.topic = topic
        self.handler = handler
        self.status = SubscriptionStatus.SUBSCRIBED

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.SUBSCRIBED

    async def close(self) -> None:
        # a dead channel's topic may already belong to its replacement
        if self.is_active:
            await self.client.leave(self.topic)
        self.status = SubscriptionStatus.CLOSED


class RealtimeClient:
    """Phoenix-protocol websocket client shared by all realtime subscriptions."""

    def __init__(
        self,
        url: str,
        api_key: str,
        schema: str = "public",
        join_timeout_seconds: float = 10.0,
        heartbeat_seconds: float = 25.0,
        connector: Callable[[str], Awaitable[Any]] | None = None,
    ):
        self.url = url
        self.api_key = api_key
        self.schema = schema
        self.join_timeout_seconds = join_timeout_seconds
        self.heartbeat_seconds = heartbeat_seconds
        self._connector = connector or ws_connect
        self._ws: Any = None
        self._refs = itertools.count(1)
        self._pending: dict[str, asyncio.Future] = {}
        self._channels: dict[str, RealtimeChannel] = {}
        self._tasks: list[asyncio.Task] = []
        self._connect_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    async def subscribe(self, table: str, handler: ChangeHandler) -> RealtimeChannel:
        await self._ensure_connected()
        topic = f"realtime:{table}-changes"
        channel = RealtimeChannel(self, table, topic, handler)
        self._channels[topic] = channel
        ref = self._next_ref()
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[ref] = future
        await self._send({
            "topic": topic,
            "event": "phx_join",
            "payload": {
                "config": {
                    "broadcast": {"self": False},
                    "presence": {"key": ""},
                    "postgres_changes": [
                        {"event": "*", "schema": self.schema, "table": table},
                    ],
                },
                "access_token": self.api_key,
            },
            "ref": ref,
            "join_ref": ref,
        })
        try:
            reply = await asyncio.wait_for(future, self.join_timeout_seconds)
        except asyncio.TimeoutError:
            self._channels.pop(topic, None)
            raise SubscriptionError(
                f"Subscription timed out for {table}",
                SubscriptionStatus.TIMED_OUT.value, ErrorContext(table=table),
            ) from None
        finally:
            self._pending.pop(ref, None)

        if reply.get("status") != "ok":
            self._channels.pop(topic, None)
            raise SubscriptionError(
                f"Subscription rejected for {table}: {reply.get('response')}",
                SubscriptionStatus.CHANNEL_ERROR.value, ErrorContext(table=table),
            )
        return channel

    async def leave(self, topic: str) -> None:
        if self._channels.pop(topic, None) is None or self._ws is None:
            return
        try:
            await self._send({
                "topic": topic, "event": "phx_leave",
                "payload": {}, "ref": self._next_ref(),
            })
        except ConnectionClosed:
            pass  # socket already gone; channel is dropped either way

    async def close(self) -> None:
        # the reader nulls _ws on exit, so take the socket first
        ws, self._ws = self._ws, None
        self._drop_channels()
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        if ws is not None:
            await ws.close()

    # ─── Internals ───────────────────────────────────────────────

    async def _ensure_connected(self) -> None:
        async with self._connect_lock:
            if self._ws is not None:
                return
            # leftovers from a dropped socket (heartbeat still sleeping)
            for task in self._tasks:
                task.cancel()
            self._ws = await self._connector(self.url)
            self._tasks = [
                asyncio.create_task(self._reader(self._ws), name="realtime-reader"),
                asyncio.create_task(self._heartbeat(), name="realtime-heartbeat"),
            ]
            logger.info("Realtime socket connected")

    def _next_ref(self) -> str:
        return str(next(self._refs))

    async def _send(self, message: dict[str, Any]) -> None:
        await self._ws.send(json.dumps(message))

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_seconds)
            if self._ws is None:
                return
            await self._send({
                "topic": _PHOENIX_TOPIC, "event": "heartbeat",
                "payload": {}, "ref": self._next_ref(),
            })

    async def _reader(self, ws: Any) -> None:
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except ValueError:
                    logger.warning("Ignoring non-JSON realtime frame")
                    continue
                await self.dispatch(message)
        except ConnectionClosed as e:
            logger.warning(f"Realtime socket closed: {e}")
        finally:
            for future in self._pending.values():
                if not future.done():
                    future.set_result({"status": "error", "response": "socket closed"})
            if self._ws is ws:
                self._ws = None
                self._drop_channels()

    def _drop_channels(self) -> None:
        for channel in self._channels.values():
            channel.status = SubscriptionStatus.CLOSED
        self._channels.clear()

    async def dispatch(self, message: dict[str, Any]) -> None:
        event = message.get("event")
        topic = message.get("topic")
        payload = message.get("payload") or {}

        if event == "phx_reply":
            future = self._pending.get(str(message.get("ref")))
            if future is not None and not future.done():
                future.set_result(payload)
            return

        channel = self._channels.get(topic) if topic else None
        if channel is None:
            return

        if event == "postgres_changes":
            change = parse_change_payload(payload)
            if change is None:
                return
            try:
                await channel.handler(change)
            except Exception as e:
                logger.warning(
                    f"Realtime handler failed for {channel.table}: {e}",
                    extra={"table": channel.table},
                )
        elif event in ("phx_error", "phx_close"):
            logger.warning(
                f"Realtime channel {event} for {channel.table}",
                extra={"table": channel.table},
            )
            channel.status = (
                SubscriptionStatus.CHANNEL_ERROR if event == "phx_error"
                else SubscriptionStatus.CLOSED
            )
            self._channels.pop(topic, None)
