# mindbreakers/core/backend/realtime.py
"""Realtime change feed over the Supabase Phoenix websocket.

One websocket carries every channel. Each channel joins a
``realtime:<name>`` topic with a postgres_changes binding and receives
``postgres_changes`` frames for matching rows. A heartbeat keeps the
socket alive and channels are re-joined after a reconnect.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed

from mindbreakers.core.backend.base import ChangeCallback, ChangeEvent, Subscription

logger = logging.getLogger(__name__)

PHOENIX_TOPIC = "phoenix"
HEARTBEAT_INTERVAL_S = 30.0
RECONNECT_DELAY_S = 5.0
MAX_RECONNECT_DELAY_S = 30.0


@dataclass
class Channel:
    """A joined (or pending) realtime topic and its callback."""

    topic: str
    table: str
    event: str
    filter: str | None
    callback: ChangeCallback
    joined: bool = False
    join_ref: str | None = None
    binding_ids: set[int] = field(default_factory=set)

    def join_payload(self, access_token: str) -> dict[str, Any]:
        change: dict[str, Any] = {"event": self.event, "schema": "public", "table": self.table}
        if self.filter:
            change["filter"] = self.filter
        return {
            "config": {
                "broadcast": {"ack": False, "self": False},
                "presence": {"key": ""},
                "postgres_changes": [change],
            },
            "access_token": access_token,
        }


def websocket_url(rest_url: str, api_key: str) -> str:
    """Derive the realtime websocket URL from the project URL."""
    base = rest_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://") :]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://") :]
    return f"{base}/realtime/v1/websocket?{urlencode({'apikey': api_key, 'vsn': '1.0.0'})}"


class RealtimeClient:
    """Multiplexes realtime channels over one websocket connection.

    subscribe() is synchronous and returns immediately; the connection
    and join happen on the running event loop. Unsubscribing a channel
    that never joined is a no-op on the wire.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_S,
        reconnect_delay: float = RECONNECT_DELAY_S,
    ) -> None:
        self.url = websocket_url(url, api_key)
        self.api_key = api_key
        self.heartbeat_interval = heartbeat_interval
        self.reconnect_delay = reconnect_delay
        self.access_token = api_key
        self._ws: Any = None
        self._channels: dict[str, Channel] = {}
        self._ref = 0
        self._connect_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._reader: asyncio.Task | None = None
        self._heartbeat: asyncio.Task | None = None
        self._closing = False

    def _next_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    def _spawn(self, coro: Any) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop, realtime action skipped")
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def _send(self, topic: str, event: str, payload: dict[str, Any], ref: str | None = None) -> None:
        if self._ws is None:
            return
        message = {"topic": topic, "event": event, "payload": payload, "ref": ref or self._next_ref()}
        await self._ws.send(json.dumps(message))

    async def connect(self) -> None:
        async with self._connect_lock:
            if self._ws is not None:
                return
            self._closing = False
            self._ws = await websockets.connect(self.url)
            self._reader = asyncio.get_running_loop().create_task(self._read_loop())
            self._heartbeat = asyncio.get_running_loop().create_task(self._heartbeat_loop())
            logger.info("Realtime socket connected")
        for channel in list(self._channels.values()):
            await self._join(channel)

    async def _join(self, channel: Channel) -> None:
        channel.join_ref = self._next_ref()
        await self._send(channel.topic, "phx_join", channel.join_payload(self.access_token), channel.join_ref)

    async def _connect_and_join(self, channel: Channel) -> None:
        try:
            if self._ws is None:
                await self.connect()
            else:
                await self._join(channel)
        except (OSError, ConnectionClosed, websockets.InvalidHandshake) as e:
            logger.error("Realtime subscribe to %s failed: %s", channel.topic, e)

    async def _leave(self, channel: Channel) -> None:
        with suppress(ConnectionClosed):
            await self._send(channel.topic, "phx_leave", {})

    def subscribe(
        self,
        name: str,
        table: str,
        callback: ChangeCallback,
        event: str = "*",
        filter: str | None = None,
    ) -> Subscription:
        """Open a channel for row changes on one table.

        Args:
            name: Channel name, unique per subscription.
            table: Table in the public schema.
            callback: Invoked with a ChangeEvent for every matching change.
            event: INSERT, UPDATE, DELETE or * for all.
            filter: PostgREST-style row filter such as ``server_id=eq.srv1``.

        Returns:
            Subscription whose unsubscribe() leaves the channel.
        """
        topic = f"realtime:{name}"
        channel = Channel(topic=topic, table=table, event=event, filter=filter, callback=callback)
        self._channels[topic] = channel
        self._spawn(self._connect_and_join(channel))

        def release() -> None:
            removed = self._channels.pop(topic, None)
            if removed is not None and removed.joined:
                self._spawn(self._leave(removed))

        return Subscription(name, release)

    def set_access_token(self, token: str | None) -> None:
        """Propagate a new user token to every joined channel."""
        self.access_token = token or self.api_key
        for channel in self._channels.values():
            if channel.joined:
                self._spawn(self._send(channel.topic, "access_token", {"access_token": self.access_token}))

    def _dispatch(self, message: dict[str, Any]) -> None:
        topic = message.get("topic")
        event = message.get("event")
        payload = message.get("payload") or {}
        channel = self._channels.get(topic)
        if channel is None:
            return

        if event == "phx_reply" and message.get("ref") == channel.join_ref:
            if payload.get("status") == "ok":
                channel.joined = True
                changes = (payload.get("response") or {}).get("postgres_changes") or []
                channel.binding_ids = {c["id"] for c in changes if "id" in c}
                logger.debug("Joined realtime channel %s", topic)
            else:
                logger.error("Realtime join rejected for %s: %s", topic, payload.get("response"))
        elif event == "postgres_changes":
            data = payload.get("data") or {}
            change = ChangeEvent(
                event=data.get("type", ""),
                table=data.get("table", channel.table),
                new=data.get("record") or {},
                old=data.get("old_record") or {},
            )
            try:
                channel.callback(change)
            except Exception:
                logger.exception("Realtime callback for %s failed", topic)
        elif event in ("phx_error", "phx_close"):
            channel.joined = False
            logger.warning("Realtime channel %s closed: %s", topic, event)

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Discarding malformed realtime frame")
                    continue
                self._dispatch(message)
        except ConnectionClosed as e:
            logger.warning("Realtime socket closed: %s", e)
        finally:
            await self._on_disconnect()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self._send(PHOENIX_TOPIC, "heartbeat", {})
            except ConnectionClosed:
                return

    async def _on_disconnect(self) -> None:
        self._ws = None
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None
        for channel in self._channels.values():
            channel.joined = False
        if not self._closing and self._channels:
            self._spawn(self._reconnect())

    async def _reconnect(self) -> None:
        """Retry the connection until it succeeds or nothing needs it."""
        delay = self.reconnect_delay
        while True:
            await asyncio.sleep(delay)
            if self._closing or not self._channels:
                return
            logger.info("Reconnecting realtime socket")
            try:
                await self.connect()
                return
            except (OSError, websockets.InvalidHandshake) as e:
                delay = min(MAX_RECONNECT_DELAY_S, delay * 1.5)
                logger.error("Realtime reconnect failed (%s); retrying in %.0fs", e, delay)

    async def close(self) -> None:
        """Leave every channel and close the socket."""
        self._closing = True
        self._channels.clear()
        for task in list(self._tasks):
            task.cancel()
        if self._heartbeat is not None:
            self._heartbeat.cancel()
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        if self._reader is not None:
            self._reader.cancel()
            with suppress(asyncio.CancelledError):
                await self._reader
        logger.info("Realtime socket closed")
