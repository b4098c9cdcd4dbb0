"""
Change-stream subscriptions over the backend's realtime websocket.

Responsibilities:
- Open one aiohttp websocket per RealtimeClient and keep it alive with heartbeats.
- Join one channel per subscription and wait for the join reply.
- Route postgres_changes messages to the subscription's callback.
- Convert raw change payloads into ChangeEvent objects (parse_change_payload).

Callbacks run synchronously inside the reader task, so two events are never
handled concurrently.
"""
from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, Callable, Protocol

import aiohttp

from ..const import REALTIME_HEARTBEAT_INTERVAL, REALTIME_JOIN_TIMEOUT
from ..errors import SubscriptionError
from ..models import EVENT_DELETE, EVENT_INSERT, EVENT_UPDATE, ChangeEvent, Entity

_LOGGER = logging.getLogger(__name__)

_KIND_BY_TYPE = {
    "INSERT": EVENT_INSERT,
    "UPDATE": EVENT_UPDATE,
    "DELETE": EVENT_DELETE,
}

RowParser = Callable[..., "Entity | None"]
EventCallback = Callable[[dict], None]
ErrorCallback = Callable[[Exception], None]


def parse_change_payload(data: dict, table: str, parse_row: RowParser) -> ChangeEvent | None:
    """
    Convert one raw change payload into a ChangeEvent.

    Accepts both the wire shape ({type, record, old_record}) and the SDK
    shape ({eventType, new, old}). Returns None for payloads that cannot be
    mapped (unknown type, rows without id).
    """
    raw_type = str(data.get("type") or data.get("eventType") or "").upper()
    kind = _KIND_BY_TYPE.get(raw_type)
    if kind is None:
        _LOGGER.debug("Ignoring change payload with type %r", raw_type)
        return None
    new_row = data.get("record") if "record" in data else data.get("new")
    old_row = data.get("old_record") if "old_record" in data else data.get("old")

    current = parse_row(new_row, partial=True) if new_row and new_row.get("id") is not None else None
    previous = parse_row(old_row, partial=True) if old_row and old_row.get("id") is not None else None
    if kind == EVENT_DELETE:
        current = None
    if current is None and previous is None:
        _LOGGER.warning("Change payload for %s carries no identifiable row: %s", table, data)
        return None
    if kind != EVENT_DELETE and current is None:
        _LOGGER.warning("%s payload for %s carries no new row: %s", raw_type, table, data)
        return None
    return ChangeEvent(kind, data.get("table") or table, current=current, previous=previous)


class ChangeStream(Protocol):
    """What the coordinator needs from a change-notification source."""

    async def subscribe(
        self,
        table: str,
        filter_expression: str | None,
        on_event: EventCallback,
        on_error: ErrorCallback | None = None,
    ) -> Any:
        ...

    async def unsubscribe(self, handle: Any) -> None:
        ...


class Subscription:
    """Handle for one joined channel."""

    def __init__(self, topic: str, table: str, filter_expression: str | None,
                 on_event: EventCallback, on_error: ErrorCallback | None) -> None:
        self.topic = topic
        self.table = table
        self.filter_expression = filter_expression
        self.on_event = on_event
        self.on_error = on_error
        self.joined = False

    def __repr__(self) -> str:
        return f"Subscription({self.topic!r}, joined={self.joined})"


class RealtimeClient:
    """One websocket connection multiplexing any number of table subscriptions."""

    def __init__(
        self,
        url: str,
        api_key: str,
        access_token: str | None = None,
        schema: str = "public",
        heartbeat_interval: float = REALTIME_HEARTBEAT_INTERVAL,
        join_timeout: float = REALTIME_JOIN_TIMEOUT,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.access_token = access_token
        self.schema = schema
        self.heartbeat_interval = heartbeat_interval
        self.join_timeout = join_timeout
        self._session = session
        self._owns_session = session is None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._refs = itertools.count(1)
        self._topics = itertools.count(1)
        self._pending_replies: dict[str, asyncio.Future] = {}
        self._subscriptions: dict[str, Subscription] = {}
        self._tasks: set[asyncio.Task] = set()
        self._connect_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings) -> "RealtimeClient":
        return cls(settings.realtime_url, settings.api_key,
                   access_token=settings.access_token, schema=settings.schema)

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def subscribe(
        self,
        table: str,
        filter_expression: str | None,
        on_event: EventCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """
        Join a channel for table and route its change payloads to on_event.

        Raises SubscriptionError when the socket cannot be opened or the
        join is rejected / not answered in time.
        """
        await self._ensure_connected()
        topic = f"realtime:{self.schema}:{table}:{next(self._topics)}"
        change = {"event": "*", "schema": self.schema, "table": table}
        if filter_expression:
            change["filter"] = filter_expression
        subscription = Subscription(topic, table, filter_expression, on_event, on_error)
        self._subscriptions[topic] = subscription

        payload = {
            "config": {"postgres_changes": [change]},
            "access_token": self.access_token or self.api_key,
        }
        try:
            reply = await self._send_and_wait(topic, "phx_join", payload)
        except (asyncio.TimeoutError, aiohttp.ClientError, ConnectionError) as exc:
            self._subscriptions.pop(topic, None)
            raise SubscriptionError(f"Joining {topic} failed: {exc}") from exc

        if reply.get("status") != "ok":
            self._subscriptions.pop(topic, None)
            raise SubscriptionError(f"Joining {topic} was rejected: {reply.get('response')}")
        subscription.joined = True
        _LOGGER.debug("Subscribed to %s (filter=%s)", topic, filter_expression)
        return subscription

    async def unsubscribe(self, handle: Subscription) -> None:
        subscription = self._subscriptions.pop(handle.topic, None)
        if subscription is None:
            return
        subscription.joined = False
        if self.connected:
            try:
                await self._send(handle.topic, "phx_leave", {})
            except (aiohttp.ClientError, ConnectionError) as exc:
                _LOGGER.debug("Leaving %s failed: %s", handle.topic, exc)
        _LOGGER.debug("Unsubscribed from %s", handle.topic)

    async def close(self) -> None:
        """Leave every channel, close the socket and stop background tasks."""
        for subscription in list(self._subscriptions.values()):
            await self.unsubscribe(subscription)
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    async def _ensure_connected(self) -> None:
        async with self._connect_lock:
            if self.connected:
                return
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession()
                self._owns_session = True
            params = {"apikey": self.api_key, "vsn": "1.0.0"}
            try:
                self._ws = await self._session.ws_connect(self.url, params=params, heartbeat=None)
            except (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError) as exc:
                raise SubscriptionError(f"Cannot open realtime socket: {exc}") from exc
            self._start_task(self._reader())
            self._start_task(self._heartbeat())

    def _start_task(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, topic: str, event: str, payload: dict) -> str:
        ref = str(next(self._refs))
        message = {"topic": topic, "event": event, "payload": payload, "ref": ref}
        await self._ws.send_str(json.dumps(message))
        return ref

    async def _send_and_wait(self, topic: str, event: str, payload: dict) -> dict:
        ref = str(next(self._refs))
        future = asyncio.get_event_loop().create_future()
        self._pending_replies[ref] = future
        message = {"topic": topic, "event": event, "payload": payload, "ref": ref}
        try:
            await self._ws.send_str(json.dumps(message))
            return await asyncio.wait_for(future, timeout=self.join_timeout)
        finally:
            self._pending_replies.pop(ref, None)

    async def _heartbeat(self) -> None:
        while self.connected:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self._send("phoenix", "heartbeat", {})
            except (aiohttp.ClientError, ConnectionError) as exc:
                _LOGGER.warning("Realtime heartbeat failed: %s", exc)
                return

    async def _reader(self) -> None:
        """Consume websocket messages until the socket closes."""
        ws = self._ws
        async for message in ws:
            if message.type == aiohttp.WSMsgType.TEXT:
                try:
                    decoded = json.loads(message.data)
                except ValueError:
                    _LOGGER.warning("Discarding non-JSON realtime frame: %.200s", message.data)
                    continue
                self.dispatch(decoded)
            elif message.type in (aiohttp.WSMsgType.ERROR, aiohttp.WSMsgType.CLOSED):
                break
        _LOGGER.warning("Realtime socket closed; %s subscription(s) now stale", len(self._subscriptions))
        self._fail_all(SubscriptionError("Realtime connection lost"))

    def _fail_all(self, exc: Exception) -> None:
        for subscription in list(self._subscriptions.values()):
            subscription.joined = False
            self._notify_error(subscription, exc)
        self._subscriptions.clear()
        for future in self._pending_replies.values():
            if not future.done():
                future.set_exception(exc)

    def _notify_error(self, subscription: Subscription, exc: Exception) -> None:
        if subscription.on_error is None:
            return
        try:
            subscription.on_error(exc)
        except Exception as callback_exc:  # noqa: BLE001
            _LOGGER.error("Error callback for %s raised: %s", subscription.topic, callback_exc)

    # ------------------------------------------------------------------
    # Message routing
    # ------------------------------------------------------------------

    def dispatch(self, message: dict) -> None:
        """Route one decoded protocol message."""
        event = message.get("event")
        topic = message.get("topic")
        payload = message.get("payload") or {}

        if event == "phx_reply":
            future = self._pending_replies.get(str(message.get("ref")))
            if future is not None and not future.done():
                future.set_result(payload)
            return

        subscription = self._subscriptions.get(topic)
        if subscription is None:
            return

        if event == "postgres_changes":
            data = payload.get("data") or payload
            try:
                subscription.on_event(data)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.error("Change handler for %s raised: %s", topic, exc)
        elif event in ("phx_error", "phx_close"):
            _LOGGER.warning("Realtime channel %s reported %s", topic, event)
            self._subscriptions.pop(topic, None)
            subscription.joined = False
            self._notify_error(subscription, SubscriptionError(f"Channel {topic} {event}"))
        elif event == "system" and payload.get("status") == "error":
            _LOGGER.warning("Realtime channel %s system error: %s", topic, payload.get("message"))
            self._notify_error(subscription, SubscriptionError(str(payload.get("message"))))
