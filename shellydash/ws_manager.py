from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Callable

from fastapi import WebSocket

log = logging.getLogger("shellydash.ws")

STATE = "state"
METRIC = "metric"


class Subscription:
    """One subscriber: its own bounded queue drained by its own task."""

    def __init__(self, channel: str, callback: Callable[[dict], Any], maxsize: int) -> None:
        self.channel = channel
        self._callback = callback
        self._queue: asyncio.Queue[dict] = asyncio.Queue(maxsize)
        self._task = asyncio.create_task(self._drain())
        self.dropped = 0

    def offer(self, event: dict) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            log.warning("Subscriber on %s is falling behind, dropped %d events", self.channel, self.dropped)
        self._queue.put_nowait(event)

    async def _drain(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                result = self._callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log.exception("Subscriber callback on %s failed", self.channel)

    def close(self) -> None:
        self._task.cancel()


class FanoutHub:
    def __init__(self, maxsize: int = 100) -> None:
        self._maxsize = maxsize
        self._subscriptions: dict[str, set[Subscription]] = {STATE: set(), METRIC: set()}

    def subscribe(self, channel: str, callback: Callable[[dict], Any]) -> Callable[[], None]:
        sub = Subscription(channel, callback, self._maxsize)
        self._subscriptions.setdefault(channel, set()).add(sub)

        def unsubscribe() -> None:
            self._subscriptions.get(channel, set()).discard(sub)
            sub.close()

        return unsubscribe

    def publish(self, channel: str, event: dict) -> None:
        for sub in list(self._subscriptions.get(channel, ())):
            sub.offer(event)

    def subscriber_count(self, channel: str | None = None) -> int:
        if channel is not None:
            return len(self._subscriptions.get(channel, ()))
        return sum(len(s) for s in self._subscriptions.values())

    def close(self) -> None:
        for subs in self._subscriptions.values():
            for sub in subs:
                sub.close()
            subs.clear()


class ConnectionManager:
    def __init__(self, hub: FanoutHub) -> None:
        self._hub = hub
        self.active_connections: dict[WebSocket, list[Callable[[], None]]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, snapshot: dict | None = None):
        await websocket.accept()
        if snapshot is not None:
            await websocket.send_text(json.dumps(snapshot, default=str))
        unsubscribers = [
            self._hub.subscribe(channel, lambda event, ws=websocket: self._safe_send(ws, event))
            for channel in (STATE, METRIC)
        ]
        async with self._lock:
            self.active_connections[websocket] = unsubscribers

    async def disconnect(self, websocket: WebSocket):
        async with self._lock:
            unsubscribers = self.active_connections.pop(websocket, [])
        for unsubscribe in unsubscribers:
            unsubscribe()

    async def _safe_send(self, ws: WebSocket, event: dict):
        try:
            await ws.send_text(json.dumps(event, default=str))
        except Exception:
            log.info("Websocket send failed, dropping connection")
            await self.disconnect(ws)
