"""
Shared test fixtures.

Provides an in-memory SQLite engine, a fake bus client standing in for the
paho-mqtt connection, a manual scheduler for the environment completion
window and a fixed clock, so that devices, the bridge and the API can be
exercised without a broker or a real event-loop timer.
"""

import itertools
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest
from sqlalchemy.pool import StaticPool

from shellydash.db import init_db, make_engine
from shellydash.device import Device
from shellydash.errors import BusDisconnected
from shellydash.machine import DeviceConfig

RPC_TOPIC = "user_1/rpc"
T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

PLUG = DeviceConfig(id="plug-1", name="Kitchen Plug", type="shelly-plug-s", topic_prefix="shellies/plug-1")
HT = DeviceConfig(id="ht-1", name="Living Room", type="shelly-ht", topic_prefix="shellies/ht-1")


def power_payload(apower=12.5, voltage=230.0, current=0.05, total=100.0, **extra) -> str:
    return json.dumps({"id": 0, "apower": apower, "voltage": voltage, "current": current, "aenergy": {"total": total}, **extra})


def rpc_reply(request_id: int, result: Any = None, error: Any = None) -> str:
    body: dict[str, Any] = {"id": request_id, "src": "shellyplug", "dst": "user_1"}
    if error is not None:
        body["error"] = error
    else:
        body["result"] = result
    return json.dumps(body)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class ManualHandle:
    def __init__(self, delay: float, callback: Callable[..., Any], args: tuple) -> None:
        self.delay = delay
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fired = True
        self.callback(*self.args)


class ManualScheduler:
    """``call_later`` lookalike whose callbacks only run when the test says so."""

    def __init__(self) -> None:
        self.handles: list[ManualHandle] = []

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> ManualHandle:
        handle = ManualHandle(delay, callback, args)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> list[ManualHandle]:
        return [h for h in self.handles if not h.cancelled and not h.fired]

    def fire_all(self) -> None:
        for handle in self.pending:
            handle.fire()


class FakeBus:
    """In-memory bus client; ``fail_connects`` makes the first N connects fail."""

    def __init__(self, fail_connects: int = 0) -> None:
        self.fail_connects = fail_connects
        self.connect_calls = 0
        self.connected = False
        self.published: list[tuple[str, str]] = []
        self.subscribed: list[str] = []
        self.unsubscribed: list[str] = []
        self._on_message: Callable[[str, bytes], None] | None = None
        self._on_lost: Callable[[str], None] | None = None

    def set_handlers(self, on_message, on_connection_lost) -> None:
        self._on_message = on_message
        self._on_lost = on_connection_lost

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_calls <= self.fail_connects:
            raise ConnectionRefusedError("broker refused connection")
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    def subscribe(self, topic: str) -> None:
        if not self.connected:
            raise BusDisconnected("not connected")
        self.subscribed.append(topic)

    def unsubscribe(self, topic: str) -> None:
        self.unsubscribed.append(topic)

    def publish(self, topic: str, payload: str) -> None:
        if not self.connected:
            raise BusDisconnected("not connected")
        self.published.append((topic, payload))

    # test helpers

    def deliver(self, topic: str, payload: str | bytes) -> None:
        assert self._on_message is not None
        self._on_message(topic, payload.encode() if isinstance(payload, str) else payload)

    def drop(self) -> None:
        self.connected = False
        assert self._on_lost is not None
        self._on_lost("rc=7")

    def methods(self) -> list[str]:
        return [json.loads(p)["method"] for _, p in self.published]


@pytest.fixture()
def engine():
    """Fresh in-memory database shared across threads."""
    eng = make_engine("sqlite://", poolclass=StaticPool)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def request_ids() -> Callable[[], int]:
    return itertools.count(1).__next__


@pytest.fixture()
def make_device(scheduler, clock, request_ids):
    """Build a Device wired to the manual scheduler and fixed clock."""

    def factory(config: DeviceConfig = PLUG, **kwargs) -> Device:
        kwargs.setdefault("scheduler", scheduler)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("request_ids", request_ids)
        kwargs.setdefault("rpc_source", "user_1")
        kwargs.setdefault("environment_window", 5)
        kwargs.setdefault("rpc_timeout", 0.5)
        return Device(config, **kwargs)

    return factory
