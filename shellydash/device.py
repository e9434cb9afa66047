from __future__ import annotations

import asyncio
import functools
import itertools
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

from . import machine
from .errors import CommandFailed
from .machine import DeviceConfig, DeviceState, RpcReply, TimerAction, Transition
from .samples import MetricSample, OutboundPublish
from .settings import settings

log = logging.getLogger("shellydash.device")


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything with asyncio's ``call_later`` signature."""
    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> Cancellable: ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_request_ids = itertools.count(1)


def next_request_id() -> int:
    # shared by every device, so an RPC reply id identifies exactly one device
    return next(_request_ids)


class Device:
    """Runs the pure machine for one device and turns its transitions into side effects."""

    def __init__(
        self,
        config: DeviceConfig,
        *,
        scheduler: Scheduler | None = None,
        clock: Callable[[], datetime] = utcnow,
        request_ids: Callable[[], int] = next_request_id,
        rpc_source: str | None = None,
        environment_window: float | None = None,
        rpc_timeout: float | None = None,
    ) -> None:
        self._state = machine.initial_state(config)
        self._scheduler = scheduler
        self._clock = clock
        self._request_ids = request_ids
        self._source = rpc_source or settings.rpc_source
        self._window = settings.environment_window_seconds if environment_window is None else environment_window
        self._rpc_timeout = settings.rpc_timeout_seconds if rpc_timeout is None else rpc_timeout
        self._timer: Cancellable | None = None
        self._waiters: dict[int, asyncio.Future[RpcReply]] = {}

        self.on_state_changed: list[Callable[[Device], None]] = []
        self.on_metric: list[Callable[[MetricSample], None]] = []
        self.on_publish: list[Callable[[OutboundPublish], None]] = []

    @property
    def config(self) -> DeviceConfig:
        return self._state.config

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def type(self) -> str:
        return self.config.type

    @property
    def topic_prefix(self) -> str:
        return self.config.topic_prefix

    @property
    def state(self) -> DeviceState:
        return self._state.device

    @property
    def rpc_topic(self) -> str:
        return f"{self._source}/rpc"

    @property
    def has_pending_environment(self) -> bool:
        return self._state.buffer is not None

    def to_dict(self) -> dict[str, Any]:
        return {**self.config.to_dict(), "state": self.state.to_dict()}

    # ---------- inbound ----------

    def handle_message(self, topic: str, payload: bytes | str) -> None:
        try:
            transition = machine.handle_message(self._state, topic, payload, self._clock(), self.rpc_topic)
        except Exception:
            log.exception("%s: failed to handle message on %s", self.id, topic)
            return
        self._apply(transition)

    def _on_window_elapsed(self) -> None:
        self._timer = None
        log.debug("%s: environment window elapsed, emitting partial reading", self.id)
        self._apply(machine.flush_environment(self._state, self._clock()))

    # ---------- outbound ----------

    def publish_initial_messages(self) -> None:
        self._apply(machine.initial_requests(self._state, self._request_ids, self._source))

    def get_commands(self) -> dict[str, Callable[..., Awaitable[Any]]]:
        return {name: functools.partial(self.execute, name) for name in machine.supported_commands(self.config)}

    async def execute(self, command: str, params: dict[str, Any] | None = None) -> Any:
        plan = machine.plan_command(self.config, command, params)
        transition, ids = machine.apply_command(self._state, plan, self._request_ids, self._source)

        waiter: asyncio.Future[RpcReply] | None = None
        if plan.spec.awaits_reply:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters[ids[0]] = waiter
        self._apply(transition)
        if waiter is None:
            return None

        try:
            reply = await asyncio.wait_for(waiter, self._rpc_timeout)
        except asyncio.TimeoutError:
            raise CommandFailed(f"{command} timed out after {self._rpc_timeout:g}s") from None
        finally:
            self._waiters.pop(ids[0], None)

        if reply.error is not None:
            message = reply.error.get("message") if isinstance(reply.error, dict) else None
            raise CommandFailed(message or f"{command} failed: {reply.error}")
        if plan.spec.shape_result is not None:
            return plan.spec.shape_result(reply.result)
        return reply.result

    # ---------- lifecycle ----------

    def update_config(self, config: DeviceConfig) -> None:
        self._state = replace(self._state, config=config)
        self._emit(self.on_state_changed, self)

    def close(self) -> None:
        self._cancel_timer()
        for waiter in self._waiters.values():
            if not waiter.done():
                waiter.set_exception(CommandFailed(f"device {self.id} was removed"))
        self._waiters.clear()
        self.on_state_changed.clear()
        self.on_metric.clear()
        self.on_publish.clear()

    # ---------- effects ----------

    def _apply(self, transition: Transition) -> None:
        self._state = transition.state

        if transition.timer is TimerAction.START:
            self._start_timer()
        elif transition.timer is TimerAction.CANCEL:
            self._cancel_timer()

        for reply in transition.replies:
            waiter = self._waiters.get(reply.request_id)
            if waiter is not None and not waiter.done():
                waiter.set_result(reply)

        if transition.changed:
            self._emit(self.on_state_changed, self)
        for sample in transition.samples:
            self._emit(self.on_metric, sample)
        for publish in transition.publishes:
            self._emit(self.on_publish, publish)

    def _start_timer(self) -> None:
        self._cancel_timer()
        scheduler = self._scheduler or asyncio.get_running_loop()
        self._timer = scheduler.call_later(self._window, self._on_window_elapsed)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _emit(self, listeners: list, arg: Any) -> None:
        for listener in list(listeners):
            try:
                listener(arg)
            except Exception:
                log.exception("%s: listener %r failed", self.id, listener)
