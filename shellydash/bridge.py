"""
Transport bridge between the MQTT bus and the device registry.

The bridge is the only component that knows about the broker connection.
Inbound messages are routed to the registry; outbound publish requests from
devices are sent straight through while connected and buffered in order
otherwise. Reconnection is retried with capped exponential backoff; running
out of attempts puts the bridge in the terminal ``failed`` state.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Callable, Protocol

import paho.mqtt.client as mqtt
import tenacity
from transitions import Machine

from .device import Device
from .errors import BusDisconnected
from .machine import DeviceConfig
from .registry import DeviceRegistry
from .samples import OutboundPublish
from .settings import Settings, settings

log = logging.getLogger("shellydash.bridge")


class BusClient(Protocol):
    def set_handlers(
        self,
        on_message: Callable[[str, bytes], None],
        on_connection_lost: Callable[[str], None],
    ) -> None: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    def subscribe(self, topic: str) -> None: ...

    def unsubscribe(self, topic: str) -> None: ...

    def publish(self, topic: str, payload: str) -> None: ...


def _rc_int(rc) -> int:
    # Handles paho v2.x ReasonCode objects or plain ints
    try:
        return int(getattr(rc, "value", rc))
    except (TypeError, ValueError):
        return -1


class PahoBusClient:
    """paho-mqtt client whose callbacks are handed over to the asyncio loop."""

    def __init__(self, config: Settings = settings) -> None:
        self._config = config
        self._client: mqtt.Client | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._connack: asyncio.Future[int] | None = None
        self._on_message: Callable[[str, bytes], None] | None = None
        self._on_lost: Callable[[str], None] | None = None

    def set_handlers(self, on_message, on_connection_lost) -> None:
        self._on_message = on_message
        self._on_lost = on_connection_lost

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            client_id=self._config.mqtt_client_id,
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,  # paho 2.x
        )
        client.enable_logger(logging.getLogger("shellydash.paho"))
        if self._config.mqtt_username and self._config.mqtt_password:
            client.username_pw_set(self._config.mqtt_username, self._config.mqtt_password)
        client.on_connect = self._handle_connect
        client.on_disconnect = self._handle_disconnect
        client.on_message = self._handle_message
        return client

    async def connect(self) -> None:
        self._loop = asyncio.get_running_loop()
        await self.disconnect()

        client = self._build_client()
        self._connack = self._loop.create_future()
        log.info("Connecting to %s:%s", self._config.mqtt_host, self._config.mqtt_port)
        await asyncio.to_thread(client.connect, self._config.mqtt_host, self._config.mqtt_port, self._config.mqtt_keepalive)
        self._client = client
        client.loop_start()

        try:
            rc = await asyncio.wait_for(self._connack, self._config.connect_timeout)
        except asyncio.TimeoutError:
            await self.disconnect()
            raise
        if rc != mqtt.CONNACK_ACCEPTED:
            await self.disconnect()
            raise ConnectionRefusedError(f"broker refused connection rc={rc} (5=Not authorized)")

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        client.disconnect()
        await asyncio.to_thread(client.loop_stop)

    def subscribe(self, topic: str) -> None:
        res, mid = self._require_client().subscribe(topic, qos=0)
        log.info("SUB %s res=%s mid=%s", topic, res, mid)

    def unsubscribe(self, topic: str) -> None:
        self._require_client().unsubscribe(topic)
        log.info("UNSUB %s", topic)

    def publish(self, topic: str, payload: str) -> None:
        info = self._require_client().publish(topic, payload, qos=0, retain=False)
        # paho v2: info.rc == mqtt.MQTT_ERR_SUCCESS (0) when queued
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise BusDisconnected(f"publish to {topic} failed rc={info.rc}")

    def _require_client(self) -> mqtt.Client:
        if self._client is None:
            raise BusDisconnected("MQTT client not connected")
        return self._client

    # paho network thread below, everything is forwarded to the loop

    def _handle_connect(self, client, userdata, flags, reason_code, properties):
        rc = _rc_int(reason_code)
        if self._loop is not None and self._connack is not None:
            self._loop.call_soon_threadsafe(self._resolve_connack, self._connack, rc)

    @staticmethod
    def _resolve_connack(future: asyncio.Future, rc: int) -> None:
        if not future.done():
            future.set_result(rc)

    def _handle_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        if client is not self._client or self._loop is None or self._on_lost is None:
            return  # our own disconnect
        self._loop.call_soon_threadsafe(self._on_lost, f"rc={_rc_int(reason_code)}")

    def _handle_message(self, client, userdata, msg):
        if self._loop is not None and self._on_message is not None:
            self._loop.call_soon_threadsafe(self._on_message, msg.topic, bytes(msg.payload))


def _log_retry_attempt(retry_state: tenacity.RetryCallState) -> None:
    log.warning(
        "MQTT connect attempt %d failed (%s), next try in %.2fs",
        retry_state.attempt_number,
        retry_state.outcome.exception() if retry_state.outcome else None,
        retry_state.next_action.sleep if retry_state.next_action else 0,
    )


class TransportBridge:
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"
    FAILED = "failed"

    def __init__(
        self,
        registry: DeviceRegistry,
        bus: BusClient,
        *,
        rpc_topic: str | None = None,
        max_attempts: int | None = None,
        min_delay: float | None = None,
        max_delay: float | None = None,
        buffer_size: int | None = None,
    ) -> None:
        self._registry = registry
        self._bus = bus
        self._rpc_topic = rpc_topic or settings.rpc_response_topic
        self._max_attempts = max_attempts or settings.reconnect_max_attempts
        self._min_delay = settings.reconnect_min_delay if min_delay is None else min_delay
        self._max_delay = settings.reconnect_max_delay if max_delay is None else max_delay
        self._buffer_size = buffer_size or settings.publish_buffer_size
        self._pending: deque[OutboundPublish] = deque()
        self._subscriptions: set[str] = set()
        self._task: asyncio.Task | None = None
        self.last_error: BaseException | None = None
        self.on_failed: list[Callable[[BaseException | None], None]] = []

        self.machine = Machine(
            model=self,
            states=[self.DISCONNECTED, self.CONNECTING, self.CONNECTED, self.RECONNECTING, self.CLOSED, self.FAILED],
            initial=self.DISCONNECTED,
            model_attribute="fsm_state",
            ignore_invalid_triggers=True,
        )
        self.machine.add_transition("begin_connect", self.DISCONNECTED, self.CONNECTING)
        self.machine.add_transition("established", [self.CONNECTING, self.RECONNECTING], self.CONNECTED)
        self.machine.add_transition("lost", self.CONNECTED, self.RECONNECTING)
        self.machine.add_transition("give_up", [self.CONNECTING, self.RECONNECTING], self.FAILED)
        self.machine.add_transition("shut_down", [self.DISCONNECTED, self.CONNECTING, self.CONNECTED, self.RECONNECTING, self.FAILED], self.CLOSED)

        bus.set_handlers(self._on_message, self._on_connection_lost)
        registry.on_publish.append(self.publish_request)
        registry.on_device_added.append(self._on_device_added)
        registry.on_device_removed.append(self._on_device_removed)
        registry.on_config_updated.append(self._on_config_updated)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ---------- lifecycle ----------

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run())
        return self._task

    async def run(self) -> bool:
        if not self.begin_connect():
            return False
        return await self._connect_with_retry()

    async def close(self) -> None:
        self.shut_down()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        await self._bus.disconnect()
        if self._pending:
            log.warning("Closing with %d unsent publish requests", len(self._pending))
        self._subscriptions.clear()

    async def _connect_with_retry(self) -> bool:
        retryer = tenacity.AsyncRetrying(
            stop=tenacity.stop_after_attempt(self._max_attempts),
            wait=tenacity.wait_exponential(multiplier=self._min_delay, max=self._max_delay),
            retry=tenacity.retry_if_exception_type((OSError, asyncio.TimeoutError, BusDisconnected)),
            before_sleep=_log_retry_attempt,
        )
        try:
            async for attempt in retryer:
                with attempt:
                    await self._bus.connect()
        except tenacity.RetryError as e:
            self.last_error = e.last_attempt.exception()
            self.give_up()
            log.critical(
                "MQTT broker unreachable after %d attempts, bridge failed: %s",
                self._max_attempts, self.last_error,
            )
            for listener in list(self.on_failed):
                try:
                    listener(self.last_error)
                except Exception:
                    log.exception("failure listener %r failed", listener)
            return False

        if self.fsm_state == self.CLOSED:
            await self._bus.disconnect()
            return False
        self.established()
        self._on_connected()
        return True

    def _on_connected(self) -> None:
        log.info("Connected to MQTT broker")
        self._subscriptions.clear()
        for topic in [self._rpc_topic, *self._registry.subscription_topics()]:
            self._subscribe(topic)
        self._flush()
        self._registry.publish_initial_messages()

    def _on_connection_lost(self, reason: str) -> None:
        if not self.lost():
            return
        log.warning("MQTT connection lost (%s), reconnecting", reason)
        self._task = asyncio.create_task(self._connect_with_retry())

    # ---------- outbound ----------

    def publish_request(self, publish: OutboundPublish) -> None:
        if self.fsm_state == self.CONNECTED and self._pending:
            self._flush()
        if self.fsm_state == self.CONNECTED and not self._pending:
            try:
                self._bus.publish(publish.topic, publish.payload)
                return
            except BusDisconnected as e:
                log.warning("Publish to %s failed (%s), queueing", publish.topic, e)
        self._enqueue(publish)

    def _enqueue(self, publish: OutboundPublish) -> None:
        if self.fsm_state == self.CLOSED:
            log.warning("Bridge closed, dropping publish to %s", publish.topic)
            return
        if len(self._pending) >= self._buffer_size:
            dropped = self._pending.popleft()
            log.warning("Publish buffer full (%d), dropping oldest request for %s", self._buffer_size, dropped.topic)
        self._pending.append(publish)
        log.debug("MQTT not connected, queued message for %s (%d pending)", publish.topic, len(self._pending))

    def _flush(self) -> None:
        if self._pending:
            log.info("Processing %d pending messages", len(self._pending))
        while self._pending and self.fsm_state == self.CONNECTED:
            publish = self._pending.popleft()
            try:
                self._bus.publish(publish.topic, publish.payload)
            except BusDisconnected as e:
                self._pending.appendleft(publish)
                log.warning("Flush interrupted: %s", e)
                break

    # ---------- inbound ----------

    def _on_message(self, topic: str, payload: bytes) -> None:
        try:
            delivered = self._registry.route(topic, payload)
        except Exception:
            log.exception("Failed to route message on %s", topic)
            return
        if not delivered:
            log.debug("No device for %s", topic)

    # ---------- subscriptions ----------

    def _subscribe(self, topic: str) -> None:
        if topic in self._subscriptions:
            return
        try:
            self._bus.subscribe(topic)
        except BusDisconnected as e:
            log.warning("Subscribe to %s failed: %s", topic, e)
            return
        self._subscriptions.add(topic)

    def _unsubscribe_prefix(self, prefix: str) -> None:
        if any(d.topic_prefix == prefix for d in self._registry.get_all_devices()):
            return  # still used by another device
        topic = f"{prefix}/status/#"
        if topic not in self._subscriptions:
            return
        self._subscriptions.discard(topic)
        try:
            self._bus.unsubscribe(topic)
        except BusDisconnected as e:
            log.warning("Unsubscribe from %s failed: %s", topic, e)

    def _on_device_added(self, device: Device) -> None:
        if self.fsm_state != self.CONNECTED:
            return
        self._subscribe(device.rpc_topic)
        self._subscribe(f"{device.topic_prefix}/status/#")
        device.publish_initial_messages()

    def _on_device_removed(self, device: Device) -> None:
        if self.fsm_state == self.CONNECTED:
            self._unsubscribe_prefix(device.topic_prefix)

    def _on_config_updated(self, old: DeviceConfig, new: DeviceConfig) -> None:
        if old.topic_prefix == new.topic_prefix and old.type == new.type:
            return
        if self.fsm_state != self.CONNECTED:
            return
        if old.topic_prefix != new.topic_prefix:
            self._unsubscribe_prefix(old.topic_prefix)
            self._subscribe(f"{new.topic_prefix}/status/#")
        device = self._registry.get_device(new.id)
        if device is not None:
            device.publish_initial_messages()

    def status(self) -> dict[str, Any]:
        return {
            "state": self.fsm_state,
            "pending": len(self._pending),
            "subscriptions": sorted(self._subscriptions),
            "last_error": str(self.last_error) if self.last_error else None,
        }
